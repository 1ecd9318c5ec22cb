"""order-sync - Match retailer orders to Monarch Money transactions and split them by category."""

__version__ = "0.1.0"

from .allocator import allocate, allocate_order
from .config import Settings, load_settings
from .consolidator import Consolidator
from .db import Database
from .matcher import MatcherConfig, TransactionMatcher
from .models import (
    MatchResult,
    MultiMatchResult,
    Order,
    OrderItem,
    PaymentCharge,
    Split,
    Transaction,
)
from .service import SyncOptions, SyncService
from .splitter import Splitter, create_splits, get_single_category_info

__all__ = [
    "allocate",
    "allocate_order",
    "Settings",
    "load_settings",
    "Consolidator",
    "Database",
    "MatcherConfig",
    "TransactionMatcher",
    "MatchResult",
    "MultiMatchResult",
    "Order",
    "OrderItem",
    "PaymentCharge",
    "Split",
    "Transaction",
    "SyncOptions",
    "SyncService",
    "Splitter",
    "create_splits",
    "get_single_category_info",
]
