"""Custom exceptions for order-sync."""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from .money import format_signed_usd

if TYPE_CHECKING:
    from .models import MultiMatchResult


class OrderSyncError(Exception):
    """Base exception for all order-sync errors."""

    pass


class ConfigurationError(OrderSyncError):
    """Raised when configuration is invalid or missing."""

    pass


class APIError(OrderSyncError):
    """Base class for API-related errors."""

    pass


class MonarchAPIError(APIError):
    """Raised when a Monarch Money API request fails."""

    pass


class OpenAIAPIError(APIError):
    """Raised when an OpenAI API request fails."""

    pass


class CategorizationError(OrderSyncError):
    """Raised when item categorization fails."""

    pass


class PaymentPendingError(OrderSyncError):
    """Raised when an order has not been charged yet.

    This is not a failure: the charge simply hasn't posted. Callers skip the
    order and pick it up again on the next run.
    """

    def __init__(self, order_id: str, message: str | None = None):
        self.order_id = order_id
        super().__init__(
            message or f"Payment pending for order {order_id} (not charged yet)"
        )


class DataInconsistencyError(OrderSyncError):
    """Raised when order or transaction data is internally inconsistent."""

    pass


class InvalidChargeAmountError(DataInconsistencyError):
    """Raised when expected charge amounts are missing or not positive."""

    pass


class ChargeSumMismatchError(DataInconsistencyError):
    """Raised when matched charges don't add up to the order total."""

    def __init__(self, message: str, result: "MultiMatchResult | None" = None):
        self.result = result
        super().__init__(message)


class NoBankChargesError(DataInconsistencyError):
    """Raised when an order was paid entirely with gift cards or points."""

    pass


class ChargeValidationError(DataInconsistencyError):
    """Raised when bank charges don't reconcile with the order total."""

    pass


class ConsolidationError(OrderSyncError):
    """Raised when the primary transaction of a consolidation can't be updated."""

    pass


class SyncCancelledError(OrderSyncError):
    """Raised when a run is cancelled between external calls."""

    pass


class OrderProcessingError(OrderSyncError):
    """Raised when a single order fails; keeps enough context to find it by hand."""

    def __init__(
        self,
        order_id: str,
        provider: str,
        order_date: date,
        order_total: Decimal,
        reason: str,
    ):
        self.order_id = order_id
        self.provider = provider
        self.order_date = order_date
        self.order_total = order_total
        self.reason = reason
        super().__init__(
            f"order {order_id} ({provider}, {order_date.isoformat()}, "
            f"{format_signed_usd(order_total)}): {reason}"
        )
