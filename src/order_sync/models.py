"""Pydantic domain models for order-sync."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import NoBankChargesError, PaymentPendingError

# ============================================================================
# Order Models
# ============================================================================


class OrderItem(BaseModel):
    """A line item on a retailer order."""

    model_config = ConfigDict(frozen=True)

    name: str
    price: Decimal  # line price (unit price * quantity)
    quantity: Decimal = Decimal("1")
    unit_price: Decimal | None = None
    sku: str | None = None


class PaymentCharge(BaseModel):
    """One entry in a provider's payment ledger for an order."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal
    kind: Literal["charge", "refund"] = "charge"
    last4: str | None = None  # card digits; empty for gift cards/points
    description: str = ""
    charged_on: date | None = None

    @property
    def is_bank_charge(self) -> bool:
        """True if this entry hit a real card (and so shows up in the ledger)."""
        return bool(self.last4)


class Order(BaseModel):
    """A normalized retailer order.

    ``payments`` is None when the provider doesn't expose a payment ledger
    (plain orders matched by total). When it is a list, the order can report
    its final bank charges and is eligible for multi-delivery handling.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    order_date: date
    total: Decimal
    subtotal: Decimal
    tax: Decimal = Decimal("0")
    tip: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    items: list[OrderItem] = Field(default_factory=list)
    provider: str
    payments: list[PaymentCharge] | None = None

    @property
    def tracks_payments(self) -> bool:
        """Whether the provider supplied a payment ledger for this order."""
        return self.payments is not None

    def final_charges(self) -> list[Decimal]:
        """
        Get the bank charges for this order, in ledger order.

        Refunds, non-positive entries, and non-bank payments (no card digits)
        are left out.

        Returns:
            List of positive charge amounts

        Raises:
            PaymentPendingError: If nothing has been charged yet
            NoBankChargesError: If the order was paid entirely with gift
                cards, points, or other non-bank methods
        """
        if not self.payments:
            raise PaymentPendingError(self.id)

        charges = []
        has_non_bank = False
        for payment in self.payments:
            if payment.kind == "refund" or payment.amount <= 0:
                continue
            if not payment.is_bank_charge:
                has_non_bank = True
                continue
            charges.append(payment.amount)

        if not charges:
            if has_non_bank:
                raise NoBankChargesError(
                    f"Order {self.id} has no bank charges "
                    f"(paid entirely with gift cards/points)"
                )
            raise PaymentPendingError(self.id)

        return charges

    def non_bank_amount(self) -> Decimal:
        """Total paid through gift cards, points, or promotional credit."""
        total = Decimal("0")
        for payment in self.payments or []:
            if payment.kind == "refund" or payment.amount <= 0:
                continue
            if not payment.is_bank_charge:
                total += payment.amount
        return total

    def is_multi_delivery(self) -> bool:
        """True if the order was split into more than one bank charge."""
        if not self.tracks_payments:
            return False
        return len(self.final_charges()) > 1


# ============================================================================
# Ledger Models
# ============================================================================


class Split(BaseModel):
    """A category allocation of part of a transaction."""

    category_id: str
    category_name: str
    amount: Decimal  # same sign convention as the parent transaction
    notes: str


class Transaction(BaseModel):
    """A Monarch Money transaction (negative amount = money out)."""

    id: str
    amount: Decimal
    posted_date: date
    merchant_name: str = ""
    category_id: str | None = None
    notes: str | None = None
    has_splits: bool = False
    is_split_transaction: bool = False  # a child of a split parent
    splits: list[Split] = Field(default_factory=list)

    @property
    def carries_splits(self) -> bool:
        """True if this transaction already has category splits applied."""
        return self.has_splits or bool(self.splits)


class Category(BaseModel):
    """A Monarch Money transaction category."""

    id: str
    name: str
    group_name: str | None = None


# ============================================================================
# Categorization Models
# ============================================================================


class ItemCategorization(BaseModel):
    """Category assigned to one order item."""

    item_name: str
    category_id: str
    category_name: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class CategorizationResult(BaseModel):
    """Per-item category assignments, parallel to the order's items."""

    categorizations: list[ItemCategorization] = Field(default_factory=list)


class CategoryMapping(BaseModel):
    """A cached item-name to category mapping."""

    id: int | None = None
    pattern: str  # normalized item name
    category_id: str
    category_name: str
    source: Literal["gpt", "manual", "rule"]
    confidence: float | None = None
    created_at: datetime = Field(default_factory=datetime.now)


# ============================================================================
# Matching Models
# ============================================================================


class MatchResult(BaseModel):
    """A candidate transaction picked for an order or a single charge."""

    transaction: Transaction
    date_diff: int  # absolute difference in days
    amount_diff: Decimal  # absolute difference in dollars
    confidence: float = 1.0


class MultiMatchResult(BaseModel):
    """Matches for each expected charge of a multi-delivery order.

    ``matches`` always has one slot per entry in ``amounts``; a slot with no
    matching transaction holds None.
    """

    matches: list[MatchResult | None]
    amounts: list[Decimal]
    all_found: bool = False

    @property
    def found_count(self) -> int:
        """Number of filled slots."""
        return sum(1 for match in self.matches if match is not None)

    def transactions(self) -> list[Transaction]:
        """Matched transactions in slot order, skipping empty slots."""
        return [match.transaction for match in self.matches if match is not None]


class ConsolidationResult(BaseModel):
    """Outcome of merging several charge transactions into one."""

    consolidated_transaction: Transaction
    failed_deletions: list[str] = Field(default_factory=list)


class ChargeValidation(BaseModel):
    """Result of checking bank charges against the order total."""

    valid: bool
    bank_charges_sum: Decimal
    expected_sum: Decimal
    difference: Decimal
    reason: str = ""


# ============================================================================
# Audit Models
# ============================================================================

ProcessingStatus = Literal["success", "failed", "skipped", "dry-run", "pending"]


class MultiDeliveryInfo(BaseModel):
    """Details kept for orders that were consolidated from several charges."""

    charge_count: int
    charge_amounts: list[Decimal]
    original_transaction_ids: list[str]
    consolidated_transaction_id: str
    failed_deletions: list[str] = Field(default_factory=list)


class ProcessingRecord(BaseModel):
    """The outcome of processing one order in one run."""

    id: int | None = None
    run_id: int | None = None
    order_id: str
    provider: str
    transaction_id: str | None = None
    order_date: date
    order_total: Decimal
    transaction_amount: Decimal | None = None
    item_count: int = 0
    split_count: int = 0
    status: ProcessingStatus
    error_message: str | None = None
    date_diff: int | None = None
    dry_run: bool = False
    items: list[dict[str, Any]] = Field(default_factory=list)
    splits: list[dict[str, Any]] = Field(default_factory=list)
    multi_delivery: MultiDeliveryInfo | None = None
    processed_at: datetime = Field(default_factory=datetime.now)


class SyncRun(BaseModel):
    """One invocation of the sync for a provider."""

    id: int | None = None
    provider: str
    lookback_days: int
    dry_run: bool = False
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None
    orders_found: int = 0
    processed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    status: Literal["running", "completed", "cancelled"] = "running"


class APICall(BaseModel):
    """One external ledger call, kept for the audit trail."""

    id: int | None = None
    run_id: int
    order_id: str
    method: str
    request_json: str
    response_json: str
    error: str | None = None
    duration_ms: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
