"""Service layer that runs a sync for one provider.

This module composes the Monarch client, matcher, consolidator, splitter
and database into the per-order pipeline:

    skip if processed -> match (or multi-match + consolidate) -> split
    -> write back -> record

One bad order never stops the run; its failure is recorded with enough
context to fix it by hand.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable

from .allocator import allocate_order
from .audit import AuditLog
from .consolidator import Consolidator
from .db import Database
from .exceptions import (
    ChargeValidationError,
    OrderProcessingError,
    PaymentPendingError,
    SyncCancelledError,
)
from .matcher import MatcherConfig, TransactionMatcher
from .models import (
    Category,
    MultiDeliveryInfo,
    Order,
    ProcessingRecord,
    ProcessingStatus,
    Split,
    SyncRun,
    Transaction,
)
from .providers import display_name
from .splitter import ItemClassifier, Splitter
from .validator import validate_charges

logger = logging.getLogger(__name__)

# Transactions can post up to a week after the order
TRANSACTION_BUFFER_DAYS = 7

LEDGER_AMOUNT_TOLERANCE = Decimal("0.01")

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class SyncOptions:
    """Options for a single sync run."""

    lookback_days: int = 14
    dry_run: bool = False
    force: bool = False
    order_id: str | None = None


@dataclass
class SyncResult:
    """Summary of a sync run."""

    run_id: int
    orders_found: int = 0
    records: list[ProcessingRecord] = field(default_factory=list)
    cancelled: bool = False

    def count(self, status: ProcessingStatus) -> int:
        """Number of orders that ended with ``status``."""
        return sum(1 for record in self.records if record.status == status)

    @property
    def processed_count(self) -> int:
        return self.count("success") + self.count("dry-run")

    @property
    def skipped_count(self) -> int:
        return self.count("skipped") + self.count("pending")

    @property
    def error_count(self) -> int:
        return self.count("failed")


class _SkipOrder(Exception):
    """Internal signal that an order needs no work."""

    def __init__(self, reason: str, transaction: Transaction | None = None):
        self.reason = reason
        self.transaction = transaction
        super().__init__(reason)


def filter_provider_transactions(
    transactions: list[Transaction], provider: str
) -> list[Transaction]:
    """
    Keep the transactions that could belong to a provider.

    Split children are dropped, and the merchant name has to contain the
    provider's display name (case-insensitive).
    """
    needle = display_name(provider).lower()
    return [
        txn
        for txn in transactions
        if not txn.is_split_transaction and needle in txn.merchant_name.lower()
    ]


class SyncService:
    """Service for reconciling provider orders with Monarch transactions."""

    def __init__(
        self,
        client,
        classifier: ItemClassifier,
        database: Database,
        matcher_config: MatcherConfig | None = None,
        transaction_fetch_limit: int = 500,
    ):
        """
        Initialize the sync service.

        Args:
            client: Monarch client (fetch, update, update splits, delete)
            classifier: Assigns categories to order items
            database: Database for processing records and the audit trail
            matcher_config: Matching tolerances
            transaction_fetch_limit: Maximum transactions fetched per run
        """
        self.client = client
        self.db = database
        self.matcher = TransactionMatcher(matcher_config)
        self.splitter = Splitter(classifier)
        self.transaction_fetch_limit = transaction_fetch_limit

    # ========================================================================
    # Fetching
    # ========================================================================

    def fetch_transactions(
        self, provider: str, lookback_days: int, today: date | None = None
    ) -> list[Transaction]:
        """
        Fetch the provider's candidate transactions for a run.

        The window is ``[today - lookback - 7 days, today]``.
        """
        end_date = today or date.today()
        start_date = end_date - timedelta(days=lookback_days + TRANSACTION_BUFFER_DAYS)

        transactions = self.client.get_transactions(
            start_date, end_date, limit=self.transaction_fetch_limit
        )
        candidates = filter_provider_transactions(transactions, provider)

        logger.info(
            f"Fetched {len(transactions)} transactions, "
            f"{len(candidates)} from {display_name(provider)}"
        )
        return candidates

    def get_categories(self) -> list[Category]:
        """Fetch the Monarch categories items can be assigned to."""
        categories: list[Category] = self.client.get_categories()
        logger.info(f"Fetched {len(categories)} Monarch categories")
        return categories

    # ========================================================================
    # Run
    # ========================================================================

    def run(
        self,
        orders: list[Order],
        provider: str,
        options: SyncOptions | None = None,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
        today: date | None = None,
    ) -> SyncResult:
        """
        Process a batch of orders from one provider.

        Fetching categories or transactions failing aborts the run. Any
        failure after that is recorded against its order and the run moves
        on.

        Args:
            orders: Orders from the provider
            provider: Provider key
            options: Run options
            progress: Called with (phase, current, total) at phase changes
                and after each order
            cancel: When set, the run stops before the next external call
            today: Override for the current date

        Returns:
            Summary of the run
        """
        options = options or SyncOptions()
        today = today or date.today()

        def report(phase: str, current: int = 0, total: int = 0) -> None:
            if progress is not None:
                progress(phase, current, total)

        report("fetching")
        categories = self.get_categories()
        transactions = self.fetch_transactions(provider, options.lookback_days, today)

        if options.order_id:
            selected = [order for order in orders if order.id == options.order_id]
        else:
            cutoff = today - timedelta(days=options.lookback_days)
            selected = [order for order in orders if order.order_date >= cutoff]

        run_id = self.db.start_sync_run(
            SyncRun(
                provider=provider,
                lookback_days=options.lookback_days,
                dry_run=options.dry_run,
            )
        )
        result = SyncResult(run_id=run_id, orders_found=len(selected))
        audit = AuditLog(self.db, run_id)

        logger.info(
            f"Sync run {run_id}: {len(selected)} {display_name(provider)} orders, "
            f"{len(transactions)} candidate transactions"
            + (" [DRY RUN]" if options.dry_run else "")
        )

        report("matching", 0, len(selected))

        # Shared across the run so no transaction pays for two orders
        used_ids: set[str] = set()

        report("processing", 0, len(selected))
        for index, order in enumerate(selected, start=1):
            if cancel is not None and cancel.is_set():
                logger.warning(f"Sync run {run_id} cancelled")
                result.cancelled = True
                break

            try:
                record = self.process_order(
                    order,
                    transactions,
                    categories,
                    used_ids,
                    options,
                    run_id=run_id,
                    audit=audit,
                    cancel=cancel,
                )
            except SyncCancelledError as e:
                logger.warning(f"Sync run {run_id} cancelled: {e}")
                result.cancelled = True
                break

            result.records.append(record)
            report("processing", index, len(selected))

        self.db.complete_sync_run(
            run_id,
            orders_found=result.orders_found,
            processed_count=result.processed_count,
            skipped_count=result.skipped_count,
            error_count=result.error_count,
            status="cancelled" if result.cancelled else "completed",
        )

        report("completed", len(result.records), len(selected))
        logger.info(
            f"Sync run {run_id} finished: {result.processed_count} processed, "
            f"{result.skipped_count} skipped, {result.error_count} failed"
        )
        return result

    # ========================================================================
    # Single order
    # ========================================================================

    def process_order(
        self,
        order: Order,
        transactions: list[Transaction],
        categories: list[Category],
        used_ids: set[str],
        options: SyncOptions,
        run_id: int | None = None,
        audit: AuditLog | None = None,
        cancel: threading.Event | None = None,
    ) -> ProcessingRecord:
        """
        Match, split and record one order.

        ``used_ids`` is updated with every transaction this order claims.

        Returns:
            The saved processing record

        Raises:
            SyncCancelledError: If the run was cancelled mid-order
        """
        audit = audit or AuditLog(self.db, run_id)
        record = ProcessingRecord(
            run_id=run_id,
            order_id=order.id,
            provider=order.provider,
            order_date=order.order_date,
            order_total=order.total,
            item_count=len(order.items),
            status="failed",
            dry_run=options.dry_run,
            items=[item.model_dump(mode="json") for item in order.items],
        )

        try:
            self._process(
                order,
                transactions,
                categories,
                used_ids,
                options,
                audit,
                cancel,
                record,
            )
        except _SkipOrder as e:
            logger.info(f"Skipping order {order.id}: {e.reason}")
            record.status = "skipped"
            record.error_message = e.reason
            if e.transaction is not None:
                record.transaction_id = e.transaction.id
                record.transaction_amount = e.transaction.amount
        except PaymentPendingError as e:
            logger.info(f"Order {order.id} pending: {e}")
            record.status = "pending"
            record.error_message = str(e)
        except SyncCancelledError:
            raise
        except Exception as e:
            error = OrderProcessingError(
                order_id=order.id,
                provider=order.provider,
                order_date=order.order_date,
                order_total=order.total,
                reason=str(e),
            )
            logger.error(f"Failed to process {error}")
            record.status = "failed"
            record.error_message = str(error)
        else:
            record.status = "dry-run" if options.dry_run else "success"

        self._save_record(record)
        return record

    def _process(
        self,
        order: Order,
        transactions: list[Transaction],
        categories: list[Category],
        used_ids: set[str],
        options: SyncOptions,
        audit: AuditLog,
        cancel: threading.Event | None,
        record: ProcessingRecord,
    ) -> None:
        """Run the pipeline for one order, filling in ``record`` as it goes."""
        if not options.force and self.db.is_processed(order.id):
            raise _SkipOrder("already processed")

        if not order.items:
            raise _SkipOrder("order has no items")

        charges: list[Decimal] = []
        match_amount: Decimal | None = None
        split_order = order
        if order.tracks_payments and order.total > 0:
            charges = order.final_charges()
            validation = validate_charges(charges, order.total, order.non_bank_amount())
            if not validation.valid:
                raise PaymentPendingError(order.id, validation.reason)

            # Spread the discount from gift cards and points across the items
            if order.non_bank_amount() > 0:
                split_order = allocate_order(order, validation.bank_charges_sum)

            # Gift cards and partial payments: match what the bank actually saw
            single = len(charges) == 1
            if single and abs(charges[0] - order.total) > LEDGER_AMOUNT_TOLERANCE:
                match_amount = charges[0]

        if len(charges) > 1:
            transaction = self._match_multi_delivery(
                order, transactions, charges, used_ids, options, audit, cancel, record
            )
        else:
            match = self.matcher.find_match(
                order, transactions, used_ids, amount=match_amount
            )
            if match is None:
                raise PaymentPendingError(
                    order.id, f"No matching transaction for order {order.id} yet"
                )
            used_ids.add(match.transaction.id)
            transaction = match.transaction
            record.date_diff = match.date_diff

            if transaction.carries_splits:
                raise _SkipOrder("transaction already has splits", transaction)

        record.transaction_id = transaction.id
        record.transaction_amount = transaction.amount

        splits = self.splitter.create_splits(split_order, transaction, categories)

        if cancel is not None and cancel.is_set():
            raise SyncCancelledError(f"Cancelled before updating order {order.id}")

        if splits is None:
            self._apply_single_category(
                split_order, transaction, categories, options, audit
            )
        else:
            self._apply_splits(split_order, transaction, splits, options, audit)
            record.split_count = len(splits)
            record.splits = [split.model_dump(mode="json") for split in splits]

    def _match_multi_delivery(
        self,
        order: Order,
        transactions: list[Transaction],
        charges: list[Decimal],
        used_ids: set[str],
        options: SyncOptions,
        audit: AuditLog,
        cancel: threading.Event | None,
        record: ProcessingRecord,
    ) -> Transaction:
        """Match every charge of a split shipment and consolidate them."""
        logger.info(
            f"Order {order.id} is multi-delivery with {len(charges)} charges: "
            + ", ".join(f"${c:.2f}" for c in charges)
        )

        multi = self.matcher.find_multiple_matches(
            order, transactions, used_ids, charges
        )
        if not multi.all_found:
            raise ChargeValidationError(
                f"Matched only {multi.found_count} of {len(charges)} charges"
            )

        matched = multi.transactions()
        used_ids.update(txn.id for txn in matched)
        record.date_diff = max(m.date_diff for m in multi.matches if m is not None)

        if matched[0].carries_splits:
            raise _SkipOrder("transaction already has splits", matched[0])

        consolidator = Consolidator(self.client, audit)
        consolidation = consolidator.consolidate_transactions(
            matched, order, dry_run=options.dry_run, cancel=cancel
        )

        record.multi_delivery = MultiDeliveryInfo(
            charge_count=len(charges),
            charge_amounts=charges,
            original_transaction_ids=[txn.id for txn in matched],
            consolidated_transaction_id=consolidation.consolidated_transaction.id,
            failed_deletions=consolidation.failed_deletions,
        )

        if consolidation.failed_deletions:
            logger.warning(
                f"Order {order.id}: could not delete "
                f"{', '.join(consolidation.failed_deletions)}; remove them manually"
            )

        return consolidation.consolidated_transaction

    def _apply_single_category(
        self,
        order: Order,
        transaction: Transaction,
        categories: list[Category],
        options: SyncOptions,
        audit: AuditLog,
    ) -> None:
        category_id, notes = self.splitter.get_single_category_info(order, categories)

        if options.dry_run:
            logger.info(
                f"[DRY RUN] Would set category {category_id} on transaction "
                f"{transaction.id}"
            )
            return

        audit.call(
            order.id,
            "update_transaction",
            {
                "transaction_id": transaction.id,
                "category_id": category_id,
                "notes": notes,
            },
            self.client.update_transaction,
            transaction.id,
            category_id=category_id,
            notes=notes,
        )
        logger.info(f"Categorized transaction {transaction.id} for order {order.id}")

    def _apply_splits(
        self,
        order: Order,
        transaction: Transaction,
        splits: list[Split],
        options: SyncOptions,
        audit: AuditLog,
    ) -> None:
        if options.dry_run:
            logger.info(
                f"[DRY RUN] Would apply {len(splits)} splits to transaction "
                f"{transaction.id}"
            )
            return

        audit.call(
            order.id,
            "update_splits",
            {
                "transaction_id": transaction.id,
                "splits": [split.model_dump(mode="json") for split in splits],
            },
            self.client.update_splits,
            transaction.id,
            splits,
        )
        logger.info(
            f"Applied {len(splits)} splits to transaction {transaction.id} "
            f"for order {order.id}"
        )

    def _save_record(self, record: ProcessingRecord) -> None:
        try:
            record.id = self.db.save_record(record)
        except sqlite3.Error as e:
            logger.error(
                f"Failed to save processing record for order {record.order_id}: {e}"
            )
