"""Merge the charges of a multi-delivery order into one transaction.

Walmart (and sometimes Amazon) bill a split shipment as several bank
charges. Before the order can be split by category, the first charge is
rewritten to carry the full order total and the others are deleted.
"""

import logging
import threading
from typing import Protocol

from .audit import AuditLog
from .exceptions import (
    ConsolidationError,
    DataInconsistencyError,
    SyncCancelledError,
)
from .models import ConsolidationResult, Order, Transaction
from .money import format_usd, match_sign, round_cents

logger = logging.getLogger(__name__)


class LedgerClient(Protocol):
    """The ledger operations the consolidator needs."""

    def update_transaction(self, transaction_id: str, **kwargs) -> Transaction: ...

    def delete_transaction(self, transaction_id: str) -> None: ...


def build_consolidation_note(transactions: list[Transaction]) -> str:
    """
    Describe the charges that were merged, in input order.

    Example:
        ``Multi-delivery order (2 charges: $118.67, $8.31)``
    """
    amounts = ", ".join(format_usd(txn.amount) for txn in transactions)
    return f"Multi-delivery order ({len(transactions)} charges: {amounts})"


class Consolidator:
    """Consolidates multi-delivery charges into a single transaction."""

    def __init__(self, client: LedgerClient, audit: AuditLog | None = None):
        """Initialize the consolidator."""
        self.client = client
        self.audit = audit or AuditLog(None)

    def consolidate_transactions(
        self,
        transactions: list[Transaction],
        order: Order,
        dry_run: bool = False,
        cancel: threading.Event | None = None,
    ) -> ConsolidationResult:
        """
        Merge several charge transactions into the first one.

        The primary (first) transaction gets the order total, with the
        primary's own sign, and a note listing the original charges. Every
        other transaction is deleted unless it already has splits.

        Args:
            transactions: Matched charges, primary first
            order: The order the charges belong to
            dry_run: Compute the result without touching the ledger
            cancel: Checked before each ledger call

        Returns:
            The consolidated transaction and the IDs that couldn't be deleted

        Raises:
            DataInconsistencyError: If ``transactions`` is empty
            SyncCancelledError: If cancelled before the primary was updated
            ConsolidationError: If the primary update fails
        """
        if not transactions:
            raise DataInconsistencyError("No transactions to consolidate")

        if len(transactions) == 1:
            return ConsolidationResult(consolidated_transaction=transactions[0])

        primary, extras = transactions[0], transactions[1:]
        new_amount = match_sign(round_cents(order.total), primary.amount)
        notes = build_consolidation_note(transactions)

        consolidated = primary.model_copy(update={"amount": new_amount, "notes": notes})

        if dry_run:
            logger.info(
                f"[DRY RUN] Would consolidate {len(transactions)} transactions "
                f"for order {order.id} into {primary.id} ({format_usd(new_amount)})"
            )
            for extra in extras:
                logger.info(f"[DRY RUN] Would delete transaction {extra.id}")
            return ConsolidationResult(consolidated_transaction=consolidated)

        if cancel is not None and cancel.is_set():
            raise SyncCancelledError(
                f"Cancelled before consolidating order {order.id}"
            )

        try:
            self.audit.call(
                order.id,
                "update_transaction",
                {"transaction_id": primary.id, "amount": new_amount, "notes": notes},
                self.client.update_transaction,
                primary.id,
                amount=new_amount,
                notes=notes,
            )
        except Exception as e:
            raise ConsolidationError(
                f"Failed to update primary transaction {primary.id} "
                f"for order {order.id}: {e}"
            ) from e

        logger.info(
            f"Updated primary transaction {primary.id} to {format_usd(new_amount)} "
            f"for order {order.id}"
        )

        failed_deletions: list[str] = []
        for i, extra in enumerate(extras):
            if cancel is not None and cancel.is_set():
                remaining = [txn.id for txn in extras[i:]]
                logger.warning(
                    f"Cancelled during consolidation of order {order.id}; "
                    f"{len(remaining)} transactions not deleted"
                )
                failed_deletions.extend(remaining)
                break

            if extra.carries_splits:
                logger.warning(
                    f"Not deleting transaction {extra.id} for order {order.id}: "
                    f"has splits"
                )
                failed_deletions.append(extra.id)
                continue

            try:
                self.audit.call(
                    order.id,
                    "delete_transaction",
                    {"transaction_id": extra.id},
                    self.client.delete_transaction,
                    extra.id,
                )
            except Exception as e:
                logger.error(
                    f"Failed to delete transaction {extra.id} for order {order.id}: {e}"
                )
                failed_deletions.append(extra.id)
                continue

            logger.info(f"Deleted transaction {extra.id}")

        return ConsolidationResult(
            consolidated_transaction=consolidated,
            failed_deletions=failed_deletions,
        )
