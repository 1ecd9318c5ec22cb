"""Tests for multi-delivery consolidation."""

import threading
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from order_sync.audit import AuditLog
from order_sync.consolidator import Consolidator, build_consolidation_note
from order_sync.db import Database
from order_sync.exceptions import (
    ConsolidationError,
    DataInconsistencyError,
    MonarchAPIError,
    SyncCancelledError,
)
from order_sync.models import Order, Split, Transaction


def make_order(total: str = "126.98") -> Order:
    return Order(
        id="W1",
        order_date=date(2025, 1, 10),
        total=Decimal(total),
        subtotal=Decimal(total),
        provider="walmart",
    )


def make_txn(txn_id: str, amount: str, with_splits: bool = False) -> Transaction:
    splits = []
    if with_splits:
        splits = [
            Split(
                category_id="groceries",
                category_name="Groceries",
                amount=Decimal(amount),
                notes="Groceries:\n- Milk $3.99",
            )
        ]
    return Transaction(
        id=txn_id,
        amount=Decimal(amount),
        posted_date=date(2025, 1, 11),
        merchant_name="Walmart",
        has_splits=with_splits,
        splits=splits,
    )


@pytest.fixture
def client():
    """Mock Monarch client."""
    return MagicMock()


@pytest.fixture
def consolidator(client):
    return Consolidator(client)


class TestConsolidateTransactions:
    """Test merging charges into the primary transaction."""

    def test_two_charges(self, consolidator, client):
        """Two charges become one transaction with the order total."""
        txns = [make_txn("t1", "-118.67"), make_txn("t2", "-8.31")]

        result = consolidator.consolidate_transactions(txns, make_order())

        consolidated = result.consolidated_transaction
        assert consolidated.id == "t1"
        assert consolidated.amount == Decimal("-126.98")
        assert consolidated.notes == "Multi-delivery order (2 charges: $118.67, $8.31)"
        assert result.failed_deletions == []

        client.update_transaction.assert_called_once_with(
            "t1",
            amount=Decimal("-126.98"),
            notes="Multi-delivery order (2 charges: $118.67, $8.31)",
        )
        client.delete_transaction.assert_called_once_with("t2")

    def test_extra_with_splits_is_not_deleted(self, consolidator, client):
        """An extra that already has splits is reported instead of deleted."""
        txns = [
            make_txn("t1", "-50.00"),
            make_txn("t2", "-30.00", with_splits=True),
            make_txn("t3", "-20.00"),
        ]

        result = consolidator.consolidate_transactions(txns, make_order("100.00"))

        assert result.failed_deletions == ["t2"]
        assert result.consolidated_transaction.amount == Decimal("-100.00")
        client.delete_transaction.assert_called_once_with("t3")

    def test_single_transaction_is_unchanged(self, consolidator, client):
        """One transaction is returned as-is with no ledger calls."""
        txn = make_txn("t1", "-50.00")

        result = consolidator.consolidate_transactions([txn], make_order("55.00"))

        assert result.consolidated_transaction == txn
        assert result.failed_deletions == []
        client.update_transaction.assert_not_called()
        client.delete_transaction.assert_not_called()

    def test_empty_input(self, consolidator):
        """Nothing to consolidate is an error."""
        with pytest.raises(
            DataInconsistencyError, match="No transactions to consolidate"
        ):
            consolidator.consolidate_transactions([], make_order())

    def test_dry_run_makes_no_calls(self, consolidator, client):
        """Dry run computes the result without touching the ledger."""
        txns = [make_txn("t1", "-118.67"), make_txn("t2", "-8.31")]

        result = consolidator.consolidate_transactions(
            txns, make_order(), dry_run=True
        )

        assert result.consolidated_transaction.amount == Decimal("-126.98")
        client.update_transaction.assert_not_called()
        client.delete_transaction.assert_not_called()

    def test_deletion_failures_are_accumulated(self, consolidator, client):
        """One failed deletion doesn't stop the others."""
        client.delete_transaction.side_effect = [MonarchAPIError("boom"), None]
        txns = [
            make_txn("t1", "-50.00"),
            make_txn("t2", "-30.00"),
            make_txn("t3", "-20.00"),
        ]

        result = consolidator.consolidate_transactions(txns, make_order("100.00"))

        assert result.failed_deletions == ["t2"]
        assert client.delete_transaction.call_count == 2

    def test_primary_update_failure_is_fatal(self, consolidator, client):
        """Without a valid primary there is nothing to report."""
        client.update_transaction.side_effect = MonarchAPIError("boom")
        txns = [make_txn("t1", "-118.67"), make_txn("t2", "-8.31")]

        with pytest.raises(ConsolidationError):
            consolidator.consolidate_transactions(txns, make_order())

        client.delete_transaction.assert_not_called()

    def test_positive_primary_stays_positive(self, consolidator, client):
        """A refund primary keeps its sign."""
        txns = [make_txn("t1", "20.00"), make_txn("t2", "10.00")]

        result = consolidator.consolidate_transactions(txns, make_order("30.00"))

        assert result.consolidated_transaction.amount == Decimal("30.00")


class TestCancellation:
    """Test cancellation between ledger calls."""

    def test_cancelled_before_primary_update(self, consolidator, client):
        """Nothing is touched if cancelled up front."""
        cancel = threading.Event()
        cancel.set()
        txns = [make_txn("t1", "-118.67"), make_txn("t2", "-8.31")]

        with pytest.raises(SyncCancelledError):
            consolidator.consolidate_transactions(txns, make_order(), cancel=cancel)

        client.update_transaction.assert_not_called()

    def test_cancelled_during_deletions(self, consolidator, client):
        """Remaining extras are reported as failed deletions."""
        cancel = threading.Event()
        client.update_transaction.side_effect = lambda *args, **kwargs: cancel.set()
        txns = [
            make_txn("t1", "-50.00"),
            make_txn("t2", "-30.00"),
            make_txn("t3", "-20.00"),
        ]

        result = consolidator.consolidate_transactions(
            txns, make_order("100.00"), cancel=cancel
        )

        assert result.consolidated_transaction.amount == Decimal("-100.00")
        assert result.failed_deletions == ["t2", "t3"]
        client.delete_transaction.assert_not_called()


class TestAuditTrail:
    """Test that ledger calls are recorded."""

    def test_calls_are_logged(self, tmp_path, client):
        """The update and the deletion are both recorded for the run."""
        db = Database(tmp_path / "test.db")
        try:
            consolidator = Consolidator(client, AuditLog(db, run_id=7))
            txns = [make_txn("t1", "-118.67"), make_txn("t2", "-8.31")]

            consolidator.consolidate_transactions(txns, make_order())

            calls = db.get_api_calls(7)
            assert [c.method for c in calls] == [
                "update_transaction",
                "delete_transaction",
            ]
            assert all(c.order_id == "W1" for c in calls)
            assert '"t2"' in calls[1].request_json
        finally:
            db.close()


def test_build_consolidation_note_keeps_input_order():
    """Amounts appear in input order without signs."""
    txns = [make_txn("a", "-8.31"), make_txn("b", "-118.67"), make_txn("c", "-1.00")]
    assert (
        build_consolidation_note(txns)
        == "Multi-delivery order (3 charges: $8.31, $118.67, $1.00)"
    )
