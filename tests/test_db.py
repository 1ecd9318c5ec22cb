"""Tests for the SQLite audit database."""

from datetime import date
from decimal import Decimal

import pytest

from order_sync.audit import AuditLog
from order_sync.db import Database
from order_sync.models import (
    CategoryMapping,
    MultiDeliveryInfo,
    ProcessingRecord,
    SyncRun,
)


@pytest.fixture
def mock_db(tmp_path):
    """Create a temporary database."""
    db_path = tmp_path / "test.db"
    db = Database(db_path)
    yield db
    db.close()


def make_record(order_id: str = "O1", status: str = "success", **kwargs):
    return ProcessingRecord(
        order_id=order_id,
        provider="walmart",
        order_date=date(2025, 1, 10),
        order_total=Decimal("26.39"),
        status=status,
        **kwargs,
    )


class TestProcessingRecords:
    """Test saving and querying processing records."""

    def test_only_success_counts_as_processed(self, mock_db):
        """Failed, pending, and dry-run records don't block reprocessing."""
        for status in ["failed", "pending", "dry-run", "skipped"]:
            mock_db.save_record(make_record(status=status))
        assert not mock_db.is_processed("O1")

        mock_db.save_record(make_record(status="success"))
        assert mock_db.is_processed("O1")

    def test_round_trip(self, mock_db):
        """Amounts, snapshots, and multi-delivery details survive storage."""
        record = make_record(
            transaction_id="t1",
            transaction_amount=Decimal("-126.98"),
            split_count=2,
            date_diff=1,
            items=[{"name": "Milk", "price": "3.99"}],
            splits=[{"category_id": "groceries", "amount": "-4.39"}],
            multi_delivery=MultiDeliveryInfo(
                charge_count=2,
                charge_amounts=[Decimal("118.67"), Decimal("8.31")],
                original_transaction_ids=["t1", "t2"],
                consolidated_transaction_id="t1",
                failed_deletions=["t2"],
            ),
        )
        record_id = mock_db.save_record(record)

        saved = mock_db.get_latest_record("O1")

        assert saved.id == record_id
        assert saved.order_total == Decimal("26.39")
        assert saved.transaction_amount == Decimal("-126.98")
        assert saved.items == [{"name": "Milk", "price": "3.99"}]
        assert saved.splits[0]["amount"] == "-4.39"
        assert saved.multi_delivery.failed_deletions == ["t2"]
        assert saved.multi_delivery.charge_amounts == [
            Decimal("118.67"),
            Decimal("8.31"),
        ]

    def test_recent_records_filter(self, mock_db):
        """Records come back newest first and can be filtered by status."""
        mock_db.save_record(make_record("O1", "success"))
        mock_db.save_record(make_record("O2", "failed", error_message="boom"))
        mock_db.save_record(make_record("O3", "success"))

        assert [r.order_id for r in mock_db.get_recent_records()] == ["O3", "O2", "O1"]
        failed = mock_db.get_recent_records(status="failed")
        assert [r.order_id for r in failed] == ["O2"]
        assert failed[0].error_message == "boom"

    def test_latest_record_missing(self, mock_db):
        """Unknown orders have no record."""
        assert mock_db.get_latest_record("nope") is None


class TestSyncRuns:
    """Test sync run bookkeeping."""

    def test_start_and_complete(self, mock_db):
        """A run is created as running and completed with its counts."""
        run_id = mock_db.start_sync_run(
            SyncRun(provider="walmart", lookback_days=14, dry_run=True)
        )
        assert mock_db.get_sync_run(run_id).status == "running"

        mock_db.complete_sync_run(
            run_id,
            orders_found=5,
            processed_count=3,
            skipped_count=1,
            error_count=1,
        )

        run = mock_db.get_sync_run(run_id)
        assert run.status == "completed"
        assert run.dry_run
        assert run.completed_at is not None
        assert (run.orders_found, run.processed_count) == (5, 3)
        assert (run.skipped_count, run.error_count) == (1, 1)

    def test_recent_runs(self, mock_db):
        """Most recent runs come first."""
        first = mock_db.start_sync_run(SyncRun(provider="walmart", lookback_days=14))
        second = mock_db.start_sync_run(SyncRun(provider="amazon", lookback_days=7))

        runs = mock_db.get_recent_sync_runs(limit=1)

        assert [r.id for r in runs] == [second]
        assert first != second


class TestAuditLog:
    """Test API call logging."""

    def test_log_api_call(self, mock_db):
        """Calls are stored with their request, response, and error."""
        audit = AuditLog(mock_db, run_id=3)
        audit.log_api_call(
            "O1",
            "update_splits",
            {"transaction_id": "t1", "amount": Decimal("-4.39")},
            response={"ok": True},
            duration_ms=12,
        )
        audit.log_api_call(
            "O1", "delete_transaction", {"id": "t2"}, error=RuntimeError("boom")
        )

        calls = mock_db.get_api_calls(3)

        assert len(calls) == 2
        assert calls[0].request_json == '{"transaction_id": "t1", "amount": "-4.39"}'
        assert calls[0].duration_ms == 12
        assert calls[1].error == "boom"

    def test_storage_failure_never_raises(self, mock_db):
        """A broken database only logs a warning."""
        audit = AuditLog(mock_db, run_id=3)
        mock_db.close()

        audit.log_api_call("O1", "update_transaction", {"id": "t1"})

    def test_call_records_and_reraises(self, mock_db):
        """Failures of the wrapped call are recorded and propagated."""
        audit = AuditLog(mock_db, run_id=4)

        def explode():
            raise RuntimeError("ledger down")

        with pytest.raises(RuntimeError):
            audit.call("O1", "update_transaction", {}, explode)

        assert mock_db.get_api_calls(4)[0].error == "ledger down"


class TestCategoryMappings:
    """Test the category cache table."""

    def test_save_and_update(self, mock_db):
        """Saving an existing pattern replaces the mapping."""
        mock_db.save_category_mapping(
            CategoryMapping(
                pattern="milk",
                category_id="groceries",
                category_name="Groceries",
                source="gpt",
                confidence=0.8,
            )
        )
        mock_db.save_category_mapping(
            CategoryMapping(
                pattern="milk",
                category_id="dairy",
                category_name="Dairy",
                source="manual",
            )
        )

        mapping = mock_db.get_category_mapping("milk")

        assert mapping.category_id == "dairy"
        assert mapping.source == "manual"
        assert mapping.confidence is None
        assert mock_db.get_category_mapping("bread") is None
