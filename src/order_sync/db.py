"""SQLite database operations for order-sync."""

import json
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

from .models import (
    APICall,
    CategoryMapping,
    MultiDeliveryInfo,
    ProcessingRecord,
    SyncRun,
)


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        # Sync runs table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                provider TEXT NOT NULL,
                lookback_days INTEGER NOT NULL,
                dry_run INTEGER NOT NULL DEFAULT 0,
                started_at TIMESTAMP NOT NULL,
                completed_at TIMESTAMP,
                orders_found INTEGER NOT NULL DEFAULT 0,
                processed_count INTEGER NOT NULL DEFAULT 0,
                skipped_count INTEGER NOT NULL DEFAULT 0,
                error_count INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'running'
            )
        """
        )

        # Processing records table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS processing_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id INTEGER,
                order_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                transaction_id TEXT,
                order_date DATE NOT NULL,
                order_total TEXT NOT NULL,
                transaction_amount TEXT,
                item_count INTEGER NOT NULL DEFAULT 0,
                split_count INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                error_message TEXT,
                date_diff INTEGER,
                dry_run INTEGER NOT NULL DEFAULT 0,
                items_json TEXT,
                splits_json TEXT,
                multi_delivery_json TEXT,
                processed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )
        cursor.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_processing_records_order
            ON processing_records (order_id, status)
        """
        )

        # API calls table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS api_calls (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id INTEGER NOT NULL,
                order_id TEXT NOT NULL,
                method TEXT NOT NULL,
                request_json TEXT,
                response_json TEXT,
                error TEXT,
                duration_ms INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        # Category mappings table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS category_mappings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                pattern TEXT NOT NULL UNIQUE,
                category_id TEXT NOT NULL,
                category_name TEXT NOT NULL,
                source TEXT NOT NULL,
                confidence REAL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Sync run operations
    # ========================================================================

    def start_sync_run(self, run: SyncRun) -> int:
        """Insert a new sync run and return its ID."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO sync_runs (provider, lookback_days, dry_run, started_at, status)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                run.provider,
                run.lookback_days,
                int(run.dry_run),
                run.started_at.isoformat(),
                run.status,
            ),
        )
        self.conn.commit()
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Failed to insert sync run")
        return row_id

    def complete_sync_run(
        self,
        run_id: int,
        orders_found: int,
        processed_count: int,
        skipped_count: int,
        error_count: int,
        status: str = "completed",
    ):
        """Record the final counts of a sync run."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            UPDATE sync_runs SET
                completed_at = ?,
                orders_found = ?,
                processed_count = ?,
                skipped_count = ?,
                error_count = ?,
                status = ?
            WHERE id = ?
            """,
            (
                datetime.now().isoformat(),
                orders_found,
                processed_count,
                skipped_count,
                error_count,
                status,
                run_id,
            ),
        )
        self.conn.commit()

    def get_sync_run(self, run_id: int) -> SyncRun | None:
        """Get a sync run by ID."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM sync_runs WHERE id = ?", (run_id,))
        row = cursor.fetchone()
        return self._row_to_sync_run(row) if row else None

    def get_recent_sync_runs(self, limit: int = 10) -> list[SyncRun]:
        """Get the most recent sync runs, newest first."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM sync_runs ORDER BY started_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_sync_run(row) for row in cursor.fetchall()]

    @staticmethod
    def _row_to_sync_run(row: sqlite3.Row) -> SyncRun:
        return SyncRun(
            id=row["id"],
            provider=row["provider"],
            lookback_days=row["lookback_days"],
            dry_run=bool(row["dry_run"]),
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=(
                datetime.fromisoformat(row["completed_at"])
                if row["completed_at"]
                else None
            ),
            orders_found=row["orders_found"],
            processed_count=row["processed_count"],
            skipped_count=row["skipped_count"],
            error_count=row["error_count"],
            status=row["status"],
        )

    # ========================================================================
    # Processing record operations
    # ========================================================================

    def save_record(self, record: ProcessingRecord) -> int:
        """Save the outcome of processing one order."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO processing_records (
                run_id, order_id, provider, transaction_id, order_date,
                order_total, transaction_amount, item_count, split_count,
                status, error_message, date_diff, dry_run, items_json,
                splits_json, multi_delivery_json, processed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.run_id,
                record.order_id,
                record.provider,
                record.transaction_id,
                record.order_date.isoformat(),
                str(record.order_total),
                (
                    str(record.transaction_amount)
                    if record.transaction_amount is not None
                    else None
                ),
                record.item_count,
                record.split_count,
                record.status,
                record.error_message,
                record.date_diff,
                int(record.dry_run),
                json.dumps(record.items, default=str),
                json.dumps(record.splits, default=str),
                (
                    record.multi_delivery.model_dump_json()
                    if record.multi_delivery
                    else None
                ),
                record.processed_at.isoformat(),
            ),
        )
        self.conn.commit()
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Failed to insert processing record")
        return row_id

    def is_processed(self, order_id: str) -> bool:
        """Check if an order has been processed successfully before."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT id FROM processing_records
            WHERE order_id = ? AND status = 'success'
            """,
            (order_id,),
        )
        return cursor.fetchone() is not None

    def get_latest_record(self, order_id: str) -> ProcessingRecord | None:
        """Get the most recent processing record for an order."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM processing_records
            WHERE order_id = ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (order_id,),
        )
        row = cursor.fetchone()
        return self._row_to_record(row) if row else None

    def get_recent_records(
        self, limit: int = 20, status: str | None = None
    ) -> list[ProcessingRecord]:
        """Get recent processing records, optionally filtered by status."""
        cursor = self.conn.cursor()
        if status:
            cursor.execute(
                """
                SELECT * FROM processing_records
                WHERE status = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (status, limit),
            )
        else:
            cursor.execute(
                "SELECT * FROM processing_records ORDER BY id DESC LIMIT ?",
                (limit,),
            )
        return [self._row_to_record(row) for row in cursor.fetchall()]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ProcessingRecord:
        multi_delivery = None
        if row["multi_delivery_json"]:
            multi_delivery = MultiDeliveryInfo.model_validate_json(
                row["multi_delivery_json"]
            )

        return ProcessingRecord(
            id=row["id"],
            run_id=row["run_id"],
            order_id=row["order_id"],
            provider=row["provider"],
            transaction_id=row["transaction_id"],
            order_date=date.fromisoformat(row["order_date"]),
            order_total=Decimal(row["order_total"]),
            transaction_amount=(
                Decimal(row["transaction_amount"])
                if row["transaction_amount"] is not None
                else None
            ),
            item_count=row["item_count"],
            split_count=row["split_count"],
            status=row["status"],
            error_message=row["error_message"],
            date_diff=row["date_diff"],
            dry_run=bool(row["dry_run"]),
            items=json.loads(row["items_json"] or "[]"),
            splits=json.loads(row["splits_json"] or "[]"),
            multi_delivery=multi_delivery,
            processed_at=datetime.fromisoformat(row["processed_at"]),
        )

    # ========================================================================
    # API call operations
    # ========================================================================

    def log_api_call(self, call: APICall) -> int:
        """Save one external API call."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO api_calls (
                run_id, order_id, method, request_json, response_json,
                error, duration_ms, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                call.run_id,
                call.order_id,
                call.method,
                call.request_json,
                call.response_json,
                call.error,
                call.duration_ms,
                call.created_at.isoformat(),
            ),
        )
        self.conn.commit()
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Failed to insert API call")
        return row_id

    def get_api_calls(self, run_id: int) -> list[APICall]:
        """Get all API calls made during a sync run, oldest first."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM api_calls WHERE run_id = ? ORDER BY id",
            (run_id,),
        )
        return [
            APICall(
                id=row["id"],
                run_id=row["run_id"],
                order_id=row["order_id"],
                method=row["method"],
                request_json=row["request_json"],
                response_json=row["response_json"],
                error=row["error"],
                duration_ms=row["duration_ms"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in cursor.fetchall()
        ]

    # ========================================================================
    # Category mappings operations
    # ========================================================================

    def get_category_mapping(self, pattern: str) -> CategoryMapping | None:
        """Get a category mapping by pattern."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT id, pattern, category_id, category_name, source,
                   confidence, created_at
            FROM category_mappings
            WHERE pattern = ?
            """,
            (pattern,),
        )
        row = cursor.fetchone()
        if not row:
            return None

        return CategoryMapping(
            id=row["id"],
            pattern=row["pattern"],
            category_id=row["category_id"],
            category_name=row["category_name"],
            source=row["source"],
            confidence=row["confidence"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def save_category_mapping(self, mapping: CategoryMapping) -> int:
        """Save a category mapping."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO category_mappings (
                pattern, category_id, category_name, source, confidence,
                created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(pattern) DO UPDATE SET
                category_id = excluded.category_id,
                category_name = excluded.category_name,
                source = excluded.source,
                confidence = excluded.confidence,
                created_at = excluded.created_at
            """,
            (
                mapping.pattern,
                mapping.category_id,
                mapping.category_name,
                mapping.source,
                mapping.confidence,
                mapping.created_at.isoformat(),
            ),
        )
        self.conn.commit()
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Failed to insert category mapping")
        return row_id
