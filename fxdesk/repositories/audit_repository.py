"""Audit event persistence layer.

SQLite-based repository for storing and retrieving audit events.

Design Decisions:
- Separate database file at fxdesk/data/audit.db
- Append-only operations (no updates or deletes)
- Retry logic for "database is locked" errors
"""

from __future__ import annotations

import json
import sqlite3
import time
from typing import List, Optional
from uuid import UUID

from fxdesk.models.audit import AuditEvent, AuditEventType
from fxdesk.repositories.base import SQLiteRepository, from_db_timestamp, to_db_timestamp
from fxdesk.utils.helpers.exceptions import StorageUnavailable

_COLUMNS = "event_id, event_type, timestamp, actor, transaction_id, data_json, created_at"


class AuditRepository(SQLiteRepository):
    """Append-only storage for audit events.

    Thread Safety:
        - Connection-per-operation pattern (no shared connections)
        - Retry logic for "database is locked" errors (3 attempts)
    """

    DEFAULT_DB_FILENAME = "audit.db"

    MAX_RETRIES = 3
    RETRY_DELAY_MS = 100

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_events (
                event_id TEXT PRIMARY KEY,
                event_type TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                actor TEXT NOT NULL,
                transaction_id TEXT,
                data_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_transaction_id ON audit_events(transaction_id)"
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_event_type ON audit_events(event_type)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_events(timestamp)")

    def save_event(self, event: AuditEvent) -> None:
        """Save an audit event, retrying while the database is locked.

        Raises:
            StorageUnavailable: If the write fails after all retries
        """
        params = (
            str(event.event_id),
            event.event_type.value,
            to_db_timestamp(event.timestamp),
            event.actor,
            event.transaction_id,
            json.dumps(event.data),
            to_db_timestamp(event.created_at),
        )

        for attempt in range(self.MAX_RETRIES):
            try:
                with self._connection() as conn:
                    conn.execute(
                        f"INSERT INTO audit_events ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                        params,
                    )
                return
            except StorageUnavailable as exc:
                locked = "locked" in str(exc.__cause__ or exc).lower()
                if not locked or attempt == self.MAX_RETRIES - 1:
                    raise
                time.sleep(self.RETRY_DELAY_MS / 1000.0)

    def get_events_for_transaction(self, transaction_id: str, limit: int = 200) -> List[AuditEvent]:
        """Events for one transaction, most recent first."""
        with self._connection() as conn:
            rows = conn.execute(f"""
                SELECT {_COLUMNS} FROM audit_events
                WHERE transaction_id = ?
                ORDER BY timestamp DESC
                LIMIT ?
            """, (transaction_id, limit)).fetchall()
        return [self._row_to_event(row) for row in rows]

    def get_events_by_type(self, event_type: AuditEventType, limit: int = 200) -> List[AuditEvent]:
        with self._connection() as conn:
            rows = conn.execute(f"""
                SELECT {_COLUMNS} FROM audit_events
                WHERE event_type = ?
                ORDER BY timestamp DESC
                LIMIT ?
            """, (event_type.value, limit)).fetchall()
        return [self._row_to_event(row) for row in rows]

    def count_events(self, event_type: Optional[AuditEventType] = None) -> int:
        with self._connection() as conn:
            if event_type is None:
                return conn.execute("SELECT COUNT(*) FROM audit_events").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM audit_events WHERE event_type = ?", (event_type.value,)
            ).fetchone()[0]

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            event_type=AuditEventType(row["event_type"]),
            timestamp=from_db_timestamp(row["timestamp"]),
            actor=row["actor"],
            transaction_id=row["transaction_id"],
            data=json.loads(row["data_json"]),
            created_at=from_db_timestamp(row["created_at"]),
        )
