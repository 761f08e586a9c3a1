"""Transaction store: SQLite persistence for Transaction objects.

Pure data access. Which status changes are legal is decided by the
settlement state machine; this layer only offers a compare-and-set update
so two late requests for the same transaction cannot overwrite each other.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from fxdesk.models.transaction import Transaction, TransactionStats, TransactionStatus
from fxdesk.repositories.base import SQLiteRepository, from_db_timestamp, to_db_timestamp

_COLUMNS = """
    id, user_id, conversation_id, currency_from, currency_to, amount_from,
    amount_to, negotiated_rate, payment_reference, receipt_image_url, status,
    status_reason, created_at, updated_at
"""


class TransactionRepository(SQLiteRepository):
    """SQLite-based persistence for transactions (fxdesk/data/transactions.db)."""

    DEFAULT_DB_FILENAME = "transactions.db"

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                conversation_id TEXT NOT NULL,
                currency_from TEXT NOT NULL,
                currency_to TEXT NOT NULL,
                amount_from REAL NOT NULL,
                amount_to REAL NOT NULL,
                negotiated_rate REAL NOT NULL,
                payment_reference TEXT,
                receipt_image_url TEXT,
                status TEXT NOT NULL,
                status_reason TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Databases created before status_reason existed
        try:
            conn.execute("ALTER TABLE transactions ADD COLUMN status_reason TEXT")
        except sqlite3.OperationalError:
            pass  # Column already exists

        conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_status ON transactions(status)")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_transactions_created_at ON transactions(created_at)"
        )

    def create(self, transaction: Transaction) -> Transaction:
        with self._connection() as conn:
            conn.execute(f"""
                INSERT INTO transactions ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                transaction.id,
                transaction.user_id,
                transaction.conversation_id,
                transaction.currency_from,
                transaction.currency_to,
                transaction.amount_from,
                transaction.amount_to,
                transaction.negotiated_rate,
                transaction.payment_reference,
                transaction.receipt_image_url,
                transaction.status.value,
                transaction.status_reason,
                to_db_timestamp(transaction.created_at),
                to_db_timestamp(transaction.updated_at),
            ))
        return transaction

    def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
        return self._row_to_transaction(row) if row else None

    def update_status(
        self,
        transaction_id: str,
        new_status: TransactionStatus,
        expected_status: TransactionStatus,
        reason: Optional[str] = None,
    ) -> bool:
        """Set status only if the stored status still equals expected_status.

        A reason (cancellation or failure cause) is written in the same
        statement; without one the stored reason is kept.

        Returns:
            True if the row was updated, False if the status had moved on
            (or the transaction does not exist)
        """
        with self._connection() as conn:
            cursor = conn.execute("""
                UPDATE transactions
                SET status = ?,
                    status_reason = COALESCE(?, status_reason),
                    updated_at = ?
                WHERE id = ? AND status = ?
            """, (
                new_status.value,
                reason,
                to_db_timestamp(datetime.now(timezone.utc)),
                transaction_id,
                expected_status.value,
            ))
            return cursor.rowcount > 0

    def attach_receipt(
        self,
        transaction_id: str,
        receipt_image_url: str,
        payment_reference: Optional[str] = None,
    ) -> bool:
        """Record the latest proof image url (and reference, if given)."""
        with self._connection() as conn:
            cursor = conn.execute("""
                UPDATE transactions
                SET receipt_image_url = ?,
                    payment_reference = COALESCE(?, payment_reference),
                    updated_at = ?
                WHERE id = ?
            """, (
                receipt_image_url,
                payment_reference,
                to_db_timestamp(datetime.now(timezone.utc)),
                transaction_id,
            ))
            return cursor.rowcount > 0

    def list_for_user(
        self,
        user_id: str,
        status: Optional[TransactionStatus] = None,
        limit: Optional[int] = None,
    ) -> List[Transaction]:
        """Transactions for a user, most recent first."""
        query_parts = [f"SELECT {_COLUMNS} FROM transactions WHERE user_id = ?"]
        params: list = [user_id]
        if status is not None:
            query_parts.append("AND status = ?")
            params.append(status.value)
        query_parts.append("ORDER BY created_at DESC")
        if limit is not None:
            query_parts.append("LIMIT ?")
            params.append(int(limit))

        with self._connection() as conn:
            rows = conn.execute("\n".join(query_parts), params).fetchall()
        return [self._row_to_transaction(row) for row in rows]

    def list_by_status(self, status: TransactionStatus) -> List[Transaction]:
        """Transactions in one status, oldest first (review queue order)."""
        with self._connection() as conn:
            rows = conn.execute(f"""
                SELECT {_COLUMNS} FROM transactions
                WHERE status = ?
                ORDER BY created_at ASC
            """, (status.value,)).fetchall()
        return [self._row_to_transaction(row) for row in rows]

    def stats(self) -> TransactionStats:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM transactions GROUP BY status"
            ).fetchall()
        counts = {row["status"]: row["n"] for row in rows}
        return TransactionStats(
            total=sum(counts.values()),
            pending=counts.get(TransactionStatus.PENDING.value, 0),
            in_review=counts.get(TransactionStatus.IMAGE_RECEIVED_AND_BEING_REVIEWED.value, 0),
            completed=counts.get(TransactionStatus.CONFIRMED_AND_MONEY_SENT_TO_USER.value, 0),
            cancelled=counts.get(TransactionStatus.CANCELLED.value, 0),
            failed=counts.get(TransactionStatus.FAILED.value, 0),
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            user_id=row["user_id"],
            conversation_id=row["conversation_id"],
            currency_from=row["currency_from"],
            currency_to=row["currency_to"],
            amount_from=row["amount_from"],
            amount_to=row["amount_to"],
            negotiated_rate=row["negotiated_rate"],
            payment_reference=row["payment_reference"],
            receipt_image_url=row["receipt_image_url"],
            status=TransactionStatus(row["status"]),
            status_reason=row["status_reason"],
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
        )
