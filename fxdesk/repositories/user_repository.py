"""Contact directory: SQLite persistence for WhatsApp users.

Resolves user ids to WhatsApp addresses for settlement notifications.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from fxdesk.models.user import User
from fxdesk.repositories.base import SQLiteRepository, from_db_timestamp, to_db_timestamp


class UserRepository(SQLiteRepository):
    """SQLite-based persistence for User contacts (fxdesk/data/transactions.db).

    Shares the transactions database file by default; the table is
    independent.
    """

    DEFAULT_DB_FILENAME = "transactions.db"

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                phone_number TEXT,
                display_name TEXT,
                created_at TEXT NOT NULL
            )
        """)

    def save(self, user: User) -> User:
        """Insert or update a user (first-seen created_at is preserved)."""
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO users (user_id, phone_number, display_name, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    phone_number = excluded.phone_number,
                    display_name = COALESCE(excluded.display_name, users.display_name)
            """, (
                user.user_id,
                user.phone_number,
                user.display_name,
                to_db_timestamp(user.created_at),
            ))
        return user

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT user_id, phone_number, display_name, created_at FROM users WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return User(
            user_id=row["user_id"],
            phone_number=row["phone_number"],
            display_name=row["display_name"],
            created_at=from_db_timestamp(row["created_at"]),
        )

    def get_contact_address(self, user_id: str) -> Optional[str]:
        """WhatsApp address for a user, or None when unknown."""
        user = self.get_user_by_id(user_id)
        return user.contact_address if user else None
