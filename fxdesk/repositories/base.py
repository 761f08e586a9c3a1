"""Shared SQLite plumbing for the fxdesk repositories.

Design Decisions:
- Connection-per-operation for file databases (thread-safe, SQLite handles
  locking via file locks)
- ":memory:" databases keep one persistent connection, otherwise each new
  connection would see a fresh empty database
- Every sqlite3.Error is re-raised as StorageUnavailable so callers fail
  closed without depending on the storage driver
- Timestamps are stored as UTC ISO strings with fixed microsecond precision
  so lexical order equals chronological order
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from fxdesk.utils.helpers.exceptions import StorageUnavailable


def default_db_path(filename: str) -> str:
    """Default location: fxdesk/data/<filename>."""
    data_dir = Path(__file__).parent.parent / "data"
    data_dir.mkdir(exist_ok=True)
    return str(data_dir / filename)


def to_db_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteRepository:
    """Base class holding connection handling for one SQLite database file."""

    DEFAULT_DB_FILENAME = "fxdesk.db"

    def __init__(self, db_path: Optional[str] = None):
        """Initialize repository with database path.

        Args:
            db_path: Path to SQLite database file. If None, uses
                    fxdesk/data/<DEFAULT_DB_FILENAME>
        """
        if db_path is None:
            db_path = default_db_path(self.DEFAULT_DB_FILENAME)

        self.db_path = db_path

        self._memory_conn = None
        if db_path == ":memory:":
            self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._memory_conn.row_factory = sqlite3.Row

        with self._connection() as conn:
            self._init_schema(conn)

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        raise NotImplementedError

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection.

        For :memory: databases, returns the persistent connection.
        For file databases, creates a new connection.
        """
        if self._memory_conn is not None:
            return self._memory_conn
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back on error.

        Raises:
            StorageUnavailable: On any sqlite3 error (including connect)
        """
        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open {self.db_path}: {exc}") from exc

        should_close = self._memory_conn is None
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageUnavailable(f"{type(self).__name__} storage error: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            if should_close:
                conn.close()
