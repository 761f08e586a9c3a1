"""Duplicate index: persistence for image hash and detection records.

SQLite-backed store owning two tables in one database file:
- image_hashes: append-only fingerprints of every submitted proof
- duplicate_detections: evidence records created for duplicates

Design Decisions:
- exact_lookup() is served by an index on cryptographic_hash (non-unique:
  resubmissions of identical bytes are recorded too)
- scan_all() is the ONLY method that enumerates fingerprints. It is an
  unindexed O(n) read, acceptable while the table holds low-to-mid
  thousands of rows. A bucketed or LSH index should replace it behind the
  same signature once volumes grow.
- record_submission() writes the hash record and optional detection record
  in one transaction
- No business logic (classification lives in DuplicateDetector)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fxdesk.models.duplicate import DetectionStats, DetectionStatus, DuplicateDetectionRecord
from fxdesk.models.image_hash import ImageHashMetadata, ImageHashRecord
from fxdesk.repositories.base import SQLiteRepository, from_db_timestamp, to_db_timestamp
from fxdesk.utils.hash_utils import (
    PERCEPTUAL_HASH_BITS,
    validate_cryptographic_hash,
    validate_perceptual_hash,
)
from fxdesk.utils.helpers.exceptions import InputError

logger = logging.getLogger(__name__)

_HASH_COLUMNS = """
    id, cryptographic_hash, perceptual_hash, image_url, transaction_id,
    payment_reference, user_id, message_id, metadata_json, created_at
"""

_DETECTION_COLUMNS = """
    id, hash, user_id, detection_data_json, transaction_id, detected_at, status
"""


class DuplicateIndex(SQLiteRepository):
    """SQLite persistence for ImageHashRecord and DuplicateDetectionRecord.

    Args:
        db_path: SQLite file (":memory:" for tests); default fxdesk/data/duplicates.db
        hash_width: Perceptual hash width enforced on insert
    """

    DEFAULT_DB_FILENAME = "duplicates.db"

    def __init__(self, db_path: Optional[str] = None, hash_width: int = PERCEPTUAL_HASH_BITS):
        self.hash_width = hash_width
        super().__init__(db_path)

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        """Create tables and indexes if they don't exist.

        Indexes:
            - idx_image_hashes_crypto: exact duplicate lookup
            - idx_detections_hash / _user / _detected_at / _status
        """
        conn.execute("""
            CREATE TABLE IF NOT EXISTS image_hashes (
                id TEXT PRIMARY KEY,
                cryptographic_hash TEXT NOT NULL,
                perceptual_hash TEXT NOT NULL,
                image_url TEXT NOT NULL DEFAULT '',
                transaction_id TEXT,
                payment_reference TEXT,
                user_id TEXT,
                message_id TEXT,
                metadata_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_image_hashes_crypto
            ON image_hashes(cryptographic_hash)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS duplicate_detections (
                id TEXT PRIMARY KEY,
                hash TEXT NOT NULL,
                user_id TEXT NOT NULL,
                detection_data_json TEXT NOT NULL,
                transaction_id TEXT,
                detected_at TEXT NOT NULL,
                status TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_detections_hash ON duplicate_detections(hash)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_detections_user ON duplicate_detections(user_id)")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_detections_detected_at ON duplicate_detections(detected_at)"
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_detections_status ON duplicate_detections(status)")

    # -----------------
    # Image hash records
    # -----------------
    def insert(self, record: ImageHashRecord) -> str:
        """Append a hash record and return its id."""
        self.record_submission(record)
        return record.id

    def record_submission(
        self,
        record: ImageHashRecord,
        detection: Optional[DuplicateDetectionRecord] = None,
    ) -> ImageHashRecord:
        """Write a hash record and, for duplicates, its detection record atomically.

        Raises:
            InputError: If a hash is malformed or the perceptual width differs
                from the index width
            StorageUnavailable: If the write fails (nothing is written)
        """
        record.cryptographic_hash = validate_cryptographic_hash(record.cryptographic_hash)
        record.perceptual_hash = validate_perceptual_hash(record.perceptual_hash, self.hash_width)

        with self._connection() as conn:
            conn.execute(f"""
                INSERT INTO image_hashes ({_HASH_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.cryptographic_hash,
                record.perceptual_hash,
                record.image_url or "",
                record.transaction_id,
                record.payment_reference,
                record.user_id,
                record.message_id,
                json.dumps(record.metadata.model_dump(mode="json")),
                to_db_timestamp(record.created_at),
            ))
            if detection is not None:
                self._insert_detection(conn, detection)
        return record

    def exact_lookup(self, cryptographic_hash: str) -> Optional[ImageHashRecord]:
        """Return the first-seen record with this digest, or None."""
        digest = validate_cryptographic_hash(cryptographic_hash)
        with self._connection() as conn:
            row = conn.execute(f"""
                SELECT {_HASH_COLUMNS}
                FROM image_hashes
                WHERE cryptographic_hash = ?
                ORDER BY created_at ASC, rowid ASC
                LIMIT 1
            """, (digest,)).fetchone()
        return self._row_to_record(row) if row else None

    def scan_all(self) -> List[ImageHashRecord]:
        """Return every stored hash record, oldest first.

        Unindexed full-table read, O(n) in the number of stored proofs. This
        is the single swap point for a similarity index; callers must not
        enumerate records any other way.
        """
        with self._connection() as conn:
            rows = conn.execute(f"""
                SELECT {_HASH_COLUMNS}
                FROM image_hashes
                ORDER BY created_at ASC, rowid ASC
            """).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_record(self, record_id: str) -> Optional[ImageHashRecord]:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_HASH_COLUMNS} FROM image_hashes WHERE id = ?", (record_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def delete_record(self, record_id: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM image_hashes WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def delete_records_older_than(self, days: float) -> int:
        """Retention cleanup for hash records; returns number deleted."""
        cutoff = self._cutoff(days)
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM image_hashes WHERE created_at < ?", (cutoff,))
            deleted = cursor.rowcount
        logger.info("Deleted %d image hash records older than %s days", deleted, days)
        return deleted

    def count_records(self) -> int:
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM image_hashes").fetchone()[0]

    # -----------------
    # Detection records
    # -----------------
    def create_detection(self, detection: DuplicateDetectionRecord) -> str:
        with self._connection() as conn:
            self._insert_detection(conn, detection)
        return detection.id

    def get_detection(self, detection_id: str) -> Optional[DuplicateDetectionRecord]:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_DETECTION_COLUMNS} FROM duplicate_detections WHERE id = ?",
                (detection_id,),
            ).fetchone()
        return self._row_to_detection(row) if row else None

    def find_active_detection(self, hash_value: str) -> Optional[DuplicateDetectionRecord]:
        """Most recent active detection for a submission hash."""
        with self._connection() as conn:
            row = conn.execute(f"""
                SELECT {_DETECTION_COLUMNS}
                FROM duplicate_detections
                WHERE hash = ? AND status = ?
                ORDER BY detected_at DESC
                LIMIT 1
            """, (hash_value, DetectionStatus.ACTIVE.value)).fetchone()
        return self._row_to_detection(row) if row else None

    def update_detection_status(
        self,
        detection_id: str,
        status: DetectionStatus,
        transaction_id: Optional[str] = None,
    ) -> Optional[DuplicateDetectionRecord]:
        """Set reviewer status; keeps the existing transaction link unless one is given.

        Returns:
            Updated record, or None if no record has this id
        """
        with self._connection() as conn:
            cursor = conn.execute("""
                UPDATE duplicate_detections
                SET status = ?, transaction_id = COALESCE(?, transaction_id)
                WHERE id = ?
            """, (status.value, transaction_id, detection_id))
            if cursor.rowcount == 0:
                return None
        return self.get_detection(detection_id)

    def list_user_detections(
        self,
        user_id: str,
        status: Optional[DetectionStatus] = None,
        limit: Optional[int] = None,
    ) -> List[DuplicateDetectionRecord]:
        """Detection records for a user, most recent first."""
        query_parts = [f"SELECT {_DETECTION_COLUMNS} FROM duplicate_detections WHERE user_id = ?"]
        params: list = [user_id]
        if status is not None:
            query_parts.append("AND status = ?")
            params.append(status.value)
        query_parts.append("ORDER BY detected_at DESC")
        if limit is not None:
            query_parts.append("LIMIT ?")
            params.append(int(limit))

        with self._connection() as conn:
            rows = conn.execute("\n".join(query_parts), params).fetchall()
        return [self._row_to_detection(row) for row in rows]

    def delete_detections_older_than(self, days: float) -> int:
        """Delete detection records detected more than `days` ago."""
        cutoff = self._cutoff(days)
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM duplicate_detections WHERE detected_at < ?", (cutoff,)
            )
            return cursor.rowcount

    def detection_stats(self, since: Optional[datetime] = None) -> DetectionStats:
        """Counts per reviewer status, optionally limited to detections after `since`."""
        params: list = []
        where = ""
        if since is not None:
            where = "WHERE detected_at >= ?"
            params.append(to_db_timestamp(since))

        with self._connection() as conn:
            rows = conn.execute(f"""
                SELECT status, COUNT(*) AS n
                FROM duplicate_detections
                {where}
                GROUP BY status
            """, params).fetchall()

        counts = {row["status"]: row["n"] for row in rows}
        return DetectionStats(
            total=sum(counts.values()),
            active=counts.get(DetectionStatus.ACTIVE.value, 0),
            resolved=counts.get(DetectionStatus.RESOLVED.value, 0),
            false_positive=counts.get(DetectionStatus.FALSE_POSITIVE.value, 0),
        )

    # -----------------
    # Internal helpers
    # -----------------
    @staticmethod
    def _cutoff(days: float) -> str:
        if days is None or days < 0:
            raise InputError(f"Retention age must be a non-negative number of days, got {days!r}")
        return to_db_timestamp(datetime.now(timezone.utc) - timedelta(days=days))

    @staticmethod
    def _insert_detection(conn: sqlite3.Connection, detection: DuplicateDetectionRecord) -> None:
        conn.execute(f"""
            INSERT INTO duplicate_detections ({_DETECTION_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            detection.id,
            detection.hash,
            detection.user_id,
            json.dumps(detection.detection_data),
            detection.transaction_id,
            to_db_timestamp(detection.detected_at),
            detection.status.value,
        ))

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ImageHashRecord:
        metadata = json.loads(row["metadata_json"] or "{}")
        return ImageHashRecord(
            id=row["id"],
            cryptographic_hash=row["cryptographic_hash"],
            perceptual_hash=row["perceptual_hash"],
            image_url=row["image_url"] or "",
            transaction_id=row["transaction_id"],
            payment_reference=row["payment_reference"],
            user_id=row["user_id"],
            message_id=row["message_id"],
            metadata=ImageHashMetadata.model_validate(metadata),
            created_at=from_db_timestamp(row["created_at"]),
        )

    @staticmethod
    def _row_to_detection(row: sqlite3.Row) -> DuplicateDetectionRecord:
        return DuplicateDetectionRecord(
            id=row["id"],
            hash=row["hash"],
            user_id=row["user_id"],
            detection_data=json.loads(row["detection_data_json"] or "{}"),
            transaction_id=row["transaction_id"],
            detected_at=from_db_timestamp(row["detected_at"]),
            status=DetectionStatus(row["status"]),
        )
