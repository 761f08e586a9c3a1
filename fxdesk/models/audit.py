"""Audit event model for proof classification and settlement.

Key Principles:
- Append-only (no updates or deletes)
- Captures who did what, when, and with what outcome
- Stored in its own SQLite database (audit.db)
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Audit event types for the proof and settlement lifecycle."""

    PROOF_CLASSIFIED = "PROOF_CLASSIFIED"
    """Submission hashed and classified against the duplicate index."""

    PROOF_ATTACHED = "PROOF_ATTACHED"
    """Proof image linked to a transaction."""

    DETECTION_REVIEWED = "DETECTION_REVIEWED"
    """Reviewer changed the status of a detection record."""

    DETECTIONS_SWEPT = "DETECTIONS_SWEPT"
    """Retention sweep removed stale detection records."""

    TRANSACTION_CREATED = "TRANSACTION_CREATED"

    STATUS_CHANGED = "STATUS_CHANGED"
    """Settlement status persisted."""

    TRANSITION_IGNORED = "TRANSITION_IGNORED"
    """Request out of a terminal state (or to the current state) ignored."""

    NOTIFICATION_SENT = "NOTIFICATION_SENT"
    NOTIFICATION_SKIPPED = "NOTIFICATION_SKIPPED"
    """No contact address known for the user."""

    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"
    """Dispatcher failed after the status write committed."""


class AuditEvent(BaseModel):
    """Immutable audit event record.

    Attributes:
        event_id: Unique identifier for this audit event
        event_type: Type of operation being audited
        timestamp: When the business event occurred (UTC)
        actor: Who performed this action (user id, reviewer or "SYSTEM")
        transaction_id: Target transaction (None for index-wide events)
        data: Event-specific context (hash prefixes, distances, errors)
        created_at: When this audit record was persisted
    """

    event_id: UUID = Field(default_factory=uuid4)
    event_type: AuditEventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor: str
    transaction_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
