"""Best-effort audit logging for classifications and settlement transitions.

Key Principles:
- Audit failures NEVER block business operations
- All exceptions are caught and logged as warnings
- Stores only safe metadata (hash prefixes, never image bytes or message bodies
  beyond what was sent to the user)
"""

import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from fxdesk.models.audit import AuditEvent, AuditEventType
from fxdesk.repositories.audit_repository import AuditRepository

logger = logging.getLogger(__name__)


def _serialize_for_audit(obj: Any) -> Any:
    """Convert objects to JSON-serializable format for audit data."""
    if isinstance(obj, Decimal):
        return float(obj)
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {key: _serialize_for_audit(value) for key, value in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_serialize_for_audit(item) for item in obj]
    else:
        return obj


class AuditLogger:
    """Error boundary in front of AuditRepository.

    Architecture:
        SettlementService / DuplicateDetector
            ↓ calls
        AuditLogger (this class) ← error boundary
            ↓ calls
        AuditRepository ← persistence with retry logic
    """

    DEFAULT_ACTOR = "SYSTEM"

    def __init__(self, repository: Optional[AuditRepository] = None):
        self.repository = repository or AuditRepository()

    def log(
        self,
        event_type: AuditEventType,
        actor: Optional[str] = None,
        transaction_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log an audit event (best-effort, never raises)."""
        try:
            event = AuditEvent(
                event_type=event_type,
                actor=actor or self.DEFAULT_ACTOR,
                transaction_id=transaction_id,
                data=_serialize_for_audit(data or {}),
            )
            self.repository.save_event(event)
        except Exception as exc:
            logger.warning(
                "Audit logging failed for event_type=%s, transaction_id=%s: %s",
                event_type, transaction_id, exc,
            )
