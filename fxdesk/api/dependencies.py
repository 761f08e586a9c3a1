"""Service singletons and error mapping shared by the API routers.

Routers take services through FastAPI's Depends() so tests can swap them
with app.dependency_overrides.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException, status

from fxdesk.repositories.audit_repository import AuditRepository
from fxdesk.repositories.duplicate_index import DuplicateIndex
from fxdesk.repositories.transaction_repository import TransactionRepository
from fxdesk.repositories.user_repository import UserRepository
from fxdesk.services.audit_logger import AuditLogger
from fxdesk.services.config_service import AppSettings, get_settings
from fxdesk.services.duplicate_detector import DuplicateDetector
from fxdesk.services.notification_dispatcher import WhatsAppCloudDispatcher
from fxdesk.services.payment_proof_service import PaymentProofService
from fxdesk.services.settlement import SettlementService
from fxdesk.utils.helpers.exceptions import (
    FxDeskError,
    InputError,
    NotFoundError,
    StorageUnavailable,
)

logger = logging.getLogger(__name__)

# Singleton service instances
_audit_logger: Optional[AuditLogger] = None
_duplicate_detector: Optional[DuplicateDetector] = None
_settlement_service: Optional[SettlementService] = None
_payment_proof_service: Optional[PaymentProofService] = None


def get_app_settings() -> AppSettings:
    return get_settings()


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        settings = get_settings()
        _audit_logger = AuditLogger(AuditRepository(db_path=settings.db_path("audit.db")))
    return _audit_logger


def get_duplicate_detector() -> DuplicateDetector:
    """Get or create DuplicateDetector singleton."""
    global _duplicate_detector
    if _duplicate_detector is None:
        settings = get_settings()
        _duplicate_detector = DuplicateDetector(
            index=DuplicateIndex(db_path=settings.db_path("duplicates.db")),
            audit_logger=get_audit_logger(),
        )
    return _duplicate_detector


def get_settlement_service() -> SettlementService:
    """Get or create SettlementService singleton."""
    global _settlement_service
    if _settlement_service is None:
        settings = get_settings()
        db_path = settings.db_path("transactions.db")
        _settlement_service = SettlementService(
            transactions=TransactionRepository(db_path=db_path),
            users=UserRepository(db_path=db_path),
            dispatcher=WhatsAppCloudDispatcher(
                access_token=settings.whatsapp_access_token,
                phone_number_id=settings.whatsapp_phone_number_id,
                api_url=settings.whatsapp_api_url,
                api_version=settings.whatsapp_api_version,
                timeout=settings.whatsapp_timeout_seconds,
            ),
            audit_logger=get_audit_logger(),
        )
    return _settlement_service


def get_payment_proof_service() -> PaymentProofService:
    """Get or create PaymentProofService singleton."""
    global _payment_proof_service
    if _payment_proof_service is None:
        _payment_proof_service = PaymentProofService(
            detector=get_duplicate_detector(),
            settlement=get_settlement_service(),
            default_threshold=get_settings().hamming_threshold,
        )
    return _payment_proof_service


def to_http_exception(exc: FxDeskError) -> HTTPException:
    """Map the domain error taxonomy onto HTTP status codes."""
    if isinstance(exc, InputError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, StorageUnavailable):
        logger.error("Storage unavailable: %s", exc)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage temporarily unavailable",
        )
    logger.exception("Unhandled fxdesk error: %s", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
