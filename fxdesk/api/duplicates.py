"""Duplicate detection review endpoints.

Endpoints:
- GET /api/duplicates?user_id=&status=&limit=  - Detections for a user
- GET /api/duplicates/stats                    - Counts per reviewer status
- PATCH /api/duplicates/{id}                   - Mark resolved / false_positive
- POST /api/duplicates/cleanup                 - Delete stale detections
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from fxdesk.api.dependencies import get_app_settings, get_duplicate_detector, to_http_exception
from fxdesk.models.duplicate import DetectionStats, DetectionStatus, DuplicateDetectionRecord
from fxdesk.services.config_service import AppSettings
from fxdesk.services.duplicate_detector import DuplicateDetector
from fxdesk.utils.helpers.exceptions import FxDeskError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/duplicates", tags=["duplicates"])


class ReviewDetectionRequest(BaseModel):
    status: DetectionStatus
    transaction_id: Optional[str] = None
    reviewer: Optional[str] = None


class CleanupRequest(BaseModel):
    retention_days: Optional[float] = Field(
        None,
        ge=0,
        description="Delete detections older than this many days (default from configuration)",
    )


class CleanupResponse(BaseModel):
    deleted: int
    retention_days: float


@router.get("", response_model=List[DuplicateDetectionRecord])
def list_detections(
    user_id: str,
    status: Optional[DetectionStatus] = None,
    limit: Optional[int] = None,
    detector: DuplicateDetector = Depends(get_duplicate_detector),
) -> List[DuplicateDetectionRecord]:
    try:
        return detector.list_user_detections(user_id, status=status, limit=limit)
    except FxDeskError as exc:
        raise to_http_exception(exc) from exc


@router.get("/stats", response_model=DetectionStats)
def detection_stats(
    since: Optional[datetime] = None,
    detector: DuplicateDetector = Depends(get_duplicate_detector),
) -> DetectionStats:
    try:
        return detector.detection_stats(since=since)
    except FxDeskError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/{detection_id}", response_model=DuplicateDetectionRecord)
def review_detection(
    detection_id: str,
    request: ReviewDetectionRequest,
    detector: DuplicateDetector = Depends(get_duplicate_detector),
) -> DuplicateDetectionRecord:
    try:
        return detector.review_detection(
            detection_id,
            request.status,
            transaction_id=request.transaction_id,
            reviewer=request.reviewer,
        )
    except FxDeskError as exc:
        raise to_http_exception(exc) from exc


@router.post("/cleanup", response_model=CleanupResponse)
def cleanup_detections(
    request: Optional[CleanupRequest] = None,
    detector: DuplicateDetector = Depends(get_duplicate_detector),
    settings: AppSettings = Depends(get_app_settings),
) -> CleanupResponse:
    retention_days = settings.detection_retention_days
    if request is not None and request.retention_days is not None:
        retention_days = request.retention_days
    try:
        deleted = detector.sweep_stale_detections(retention_days)
    except FxDeskError as exc:
        raise to_http_exception(exc) from exc
    return CleanupResponse(deleted=deleted, retention_days=retention_days)
