"""Duplicate detection outcomes and reviewer-facing detection records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class DuplicateClassification(str, Enum):
    """Result of comparing a submission against the duplicate index."""

    EXACT_DUPLICATE = "EXACT_DUPLICATE"
    NEAR_DUPLICATE = "NEAR_DUPLICATE"
    CLEAN = "CLEAN"


class DetectionStatus(str, Enum):
    """Reviewer lifecycle of a detection record.

    ACTIVE:
        - Created by the detector, awaiting review
    RESOLVED:
        - Reviewer confirmed the reuse and dealt with it
    FALSE_POSITIVE:
        - Reviewer judged the match legitimate (e.g. a re-cropped receipt
          for the same transaction)
    """

    ACTIVE = "active"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


class SubmissionContext(BaseModel):
    """Who submitted a proof and for what."""

    user_id: str = Field(..., min_length=1)
    transaction_id: Optional[str] = None
    payment_reference: Optional[str] = None
    message_id: Optional[str] = None
    image_url: str = ""
    filename: Optional[str] = None


class DuplicateDetectionRecord(BaseModel):
    """Evidence that a submission matched an earlier proof.

    Attributes:
        id: Record identifier
        hash: Cryptographic hash of the offending submission
        user_id: Submitting user
        detection_data: Structured evidence (matched record id, distance,
            method, threshold, confidence, new record id)
        transaction_id: Transaction the submission was made for, if known
        detected_at: When the duplicate was detected (UTC)
        status: Reviewer status (active until reviewed)
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    hash: str
    user_id: str
    detection_data: Dict[str, Any] = Field(default_factory=dict)
    transaction_id: Optional[str] = None
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: DetectionStatus = DetectionStatus.ACTIVE


class DuplicateClassificationResult(BaseModel):
    """Returned to the caller of submit_payment_proof.

    The detector never rejects anything itself; callers decide what to do
    with a duplicate classification.
    """

    classification: DuplicateClassification
    matched_record_id: Optional[str] = None
    hamming_distance: Optional[int] = None
    cryptographic_hash: str
    perceptual_hash: str
    record_id: Optional[str] = Field(
        default=None,
        description="Id of the hash record written for this submission",
    )
    detection_id: Optional[str] = Field(
        default=None,
        description="Id of the detection record (duplicates only)",
    )
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    confidence_label: Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.classification != DuplicateClassification.CLEAN


class DetectionStats(BaseModel):
    total: int = 0
    active: int = 0
    resolved: int = 0
    false_positive: int = 0
