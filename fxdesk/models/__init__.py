"""Models package for the fxdesk settlement subsystem.

ImageHashRecord / DuplicateDetectionRecord: duplicate index contents
Transaction / TransactionStatus: settlement state
"""

from fxdesk.models.duplicate import (
    DetectionStatus,
    DuplicateClassification,
    DuplicateClassificationResult,
    DuplicateDetectionRecord,
    SubmissionContext,
)
from fxdesk.models.image_hash import ImageHashes, ImageHashMetadata, ImageHashRecord
from fxdesk.models.transaction import (
    Transaction,
    TransactionStatus,
    TransitionDecision,
    TransitionOutcome,
    TransitionResult,
)
from fxdesk.models.user import User

__all__ = [
    "DetectionStatus",
    "DuplicateClassification",
    "DuplicateClassificationResult",
    "DuplicateDetectionRecord",
    "SubmissionContext",
    "ImageHashes",
    "ImageHashMetadata",
    "ImageHashRecord",
    "Transaction",
    "TransactionStatus",
    "TransitionDecision",
    "TransitionOutcome",
    "TransitionResult",
    "User",
]
