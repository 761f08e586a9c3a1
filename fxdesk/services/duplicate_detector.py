"""Dual-hash duplicate detection for payment-proof images.

Classification, in order:
  1. Exact check: cryptographic hash lookup. A hit is EXACT_DUPLICATE with
     distance 0; identical screenshots never back two distinct payments.
  2. Near-duplicate check (only without an exact hit): Hamming distance to
     every stored fingerprint. Candidates with 0 < distance <= threshold are
     ranked by distance, then by earliest created_at; the best one makes the
     submission a NEAR_DUPLICATE. No candidate means CLEAN.
  3. Record: a hash record is written for every submission; duplicates also
     get an active detection record.

The detector is stateless and never rejects anything itself. Legitimate
near-duplicates exist (a user resending a re-cropped receipt for the same
transaction), so acting on the classification is the caller's decision.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional, Tuple

from fxdesk.models.audit import AuditEventType
from fxdesk.models.duplicate import (
    DetectionStats,
    DetectionStatus,
    DuplicateClassification,
    DuplicateClassificationResult,
    DuplicateDetectionRecord,
    SubmissionContext,
)
from fxdesk.models.image_hash import ImageHashes, ImageHashMetadata, ImageHashRecord
from fxdesk.repositories.duplicate_index import DuplicateIndex
from fxdesk.services.audit_logger import AuditLogger
from fxdesk.services.hash_computer import HashComputer
from fxdesk.utils.hash_utils import (
    confidence_description,
    confidence_for_distance,
    hamming_distance,
    hash_prefix,
    validate_cryptographic_hash,
    validate_perceptual_hash,
)
from fxdesk.utils.helpers.exceptions import InputError, NotFoundError
from fxdesk.utils.image_utils import validate_image_bytes

logger = logging.getLogger(__name__)

DETECTION_METHOD = "dual-hash"


class DuplicateDetector:
    """Classify payment-proof submissions against the duplicate index."""

    def __init__(
        self,
        index: DuplicateIndex,
        hash_computer: Optional[HashComputer] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.index = index
        self.hash_computer = hash_computer or HashComputer()
        self.audit_logger = audit_logger

    def submit(
        self,
        image_bytes: bytes,
        context: SubmissionContext,
        threshold: int,
    ) -> DuplicateClassificationResult:
        """Hash raw image bytes, classify them and record the outcome.

        Raises:
            InputError: Empty/unsupported/undecodable image, bad threshold
            StorageUnavailable: Index unreachable (nothing is written)
        """
        started = time.perf_counter()
        mime_type = validate_image_bytes(image_bytes)
        hashes = self.hash_computer.compute(image_bytes, mime_type=mime_type)
        metadata = ImageHashMetadata(
            image_size=len(image_bytes),
            original_filename=context.filename,
            mime_type=mime_type,
        )
        return self.classify(hashes, context, threshold, metadata=metadata, started=started)

    def classify(
        self,
        hashes: ImageHashes,
        context: SubmissionContext,
        threshold: int,
        metadata: Optional[ImageHashMetadata] = None,
        started: Optional[float] = None,
    ) -> DuplicateClassificationResult:
        """Classify precomputed hashes and record the outcome.

        Malformed hashes fail closed with InputError before anything is
        read or written.
        """
        started = started if started is not None else time.perf_counter()
        threshold = self._validate_threshold(threshold)
        cryptographic_hash = validate_cryptographic_hash(hashes.cryptographic_hash)
        perceptual_hash = validate_perceptual_hash(hashes.perceptual_hash, self.index.hash_width)

        classification = DuplicateClassification.CLEAN
        matched: Optional[ImageHashRecord] = None
        distance: Optional[int] = None

        exact = self.index.exact_lookup(cryptographic_hash)
        if exact is not None:
            classification = DuplicateClassification.EXACT_DUPLICATE
            matched, distance = exact, 0
        else:
            candidates = self.find_near_duplicates(perceptual_hash, threshold)
            if candidates:
                classification = DuplicateClassification.NEAR_DUPLICATE
                matched, distance = candidates[0]

        confidence = None
        if matched is not None:
            confidence = confidence_for_distance(distance, threshold)

        metadata = metadata.model_copy() if metadata is not None else ImageHashMetadata()
        metadata.detection_method = DETECTION_METHOD
        metadata.hamming_threshold = threshold
        metadata.processing_time_ms = round((time.perf_counter() - started) * 1000, 3)

        record = ImageHashRecord(
            cryptographic_hash=cryptographic_hash,
            perceptual_hash=perceptual_hash,
            image_url=context.image_url,
            transaction_id=context.transaction_id,
            payment_reference=context.payment_reference,
            user_id=context.user_id,
            message_id=context.message_id,
            metadata=metadata,
        )

        detection = None
        if matched is not None:
            detection = DuplicateDetectionRecord(
                hash=cryptographic_hash,
                user_id=context.user_id,
                transaction_id=context.transaction_id,
                detection_data={
                    "new_record_id": record.id,
                    "matched_record_id": matched.id,
                    "matched_transaction_id": matched.transaction_id,
                    "matched_user_id": matched.user_id,
                    "hamming_distance": distance,
                    "method": "exact" if distance == 0 else "perceptual",
                    "threshold": threshold,
                    "confidence": confidence,
                },
            )

        self.index.record_submission(record, detection)

        result = DuplicateClassificationResult(
            classification=classification,
            matched_record_id=matched.id if matched else None,
            hamming_distance=distance,
            cryptographic_hash=cryptographic_hash,
            perceptual_hash=perceptual_hash,
            record_id=record.id,
            detection_id=detection.id if detection else None,
            confidence=confidence,
            confidence_label=confidence_description(confidence) if confidence is not None else None,
        )

        logger.info(
            "Classified proof user=%s transaction=%s sha256=%s as %s (distance=%s, matched=%s)",
            context.user_id,
            context.transaction_id,
            hash_prefix(cryptographic_hash),
            classification.value,
            distance,
            result.matched_record_id,
        )
        if self.audit_logger is not None:
            self.audit_logger.log(
                event_type=AuditEventType.PROOF_CLASSIFIED,
                actor=context.user_id,
                transaction_id=context.transaction_id,
                data={
                    "classification": classification,
                    "sha256_prefix": hash_prefix(cryptographic_hash),
                    "matched_record_id": result.matched_record_id,
                    "hamming_distance": distance,
                    "threshold": threshold,
                    "record_id": record.id,
                    "detection_id": result.detection_id,
                },
            )
        return result

    def find_near_duplicates(
        self,
        perceptual_hash: str,
        threshold: int,
    ) -> List[Tuple[ImageHashRecord, int]]:
        """Stored records within `threshold` bits, best match first.

        Runs to completion over the whole index; a partial scan can never
        justify CLEAN. A stored fingerprint of another width raises
        InputError from hamming_distance().
        """
        candidates: List[Tuple[ImageHashRecord, int]] = []
        for record in self.index.scan_all():
            distance = hamming_distance(perceptual_hash, record.perceptual_hash)
            if 0 < distance <= threshold:
                candidates.append((record, distance))
        candidates.sort(key=lambda item: (item[1], item[0].created_at))
        return candidates

    # -----------------
    # Reviewer operations
    # -----------------
    def review_detection(
        self,
        detection_id: str,
        status: "str | DetectionStatus",
        transaction_id: Optional[str] = None,
        reviewer: Optional[str] = None,
    ) -> DuplicateDetectionRecord:
        """Mark a detection resolved / false_positive (or back to active).

        Raises:
            InputError: Unknown status value
            NotFoundError: No detection with this id
        """
        try:
            status = DetectionStatus(status)
        except ValueError:
            allowed = ", ".join(s.value for s in DetectionStatus)
            raise InputError(f"Invalid detection status: {status!r}. Use one of: {allowed}") from None

        updated = self.index.update_detection_status(detection_id, status, transaction_id)
        if updated is None:
            raise NotFoundError(f"Duplicate detection record not found: {detection_id}")

        logger.info("Detection %s marked %s", detection_id, status.value)
        if self.audit_logger is not None:
            self.audit_logger.log(
                event_type=AuditEventType.DETECTION_REVIEWED,
                actor=reviewer,
                transaction_id=updated.transaction_id,
                data={"detection_id": detection_id, "status": status},
            )
        return updated

    def sweep_stale_detections(self, retention_days: float) -> int:
        """Delete detection records older than the retention age."""
        deleted = self.index.delete_detections_older_than(retention_days)
        logger.info("Swept %d detection records older than %s days", deleted, retention_days)
        if self.audit_logger is not None:
            self.audit_logger.log(
                event_type=AuditEventType.DETECTIONS_SWEPT,
                data={"deleted": deleted, "retention_days": retention_days},
            )
        return deleted

    def list_user_detections(
        self,
        user_id: str,
        status: Optional[DetectionStatus] = None,
        limit: Optional[int] = None,
    ) -> List[DuplicateDetectionRecord]:
        return self.index.list_user_detections(user_id, status=status, limit=limit)

    def detection_stats(self, since=None) -> DetectionStats:
        return self.index.detection_stats(since=since)

    @staticmethod
    def _validate_threshold(threshold: int) -> int:
        if isinstance(threshold, bool) or not isinstance(threshold, int):
            raise InputError(f"Hamming threshold must be an integer, got {threshold!r}")
        if threshold < 0:
            raise InputError(f"Hamming threshold must be non-negative, got {threshold}")
        return threshold
