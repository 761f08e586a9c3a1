"""Payment-proof intake: classify an uploaded image, then attach it.

Sits between the HTTP layer and the two engines. Ordering:
  1. If a transaction id is given, it must exist (NotFoundError before any write)
  2. DuplicateDetector.submit() classifies and records the image
  3. SettlementService.attach_payment_proof() records the proof on the
     transaction (pending → review), whatever the classification
"""

from __future__ import annotations

import logging
from typing import Optional

from fxdesk.models.duplicate import DuplicateClassificationResult, SubmissionContext
from fxdesk.services.duplicate_detector import DuplicateDetector
from fxdesk.services.settlement import SettlementService
from fxdesk.utils.helpers.exceptions import InputError

logger = logging.getLogger(__name__)

DEFAULT_HAMMING_THRESHOLD = 5


class PaymentProofService:
    def __init__(
        self,
        detector: DuplicateDetector,
        settlement: SettlementService,
        default_threshold: int = DEFAULT_HAMMING_THRESHOLD,
    ):
        self.detector = detector
        self.settlement = settlement
        self.default_threshold = default_threshold

    def submit_payment_proof(
        self,
        user_id: str,
        image_bytes: bytes,
        transaction_id: Optional[str] = None,
        payment_reference: Optional[str] = None,
        image_url: Optional[str] = None,
        message_id: Optional[str] = None,
        filename: Optional[str] = None,
        threshold: Optional[int] = None,
    ) -> DuplicateClassificationResult:
        """Classify a payment-proof image and attach it to its transaction.

        The classification is returned to the caller; duplicates are not
        rejected here.

        Raises:
            InputError: Bad image or threshold
            NotFoundError: transaction_id given but unknown
            StorageUnavailable: A store could not be reached
        """
        if not user_id or not user_id.strip():
            raise InputError("user_id is required")
        if transaction_id:
            self.settlement.get_transaction(transaction_id)

        context = SubmissionContext(
            user_id=user_id,
            transaction_id=transaction_id,
            payment_reference=payment_reference,
            message_id=message_id,
            image_url=image_url or "",
            filename=filename,
        )
        effective_threshold = self.default_threshold if threshold is None else threshold
        result = self.detector.submit(image_bytes, context, effective_threshold)

        if result.is_duplicate:
            logger.warning(
                "Payment proof from user %s flagged %s (matched %s, distance %s)",
                user_id, result.classification.value,
                result.matched_record_id, result.hamming_distance,
            )

        if transaction_id:
            self.settlement.attach_payment_proof(
                transaction_id,
                image_url or f"hash-record:{result.record_id}",
                payment_reference,
            )
        return result
