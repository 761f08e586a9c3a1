"""Payment-proof upload endpoint.

Endpoints:
- POST /api/payment-proofs - Classify an uploaded proof image and attach it

The duplicate scan is O(n) in stored proofs, so the synchronous service
call runs in the threadpool instead of on the event loop.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from fxdesk.api.dependencies import get_payment_proof_service, to_http_exception
from fxdesk.models.duplicate import DuplicateClassificationResult
from fxdesk.services.payment_proof_service import PaymentProofService
from fxdesk.utils.helpers.exceptions import FxDeskError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment-proofs", tags=["payment-proofs"])


@router.post("", response_model=DuplicateClassificationResult)
async def submit_payment_proof(
    user_id: str = Form(...),
    file: UploadFile = File(...),
    transaction_id: Optional[str] = Form(None),
    payment_reference: Optional[str] = Form(None),
    image_url: Optional[str] = Form(None),
    message_id: Optional[str] = Form(None),
    threshold: Optional[int] = Form(None),
    service: PaymentProofService = Depends(get_payment_proof_service),
) -> DuplicateClassificationResult:
    """Classify a payment-proof image as EXACT_DUPLICATE, NEAR_DUPLICATE or CLEAN.

    Duplicates are reported, not rejected; the agent decides what to do.

    Example:
        curl -F user_id=u-1 -F transaction_id=... -F file=@proof.jpg \\
             http://localhost:8000/api/payment-proofs
    """
    image_bytes = await file.read()
    if not image_bytes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")

    try:
        return await run_in_threadpool(
            service.submit_payment_proof,
            user_id=user_id,
            image_bytes=image_bytes,
            transaction_id=transaction_id or None,
            payment_reference=payment_reference or None,
            image_url=image_url or None,
            message_id=message_id or None,
            filename=file.filename,
            threshold=threshold,
        )
    except FxDeskError as exc:
        raise to_http_exception(exc) from exc
