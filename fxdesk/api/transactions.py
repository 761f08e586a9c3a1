"""Transaction API Endpoints

FastAPI routes for the settlement lifecycle.

Endpoints:
- POST /api/transactions               - Create a transaction (status pending)
- GET /api/transactions?user_id=       - List a user's transactions
- GET /api/transactions?status=        - Review queue for one status
- GET /api/transactions/stats          - Counts per status
- GET /api/transactions/{id}           - Get one transaction
- POST /api/transactions/{id}/status   - Request a status change
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from fxdesk.api.dependencies import get_settlement_service, to_http_exception
from fxdesk.models.transaction import Transaction, TransactionStats, TransitionResult
from fxdesk.models.user import User
from fxdesk.services.settlement import SettlementService
from fxdesk.utils.helpers.exceptions import FxDeskError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


# ============================================================================
# Request Models
# ============================================================================

class CreateTransactionRequest(BaseModel):
    """Terms agreed with the user."""
    user_id: str = Field(..., min_length=1)
    conversation_id: str = Field(..., min_length=1)
    currency_from: str = Field(..., min_length=1, max_length=10)
    currency_to: str = Field(..., min_length=1, max_length=10)
    amount_from: float = Field(..., gt=0)
    amount_to: float = Field(..., gt=0)
    negotiated_rate: float = Field(..., gt=0)
    payment_reference: Optional[str] = None
    phone_number: Optional[str] = Field(
        None,
        description="WhatsApp number of the user; registers the contact for notifications",
    )
    display_name: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., description="Target status (or alias: image_received, confirmed)")
    message: Optional[str] = Field(
        None,
        description=(
            "Message sent to the user instead of the default template; "
            "stored as the reason on cancelled/failed"
        ),
    )
    actor: Optional[str] = None


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("", response_model=Transaction, status_code=status.HTTP_201_CREATED)
def create_transaction(
    request: CreateTransactionRequest,
    service: SettlementService = Depends(get_settlement_service),
) -> Transaction:
    try:
        if request.phone_number:
            service.users.save(User(
                user_id=request.user_id,
                phone_number=request.phone_number,
                display_name=request.display_name,
            ))
        return service.create_transaction(
            user_id=request.user_id,
            conversation_id=request.conversation_id,
            currency_from=request.currency_from,
            currency_to=request.currency_to,
            amount_from=request.amount_from,
            amount_to=request.amount_to,
            negotiated_rate=request.negotiated_rate,
            payment_reference=request.payment_reference,
        )
    except FxDeskError as exc:
        raise to_http_exception(exc) from exc


@router.get("", response_model=List[Transaction])
def list_transactions(
    user_id: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: Optional[int] = None,
    service: SettlementService = Depends(get_settlement_service),
) -> List[Transaction]:
    """List transactions by user (newest first) or by status (oldest first).

    Query Parameters:
        user_id: Transactions of one user, optionally filtered by status
        status: Without user_id, the queue of transactions in this status
    """
    if not user_id and not status_filter:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide user_id and/or status",
        )
    try:
        if user_id:
            return service.list_user_transactions(user_id, status=status_filter, limit=limit)
        return service.list_transactions_by_status(status_filter)
    except FxDeskError as exc:
        raise to_http_exception(exc) from exc


@router.get("/stats", response_model=TransactionStats)
def transaction_stats(
    service: SettlementService = Depends(get_settlement_service),
) -> TransactionStats:
    try:
        return service.transaction_stats()
    except FxDeskError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{transaction_id}", response_model=Transaction)
def get_transaction(
    transaction_id: str,
    service: SettlementService = Depends(get_settlement_service),
) -> Transaction:
    try:
        return service.get_transaction(transaction_id)
    except FxDeskError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{transaction_id}/status", response_model=TransitionResult)
def update_transaction_status(
    transaction_id: str,
    request: StatusUpdateRequest,
    service: SettlementService = Depends(get_settlement_service),
) -> TransitionResult:
    """Request a status change.

    Requests out of a terminal status succeed with outcome=unchanged.
    Illegal moves between non-terminal statuses return 400.

    Example:
        POST /api/transactions/{id}/status
        {"status": "confirmed_and_money_sent_to_user"}
    """
    try:
        return service.transition(
            transaction_id,
            request.status,
            message=request.message,
            actor=request.actor,
        )
    except FxDeskError as exc:
        raise to_http_exception(exc) from exc
