"""Currency-exchange transaction model and settlement state definition.

A Transaction is created when the user and the agent agree on terms and then
moves through the settlement lifecycle below. Status values live in ONE
closed enumeration and legal moves in ONE transition table; every caller
parses status strings through parse_status().

State Transition Rules:
  pending → image_received_and_being_reviewed      ✅ (proof attached)
  pending → confirmed_and_money_sent_to_user       ✅ (direct confirmation)
  image_received_and_being_reviewed → confirmed    ✅ (reviewer action)
  any non-terminal → cancelled / failed            ✅
  terminal → anything                              ⏸ no-op (status kept)
  image_received_and_being_reviewed → pending      ❌ InvalidTransitionError
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from fxdesk.utils.helpers.exceptions import InputError


class TransactionStatus(str, Enum):
    """Settlement lifecycle states.

    PENDING:
        - Initial state, terms agreed, waiting for the user's payment proof
    IMAGE_RECEIVED_AND_BEING_REVIEWED:
        - A payment-proof image is attached and awaits a reviewer
    CONFIRMED_AND_MONEY_SENT_TO_USER:
        - Terminal; payout done, user notified
    CANCELLED:
        - Terminal; user notified
    FAILED:
        - Terminal; no notification
    """

    PENDING = "pending"
    IMAGE_RECEIVED_AND_BEING_REVIEWED = "image_received_and_being_reviewed"
    CONFIRMED_AND_MONEY_SENT_TO_USER = "confirmed_and_money_sent_to_user"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[TransactionStatus] = frozenset({
    TransactionStatus.CONFIRMED_AND_MONEY_SENT_TO_USER,
    TransactionStatus.CANCELLED,
    TransactionStatus.FAILED,
})

# pending → confirmed skips the review state. Kept legal until product
# confirms whether direct confirmation is intended policy.
TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.IMAGE_RECEIVED_AND_BEING_REVIEWED,
        TransactionStatus.CONFIRMED_AND_MONEY_SENT_TO_USER,
        TransactionStatus.CANCELLED,
        TransactionStatus.FAILED,
    }),
    TransactionStatus.IMAGE_RECEIVED_AND_BEING_REVIEWED: frozenset({
        TransactionStatus.CONFIRMED_AND_MONEY_SENT_TO_USER,
        TransactionStatus.CANCELLED,
        TransactionStatus.FAILED,
    }),
    TransactionStatus.CONFIRMED_AND_MONEY_SENT_TO_USER: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}

NOTIFYING_STATUSES: FrozenSet[TransactionStatus] = frozenset({
    TransactionStatus.CONFIRMED_AND_MONEY_SENT_TO_USER,
    TransactionStatus.CANCELLED,
})

# A caller message on these is stored as the transaction's status_reason.
REASON_STATUSES: FrozenSet[TransactionStatus] = frozenset({
    TransactionStatus.CANCELLED,
    TransactionStatus.FAILED,
})

# Short names used by agent tooling.
STATUS_ALIASES: Dict[str, TransactionStatus] = {
    "image_received": TransactionStatus.IMAGE_RECEIVED_AND_BEING_REVIEWED,
    "confirmed": TransactionStatus.CONFIRMED_AND_MONEY_SENT_TO_USER,
}


def parse_status(value: "str | TransactionStatus") -> TransactionStatus:
    """Parse a status string (or alias) into TransactionStatus.

    Raises:
        InputError: If the value is not a known status or alias
    """
    if isinstance(value, TransactionStatus):
        return value
    normalized = str(value or "").strip().lower()
    if normalized in STATUS_ALIASES:
        return STATUS_ALIASES[normalized]
    try:
        return TransactionStatus(normalized)
    except ValueError:
        allowed = ", ".join(s.value for s in TransactionStatus)
        raise InputError(f"Invalid status: {value!r}. Use one of: {allowed}") from None


def is_allowed(previous: TransactionStatus, target: TransactionStatus) -> bool:
    return target in TRANSITIONS[previous]


class Transaction(BaseModel):
    """Currency-exchange transaction.

    Attributes:
        id: 32-char uuid hex; notifications quote its last 8 characters
        user_id: Customer the transaction belongs to
        conversation_id: WhatsApp conversation the terms were agreed in
        currency_from / currency_to: Currency codes (upper-cased)
        amount_from / amount_to: Amount paid in and paid out
        negotiated_rate: Final agreed rate
        payment_reference: Reference quoted on the payment proof
        receipt_image_url: Latest attached payment-proof image
        status: Settlement state (see TRANSITIONS)
        status_reason: Cancellation or failure reason given by the caller
        created_at / updated_at: UTC timestamps
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str = Field(..., min_length=1)
    conversation_id: str = Field(..., min_length=1)
    currency_from: str = Field(..., min_length=1, max_length=10)
    currency_to: str = Field(..., min_length=1, max_length=10)
    amount_from: float = Field(..., gt=0)
    amount_to: float = Field(..., gt=0)
    negotiated_rate: float = Field(..., gt=0)
    payment_reference: Optional[str] = None
    receipt_image_url: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    status_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("currency_from", "currency_to")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def short_id(self) -> str:
        return self.id[-8:]


class TransitionOutcome(str, Enum):
    UPDATED_AND_NOTIFIED = "updated_and_notified"
    UPDATED_NOT_NOTIFIED = "updated_not_notified"
    UNCHANGED = "unchanged"


class TransitionDecision(BaseModel):
    """Pure outcome of decide_transition(); no I/O has happened yet."""

    previous_status: TransactionStatus
    new_status: TransactionStatus
    apply: bool
    notify: bool = False
    message: Optional[str] = None
    reason: Optional[str] = None


class TransitionResult(BaseModel):
    """Result reported to the caller of transition().

    success is True when the requested status holds after the call.
    notified is True only when the dispatcher accepted the message.
    """

    transaction_id: str
    success: bool
    notified: bool
    changed: bool
    previous_status: TransactionStatus
    new_status: TransactionStatus
    outcome: TransitionOutcome
    notification_error: Optional[str] = None
    notification_id: Optional[str] = None


class TransactionStats(BaseModel):
    total: int = 0
    pending: int = 0
    in_review: int = 0
    completed: int = 0
    cancelled: int = 0
    failed: int = 0
