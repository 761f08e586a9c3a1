"""Settlement state machine and notification policy.

Business logic for the transaction lifecycle, sitting in front of the
transaction store and the notification dispatcher.

Key Responsibilities:
- Decide whether a requested status change is legal (pure)
- Persist legal changes with compare-and-set on the previous status
- Notify the user on confirmation/cancellation, after the write

Critical Rules:
- Terminal states are final → later requests are no-ops, never errors
- Same-status requests → idempotent no-op
- Illegal non-terminal pairs → InvalidTransitionError, nothing written
- Notification failure → reported on the result, status NOT rolled back
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fxdesk.models.audit import AuditEventType
from fxdesk.models.transaction import (
    NOTIFYING_STATUSES,
    REASON_STATUSES,
    Transaction,
    TransactionStats,
    TransactionStatus,
    TransitionDecision,
    TransitionOutcome,
    TransitionResult,
    is_allowed,
    parse_status,
)
from fxdesk.repositories.transaction_repository import TransactionRepository
from fxdesk.repositories.user_repository import UserRepository
from fxdesk.services.audit_logger import AuditLogger
from fxdesk.services.notification_dispatcher import NotificationDispatcher
from fxdesk.utils.helpers.exceptions import (
    FxDeskError,
    InvalidTransitionError,
    NotFoundError,
    NotificationFailure,
)

logger = logging.getLogger(__name__)

NOTIFICATION_TEMPLATES = {
    TransactionStatus.CONFIRMED_AND_MONEY_SENT_TO_USER: (
        "✅ Good news! Your transaction has been confirmed, and the funds have been "
        "sent to your account.\n\nTransaction ID: {short_id}\nAmount: {amount} {currency}"
    ),
    TransactionStatus.CANCELLED: (
        "❌ Your transaction has been cancelled. If you have any questions, please "
        "contact support.\n\nTransaction ID: {short_id}\nAmount: {amount} {currency}"
    ),
}


def format_amount(value: float) -> str:
    """500.0 → "500", 512.5 → "512.5"."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def render_notification(transaction: Transaction, status: TransactionStatus) -> Optional[str]:
    """Default user message for `status`, or None if the status is silent."""
    template = NOTIFICATION_TEMPLATES.get(status)
    if template is None:
        return None
    return template.format(
        short_id=transaction.short_id,
        amount=format_amount(transaction.amount_from),
        currency=transaction.currency_from,
    )


def decide_transition(
    transaction: Transaction,
    requested_status: "str | TransactionStatus",
    message: Optional[str] = None,
) -> TransitionDecision:
    """Decide what a status request does, without touching any store.

    Raises:
        InputError: Unknown status string
        InvalidTransitionError: Non-terminal pair outside the transition table
    """
    target = parse_status(requested_status)
    previous = transaction.status

    if previous.is_terminal or target == previous:
        return TransitionDecision(previous_status=previous, new_status=previous, apply=False)

    if not is_allowed(previous, target):
        raise InvalidTransitionError(previous, target)

    notify = target in NOTIFYING_STATUSES
    body = None
    if notify:
        body = message if message else render_notification(transaction, target)
    return TransitionDecision(
        previous_status=previous,
        new_status=target,
        apply=True,
        notify=notify,
        message=body,
        reason=message if message and target in REASON_STATUSES else None,
    )


class SettlementService:
    """Service layer for the transaction lifecycle.

    Architecture:
        API Layer
            ↓
        SettlementService (this class) ← enforces the transition table
            ↓
        TransactionRepository / UserRepository ← persistence only
            ↓
        NotificationDispatcher ← outbound WhatsApp message (after the write)
    """

    def __init__(
        self,
        transactions: TransactionRepository | None = None,
        users: UserRepository | None = None,
        dispatcher: NotificationDispatcher | None = None,
        audit_logger: AuditLogger | None = None,
    ):
        self.transactions = transactions or TransactionRepository()
        self.users = users or UserRepository()
        self.dispatcher = dispatcher
        self.audit_logger = audit_logger

    # -----------------
    # Transactions
    # -----------------
    def create_transaction(
        self,
        user_id: str,
        conversation_id: str,
        currency_from: str,
        currency_to: str,
        amount_from: float,
        amount_to: float,
        negotiated_rate: float,
        payment_reference: Optional[str] = None,
    ) -> Transaction:
        transaction = Transaction(
            user_id=user_id,
            conversation_id=conversation_id,
            currency_from=currency_from,
            currency_to=currency_to,
            amount_from=amount_from,
            amount_to=amount_to,
            negotiated_rate=negotiated_rate,
            payment_reference=payment_reference,
        )
        self.transactions.create(transaction)
        logger.info(
            "Created transaction %s for user %s: %s %s -> %s",
            transaction.id, user_id, format_amount(transaction.amount_from),
            transaction.currency_from, transaction.currency_to,
        )
        self._audit(
            AuditEventType.TRANSACTION_CREATED,
            transaction_id=transaction.id,
            actor=user_id,
            data={
                "currency_from": transaction.currency_from,
                "currency_to": transaction.currency_to,
                "amount_from": transaction.amount_from,
                "amount_to": transaction.amount_to,
                "negotiated_rate": transaction.negotiated_rate,
            },
        )
        return transaction

    def get_transaction(self, transaction_id: str) -> Transaction:
        """Raises NotFoundError if the transaction does not exist."""
        transaction = self.transactions.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return transaction

    def list_user_transactions(
        self,
        user_id: str,
        status: "str | TransactionStatus | None" = None,
        limit: Optional[int] = None,
    ) -> List[Transaction]:
        parsed = parse_status(status) if status is not None else None
        return self.transactions.list_for_user(user_id, status=parsed, limit=limit)

    def list_transactions_by_status(self, status: "str | TransactionStatus") -> List[Transaction]:
        return self.transactions.list_by_status(parse_status(status))

    def transaction_stats(self) -> TransactionStats:
        return self.transactions.stats()

    # -----------------
    # Lifecycle
    # -----------------
    def attach_payment_proof(
        self,
        transaction_id: str,
        image_url: str,
        payment_reference: Optional[str] = None,
    ) -> Transaction:
        """Record the proof image and move pending → review.

        Runs regardless of duplicate classification. In review only the
        image url (and reference) is recorded. A settled transaction keeps
        the receipt it was settled on; the late proof survives only as its
        hash record and the audit event.
        """
        transaction = self.get_transaction(transaction_id)
        receipt_kept = transaction.status.is_terminal
        if not receipt_kept and not self.transactions.attach_receipt(
            transaction_id, image_url, payment_reference
        ):
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        moved = False
        if transaction.status == TransactionStatus.PENDING:
            moved = self.transactions.update_status(
                transaction_id,
                TransactionStatus.IMAGE_RECEIVED_AND_BEING_REVIEWED,
                expected_status=TransactionStatus.PENDING,
            )

        self._audit(
            AuditEventType.PROOF_ATTACHED,
            transaction_id=transaction_id,
            actor=transaction.user_id,
            data={
                "image_url": image_url,
                "payment_reference": payment_reference,
                "moved_to_review": moved,
                "receipt_kept": receipt_kept,
            },
        )
        if moved:
            logger.info("Transaction %s moved to review after proof upload", transaction_id)
        elif receipt_kept:
            logger.info(
                "Transaction %s already %s; late proof not attached",
                transaction_id, transaction.status.value,
            )
        return self.get_transaction(transaction_id)

    def transition(
        self,
        transaction_id: str,
        new_status: "str | TransactionStatus",
        message: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult:
        """Apply a status request and notify the user when required.

        Order: persist, then notify, then return. A notification problem
        never undoes the status change.

        Raises:
            NotFoundError: Unknown transaction id
            InputError / InvalidTransitionError: Bad status or illegal pair
            StorageUnavailable: Store unreachable (nothing changed)
        """
        transaction = self.get_transaction(transaction_id)
        requested = parse_status(new_status)
        decision = decide_transition(transaction, requested, message)

        if not decision.apply:
            return self._unchanged(transaction, requested, actor)

        if not self.transactions.update_status(
            transaction_id,
            decision.new_status,
            expected_status=decision.previous_status,
            reason=decision.reason,
        ):
            # Another request moved the status first; report what is stored now.
            current = self.get_transaction(transaction_id)
            logger.info(
                "Transition %s -> %s for %s lost a race; status is now %s",
                decision.previous_status.value, requested.value,
                transaction_id, current.status.value,
            )
            return self._unchanged(current, requested, actor)

        logger.info(
            "Transaction %s: %s -> %s",
            transaction_id, decision.previous_status.value, decision.new_status.value,
        )
        self._audit(
            AuditEventType.STATUS_CHANGED,
            transaction_id=transaction_id,
            actor=actor,
            data={
                "previous_status": decision.previous_status,
                "new_status": decision.new_status,
                "reason": decision.reason,
            },
        )

        notified = False
        notification_id = None
        notification_error = None
        if decision.notify:
            notified, notification_id, notification_error = self._notify(
                transaction, decision.message, actor
            )

        return TransitionResult(
            transaction_id=transaction_id,
            success=True,
            notified=notified,
            changed=True,
            previous_status=decision.previous_status,
            new_status=decision.new_status,
            outcome=(
                TransitionOutcome.UPDATED_AND_NOTIFIED
                if notified
                else TransitionOutcome.UPDATED_NOT_NOTIFIED
            ),
            notification_error=notification_error,
            notification_id=notification_id,
        )

    # -----------------
    # Internal helpers
    # -----------------
    def _notify(self, transaction: Transaction, body: Optional[str], actor: Optional[str]):
        """Send once. Returns (notified, message_id, error).

        Runs after the status write, so nothing raised here may reach the
        caller; every failure becomes the error element of the tuple.
        """
        try:
            address = self.users.get_contact_address(transaction.user_id)
        except FxDeskError as exc:
            logger.warning(
                "Contact lookup for user %s failed; transaction %s not notified: %s",
                transaction.user_id, transaction.id, exc,
            )
            self._audit(
                AuditEventType.NOTIFICATION_FAILED,
                transaction_id=transaction.id,
                actor=actor,
                data={"error": str(exc), "stage": "contact_lookup"},
            )
            return False, None, str(exc)

        if not address:
            logger.warning(
                "No contact address for user %s; transaction %s not notified",
                transaction.user_id, transaction.id,
            )
            self._audit(
                AuditEventType.NOTIFICATION_SKIPPED,
                transaction_id=transaction.id,
                actor=actor,
                data={"reason": "no_contact_address", "user_id": transaction.user_id},
            )
            return False, None, None

        try:
            if self.dispatcher is None:
                raise NotificationFailure("No notification dispatcher configured")
            message_id = self.dispatcher.send_text(address, body or "")
        except NotificationFailure as exc:
            logger.warning("Notification for transaction %s failed: %s", transaction.id, exc)
            self._audit(
                AuditEventType.NOTIFICATION_FAILED,
                transaction_id=transaction.id,
                actor=actor,
                data={"error": str(exc)},
            )
            return False, None, str(exc)

        self._audit(
            AuditEventType.NOTIFICATION_SENT,
            transaction_id=transaction.id,
            actor=actor,
            data={"message_id": message_id, "message": body},
        )
        return True, message_id, None

    def _unchanged(
        self,
        transaction: Transaction,
        requested: TransactionStatus,
        actor: Optional[str],
    ) -> TransitionResult:
        logger.info(
            "Ignored %s request for transaction %s (status stays %s)",
            requested.value, transaction.id, transaction.status.value,
        )
        self._audit(
            AuditEventType.TRANSITION_IGNORED,
            transaction_id=transaction.id,
            actor=actor,
            data={"current_status": transaction.status, "requested_status": requested},
        )
        return TransitionResult(
            transaction_id=transaction.id,
            success=transaction.status == requested,
            notified=False,
            changed=False,
            previous_status=transaction.status,
            new_status=transaction.status,
            outcome=TransitionOutcome.UNCHANGED,
        )

    def _audit(self, event_type: AuditEventType, transaction_id=None, actor=None, data=None) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log(
                event_type=event_type,
                actor=actor,
                transaction_id=transaction_id,
                data=data,
            )
