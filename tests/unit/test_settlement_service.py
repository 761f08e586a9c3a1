import pytest

from fxdesk.models.audit import AuditEventType
from fxdesk.models.transaction import TransactionStatus, TransitionOutcome
from fxdesk.services.settlement import SettlementService
from fxdesk.utils.helpers.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    StorageUnavailable,
)

REVIEW = TransactionStatus.IMAGE_RECEIVED_AND_BEING_REVIEWED
CONFIRMED = TransactionStatus.CONFIRMED_AND_MONEY_SENT_TO_USER


def test_create_transaction_is_pending(settlement_service, pending_transaction):
    stored = settlement_service.get_transaction(pending_transaction.id)

    assert stored.status == TransactionStatus.PENDING
    assert stored.currency_from == "USD"
    assert stored.short_id == pending_transaction.id[-8:]


def test_get_unknown_transaction(settlement_service):
    with pytest.raises(NotFoundError):
        settlement_service.get_transaction("missing")
    with pytest.raises(NotFoundError):
        settlement_service.transition("missing", "confirmed")


def test_confirm_persists_and_notifies(settlement_service, pending_transaction, dispatcher):
    result = settlement_service.transition(pending_transaction.id, CONFIRMED)

    assert result.success and result.notified and result.changed
    assert result.outcome == TransitionOutcome.UPDATED_AND_NOTIFIED
    assert result.notification_id == "wamid.test-1"
    assert settlement_service.get_transaction(pending_transaction.id).status == CONFIRMED

    destination, body = dispatcher.sent[0]
    assert destination == "923001234567"
    assert pending_transaction.short_id in body
    assert "500 USD" in body


def test_confirm_then_cancel_is_a_no_op(settlement_service, pending_transaction, dispatcher):
    settlement_service.transition(pending_transaction.id, CONFIRMED)
    result = settlement_service.transition(pending_transaction.id, TransactionStatus.CANCELLED)

    assert result.changed is False
    assert result.success is False
    assert result.notified is False
    assert result.outcome == TransitionOutcome.UNCHANGED
    assert result.new_status == CONFIRMED
    assert settlement_service.get_transaction(pending_transaction.id).status == CONFIRMED
    assert len(dispatcher.sent) == 1


def test_repeating_current_status_is_idempotent(settlement_service, pending_transaction, dispatcher):
    settlement_service.transition(pending_transaction.id, CONFIRMED)
    result = settlement_service.transition(pending_transaction.id, "confirmed")

    assert result.success is True
    assert result.changed is False
    assert len(dispatcher.sent) == 1


def test_cancel_without_message_sends_template(settlement_service, pending_transaction, dispatcher):
    settlement_service.transition(pending_transaction.id, "cancelled")

    _, body = dispatcher.sent[0]
    assert body.startswith("❌ Your transaction has been cancelled.")
    assert f"Transaction ID: {pending_transaction.id[-8:]}" in body
    assert "Amount: 500 USD" in body


def test_unknown_contact_still_commits(settlement_service, dispatcher):
    transaction = settlement_service.create_transaction(
        user_id="stranger",
        conversation_id="conv-2",
        currency_from="EUR",
        currency_to="PKR",
        amount_from=100.0,
        amount_to=30000.0,
        negotiated_rate=300.0,
    )

    result = settlement_service.transition(transaction.id, CONFIRMED)

    assert result.success is True
    assert result.notified is False
    assert result.outcome == TransitionOutcome.UPDATED_NOT_NOTIFIED
    assert dispatcher.sent == []
    assert settlement_service.get_transaction(transaction.id).status == CONFIRMED


def test_dispatcher_failure_is_reported_not_rolled_back(
    transaction_repository, user_repository, audit_logger, audit_repository, known_user,
    failing_dispatcher,
):
    service = SettlementService(
        transactions=transaction_repository,
        users=user_repository,
        dispatcher=failing_dispatcher,
        audit_logger=audit_logger,
    )
    transaction = service.create_transaction(
        user_id=known_user.user_id,
        conversation_id="conv-3",
        currency_from="USD",
        currency_to="PKR",
        amount_from=250.5,
        amount_to=69764.25,
        negotiated_rate=278.5,
    )

    result = service.transition(transaction.id, "cancelled")

    assert result.success is True
    assert result.notified is False
    assert result.notification_error == "HTTP 401 invalid token"
    assert service.get_transaction(transaction.id).status == TransactionStatus.CANCELLED
    events = audit_repository.get_events_by_type(AuditEventType.NOTIFICATION_FAILED)
    assert len(events) == 1


def test_illegal_transition_changes_nothing(settlement_service, pending_transaction):
    settlement_service.transition(pending_transaction.id, REVIEW)

    with pytest.raises(InvalidTransitionError):
        settlement_service.transition(pending_transaction.id, "pending")
    assert settlement_service.get_transaction(pending_transaction.id).status == REVIEW


def test_lost_race_is_reported_as_no_op(settlement_service, pending_transaction, monkeypatch):
    original_update = settlement_service.transactions.update_status

    def racing_update(transaction_id, new_status, expected_status, reason=None):
        # Another request confirms the transaction first.
        original_update(transaction_id, CONFIRMED, expected_status)
        return original_update(transaction_id, new_status, expected_status, reason=reason)

    monkeypatch.setattr(settlement_service.transactions, "update_status", racing_update)

    result = settlement_service.transition(pending_transaction.id, TransactionStatus.CANCELLED)

    assert result.changed is False
    assert result.new_status == CONFIRMED
    assert result.outcome == TransitionOutcome.UNCHANGED


def test_attach_payment_proof_moves_pending_to_review(settlement_service, pending_transaction):
    updated = settlement_service.attach_payment_proof(
        pending_transaction.id, "https://cdn.example/proof.jpg", payment_reference="REF-42"
    )

    assert updated.status == REVIEW
    assert updated.receipt_image_url == "https://cdn.example/proof.jpg"
    assert updated.payment_reference == "REF-42"


def test_attach_payment_proof_in_review_only_records_url(settlement_service, pending_transaction):
    settlement_service.attach_payment_proof(pending_transaction.id, "https://cdn.example/1.jpg")
    updated = settlement_service.attach_payment_proof(pending_transaction.id, "https://cdn.example/2.jpg")

    assert updated.status == REVIEW
    assert updated.receipt_image_url == "https://cdn.example/2.jpg"


def test_attach_payment_proof_keeps_settled_receipt(
    settlement_service, pending_transaction, audit_repository
):
    settlement_service.attach_payment_proof(
        pending_transaction.id, "https://cdn.example/1.jpg", payment_reference="REF-1"
    )
    settlement_service.transition(pending_transaction.id, CONFIRMED)

    updated = settlement_service.attach_payment_proof(
        pending_transaction.id, "https://cdn.example/late.jpg", payment_reference="REF-2"
    )

    assert updated.status == CONFIRMED
    assert updated.receipt_image_url == "https://cdn.example/1.jpg"
    assert updated.payment_reference == "REF-1"
    events = audit_repository.get_events_by_type(AuditEventType.PROOF_ATTACHED)
    assert [e.data["receipt_kept"] for e in events].count(True) == 1


def test_listing_and_stats(settlement_service, pending_transaction):
    second = settlement_service.create_transaction(
        user_id=pending_transaction.user_id,
        conversation_id="conv-1",
        currency_from="USD",
        currency_to="PKR",
        amount_from=20.0,
        amount_to=5570.0,
        negotiated_rate=278.5,
    )
    settlement_service.transition(second.id, "cancelled")

    assert len(settlement_service.list_user_transactions("user-1")) == 2
    assert [t.id for t in settlement_service.list_user_transactions("user-1", status="cancelled")] == [second.id]
    assert [t.id for t in settlement_service.list_transactions_by_status("pending")] == [pending_transaction.id]

    stats = settlement_service.transaction_stats()
    assert stats.total == 2
    assert stats.pending == 1
    assert stats.cancelled == 1


def test_contact_lookup_failure_after_commit_is_reported(
    settlement_service, pending_transaction, dispatcher, audit_repository, monkeypatch
):
    def offline(user_id):
        raise StorageUnavailable("users table offline")

    monkeypatch.setattr(settlement_service.users, "get_contact_address", offline)

    result = settlement_service.transition(pending_transaction.id, "confirmed")

    assert result.success is True
    assert result.changed is True
    assert result.notified is False
    assert result.outcome == TransitionOutcome.UPDATED_NOT_NOTIFIED
    assert result.notification_error == "users table offline"
    assert settlement_service.get_transaction(pending_transaction.id).status == CONFIRMED
    assert dispatcher.sent == []
    assert audit_repository.count_events(AuditEventType.NOTIFICATION_FAILED) == 1


def test_cancellation_reason_is_stored(settlement_service, pending_transaction, dispatcher):
    settlement_service.transition(
        pending_transaction.id, "cancelled", message="Rate expired before payment arrived."
    )

    stored = settlement_service.get_transaction(pending_transaction.id)
    assert stored.status == TransactionStatus.CANCELLED
    assert stored.status_reason == "Rate expired before payment arrived."
    assert dispatcher.sent[0][1] == "Rate expired before payment arrived."


def test_failure_reason_is_stored_without_notifying(settlement_service, pending_transaction, dispatcher):
    settlement_service.transition(pending_transaction.id, REVIEW)
    result = settlement_service.transition(
        pending_transaction.id, TransactionStatus.FAILED, message="Bank transfer bounced"
    )

    assert result.notified is False
    stored = settlement_service.get_transaction(pending_transaction.id)
    assert stored.status == TransactionStatus.FAILED
    assert stored.status_reason == "Bank transfer bounced"
    assert dispatcher.sent == []


def test_ignored_request_does_not_overwrite_reason(settlement_service, pending_transaction):
    settlement_service.transition(pending_transaction.id, "failed", message="Bank transfer bounced")
    settlement_service.transition(pending_transaction.id, "cancelled", message="Too late")

    stored = settlement_service.get_transaction(pending_transaction.id)
    assert stored.status == TransactionStatus.FAILED
    assert stored.status_reason == "Bank transfer bounced"


def test_confirmation_message_is_not_a_status_reason(settlement_service, pending_transaction):
    settlement_service.transition(pending_transaction.id, CONFIRMED, message="Sent via JazzCash")

    assert settlement_service.get_transaction(pending_transaction.id).status_reason is None
