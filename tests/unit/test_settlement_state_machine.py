import pytest

from fxdesk.models.transaction import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    Transaction,
    TransactionStatus,
    parse_status,
)
from fxdesk.services.settlement import decide_transition, format_amount, render_notification
from fxdesk.utils.helpers.exceptions import InputError, InvalidTransitionError

REVIEW = TransactionStatus.IMAGE_RECEIVED_AND_BEING_REVIEWED
CONFIRMED = TransactionStatus.CONFIRMED_AND_MONEY_SENT_TO_USER


def make_transaction(status=TransactionStatus.PENDING, **kwargs) -> Transaction:
    values = dict(
        id="0123456789abcdef0123456789abcdef",
        user_id="user-1",
        conversation_id="conv-1",
        currency_from="USD",
        currency_to="PKR",
        amount_from=500.0,
        amount_to=139250.0,
        negotiated_rate=278.5,
        status=status,
    )
    values.update(kwargs)
    return Transaction(**values)


def test_terminal_states_have_no_outgoing_transitions():
    for status in TERMINAL_STATUSES:
        assert TRANSITIONS[status] == frozenset()
        assert status.is_terminal


@pytest.mark.parametrize("raw, expected", [
    ("pending", TransactionStatus.PENDING),
    ("  CANCELLED ", TransactionStatus.CANCELLED),
    ("confirmed", CONFIRMED),
    ("image_received", REVIEW),
])
def test_parse_status_accepts_values_and_aliases(raw, expected):
    assert parse_status(raw) == expected


def test_parse_status_rejects_unknown_values():
    with pytest.raises(InputError):
        parse_status("paid")


def test_confirm_from_review_notifies_with_template():
    decision = decide_transition(make_transaction(REVIEW), CONFIRMED)

    assert decision.apply
    assert decision.notify
    assert decision.previous_status == REVIEW
    assert decision.new_status == CONFIRMED
    assert "Transaction ID: 89abcdef" in decision.message
    assert "Amount: 500 USD" in decision.message


def test_cancel_without_message_uses_template():
    decision = decide_transition(make_transaction(), TransactionStatus.CANCELLED)

    assert decision.message.startswith("❌ Your transaction has been cancelled.")
    assert decision.message.endswith("Transaction ID: 89abcdef\nAmount: 500 USD")


def test_explicit_message_is_used_verbatim():
    decision = decide_transition(
        make_transaction(REVIEW), "cancelled", message="Your bank rejected the transfer."
    )
    assert decision.message == "Your bank rejected the transfer."
    assert decision.reason == "Your bank rejected the transfer."


def test_reason_kept_only_for_cancel_and_fail():
    failed = decide_transition(make_transaction(), "failed", message="Transfer bounced")
    confirmed = decide_transition(make_transaction(), "confirmed", message="Paid out")

    assert failed.reason == "Transfer bounced"
    assert failed.message is None
    assert confirmed.reason is None
    assert confirmed.message == "Paid out"


@pytest.mark.parametrize("target", [REVIEW, TransactionStatus.FAILED])
def test_silent_transitions_do_not_notify(target):
    decision = decide_transition(make_transaction(), target)
    assert decision.apply
    assert not decision.notify
    assert decision.message is None


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
@pytest.mark.parametrize("requested", list(TransactionStatus))
def test_requests_out_of_terminal_states_are_no_ops(terminal, requested):
    decision = decide_transition(make_transaction(terminal), requested)

    assert not decision.apply
    assert not decision.notify
    assert decision.new_status == terminal


def test_same_status_request_is_no_op():
    decision = decide_transition(make_transaction(REVIEW), REVIEW)
    assert not decision.apply
    assert decision.new_status == REVIEW


def test_review_back_to_pending_is_rejected():
    with pytest.raises(InvalidTransitionError) as excinfo:
        decide_transition(make_transaction(REVIEW), TransactionStatus.PENDING)
    assert isinstance(excinfo.value, InputError)
    assert excinfo.value.previous_status == REVIEW


def test_pending_can_be_confirmed_directly():
    decision = decide_transition(make_transaction(), CONFIRMED)
    assert decision.apply
    assert decision.notify


def test_render_notification_for_silent_status():
    assert render_notification(make_transaction(), TransactionStatus.FAILED) is None


@pytest.mark.parametrize("value, expected", [(500.0, "500"), (512.5, "512.5"), (1, "1")])
def test_format_amount(value, expected):
    assert format_amount(value) == expected
