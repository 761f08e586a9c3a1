import pytest
import requests

from fxdesk.services.notification_dispatcher import WhatsAppCloudDispatcher
from fxdesk.utils.helpers.exceptions import NotificationFailure


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def make_dispatcher(session, **kwargs):
    values = dict(access_token="token-abc", phone_number_id="1234567890", session=session)
    values.update(kwargs)
    return WhatsAppCloudDispatcher(**values)


def test_send_text_posts_cloud_api_payload():
    session = FakeSession(FakeResponse(payload={"messages": [{"id": "wamid.ABC"}]}))
    dispatcher = make_dispatcher(session, timeout=5)

    message_id = dispatcher.send_text("923001234567", "Hello!")

    assert message_id == "wamid.ABC"
    call = session.calls[0]
    assert call["url"] == "https://graph.facebook.com/v18.0/1234567890/messages"
    assert call["headers"]["Authorization"] == "Bearer token-abc"
    assert call["json"]["messaging_product"] == "whatsapp"
    assert call["json"]["to"] == "923001234567"
    assert call["json"]["text"]["body"] == "Hello!"
    assert call["timeout"] == 5


def test_missing_credentials_fail_without_request():
    session = FakeSession(FakeResponse(payload={}))
    dispatcher = make_dispatcher(session, access_token="")

    with pytest.raises(NotificationFailure):
        dispatcher.send_text("923001234567", "Hello!")
    assert session.calls == []


def test_api_error_becomes_notification_failure():
    session = FakeSession(FakeResponse(
        status_code=401,
        payload={"error": {"message": "Invalid OAuth access token"}},
    ))

    with pytest.raises(NotificationFailure, match="Invalid OAuth access token"):
        make_dispatcher(session).send_text("923001234567", "Hello!")


def test_transport_error_becomes_notification_failure():
    session = FakeSession(error=requests.ConnectionError("connection refused"))

    with pytest.raises(NotificationFailure):
        make_dispatcher(session).send_text("923001234567", "Hello!")


def test_unexpected_body_becomes_notification_failure():
    session = FakeSession(FakeResponse(payload={"contacts": []}))

    with pytest.raises(NotificationFailure):
        make_dispatcher(session).send_text("923001234567", "Hello!")
