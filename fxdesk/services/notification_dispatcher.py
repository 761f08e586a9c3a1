"""Outbound user notifications over WhatsApp.

USAGE:
    dispatcher = WhatsAppCloudDispatcher(
        access_token="EAAxxxxxxx",
        phone_number_id="1234567890",
    )
    message_id = dispatcher.send_text("923001234567", "Hello!")

Every failure (missing credentials, transport error, non-2xx, unexpected
body) surfaces as NotificationFailure so the settlement engine can report it
without rolling back the status change that triggered it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests

from fxdesk.utils.helpers.exceptions import NotificationFailure

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Interface for sending a text message to a user address."""

    @abstractmethod
    def send_text(self, destination: str, body: str) -> str:
        """Send `body` to `destination`. Returns a provider message id.

        Raises:
            NotificationFailure: If the message was not accepted
        """
        ...


class WhatsAppCloudDispatcher(NotificationDispatcher):
    """Meta WhatsApp Cloud API sender.

    POST {api_url}/{api_version}/{phone_number_id}/messages
    Headers: Authorization: Bearer {access_token}
    Body: {"messaging_product": "whatsapp", "to": ..., "type": "text",
           "text": {"body": ...}}
    """

    DEFAULT_API_URL = "https://graph.facebook.com"
    DEFAULT_API_VERSION = "v18.0"

    def __init__(
        self,
        access_token: str = "",
        phone_number_id: str = "",
        api_url: str = "",
        api_version: str = "",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._api_url = (api_url or self.DEFAULT_API_URL).rstrip("/")
        self._api_version = api_version or self.DEFAULT_API_VERSION
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self._access_token and self._phone_number_id)

    @property
    def messages_url(self) -> str:
        return f"{self._api_url}/{self._api_version}/{self._phone_number_id}/messages"

    def send_text(self, destination: str, body: str) -> str:
        if not self.is_configured:
            raise NotificationFailure(
                "WhatsApp dispatcher is not configured: access token and phone number id are required"
            )

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": destination,
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

        try:
            response = self._session.post(
                self.messages_url, json=payload, headers=headers, timeout=self._timeout
            )
        except requests.RequestException as exc:
            logger.warning("WhatsApp send to %s failed: %s", destination, exc)
            raise NotificationFailure(f"WhatsApp request failed: {exc}") from exc

        if not response.ok:
            detail = _error_detail(response)
            logger.warning(
                "WhatsApp API rejected message to %s: HTTP %s %s",
                destination, response.status_code, detail,
            )
            raise NotificationFailure(f"WhatsApp API error {response.status_code}: {detail}")

        try:
            message_id = response.json()["messages"][0]["id"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise NotificationFailure("WhatsApp API returned an unexpected response body") from exc

        logger.info("WhatsApp message %s sent to %s", message_id, destination)
        return message_id


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return response.text[:200]
