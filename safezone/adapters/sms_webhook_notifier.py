"""HTTP SMS adapter — implements NotificationGateway.

Posts ``{"to", "message"}`` JSON to a provider webhook. 5xx and 429
responses and transport errors count as transient; other 4xx as permanent.
"""

from __future__ import annotations

import logging

import httpx

from safezone.ports.notification_port import NotificationError

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10


class SmsWebhookNotifier:
    """SMS-over-HTTP implementation of NotificationGateway."""

    channel = "sms"

    def __init__(self, url: str, token: str = "", timeout: float = _TIMEOUT_SECONDS) -> None:
        self._url = url
        self._token = token
        self._timeout = timeout

    async def send(self, address: str, subject: str, body: str) -> str:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self._url,
                    json={"to": address, "message": f"{subject}\n{body}"},
                    headers=headers,
                )
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            raise NotificationError(
                f"sms provider returned {code}", transient=code >= 500 or code == 429,
            ) from exc
        except httpx.HTTPError as exc:
            raise NotificationError(f"sms provider unreachable: {exc}", transient=True) from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        message_id = str(data.get("id", "")) if isinstance(data, dict) else ""
        logger.debug("SMS sent to %s: %s", address, message_id or "(no id)")
        return message_id
