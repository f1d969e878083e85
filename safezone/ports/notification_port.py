"""Notification ports — abstract interfaces for outbound messages.

Core modules depend on these protocols, never on a specific provider.
NotificationGateway delivers to emergency contacts; NotificationPort
talks back to the SafeZone user themselves.
"""

from __future__ import annotations

from typing import Protocol


class NotificationError(Exception):
    """Raised when a gateway fails to deliver one notification.

    ``transient`` separates outages (worth watching) from permanent
    rejections such as a bad address. It is only used for logging; the
    core never retries.
    """

    def __init__(self, reason: str, transient: bool = False) -> None:
        super().__init__(reason)
        self.reason = reason
        self.transient = transient


class NotificationGateway(Protocol):
    """Sends one notification to one address."""

    channel: str

    async def send(self, address: str, subject: str, body: str) -> str: ...


class NotificationPort(Protocol):
    """Sends a direct message to a SafeZone user."""

    async def send_message(self, user_id: int, text: str) -> None: ...
