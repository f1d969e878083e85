"""SMTP email adapter — implements NotificationGateway.

smtplib is blocking, so each send runs in a worker thread. A fresh
connection is opened per message; the fan-out bounds how many run at once.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

from safezone.ports.notification_port import NotificationError

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Email implementation of NotificationGateway."""

    channel = "email"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_name: str = "SafeZone Emergency Alert",
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from_name = from_name
        self._timeout = timeout

    async def send(self, address: str, subject: str, body: str) -> str:
        return await asyncio.to_thread(self._send_sync, address, subject, body)

    def _build_message(self, address: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self._from_name, self._username))
        msg["To"] = address
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain=self._host)
        msg["X-Priority"] = "1"
        msg.set_content(body)
        return msg

    def _send_sync(self, address: str, subject: str, body: str) -> str:
        msg = self._build_message(address, subject, body)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
                smtp.starttls()
                if self._username:
                    smtp.login(self._username, self._password)
                smtp.send_message(msg)
        except smtplib.SMTPRecipientsRefused as exc:
            raise NotificationError(f"recipient refused: {address}") from exc
        except smtplib.SMTPAuthenticationError as exc:
            raise NotificationError("smtp authentication failed") from exc
        except smtplib.SMTPResponseException as exc:
            raise NotificationError(
                f"smtp {exc.smtp_code}", transient=400 <= exc.smtp_code < 500,
            ) from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"smtp unavailable: {exc}", transient=True) from exc

        logger.debug("Email sent to %s: %s", address, msg["Message-ID"])
        return msg["Message-ID"]
