"""Tests for safezone.adapters.email_notifier — SMTP gateway."""

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from safezone.adapters.email_notifier import EmailNotifier
from safezone.ports.notification_port import NotificationError


def _notifier(username="alerts@example.com"):
    return EmailNotifier(
        host="smtp.example.com", port=587,
        username=username, password="secret",
        from_name="SafeZone Emergency Alert",
    )


def _mock_smtp():
    smtp = MagicMock()
    smtp_cls = MagicMock()
    smtp_cls.return_value.__enter__.return_value = smtp
    return smtp_cls, smtp


class TestEmailNotifierSend:
    @pytest.mark.asyncio
    async def test_sends_message_and_returns_id(self):
        smtp_cls, smtp = _mock_smtp()

        with patch("safezone.adapters.email_notifier.smtplib.SMTP", smtp_cls):
            message_id = await _notifier().send("dana@example.com", "SOS", "help")

        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=30.0)
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("alerts@example.com", "secret")
        sent = smtp.send_message.call_args[0][0]
        assert sent["To"] == "dana@example.com"
        assert sent["Subject"] == "SOS"
        assert "SafeZone Emergency Alert" in sent["From"]
        assert sent.get_content().strip() == "help"
        assert message_id == sent["Message-ID"]

    @pytest.mark.asyncio
    async def test_skips_login_without_username(self):
        smtp_cls, smtp = _mock_smtp()
        with patch("safezone.adapters.email_notifier.smtplib.SMTP", smtp_cls):
            await _notifier(username="").send("dana@example.com", "SOS", "help")
        smtp.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_refused_recipient_is_permanent(self):
        smtp_cls, smtp = _mock_smtp()
        smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused(
            {"dana@example.com": (550, b"no such user")}
        )
        with patch("safezone.adapters.email_notifier.smtplib.SMTP", smtp_cls):
            with pytest.raises(NotificationError) as exc_info:
                await _notifier().send("dana@example.com", "SOS", "help")
        assert exc_info.value.transient is False
        assert "dana@example.com" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_auth_failure_is_permanent(self):
        smtp_cls, smtp = _mock_smtp()
        smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        with patch("safezone.adapters.email_notifier.smtplib.SMTP", smtp_cls):
            with pytest.raises(NotificationError) as exc_info:
                await _notifier().send("dana@example.com", "SOS", "help")
        assert exc_info.value.transient is False

    @pytest.mark.asyncio
    async def test_4xx_response_is_transient(self):
        smtp_cls, smtp = _mock_smtp()
        smtp.send_message.side_effect = smtplib.SMTPResponseException(451, b"try later")
        with patch("safezone.adapters.email_notifier.smtplib.SMTP", smtp_cls):
            with pytest.raises(NotificationError) as exc_info:
                await _notifier().send("dana@example.com", "SOS", "help")
        assert exc_info.value.transient is True
        assert exc_info.value.reason == "smtp 451"

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        smtp_cls = MagicMock(side_effect=ConnectionRefusedError("refused"))
        with patch("safezone.adapters.email_notifier.smtplib.SMTP", smtp_cls):
            with pytest.raises(NotificationError) as exc_info:
                await _notifier().send("dana@example.com", "SOS", "help")
        assert exc_info.value.transient is True

    def test_channel(self):
        assert _notifier().channel == "email"
