"""Gateway factory — creates the contact notification adapter from config."""

from __future__ import annotations

from safezone.config import settings
from safezone.ports.notification_port import NotificationGateway


def create_gateway() -> NotificationGateway:
    """Return the gateway matching the NOTIFY_CHANNEL setting."""
    channel = settings.NOTIFY_CHANNEL.lower()

    if channel == "email":
        from safezone.adapters.email_notifier import EmailNotifier

        if not settings.SMTP_USERNAME:
            raise ValueError("NOTIFY_CHANNEL=email requires SMTP_USERNAME")
        return EmailNotifier(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            from_name=settings.EMAIL_FROM_NAME,
        )

    if channel == "sms":
        from safezone.adapters.sms_webhook_notifier import SmsWebhookNotifier

        if not settings.SMS_WEBHOOK_URL:
            raise ValueError("NOTIFY_CHANNEL=sms requires SMS_WEBHOOK_URL")
        return SmsWebhookNotifier(
            url=settings.SMS_WEBHOOK_URL, token=settings.SMS_WEBHOOK_TOKEN,
        )

    raise ValueError(f"Unknown NOTIFY_CHANNEL: {channel!r}")
