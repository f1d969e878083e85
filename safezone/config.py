"""
SafeZone — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from safezone/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_CHANNELS = ("email", "sms")


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (serving layer)
    TELEGRAM_BOT_TOKEN: str

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # SQLite
    DATABASE_PATH: str = "data/safezone.db"

    # Times in notices are rendered in this zone
    TIMEZONE: str = "UTC"

    # Contact notification channel: "email" | "sms"
    NOTIFY_CHANNEL: str = "email"

    # SMTP (only needed when NOTIFY_CHANNEL=email)
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    EMAIL_FROM_NAME: str = "SafeZone Emergency Alert"

    # HTTP SMS provider (only needed when NOTIFY_CHANNEL=sms)
    SMS_WEBHOOK_URL: str = ""
    SMS_WEBHOOK_TOKEN: str = ""

    # Fan-out
    FANOUT_MAX_IN_FLIGHT: int = 10
    NOTIFY_TIMEOUT_SECONDS: float = 15.0

    # Overdue trip sweep
    OVERDUE_SWEEP_MINUTES: int = 5

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("NOTIFY_CHANNEL", mode="before")
    @classmethod
    def parse_channel(cls, v: str) -> str:
        channel = (v or "email").strip().lower()
        if channel not in _CHANNELS:
            raise ValueError(f"NOTIFY_CHANNEL must be one of {_CHANNELS}, got {v!r}")
        return channel

    @field_validator("FANOUT_MAX_IN_FLIGHT", "OVERDUE_SWEEP_MINUTES", mode="before")
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value < 1:
            raise ValueError("must be >= 1")
        return value


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/safezone.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        NOTIFY_CHANNEL=os.getenv("NOTIFY_CHANNEL", "email"),
        SMTP_HOST=os.getenv("SMTP_HOST", "smtp.gmail.com"),
        SMTP_PORT=os.getenv("SMTP_PORT", "587"),
        SMTP_USERNAME=os.getenv("SMTP_USERNAME", ""),
        SMTP_PASSWORD=os.getenv("SMTP_PASSWORD", ""),
        EMAIL_FROM_NAME=os.getenv("EMAIL_FROM_NAME", "SafeZone Emergency Alert"),
        SMS_WEBHOOK_URL=os.getenv("SMS_WEBHOOK_URL", ""),
        SMS_WEBHOOK_TOKEN=os.getenv("SMS_WEBHOOK_TOKEN", ""),
        FANOUT_MAX_IN_FLIGHT=os.getenv("FANOUT_MAX_IN_FLIGHT", "10"),
        NOTIFY_TIMEOUT_SECONDS=os.getenv("NOTIFY_TIMEOUT_SECONDS", "15"),
        OVERDUE_SWEEP_MINUTES=os.getenv("OVERDUE_SWEEP_MINUTES", "5"),
    )


# Singleton — imported by all other modules as:
#   from safezone.config import settings
settings = _load_settings()
