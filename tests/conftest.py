"""Shared test fixtures and configuration.

Sets up fake environment variables so safezone.config doesn't sys.exit(),
and provides temp SQLite stores, a scripted gateway and a settable clock.
"""

import os

# Patch env vars BEFORE any safezone imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("NOTIFY_CHANNEL", "email")
os.environ.setdefault("TIMEZONE", "UTC")

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeGateway:
    """Scripted NotificationGateway.

    ``failures`` maps an address to the exception its send raises;
    addresses in ``hang`` never answer (to exercise timeouts).
    """

    channel = "email"

    def __init__(self, failures=None, hang=(), delay=0.0, on_send=None):
        self.failures = dict(failures or {})
        self.hang = set(hang)
        self.delay = delay
        self.on_send = on_send
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, address, subject, body):
        self.calls.append((address, subject, body))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_send is not None:
                self.on_send(address)
            if self.delay:
                await asyncio.sleep(self.delay)
            if address in self.hang:
                await asyncio.sleep(3600)
            if address in self.failures:
                raise self.failures[address]
            return f"msg-{len(self.calls)}"
        finally:
            self.in_flight -= 1

    def subjects(self):
        return [subject for _, subject, _ in self.calls]


class Clock:
    """A settable clock: call it to read, ``advance`` to move forward."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def contact_db(tmp_path):
    """Return a ContactDB instance backed by a temp file."""
    from safezone.data.db import ContactDB
    return ContactDB(db_path=str(tmp_path / "test_contacts.db"))


@pytest.fixture
def alert_db(tmp_path):
    """Return an AlertDB instance backed by a temp file."""
    from safezone.data.db import AlertDB
    return AlertDB(db_path=str(tmp_path / "test_alerts.db"))


@pytest.fixture
def trip_db(tmp_path):
    """Return a TripDB instance backed by a temp file."""
    from safezone.data.db import TripDB
    return TripDB(db_path=str(tmp_path / "test_trips.db"))
