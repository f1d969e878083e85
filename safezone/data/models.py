"""
SafeZone — Data Models.

Alerts and trips persist in SQLite so that a distress record survives a
crash in the middle of notifying contacts. Contacts belong to the user's
profile and are only ever read by the core.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from safezone.core.errors import InvalidInput


class AlertStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class TripStatus(str, Enum):
    ONGOING = "ongoing"
    DELAYED = "delayed"
    COMPLETED = "completed"
    ALERTED = "alerted"  # reserved for an SOS raised mid-trip
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TripStatus.COMPLETED, TripStatus.CANCELLED)


class TripEventKind(str, Enum):
    DELAY = "delay"
    DEVIATION = "deviation"
    SOS = "sos"


class NotificationOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class NoticeKind(str, Enum):
    """Which message a fan-out delivered."""

    SOS = "sos"
    ALERT_RESOLVED = "alert_resolved"
    TRIP_STARTED = "trip_started"
    TRIP_DELAYED = "trip_delayed"
    TRIP_COMPLETED = "trip_completed"


@dataclass(frozen=True)
class Location:
    """A validated WGS84 coordinate."""

    lat: float
    lon: float

    @classmethod
    def parse(cls, lat: object, lon: object) -> Location:
        """Build a Location from loosely typed input.

        Raises InvalidInput for missing, non-numeric, non-finite or
        out-of-range coordinates.
        """
        if lat is None or lon is None or isinstance(lat, bool) or isinstance(lon, bool):
            raise InvalidInput("Location coordinates are required")
        try:
            lat_f = float(lat)
            lon_f = float(lon)
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"Invalid coordinates: {lat!r}, {lon!r}") from exc

        if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
            raise InvalidInput("Coordinates must be finite numbers")
        if not -90.0 <= lat_f <= 90.0:
            raise InvalidInput(f"Latitude out of range: {lat_f}")
        if not -180.0 <= lon_f <= 180.0:
            raise InvalidInput(f"Longitude out of range: {lon_f}")
        return cls(lat=lat_f, lon=lon_f)

    @classmethod
    def coerce(cls, value: object) -> Location:
        """Accept a Location, a {"lat", "lon"} mapping or a (lat, lon) pair."""
        if isinstance(value, Location):
            return cls.parse(value.lat, value.lon)
        if isinstance(value, dict):
            return cls.parse(value.get("lat"), value.get("lon"))
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return cls.parse(value[0], value[1])
        raise InvalidInput("Location coordinates are required")

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lon": self.lon}


@dataclass
class Contact:
    """An emergency contact on the user's profile."""

    id: int
    name: str
    phone: str = ""
    email: str = ""
    user_id: int | None = None

    def address_for(self, channel: str) -> str:
        """Return the address used on *channel*, or "" if none is on file."""
        if channel == "email":
            return self.email
        if channel == "sms":
            return self.phone
        return ""


@dataclass(frozen=True)
class NotificationRecord:
    """Outcome of one notification attempt to one contact. Never mutated."""

    contact_id: int
    channel: str
    attempted_at: datetime
    outcome: NotificationOutcome
    failure_reason: str | None = None
    message_id: str | None = None
    notice: NoticeKind | None = None

    @property
    def sent(self) -> bool:
        return self.outcome is NotificationOutcome.SENT

    def to_dict(self) -> dict:
        return {
            "contact_id": self.contact_id,
            "channel": self.channel,
            "attempted_at": self.attempted_at.isoformat(),
            "outcome": self.outcome.value,
            "failure_reason": self.failure_reason,
            "message_id": self.message_id,
            "notice": self.notice.value if self.notice else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> NotificationRecord:
        notice = data.get("notice")
        return cls(
            contact_id=data["contact_id"],
            channel=data["channel"],
            attempted_at=datetime.fromisoformat(data["attempted_at"]),
            outcome=NotificationOutcome(data["outcome"]),
            failure_reason=data.get("failure_reason"),
            message_id=data.get("message_id"),
            notice=NoticeKind(notice) if notice else None,
        )


@dataclass
class Alert:
    """One distress event raised by a user."""

    id: int | None
    user_id: int
    location: Location
    created_at: datetime
    status: AlertStatus = AlertStatus.ACTIVE
    resolved_at: datetime | None = None
    notifications: list[NotificationRecord] = field(default_factory=list)
    resolution_notifications: list[NotificationRecord] = field(default_factory=list)


@dataclass(frozen=True)
class TripEvent:
    """An entry in a trip's append-only event log."""

    kind: TripEventKind
    timestamp: datetime
    message: str

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TripEvent:
        return cls(
            kind=TripEventKind(data["kind"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            message=data.get("message", ""),
        )


@dataclass(frozen=True)
class CurrentLocation:
    """Last reported position of a trip and when it was received."""

    location: Location
    updated_at: datetime


@dataclass
class Trip:
    """One monitored journey."""

    id: int | None
    user_id: int
    start_location: Location
    end_location: Location
    start_time: datetime
    expected_end_time: datetime
    status: TripStatus = TripStatus.ONGOING
    current_location: CurrentLocation | None = None
    actual_end_time: datetime | None = None
    events: list[TripEvent] = field(default_factory=list)
    notifications: list[NotificationRecord] = field(default_factory=list)

    def is_overdue(self, now: datetime) -> bool:
        return now > self.expected_end_time
