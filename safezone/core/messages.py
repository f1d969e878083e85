"""Notice templates — subject and plain-text body for every notice kind."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from safezone.data.models import Location, NoticeKind

_FALLBACK_NAME = "Your contact"


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    subject: str
    body: str


def google_maps_url(location: Location) -> str:
    return f"https://www.google.com/maps?q={location.lat},{location.lon}"


def osm_url(location: Location) -> str:
    return (
        "https://www.openstreetmap.org/"
        f"?mlat={location.lat}&mlon={location.lon}"
    )


def format_time(when: datetime, tz_name: str = "UTC") -> str:
    return when.astimezone(ZoneInfo(tz_name)).strftime("%Y-%m-%d %H:%M %Z")


def sos_notice(
    name: str | None, location: Location, when: datetime, tz_name: str = "UTC",
) -> Notice:
    who = name or _FALLBACK_NAME
    return Notice(
        kind=NoticeKind.SOS,
        subject="🚨 EMERGENCY SOS ALERT - Immediate Action Required",
        body=(
            f"{who} has triggered an emergency alert!\n"
            f"Location: {google_maps_url(location)}\n"
            f"Time: {format_time(when, tz_name)}\n"
            "Please contact them immediately!"
        ),
    )


def resolved_notice(name: str | None, when: datetime, tz_name: str = "UTC") -> Notice:
    who = name or _FALLBACK_NAME
    return Notice(
        kind=NoticeKind.ALERT_RESOLVED,
        subject="SOS Alert Resolved",
        body=(
            f"{who}'s emergency alert has been resolved.\n"
            f"Time: {format_time(when, tz_name)}"
        ),
    )


def trip_started_notice(
    name: str | None,
    start: Location,
    end: Location,
    expected_end_time: datetime,
    tz_name: str = "UTC",
) -> Notice:
    who = name or _FALLBACK_NAME
    return Notice(
        kind=NoticeKind.TRIP_STARTED,
        subject="Trip Started - SafeZone Monitoring",
        body=(
            f"{who} has started a trip.\n"
            f"Start location: {osm_url(start)}\n"
            f"Destination: {osm_url(end)}\n"
            f"Expected arrival: {format_time(expected_end_time, tz_name)}"
        ),
    )


def trip_delayed_notice(
    name: str | None,
    current: Location | None,
    expected_end_time: datetime,
    tz_name: str = "UTC",
) -> Notice:
    who = name or _FALLBACK_NAME
    where = osm_url(current) if current else "not reported"
    return Notice(
        kind=NoticeKind.TRIP_DELAYED,
        subject="Trip Delay Alert - SafeZone",
        body=(
            f"{who}'s trip has been delayed.\n"
            f"Current location: {where}\n"
            f"Expected arrival was: {format_time(expected_end_time, tz_name)}"
        ),
    )


def trip_completed_notice(
    name: str | None, arrived_at: datetime, tz_name: str = "UTC",
) -> Notice:
    who = name or _FALLBACK_NAME
    return Notice(
        kind=NoticeKind.TRIP_COMPLETED,
        subject="Trip Completed - SafeZone",
        body=(
            f"{who} has completed their trip safely.\n"
            f"Arrival time: {format_time(arrived_at, tz_name)}"
        ),
    )
