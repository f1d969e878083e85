"""
SafeZone — Trip state machine.

Pure transition functions: each takes the current Trip and the event
time and returns a new Trip plus the notice (if any) to fan out. Nothing
here touches storage or the network; TripMonitor persists the new state
first and only then sends the notice.

    ongoing ──▶ delayed ──▶ completed
       │           │
       ├───────────┴──────▶ cancelled
       └──────────────────▶ completed

``alerted`` is a reserved slot for an SOS raised mid-trip. It is treated
as a live, non-terminal state but never entered from here.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone

from safezone.core.errors import InvalidInput, InvalidState
from safezone.data.models import (
    CurrentLocation,
    Location,
    NoticeKind,
    Trip,
    TripEvent,
    TripEventKind,
    TripStatus,
)

DELAY_MESSAGE = "Trip has exceeded expected duration"

_LIVE_STATUSES = (TripStatus.ONGOING, TripStatus.DELAYED, TripStatus.ALERTED)


@dataclass(frozen=True)
class Transition:
    trip: Trip
    notice: NoticeKind | None = None


def parse_expected_end_time(value: object) -> datetime:
    """Normalize an expected-end-time input to an aware UTC datetime."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            raise InvalidInput(f"Invalid expected end time: {value!r}") from exc
    if not isinstance(value, datetime):
        raise InvalidInput("Expected end time is required")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start(
    user_id: int,
    start_location: object,
    end_location: object,
    expected_end_time: object,
    now: datetime,
) -> Transition:
    """Create a new ongoing trip. Raises InvalidInput on bad fields."""
    start_loc = Location.coerce(start_location)
    end_loc = Location.coerce(end_location)
    expected = parse_expected_end_time(expected_end_time)
    if expected <= now:
        raise InvalidInput("Expected end time must be in the future")

    trip = Trip(
        id=None,
        user_id=user_id,
        start_location=start_loc,
        end_location=end_loc,
        start_time=now,
        expected_end_time=expected,
    )
    return Transition(trip=trip, notice=NoticeKind.TRIP_STARTED)


def mark_overdue(trip: Trip, now: datetime) -> Transition:
    """ongoing → delayed once the expected end time has passed.

    Any other status, or a trip that is not yet overdue, comes back
    unchanged with no notice. This is what makes the delay notice fire
    exactly once per trip.
    """
    if trip.status is not TripStatus.ONGOING or not trip.is_overdue(now):
        return Transition(trip=trip)

    event = TripEvent(kind=TripEventKind.DELAY, timestamp=now, message=DELAY_MESSAGE)
    delayed = replace(trip, status=TripStatus.DELAYED, events=[*trip.events, event])
    return Transition(trip=delayed, notice=NoticeKind.TRIP_DELAYED)


def update_location(trip: Trip, location: object, now: datetime) -> Transition:
    """Record a position report and evaluate overdue-ness."""
    if trip.status not in _LIVE_STATUSES:
        raise InvalidState(f"Trip {trip.id} is {trip.status.value}")
    loc = Location.coerce(location)

    moved = replace(trip, current_location=CurrentLocation(location=loc, updated_at=now))
    return mark_overdue(moved, now)


def complete(trip: Trip, now: datetime) -> Transition:
    if trip.status.is_terminal:
        raise InvalidState(f"Trip {trip.id} is already {trip.status.value}")
    done = replace(trip, status=TripStatus.COMPLETED, actual_end_time=now)
    return Transition(trip=done, notice=NoticeKind.TRIP_COMPLETED)


def cancel(trip: Trip, now: datetime) -> Transition:
    """Explicit cancellation is not an emergency, so no notice."""
    if trip.status.is_terminal:
        raise InvalidState(f"Trip {trip.id} is already {trip.status.value}")
    return Transition(trip=replace(trip, status=TripStatus.CANCELLED))
