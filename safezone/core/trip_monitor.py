"""
SafeZone — Trip Monitor.

Drives the trip state machine (see trip_state) against a TripStore and
fans out the notice each transition asks for. Per trip, the order is
always: decide under the trip's lock → commit with a compare-and-set on
the status that was read → release the lock → fan out → attach the
notification records.

Notices are best-effort: none of them can fail or undo a transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from safezone.core import trip_state
from safezone.core.errors import InvalidState, NotFound
from safezone.core.fanout import Fanout, FanoutResult
from safezone.core.locks import KeyedLocks
from safezone.core.messages import (
    Notice,
    trip_completed_notice,
    trip_delayed_notice,
    trip_started_notice,
)
from safezone.data.models import Location, NoticeKind, Trip
from safezone.ports.store_port import StoreUnavailable

if TYPE_CHECKING:
    from safezone.ports.notification_port import NotificationGateway
    from safezone.ports.store_port import ContactRegistry, TripStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TripResult:
    trip: Trip
    fanout: FanoutResult | None = None


class TripMonitor:
    """Start, track, complete and cancel monitored trips."""

    def __init__(
        self,
        contacts: ContactRegistry,
        trips: TripStore,
        gateway: NotificationGateway,
        max_in_flight: int | None = None,
        timeout_seconds: float | None = None,
        tz_name: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_in_flight is None or timeout_seconds is None or tz_name is None:
            from safezone.config import settings
            max_in_flight = max_in_flight or settings.FANOUT_MAX_IN_FLIGHT
            timeout_seconds = timeout_seconds or settings.NOTIFY_TIMEOUT_SECONDS
            tz_name = tz_name or settings.TIMEZONE

        self._contacts = contacts
        self._trips = trips
        self._fanout = Fanout(gateway, max_in_flight, timeout_seconds, clock)
        self._tz = tz_name
        self._clock = clock
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(
        self,
        user_id: int,
        start_location: object,
        end_location: object,
        expected_end_time: object,
        user_name: str | None = None,
    ) -> TripResult:
        """Create an ongoing trip and send the "trip started" notice.

        Having no contacts does not stop the trip; the notice result just
        reports NO_CONTACTS.
        """
        transition = trip_state.start(
            user_id, start_location, end_location, expected_end_time, self._clock(),
        )
        trip = transition.trip
        trip.id = self._trips.create_trip(trip)
        logger.info(
            "Trip #%d started by user %d, expected end %s",
            trip.id, user_id, trip.expected_end_time.isoformat(),
        )
        return await self._notify(trip, transition.notice, user_name)

    async def update_location(
        self,
        trip_id: int,
        location: object,
        user_id: int | None = None,
        user_name: str | None = None,
    ) -> TripResult:
        """Record a position report; the first overdue one flips the trip to delayed."""
        Location.coerce(location)

        async with self._locks.hold(trip_id):
            trip = self._load(trip_id, user_id)
            transition = trip_state.update_location(trip, location, self._clock())
            self._commit(transition.trip, expected=trip)

        if transition.notice is NoticeKind.TRIP_DELAYED:
            logger.warning("Trip #%d is overdue, marked delayed", trip_id)
        return await self._notify(transition.trip, transition.notice, user_name)

    async def complete(
        self, trip_id: int, user_id: int | None = None, user_name: str | None = None,
    ) -> TripResult:
        async with self._locks.hold(trip_id):
            trip = self._load(trip_id, user_id)
            transition = trip_state.complete(trip, self._clock())
            self._commit(transition.trip, expected=trip)

        logger.info("Trip #%d completed", trip_id)
        return await self._notify(transition.trip, transition.notice, user_name)

    async def cancel(self, trip_id: int, user_id: int | None = None) -> TripResult:
        async with self._locks.hold(trip_id):
            trip = self._load(trip_id, user_id)
            transition = trip_state.cancel(trip, self._clock())
            self._commit(transition.trip, expected=trip)

        logger.info("Trip #%d cancelled", trip_id)
        return TripResult(trip=transition.trip)

    def get_active(self, user_id: int) -> Trip | None:
        """Return the user's trip that is still being monitored, if any."""
        return self._trips.get_active_trip(user_id)

    async def sweep_overdue(self) -> list[TripResult]:
        """Flip every overdue ongoing trip to delayed and notify its contacts.

        Covers trips whose device stopped reporting. A trip that fails to
        commit is logged and skipped so the rest of the sweep still runs.
        """
        now = self._clock()
        results: list[TripResult] = []
        for candidate in self._trips.list_overdue_trips(now):
            try:
                async with self._locks.hold(candidate.id):
                    trip = self._trips.get_trip(candidate.id)
                    if trip is None:
                        continue
                    transition = trip_state.mark_overdue(trip, now)
                    if transition.notice is None:
                        continue
                    self._commit(transition.trip, expected=trip)
            except (StoreUnavailable, InvalidState) as exc:
                logger.error("Overdue sweep skipped trip #%d: %s", candidate.id, exc)
                continue

            logger.warning("Trip #%d is overdue (sweep), marked delayed", trip.id)
            results.append(await self._notify(transition.trip, transition.notice))
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, trip_id: int, user_id: int | None) -> Trip:
        trip = self._trips.get_trip(trip_id)
        if trip is None or (user_id is not None and trip.user_id != user_id):
            raise NotFound(f"Trip {trip_id} not found")
        return trip

    def _commit(self, new: Trip, expected: Trip) -> None:
        """Persist *new* only if the stored status is still the one we read."""
        if not self._trips.update_trip(new, expected_status=expected.status):
            raise InvalidState(f"Trip {new.id} was modified concurrently")

    def _build_notice(
        self, kind: NoticeKind, trip: Trip, user_name: str | None,
    ) -> Notice:
        if kind is NoticeKind.TRIP_STARTED:
            return trip_started_notice(
                user_name, trip.start_location, trip.end_location,
                trip.expected_end_time, self._tz,
            )
        if kind is NoticeKind.TRIP_DELAYED:
            current = trip.current_location.location if trip.current_location else None
            return trip_delayed_notice(user_name, current, trip.expected_end_time, self._tz)
        if kind is NoticeKind.TRIP_COMPLETED:
            return trip_completed_notice(user_name, trip.actual_end_time, self._tz)
        raise ValueError(f"Not a trip notice: {kind!r}")

    async def _notify(
        self, trip: Trip, kind: NoticeKind | None, user_name: str | None = None,
    ) -> TripResult:
        if kind is None:
            return TripResult(trip=trip)

        fanout = await self._fanout.dispatch_to(
            self._contacts, trip.user_id, self._build_notice(kind, trip, user_name),
        )
        if not fanout.records:
            return TripResult(trip=trip, fanout=fanout)

        try:
            async with self._locks.hold(trip.id):
                stored = self._trips.get_trip(trip.id) or trip
                stored.notifications = [*stored.notifications, *fanout.records]
                self._trips.update_trip(stored)
            return TripResult(trip=stored, fanout=fanout)
        except StoreUnavailable as exc:
            logger.error("Trip #%d notice records were not saved: %s", trip.id, exc)
            merged = replace(trip, notifications=[*trip.notifications, *fanout.records])
            return TripResult(trip=merged, fanout=fanout)
