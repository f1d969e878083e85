"""
SafeZone — Alert Dispatcher.

Turns one SOS trigger into a fan-out to every emergency contact and keeps
the durable Alert record in step with it:

1. validate input and read the contact snapshot,
2. create the Alert *before* any network call, so a crash mid-dispatch
   still leaves an inspectable record,
3. fan out concurrently (bounded, wait-for-all),
4. write the per-contact records back onto the Alert.

Reaching nobody is a result, not an error: the Alert stays ``active``
and the caller gets ``DispatchOutcome.TOTAL_FAILURE``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from safezone.core.errors import NoContacts, NotFound
from safezone.core.fanout import DispatchOutcome, Fanout, FanoutResult
from safezone.core.locks import KeyedLocks
from safezone.core.messages import resolved_notice, sos_notice
from safezone.data.models import Alert, AlertStatus, Location
from safezone.ports.store_port import StoreUnavailable

if TYPE_CHECKING:
    from safezone.ports.notification_port import NotificationGateway
    from safezone.ports.store_port import AlertStore, ContactRegistry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DispatchResult:
    alert: Alert
    fanout: FanoutResult

    @property
    def outcome(self) -> DispatchOutcome:
        return self.fanout.outcome

    @property
    def sent_count(self) -> int:
        return self.fanout.sent_count

    @property
    def failed_count(self) -> int:
        return self.fanout.failed_count


class AlertDispatcher:
    """Creates, notifies and resolves SOS alerts."""

    def __init__(
        self,
        contacts: ContactRegistry,
        alerts: AlertStore,
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
        self._alerts = alerts
        self._fanout = Fanout(gateway, max_in_flight, timeout_seconds, clock)
        self._tz = tz_name
        self._clock = clock
        self._locks = KeyedLocks()

    async def trigger(
        self, user_id: int, location: object, user_name: str | None = None,
    ) -> DispatchResult:
        """Raise an SOS for *user_id* at *location* and notify every contact.

        Raises:
            InvalidInput: location is missing or not a finite coordinate.
            NoContacts: the user has nobody on file; no alert is created.
            StoreUnavailable: the alert could not be persisted.
        """
        loc = Location.coerce(location)
        contacts = self._contacts.list_contacts(user_id)
        if not contacts:
            raise NoContacts(
                "No emergency contacts found. Please add emergency contacts first."
            )

        now = self._clock()
        alert = Alert(id=None, user_id=user_id, location=loc, created_at=now)
        alert.id = self._alerts.create_alert(alert)
        logger.info(
            "SOS alert #%d raised by user %d, notifying %d contacts",
            alert.id, user_id, len(contacts),
        )

        fanout = await self._fanout.dispatch(
            contacts, sos_notice(user_name, loc, now, self._tz),
        )

        try:
            async with self._locks.hold(alert.id):
                stored = self._alerts.get_alert(alert.id) or alert
                stored.notifications = fanout.records
                self._alerts.update_alert(stored)
        except StoreUnavailable as exc:
            logger.error(
                "SOS alert #%d sent but its notification records were not saved: %s",
                alert.id, exc,
            )
            stored = replace(alert, notifications=fanout.records)

        if fanout.outcome is DispatchOutcome.TOTAL_FAILURE:
            logger.error("SOS alert #%d: no contact could be reached", alert.id)
        return DispatchResult(alert=stored, fanout=fanout)

    async def resolve(
        self, alert_id: int, user_id: int, user_name: str | None = None,
    ) -> DispatchResult:
        """Mark an active alert resolved, then tell the contacts.

        The status change is committed before the notice goes out and is
        never rolled back by notice failures. Resolving twice raises
        NotFound the second time and sends nothing.
        """
        async with self._locks.hold(alert_id):
            alert = self._alerts.get_alert(alert_id)
            if (
                alert is None
                or alert.user_id != user_id
                or alert.status is not AlertStatus.ACTIVE
            ):
                raise NotFound(f"Alert {alert_id} not found")

            now = max(self._clock(), alert.created_at)
            resolved = replace(alert, status=AlertStatus.RESOLVED, resolved_at=now)
            if not self._alerts.update_alert(resolved, expected_status=AlertStatus.ACTIVE):
                raise NotFound(f"Alert {alert_id} not found")
        logger.info("SOS alert #%d resolved by user %d", alert_id, user_id)

        fanout = await self._fanout.dispatch_to(
            self._contacts, user_id, resolved_notice(user_name, now, self._tz),
        )
        resolved = await self._attach_resolution_records(resolved, fanout)
        return DispatchResult(alert=resolved, fanout=fanout)

    def list_active(self, user_id: int) -> list[Alert]:
        """Return the user's unresolved alerts, newest first."""
        return self._alerts.list_active_alerts(user_id)

    async def _attach_resolution_records(
        self, alert: Alert, fanout: FanoutResult,
    ) -> Alert:
        if not fanout.records:
            return alert
        try:
            async with self._locks.hold(alert.id):
                stored = self._alerts.get_alert(alert.id) or alert
                stored.resolution_notifications = [
                    *stored.resolution_notifications, *fanout.records,
                ]
                self._alerts.update_alert(stored)
            return stored
        except StoreUnavailable as exc:
            logger.error(
                "Alert #%d resolved but its notice records were not saved: %s",
                alert.id, exc,
            )
            return replace(alert, resolution_notifications=fanout.records)
