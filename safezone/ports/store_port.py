"""Store ports — persistence contracts the core relies on.

Only create / read / update-by-id with last-write-wins semantics is
assumed. ``expected_status`` turns an update into a compare-and-set on
the stored status; it returns False when another writer got there first.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from safezone.data.models import Alert, AlertStatus, Contact, Trip, TripStatus


class StoreUnavailable(Exception):
    """Raised when the persistence layer cannot serve a request."""


class ContactRegistry(Protocol):
    def list_contacts(self, user_id: int) -> list[Contact]: ...


class AlertStore(Protocol):
    def create_alert(self, alert: Alert) -> int: ...

    def get_alert(self, alert_id: int) -> Alert | None: ...

    def update_alert(
        self, alert: Alert, expected_status: AlertStatus | None = None,
    ) -> bool: ...

    def list_active_alerts(self, user_id: int) -> list[Alert]: ...


class TripStore(Protocol):
    def create_trip(self, trip: Trip) -> int: ...

    def get_trip(self, trip_id: int) -> Trip | None: ...

    def update_trip(
        self, trip: Trip, expected_status: TripStatus | None = None,
    ) -> bool: ...

    def get_active_trip(self, user_id: int) -> Trip | None: ...

    def list_overdue_trips(self, now: datetime) -> list[Trip]: ...
