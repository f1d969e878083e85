"""
SafeZone — SQLite storage.

Contacts, alerts and trips persist in SQLite across restarts. Nested
values (locations, notification records, trip events) are stored as JSON
columns; timestamps are stored as UTC ISO-8601 strings.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from safezone.data.models import (
    Alert,
    AlertStatus,
    Contact,
    CurrentLocation,
    Location,
    NotificationRecord,
    Trip,
    TripEvent,
    TripStatus,
)
from safezone.ports.store_port import StoreUnavailable

logger = logging.getLogger(__name__)

_ACTIVE_TRIP_STATUSES = (
    TripStatus.ONGOING.value,
    TripStatus.DELAYED.value,
    TripStatus.ALERTED.value,
)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_dt(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _records_json(records: list[NotificationRecord]) -> str:
    return json.dumps([r.to_dict() for r in records])


def _records_from_json(raw: str | None) -> list[NotificationRecord]:
    if not raw:
        return []
    return [NotificationRecord.from_dict(d) for d in json.loads(raw)]


class _SQLiteDB:
    """Shared connection handling: every sqlite3 error becomes StoreUnavailable."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from safezone.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._session() as conn:
            self._init_db(conn)
        logger.debug("%s initialized at %s", type(self).__name__, self._db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
            try:
                with conn:
                    yield conn
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.error("SQLite error on %s: %s", self._db_path, exc)
            raise StoreUnavailable(str(exc)) from exc

    def _init_db(self, conn: sqlite3.Connection) -> None:
        raise NotImplementedError


class ContactDB(_SQLiteDB):
    """SQLite-backed emergency contacts. Implements ContactRegistry."""

    def _init_db(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS contacts (
                id       INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id  INTEGER NOT NULL,
                name     TEXT    NOT NULL,
                phone    TEXT    NOT NULL DEFAULT '',
                email    TEXT    NOT NULL DEFAULT ''
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_contacts_user ON contacts (user_id)"
        )

    @staticmethod
    def _row_to_contact(row: sqlite3.Row) -> Contact:
        return Contact(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            phone=row["phone"],
            email=row["email"],
        )

    def add_contact(
        self, user_id: int, name: str, email: str = "", phone: str = "",
    ) -> Contact:
        """Insert a new emergency contact for *user_id*."""
        name, email, phone = name.strip(), email.strip(), phone.strip()
        if not name:
            raise ValueError("Contact name is required")
        if not email and not phone:
            raise ValueError("Contact needs an email or a phone number")

        with self._session() as conn:
            cursor = conn.execute(
                "INSERT INTO contacts (user_id, name, phone, email) VALUES (?, ?, ?, ?)",
                (user_id, name, phone, email),
            )
            contact_id = cursor.lastrowid

        logger.info("Contact added: #%d '%s' for user %d", contact_id, name, user_id)
        return Contact(id=contact_id, user_id=user_id, name=name, phone=phone, email=email)

    def list_contacts(self, user_id: int) -> list[Contact]:
        """Return the user's contacts in the order they were added."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM contacts WHERE user_id = ? ORDER BY id", (user_id,),
            ).fetchall()
        return [self._row_to_contact(r) for r in rows]

    def delete_contact(self, contact_id: int, user_id: int) -> bool:
        """Permanently delete one of the user's contacts."""
        with self._session() as conn:
            cursor = conn.execute(
                "DELETE FROM contacts WHERE id = ? AND user_id = ?",
                (contact_id, user_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Contact #%d deleted", contact_id)
        return deleted


class AlertDB(_SQLiteDB):
    """SQLite-backed SOS alerts. Implements AlertStore."""

    def _init_db(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS alerts (
                id                       INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id                  INTEGER NOT NULL,
                lat                      REAL    NOT NULL,
                lon                      REAL    NOT NULL,
                status                   TEXT    NOT NULL DEFAULT 'active',
                created_at               TEXT    NOT NULL,
                resolved_at              TEXT,
                notifications            TEXT    NOT NULL DEFAULT '[]',
                resolution_notifications TEXT    NOT NULL DEFAULT '[]'
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_alerts_user_status ON alerts (user_id, status)"
        )

    @staticmethod
    def _row_to_alert(row: sqlite3.Row) -> Alert:
        return Alert(
            id=row["id"],
            user_id=row["user_id"],
            location=Location(lat=row["lat"], lon=row["lon"]),
            status=AlertStatus(row["status"]),
            created_at=_parse_dt(row["created_at"]),
            resolved_at=_parse_dt(row["resolved_at"]),
            notifications=_records_from_json(row["notifications"]),
            resolution_notifications=_records_from_json(row["resolution_notifications"]),
        )

    def create_alert(self, alert: Alert) -> int:
        with self._session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO alerts
                    (user_id, lat, lon, status, created_at, resolved_at,
                     notifications, resolution_notifications)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    alert.user_id, alert.location.lat, alert.location.lon,
                    alert.status.value, _iso(alert.created_at), _iso(alert.resolved_at),
                    _records_json(alert.notifications),
                    _records_json(alert.resolution_notifications),
                ),
            )
            alert_id = cursor.lastrowid
        logger.info("Alert #%d created for user %d", alert_id, alert.user_id)
        return alert_id

    def get_alert(self, alert_id: int) -> Alert | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM alerts WHERE id = ?", (alert_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_alert(row)

    def update_alert(
        self, alert: Alert, expected_status: AlertStatus | None = None,
    ) -> bool:
        """Overwrite the stored alert. Returns False if no row matched."""
        query = """
            UPDATE alerts
               SET status = ?, resolved_at = ?, notifications = ?,
                   resolution_notifications = ?
             WHERE id = ?
        """
        params: list = [
            alert.status.value, _iso(alert.resolved_at),
            _records_json(alert.notifications),
            _records_json(alert.resolution_notifications),
            alert.id,
        ]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status.value)

        with self._session() as conn:
            cursor = conn.execute(query, params)
        return cursor.rowcount > 0

    def list_active_alerts(self, user_id: int) -> list[Alert]:
        """Return the user's active alerts, newest first."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM alerts WHERE user_id = ? AND status = ? "
                "ORDER BY created_at DESC, id DESC",
                (user_id, AlertStatus.ACTIVE.value),
            ).fetchall()
        return [self._row_to_alert(r) for r in rows]


class TripDB(_SQLiteDB):
    """SQLite-backed monitored trips. Implements TripStore."""

    def _init_db(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS trips (
                id                INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id           INTEGER NOT NULL,
                start_location    TEXT    NOT NULL,
                end_location      TEXT    NOT NULL,
                current_location  TEXT,
                start_time        TEXT    NOT NULL,
                expected_end_time TEXT    NOT NULL,
                actual_end_time   TEXT,
                status            TEXT    NOT NULL DEFAULT 'ongoing',
                events            TEXT    NOT NULL DEFAULT '[]',
                notifications     TEXT    NOT NULL DEFAULT '[]'
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_trips_user_status ON trips (user_id, status)"
        )

    @staticmethod
    def _current_to_json(current: CurrentLocation | None) -> str | None:
        if current is None:
            return None
        return json.dumps({
            **current.location.to_dict(),
            "updated_at": _iso(current.updated_at),
        })

    @staticmethod
    def _current_from_json(raw: str | None) -> CurrentLocation | None:
        if not raw:
            return None
        data = json.loads(raw)
        return CurrentLocation(
            location=Location(lat=data["lat"], lon=data["lon"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    @classmethod
    def _row_to_trip(cls, row: sqlite3.Row) -> Trip:
        start = json.loads(row["start_location"])
        end = json.loads(row["end_location"])
        return Trip(
            id=row["id"],
            user_id=row["user_id"],
            start_location=Location(lat=start["lat"], lon=start["lon"]),
            end_location=Location(lat=end["lat"], lon=end["lon"]),
            current_location=cls._current_from_json(row["current_location"]),
            start_time=_parse_dt(row["start_time"]),
            expected_end_time=_parse_dt(row["expected_end_time"]),
            actual_end_time=_parse_dt(row["actual_end_time"]),
            status=TripStatus(row["status"]),
            events=[TripEvent.from_dict(d) for d in json.loads(row["events"])],
            notifications=_records_from_json(row["notifications"]),
        )

    def create_trip(self, trip: Trip) -> int:
        with self._session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO trips
                    (user_id, start_location, end_location, current_location,
                     start_time, expected_end_time, actual_end_time, status,
                     events, notifications)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    trip.user_id,
                    json.dumps(trip.start_location.to_dict()),
                    json.dumps(trip.end_location.to_dict()),
                    self._current_to_json(trip.current_location),
                    _iso(trip.start_time), _iso(trip.expected_end_time),
                    _iso(trip.actual_end_time), trip.status.value,
                    json.dumps([e.to_dict() for e in trip.events]),
                    _records_json(trip.notifications),
                ),
            )
            trip_id = cursor.lastrowid
        logger.info("Trip #%d created for user %d", trip_id, trip.user_id)
        return trip_id

    def get_trip(self, trip_id: int) -> Trip | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM trips WHERE id = ?", (trip_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_trip(row)

    def update_trip(
        self, trip: Trip, expected_status: TripStatus | None = None,
    ) -> bool:
        """Overwrite the stored trip. Returns False if no row matched."""
        query = """
            UPDATE trips
               SET current_location = ?, actual_end_time = ?, status = ?,
                   events = ?, notifications = ?
             WHERE id = ?
        """
        params: list = [
            self._current_to_json(trip.current_location),
            _iso(trip.actual_end_time), trip.status.value,
            json.dumps([e.to_dict() for e in trip.events]),
            _records_json(trip.notifications),
            trip.id,
        ]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status.value)

        with self._session() as conn:
            cursor = conn.execute(query, params)
        return cursor.rowcount > 0

    def get_active_trip(self, user_id: int) -> Trip | None:
        """Return the user's most recent trip that is still being monitored."""
        placeholders = ", ".join("?" for _ in _ACTIVE_TRIP_STATUSES)
        with self._session() as conn:
            row = conn.execute(
                f"SELECT * FROM trips WHERE user_id = ? AND status IN ({placeholders}) "
                "ORDER BY id DESC LIMIT 1",
                (user_id, *_ACTIVE_TRIP_STATUSES),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_trip(row)

    def list_overdue_trips(self, now: datetime) -> list[Trip]:
        """Return ongoing trips whose expected end time is before *now*."""
        # expected_end_time is a normalized UTC ISO string, so text order is time order
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM trips WHERE status = ? AND expected_end_time < ? ORDER BY id",
                (TripStatus.ONGOING.value, _iso(now)),
            ).fetchall()
        return [self._row_to_trip(r) for r in rows]
