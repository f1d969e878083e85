"""Tests for safezone.data.db — AlertDB and TripDB (SQLite storage)."""

import sqlite3
from dataclasses import replace
from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import T0
from safezone.data.models import (
    Alert,
    AlertStatus,
    CurrentLocation,
    Location,
    NoticeKind,
    NotificationOutcome,
    NotificationRecord,
    Trip,
    TripEvent,
    TripEventKind,
    TripStatus,
)
from safezone.ports.store_port import StoreUnavailable


def _alert(user_id=7):
    return Alert(id=None, user_id=user_id, location=Location(12.9, 77.6), created_at=T0)


def _trip(user_id=7, expected=timedelta(hours=1)):
    return Trip(
        id=None,
        user_id=user_id,
        start_location=Location(12.9, 77.6),
        end_location=Location(13.0, 77.7),
        start_time=T0,
        expected_end_time=T0 + expected,
    )


def _record(contact_id, outcome=NotificationOutcome.SENT):
    return NotificationRecord(
        contact_id=contact_id, channel="email", attempted_at=T0,
        outcome=outcome, notice=NoticeKind.SOS,
    )


class TestAlertDB:
    def test_create_and_get(self, alert_db):
        alert_id = alert_db.create_alert(_alert())
        stored = alert_db.get_alert(alert_id)
        assert stored is not None
        assert stored.id == alert_id
        assert stored.status is AlertStatus.ACTIVE
        assert stored.location == Location(12.9, 77.6)
        assert stored.created_at == T0
        assert stored.notifications == []

    def test_get_missing(self, alert_db):
        assert alert_db.get_alert(999) is None

    def test_update_persists_records(self, alert_db):
        alert = _alert()
        alert.id = alert_db.create_alert(alert)
        alert.notifications = [_record(1), _record(2, NotificationOutcome.FAILED)]
        assert alert_db.update_alert(alert) is True

        stored = alert_db.get_alert(alert.id)
        assert [r.contact_id for r in stored.notifications] == [1, 2]
        assert stored.notifications[1].outcome is NotificationOutcome.FAILED

    def test_compare_and_set_rejects_stale_status(self, alert_db):
        alert = _alert()
        alert.id = alert_db.create_alert(alert)
        resolved = replace(alert, status=AlertStatus.RESOLVED, resolved_at=T0)
        assert alert_db.update_alert(resolved, expected_status=AlertStatus.ACTIVE) is True
        # Second writer still believes the alert is active
        assert alert_db.update_alert(resolved, expected_status=AlertStatus.ACTIVE) is False

    def test_list_active_newest_first(self, alert_db):
        first = alert_db.create_alert(_alert())
        later = _alert()
        later.created_at = T0 + timedelta(minutes=5)
        second = alert_db.create_alert(later)
        alert_db.create_alert(_alert(user_id=8))

        active = alert_db.list_active_alerts(7)
        assert [a.id for a in active] == [second, first]

    def test_list_active_excludes_resolved(self, alert_db):
        alert = _alert()
        alert.id = alert_db.create_alert(alert)
        alert_db.update_alert(replace(alert, status=AlertStatus.RESOLVED, resolved_at=T0))
        assert alert_db.list_active_alerts(7) == []

    def test_sqlite_error_becomes_store_unavailable(self, alert_db):
        with patch.object(alert_db, "_connect", side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(StoreUnavailable):
                alert_db.create_alert(_alert())


class TestTripDB:
    def test_create_and_get(self, trip_db):
        trip_id = trip_db.create_trip(_trip())
        stored = trip_db.get_trip(trip_id)
        assert stored.id == trip_id
        assert stored.status is TripStatus.ONGOING
        assert stored.start_location == Location(12.9, 77.6)
        assert stored.end_location == Location(13.0, 77.7)
        assert stored.expected_end_time == T0 + timedelta(hours=1)
        assert stored.current_location is None

    def test_update_round_trips_nested_fields(self, trip_db):
        trip = _trip()
        trip.id = trip_db.create_trip(trip)
        later = T0 + timedelta(minutes=90)
        trip.current_location = CurrentLocation(Location(12.95, 77.65), later)
        trip.status = TripStatus.DELAYED
        trip.events = [TripEvent(TripEventKind.DELAY, later, "late")]
        trip.notifications = [_record(4)]
        trip_db.update_trip(trip)

        stored = trip_db.get_trip(trip.id)
        assert stored.current_location == CurrentLocation(Location(12.95, 77.65), later)
        assert stored.status is TripStatus.DELAYED
        assert stored.events == [TripEvent(TripEventKind.DELAY, later, "late")]
        assert stored.notifications[0].contact_id == 4

    def test_compare_and_set(self, trip_db):
        trip = _trip()
        trip.id = trip_db.create_trip(trip)
        cancelled = replace(trip, status=TripStatus.CANCELLED)
        assert trip_db.update_trip(cancelled, expected_status=TripStatus.DELAYED) is False
        assert trip_db.get_trip(trip.id).status is TripStatus.ONGOING

    def test_get_active_trip(self, trip_db):
        done = _trip()
        done.id = trip_db.create_trip(done)
        trip_db.update_trip(replace(done, status=TripStatus.COMPLETED, actual_end_time=T0))
        live_id = trip_db.create_trip(_trip())

        active = trip_db.get_active_trip(7)
        assert active is not None
        assert active.id == live_id
        assert trip_db.get_active_trip(8) is None

    def test_list_overdue_only_ongoing_and_past_due(self, trip_db):
        overdue_id = trip_db.create_trip(_trip(expected=timedelta(minutes=30)))
        trip_db.create_trip(_trip(expected=timedelta(hours=3)))
        delayed = _trip(expected=timedelta(minutes=10))
        delayed.id = trip_db.create_trip(delayed)
        trip_db.update_trip(replace(delayed, status=TripStatus.DELAYED))

        overdue = trip_db.list_overdue_trips(T0 + timedelta(hours=1))
        assert [t.id for t in overdue] == [overdue_id]

    def test_list_overdue_is_strictly_after_expected_end(self, trip_db):
        trip_id = trip_db.create_trip(_trip(expected=timedelta(hours=1)))
        due = T0 + timedelta(hours=1)

        assert trip_db.list_overdue_trips(due) == []
        assert [t.id for t in trip_db.list_overdue_trips(due + timedelta(microseconds=1))] == [trip_id]

    def test_list_overdue_normalizes_query_time(self, trip_db):
        from datetime import timezone as tz

        trip_id = trip_db.create_trip(_trip(expected=timedelta(hours=1)))
        # 09:30 UTC written as 11:30+02:00 is still before the 10:00 UTC deadline
        early = T0.replace(minute=30).astimezone(tz(timedelta(hours=2)))
        assert trip_db.list_overdue_trips(early) == []
        late = (T0 + timedelta(hours=2)).astimezone(tz(timedelta(hours=2)))
        assert [t.id for t in trip_db.list_overdue_trips(late)] == [trip_id]
