"""Tests for safezone.core.messages — notice templates."""

from datetime import timedelta

from conftest import T0
from safezone.core import messages
from safezone.data.models import Location, NoticeKind

LOC = Location(12.9, 77.6)


class TestSosNotice:
    def test_contains_name_link_and_time(self):
        notice = messages.sos_notice("Noa", LOC, T0)
        assert notice.kind is NoticeKind.SOS
        assert notice.subject.startswith("🚨 EMERGENCY SOS ALERT")
        assert "Noa has triggered an emergency alert!" in notice.body
        assert "https://www.google.com/maps?q=12.9,77.6" in notice.body
        assert "2026-03-01 09:00 UTC" in notice.body

    def test_fallback_name(self):
        assert messages.sos_notice(None, LOC, T0).body.startswith("Your contact")

    def test_local_timezone(self):
        notice = messages.sos_notice("Noa", LOC, T0, tz_name="Asia/Jerusalem")
        assert "2026-03-01 11:00" in notice.body


class TestTripNotices:
    def test_started_links_both_ends(self):
        notice = messages.trip_started_notice(
            "Noa", LOC, Location(13.0, 77.7), T0 + timedelta(hours=1),
        )
        assert notice.kind is NoticeKind.TRIP_STARTED
        assert "mlat=12.9&mlon=77.6" in notice.body
        assert "mlat=13.0&mlon=77.7" in notice.body
        assert "10:00" in notice.body

    def test_delayed_without_position(self):
        notice = messages.trip_delayed_notice("Noa", None, T0)
        assert notice.subject == "Trip Delay Alert - SafeZone"
        assert "not reported" in notice.body

    def test_completed(self):
        notice = messages.trip_completed_notice("Noa", T0)
        assert notice.kind is NoticeKind.TRIP_COMPLETED
        assert "completed their trip safely" in notice.body

    def test_resolved(self):
        notice = messages.resolved_notice("Noa", T0)
        assert notice.kind is NoticeKind.ALERT_RESOLVED
        assert "Noa's emergency alert has been resolved." in notice.body


class TestFormatTime:
    def test_defaults_to_utc(self):
        assert messages.format_time(T0) == "2026-03-01 09:00 UTC"

    def test_converts_to_zone(self):
        assert messages.format_time(T0, "Asia/Jerusalem").startswith("2026-03-01 11:00")
