"""Tests for formatting utilities."""

from datetime import datetime, timedelta, timezone

from patient_vault.utils.formatters import format_sync_time, format_time_ago

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _ago(**delta):
    return (NOW - timedelta(**delta)).isoformat()


class TestFormatTimeAgo:
    """Human-readable age of the last sync."""

    def test_never(self):
        assert format_time_ago("", now=NOW) == "Never"
        assert format_time_ago(None, now=NOW) == "Never"

    def test_unparsable(self):
        assert format_time_ago("not a time", now=NOW) == "Unknown"

    def test_just_now(self):
        assert format_time_ago(_ago(seconds=30), now=NOW) == "Just now"

    def test_minutes(self):
        assert format_time_ago(_ago(minutes=5), now=NOW) == "5 minutes ago"

    def test_hours(self):
        assert format_time_ago(_ago(hours=3), now=NOW) == "3 hours ago"

    def test_days(self):
        assert format_time_ago(_ago(days=2), now=NOW) == "2 days ago"

    def test_z_suffix(self):
        assert format_time_ago("2026-03-01T11:50:00Z", now=NOW) == "10 minutes ago"

    def test_naive_treated_as_utc(self):
        assert format_time_ago("2026-03-01T11:00:00", now=NOW) == "1 hours ago"


class TestFormatSyncTime:
    def test_contains_date_and_time(self):
        text = format_sync_time(NOW)
        local = NOW.astimezone()
        assert local.strftime("%m/%d/%y") in text
        assert text.endswith(("AM", "PM"))
