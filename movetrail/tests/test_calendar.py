from datetime import date, datetime, timezone

import pytest

from movetrail.core.clock import FixedClock
from movetrail.core.errors import ValidationError
from movetrail.features.streaks.calendar import (
    TimezoneCalendar,
    days_between,
    is_valid_zone,
    parse_date,
    resolve_zone,
)


def test_late_evening_and_early_morning_are_different_days_in_utc_minus_5():
    # 23:30 and 00:30 New York time in January (UTC-5), one real hour apart
    late = datetime(2026, 1, 16, 4, 30, tzinfo=timezone.utc)
    early = datetime(2026, 1, 16, 5, 30, tzinfo=timezone.utc)
    calendar = TimezoneCalendar(FixedClock(late))

    assert calendar.local_date(late, "America/New_York") == date(2026, 1, 15)
    assert calendar.local_date(early, "America/New_York") == date(2026, 1, 16)


def test_today_and_yesterday_follow_the_zone():
    moment = datetime(2026, 1, 15, 15, 0, tzinfo=timezone.utc)
    calendar = TimezoneCalendar(FixedClock(moment))

    assert calendar.today("America/New_York") == date(2026, 1, 15)
    assert calendar.today("Pacific/Kiritimati") == date(2026, 1, 16)
    assert calendar.yesterday("America/New_York") == date(2026, 1, 14)


def test_unknown_zone_falls_back_to_utc(caplog):
    moment = datetime(2026, 1, 16, 2, 0, tzinfo=timezone.utc)
    calendar = TimezoneCalendar(FixedClock(moment))

    assert calendar.today("Mars/Olympus_Mons") == date(2026, 1, 16)
    assert any(r.getMessage() == "calendar.invalid_timezone" for r in caplog.records)


def test_days_between_counts_calendar_boundaries():
    assert days_between(date(2026, 1, 15), date(2026, 1, 15)) == 0
    assert days_between(date(2026, 1, 15), date(2026, 1, 16)) == 1
    assert days_between(date(2026, 1, 16), date(2026, 1, 15)) == 1
    assert days_between(date(2025, 12, 31), date(2026, 1, 2)) == 2


def test_zone_validation():
    assert is_valid_zone("Europe/Berlin")
    assert not is_valid_zone("Not/A_Zone")
    assert not is_valid_zone("")
    assert not is_valid_zone(None)
    assert resolve_zone("UTC") is not None


def test_parse_date_accepts_iso_dates_only():
    assert parse_date("2026-02-28") == date(2026, 2, 28)

    for bad in ("2026-2-28", "28/02/2026", "2026-02-30", "", "2026-02-28T00:00", "2026-W02-1", "20260228"):
        with pytest.raises(ValidationError) as exc:
            parse_date(bad, field="override_date")
        assert exc.value.field == "override_date"
