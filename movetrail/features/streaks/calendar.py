"""Calendar arithmetic in the user's IANA time zone."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from movetrail.core.clock import Clock, SystemClock
from movetrail.core.errors import ValidationError
from movetrail.core.logging import log_event

_ISO_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def resolve_zone(name: Optional[str]) -> Optional[ZoneInfo]:
    """Return the ZoneInfo for name, or None when it is not a known IANA zone."""
    if not name or not isinstance(name, str):
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def is_valid_zone(name: Optional[str]) -> bool:
    return resolve_zone(name) is not None


def parse_date(value: str, *, field: str = "date") -> date:
    """Parse a strict YYYY-MM-DD calendar date."""
    if not isinstance(value, str) or not _ISO_DATE.fullmatch(value):
        raise ValidationError(f"{field} must be a YYYY-MM-DD date", field=field)
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date", field=field)


def days_between(first: date, second: date) -> int:
    """Absolute number of calendar-day boundaries between two dates."""
    return abs((second - first).days)


class TimezoneCalendar:
    """Turns the clock's instant into calendar dates for a given zone."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    def now(self) -> datetime:
        return self.clock.now()

    def local_date(self, moment: datetime, zone: Optional[str]) -> date:
        tz = resolve_zone(zone)
        if tz is None:
            log_event(
                "warning",
                "calendar.invalid_timezone",
                event_type="calendar.invalid_timezone",
                extra={"timezone": zone},
            )
            return moment.astimezone(timezone.utc).date()
        return moment.astimezone(tz).date()

    def today(self, zone: Optional[str]) -> date:
        return self.local_date(self.now(), zone)

    def yesterday(self, zone: Optional[str]) -> date:
        return self.today(zone) - timedelta(days=1)

    def days_between(self, first: date, second: date) -> int:
        return days_between(first, second)
