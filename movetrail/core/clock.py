"""Injectable wall clock.

Services never call datetime.now() directly; they ask a Clock so tests can
pin an exact instant.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current instant as an aware datetime."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return utc_now()


class FixedClock:
    """Clock pinned to a given instant; moves only when told to."""

    def __init__(self, moment: datetime):
        self._moment = ensure_aware(moment)

    def now(self) -> datetime:
        return self._moment

    def set(self, moment: datetime) -> None:
        self._moment = ensure_aware(moment)

    def advance(self, **delta) -> datetime:
        self._moment = self._moment + timedelta(**delta)
        return self._moment
