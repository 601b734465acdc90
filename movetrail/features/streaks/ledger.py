"""
Daily activity ledger.

One merged row per (user, calendar date). Repeated reports on the same day
overwrite kind/value/source, but a day that qualified once stays qualified.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from movetrail.core.errors import ValidationError
from movetrail.core.logging import log_event
from movetrail.features.streaks.qualifier import ActivityQualifier
from movetrail.features.streaks.store import StreakStore
from movetrail.models.streak import DEFAULT_SOURCE, ActivityLogEntry, LedgerWriteResult

MAX_HISTORY_LIMIT = 365


class ActivityLedger:
    def __init__(self, store: StreakStore, qualifier: Optional[ActivityQualifier] = None):
        self.store = store
        self.qualifier = qualifier or ActivityQualifier()

    def record(
        self,
        user_id: str,
        activity_date: date,
        activity_kind: str,
        activity_value: float,
        now: datetime,
        source: Optional[str] = None,
    ) -> LedgerWriteResult:
        """
        Merge one activity report into the user's row for activity_date.

        Returns the stored row plus whether it was qualifying before this
        call; `newly qualifying` is `report_qualifies and not was_already_qualifying`.
        """
        if activity_value is None or activity_value < 0:
            raise ValidationError("activity_value must be non-negative", field="activity_value")

        qualifies = self.qualifier.qualifies(activity_kind, activity_value)
        result = self.store.upsert_activity(
            user_id=user_id,
            activity_date=activity_date,
            activity_kind=activity_kind,
            activity_value=float(activity_value),
            qualifies=qualifies,
            source=source or DEFAULT_SOURCE,
            now=now,
        )

        log_event(
            "info",
            "activity.logged",
            user_id=user_id,
            event_type="activity.logged",
            extra={
                "activity_date": activity_date.isoformat(),
                "activity_kind": activity_kind,
                "qualifies": result.entry.qualifies,
                "newly_qualifying": is_newly_qualifying(result),
            },
        )
        return result

    def has_qualifying_activity(self, user_id: str, activity_date: date) -> bool:
        entry = self.store.get_activity(user_id, activity_date)
        return bool(entry and entry.qualifies)

    def history(self, user_id: str, limit: int = 30) -> List[ActivityLogEntry]:
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}", field="limit")
        return self.store.list_activity(user_id, limit=limit)


def is_newly_qualifying(result: LedgerWriteResult) -> bool:
    """True only for the report that itself turned the day into a qualifying one."""
    return result.report_qualifies and not result.was_already_qualifying
