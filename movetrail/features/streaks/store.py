"""
movetrail/features/streaks/store.py

Storage contract for streak state, the daily activity ledger and milestone
progress, with an in-memory implementation and store selection.

Every mutating call is atomic with respect to other callers:
- streak writes are compare-and-swap on `version`
- the ledger upsert merges qualification under a single critical section
- progress inserts are unique per (user, milestone, earned_date)
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import replace
from datetime import date, datetime
from typing import Dict, List, Optional, Protocol, Tuple

from movetrail.models.streak import (
    ActivityLogEntry,
    LedgerWriteResult,
    MilestoneProgress,
    UserStreak,
)

logger = logging.getLogger("movetrail")


class StreakStore(Protocol):
    """
    Protocol for durable streak storage.

    Implementations raise movetrail.core.errors.StorageError when the
    backing store fails; they never return partial writes.
    """

    def get_streak(self, user_id: str) -> Optional[UserStreak]:
        ...

    def create_streak_if_missing(self, streak: UserStreak) -> UserStreak:
        """Insert the record unless one exists; return the stored record."""
        ...

    def compare_and_swap_streak(self, streak: UserStreak, expected_version: int) -> bool:
        """
        Persist streak if the stored version still equals expected_version.

        On success the stored version becomes expected_version + 1.
        Returns False when another writer got there first.
        """
        ...

    def upsert_activity(
        self,
        user_id: str,
        activity_date: date,
        activity_kind: str,
        activity_value: float,
        qualifies: bool,
        source: str,
        now: datetime,
    ) -> LedgerWriteResult:
        ...

    def get_activity(self, user_id: str, activity_date: date) -> Optional[ActivityLogEntry]:
        ...

    def list_activity(self, user_id: str, limit: int = 30) -> List[ActivityLogEntry]:
        ...

    def list_progress(self, user_id: str, milestone_id: Optional[str] = None) -> List[MilestoneProgress]:
        ...

    def get_progress(self, progress_id: str) -> Optional[MilestoneProgress]:
        ...

    def insert_progress(self, progress: MilestoneProgress) -> bool:
        """Insert an award row; False when (user, milestone, earned_date) exists."""
        ...

    def mark_progress_claimed(self, progress_id: str, claimed_at: datetime) -> bool:
        """Flip reward_claimed if still unclaimed; False when already claimed."""
        ...

    def ping(self) -> bool:
        ...


class InMemoryStreakStore:
    """Process-local store. One lock guards all maps."""

    def __init__(self):
        self._lock = threading.Lock()
        self._streaks: Dict[str, UserStreak] = {}
        self._activity: Dict[Tuple[str, date], ActivityLogEntry] = {}
        self._progress: Dict[str, MilestoneProgress] = {}

    def get_streak(self, user_id: str) -> Optional[UserStreak]:
        with self._lock:
            stored = self._streaks.get(user_id)
            return stored.copy() if stored else None

    def create_streak_if_missing(self, streak: UserStreak) -> UserStreak:
        with self._lock:
            if streak.user_id not in self._streaks:
                self._streaks[streak.user_id] = streak.copy()
            return self._streaks[streak.user_id].copy()

    def compare_and_swap_streak(self, streak: UserStreak, expected_version: int) -> bool:
        with self._lock:
            stored = self._streaks.get(streak.user_id)
            if stored is None or stored.version != expected_version:
                return False
            self._streaks[streak.user_id] = replace(streak, version=expected_version + 1)
            return True

    def upsert_activity(
        self,
        user_id: str,
        activity_date: date,
        activity_kind: str,
        activity_value: float,
        qualifies: bool,
        source: str,
        now: datetime,
    ) -> LedgerWriteResult:
        key = (user_id, activity_date)
        with self._lock:
            existing = self._activity.get(key)
            if existing is None:
                entry = ActivityLogEntry(
                    user_id=user_id,
                    activity_date=activity_date,
                    activity_kind=activity_kind,
                    activity_value=activity_value,
                    qualifies=qualifies,
                    source=source,
                    created_at=now,
                    updated_at=now,
                )
                self._activity[key] = entry
                return LedgerWriteResult(
                    entry=replace(entry), was_already_qualifying=False, created=True, report_qualifies=qualifies
                )

            was_qualifying = existing.qualifies
            merged = replace(
                existing,
                activity_kind=activity_kind,
                activity_value=activity_value,
                qualifies=was_qualifying or qualifies,
                source=source,
                updated_at=now,
            )
            self._activity[key] = merged
            return LedgerWriteResult(
                entry=replace(merged), was_already_qualifying=was_qualifying, created=False, report_qualifies=qualifies
            )

    def get_activity(self, user_id: str, activity_date: date) -> Optional[ActivityLogEntry]:
        with self._lock:
            entry = self._activity.get((user_id, activity_date))
            return replace(entry) if entry else None

    def list_activity(self, user_id: str, limit: int = 30) -> List[ActivityLogEntry]:
        with self._lock:
            entries = [replace(e) for (uid, _), e in self._activity.items() if uid == user_id]
        entries.sort(key=lambda e: e.activity_date, reverse=True)
        return entries[:limit]

    def list_progress(self, user_id: str, milestone_id: Optional[str] = None) -> List[MilestoneProgress]:
        with self._lock:
            rows = [
                replace(p)
                for p in self._progress.values()
                if p.user_id == user_id and (milestone_id is None or p.milestone_id == milestone_id)
            ]
        rows.sort(key=lambda p: p.earned_at)
        return rows

    def get_progress(self, progress_id: str) -> Optional[MilestoneProgress]:
        with self._lock:
            row = self._progress.get(progress_id)
            return replace(row) if row else None

    def insert_progress(self, progress: MilestoneProgress) -> bool:
        with self._lock:
            for row in self._progress.values():
                if (
                    row.user_id == progress.user_id
                    and row.milestone_id == progress.milestone_id
                    and row.earned_date == progress.earned_date
                ):
                    return False
            self._progress[progress.progress_id] = replace(progress)
            return True

    def mark_progress_claimed(self, progress_id: str, claimed_at: datetime) -> bool:
        with self._lock:
            row = self._progress.get(progress_id)
            if row is None or row.reward_claimed:
                return False
            self._progress[progress_id] = replace(row, reward_claimed=True, reward_claimed_at=claimed_at)
            return True

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        """FOR TESTING ONLY."""
        with self._lock:
            self._streaks.clear()
            self._activity.clear()
            self._progress.clear()


def get_streak_store() -> StreakStore:
    """
    Get the appropriate store implementation.

    - SQL store whenever DATABASE_URL is configured, reachable or not; while
      the database is down each call raises StorageError (503)
    - In-memory only when no DATABASE_URL is set
    """
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        from movetrail.core.database import check_connection, create_all_tables
        from movetrail.features.streaks.persistence import SqlStreakStore

        if check_connection():
            create_all_tables()
        else:
            logger.warning("streak_store.database_unavailable, requests will fail until it recovers")
        return SqlStreakStore()

    return InMemoryStreakStore()


_store_instance: Optional[StreakStore] = None


def get_store() -> StreakStore:
    """Singleton store used by routes."""
    global _store_instance
    if _store_instance is None:
        _store_instance = get_streak_store()
    return _store_instance


def reset_store() -> None:
    """FOR TESTING ONLY - forces re-initialization on next get_store() call."""
    global _store_instance
    _store_instance = None
