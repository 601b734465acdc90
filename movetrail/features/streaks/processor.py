"""
movetrail/features/streaks/processor.py

The streak state machine.

States are implicit in UserStreak fields. A transition happens at most once
per calendar day in the user's zone:

1. no qualifying activity today          -> none
2. last_activity_date == today           -> already_processed
3. first ever qualifying day             -> started (streak = 1)
4. last_activity_date == yesterday       -> continued (streak + 1)
5a. gap of exactly 2 days, shield in hand -> shield_used (streak + 1)
5b. any other gap                        -> broken (streak restarts at 1)

Writes are compare-and-swap on `version`. A writer that loses the race
re-reads and re-evaluates, which lands it in case 2 when the winner already
advanced today.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from typing import Optional

from movetrail.core.config import Settings, settings as default_settings
from movetrail.core.errors import StreakConflictError
from movetrail.core.logging import log_event
from movetrail.core.metrics import shields_consumed_total, streak_cas_retries_total, streak_transitions_total
from movetrail.features.milestones.awarder import MilestoneAwarder
from movetrail.features.streaks.calendar import TimezoneCalendar, days_between
from movetrail.features.streaks.ledger import ActivityLedger
from movetrail.features.streaks.shields import ShieldAccount
from movetrail.features.streaks.store import StreakStore
from movetrail.models.streak import StreakTransition, TransitionKind, UserStreak

SHIELD_BRIDGE_GAP_DAYS = 2


def new_streak(user_id: str, now: datetime, timezone: Optional[str] = None, cfg: Optional[Settings] = None) -> UserStreak:
    """Blank streak record for a user seen for the first time."""
    cfg = cfg or default_settings
    return UserStreak(
        user_id=user_id,
        timezone=timezone or cfg.DEFAULT_TIMEZONE,
        shields_available=cfg.INITIAL_SHIELDS,
        created_at=now,
        updated_at=now,
    )


def load_or_create_streak(store: StreakStore, user_id: str, now: datetime, cfg: Optional[Settings] = None) -> UserStreak:
    streak = store.get_streak(user_id)
    if streak is not None:
        return streak
    return store.create_streak_if_missing(new_streak(user_id, now, cfg=cfg))


def apply_transition(
    streak: UserStreak,
    today: date,
    qualified_today: bool,
    now: datetime,
    shields: Optional[ShieldAccount] = None,
) -> tuple[UserStreak, TransitionKind]:
    """
    Pure transition function: returns the next state and the transition kind.

    The input record is never mutated.
    """
    shields = shields or ShieldAccount()

    if not qualified_today:
        return streak, "none"
    # A later stored date only happens after the user moved to a zone further west
    if streak.last_activity_date is not None and streak.last_activity_date >= today:
        return streak, "already_processed"

    updated = replace(streak)
    if streak.last_activity_date is None:
        kind: TransitionKind = "started"
        updated.current_streak = 1
        updated.streak_started_at = now
    else:
        gap = days_between(streak.last_activity_date, today)
        if gap == 1:
            kind = "continued"
            updated.current_streak = streak.current_streak + 1
        elif gap == SHIELD_BRIDGE_GAP_DAYS and shields.can_bridge(streak):
            kind = "shield_used"
            updated = shields.consume(updated)
            updated.current_streak = streak.current_streak + 1
        else:
            kind = "broken"
            updated.current_streak = 1
            updated.streak_started_at = now

    updated.longest_streak = max(streak.longest_streak, updated.current_streak)
    updated.total_active_days = streak.total_active_days + 1
    updated.last_activity_date = today
    updated.updated_at = now
    return updated, kind


class StreakProcessor:
    def __init__(
        self,
        store: StreakStore,
        ledger: ActivityLedger,
        calendar: TimezoneCalendar,
        awarder: Optional[MilestoneAwarder] = None,
        shields: Optional[ShieldAccount] = None,
        max_attempts: Optional[int] = None,
        cfg: Optional[Settings] = None,
    ):
        self.cfg = cfg or default_settings
        self.store = store
        self.ledger = ledger
        self.calendar = calendar
        self.awarder = awarder or MilestoneAwarder(store)
        self.shields = shields or ShieldAccount()
        self.max_attempts = max(1, max_attempts or self.cfg.STREAK_CAS_MAX_ATTEMPTS)

    def process(self, user_id: str, tier_cap: int) -> StreakTransition:
        """
        Evaluate and persist today's transition for user_id.

        Raises:
            StorageError: the store failed; nothing is reported as advanced
            StreakConflictError: every compare-and-swap attempt lost
        """
        for attempt in range(1, self.max_attempts + 1):
            now = self.calendar.now()
            streak = load_or_create_streak(self.store, user_id, now, self.cfg)
            today = self.calendar.local_date(now, streak.timezone)

            windowed, window_changed = self.shields.ensure_weekly_window(streak, tier_cap, today)
            qualified_today = self.ledger.has_qualifying_activity(user_id, today)
            updated, kind = apply_transition(windowed, today, qualified_today, now, self.shields)

            if kind in ("none", "already_processed") and not window_changed:
                return self._finish(user_id, streak, kind, today, now)

            if kind in ("none", "already_processed"):
                updated = replace(updated, updated_at=now)

            if self.store.compare_and_swap_streak(updated, streak.version):
                updated.version = streak.version + 1
                return self._finish(user_id, updated, kind, today, now)

            streak_cas_retries_total.inc()
            log_event(
                "warning",
                "streak.cas_retry",
                user_id=user_id,
                event_type="streak.cas_retry",
                extra={"attempt": attempt, "expected_version": streak.version},
            )

        log_event(
            "error",
            "streak.cas_exhausted",
            user_id=user_id,
            event_type="streak.cas_exhausted",
            error_code="streak_conflict",
            extra={"attempts": self.max_attempts},
        )
        raise StreakConflictError("Streak was updated concurrently; retry the request")

    def _finish(
        self,
        user_id: str,
        streak: UserStreak,
        kind: TransitionKind,
        today: date,
        now: datetime,
    ) -> StreakTransition:
        transition = StreakTransition(
            kind=kind,
            current_streak=streak.current_streak,
            longest_streak=streak.longest_streak,
            shields_remaining=streak.shields_available,
            total_active_days=streak.total_active_days,
            streak_continued=kind in ("continued", "shield_used"),
            streak_started=kind == "started",
            streak_broken=kind == "broken",
            shield_used=kind == "shield_used",
        )

        streak_transitions_total.inc(labels={"kind": kind})
        if transition.shield_used:
            shields_consumed_total.inc()

        if transition.advanced:
            log_event(
                "info",
                "streak.transition",
                user_id=user_id,
                event_type="streak.transition",
                extra={
                    "kind": kind,
                    "activity_date": today.isoformat(),
                    "current_streak": streak.current_streak,
                    "longest_streak": streak.longest_streak,
                    "shields_remaining": streak.shields_available,
                },
            )

        # The streak is already durable; milestone problems are reported, not raised
        try:
            if transition.advanced:
                transition.milestones_earned = self.awarder.check_and_award(
                    user_id, streak.current_streak, today, now
                )
            transition.next_milestone = self.awarder.next_milestone(user_id, streak.current_streak)
        except Exception as exc:
            transition.milestone_error = f"Milestone check failed: {exc}"
            log_event(
                "error",
                "milestone.award_failed",
                user_id=user_id,
                event_type="milestone.award_failed",
                error_code="milestone_error",
                extra={"current_streak": streak.current_streak, "error_type": type(exc).__name__},
                exc_info=True,
            )

        return transition
