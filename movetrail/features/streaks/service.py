"""
movetrail/features/streaks/service.py

Streak orchestration: activity logging, streak processing, status and
reward bookkeeping.

Failure contract for log_activity:
- input errors are raised before anything is written
- a ledger failure aborts the request (nothing counts as logged)
- a processing failure after the ledger write returns streak_processed=False
  with an error; process_streak() is the retry path
- milestone and reward dispatch failures never undo an advanced streak
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import List, Optional, Tuple

from movetrail.core.config import Settings, settings as default_settings
from movetrail.core.errors import StreakConflictError, ValidationError
from movetrail.core.logging import log_event
from movetrail.core.metrics import streak_cas_retries_total
from movetrail.features.entitlements.service import StaticTierResolver, TierResolver, shield_cap_for_tier
from movetrail.features.milestones.awarder import MilestoneAwarder
from movetrail.features.milestones.catalog import DEFAULT_CATALOG, MilestoneCatalog
from movetrail.features.rewards.dispatch import LoggingRewardDispatcher, RewardDispatcher
from movetrail.features.streaks.calendar import TimezoneCalendar, days_between, is_valid_zone, parse_date
from movetrail.features.streaks.ledger import ActivityLedger, is_newly_qualifying
from movetrail.features.streaks.processor import StreakProcessor, load_or_create_streak, new_streak
from movetrail.features.streaks.qualifier import ActivityQualifier
from movetrail.features.streaks.store import StreakStore, get_store
from movetrail.models.milestone import Milestone
from movetrail.models.streak import (
    ActivityKind,
    ActivityLogEntry,
    AwardedMilestone,
    LogActivityResult,
    MilestoneProgress,
    StreakHealth,
    StreakStatus,
    StreakTransition,
    UserStreak,
)

PROCESSING_FAILED_MESSAGE = "Activity logged but streak processing failed"


@dataclass
class UserReward:
    progress: MilestoneProgress
    milestone: Optional[Milestone]


def streak_health(streak: UserStreak, today: date) -> StreakHealth:
    """
    safe: already active today
    at_risk: still alive but needs activity today
    broken: the next qualifying day will restart the streak
    inactive: no streak at all
    """
    if streak.current_streak <= 0 or streak.last_activity_date is None:
        return "inactive"
    if streak.last_activity_date >= today:
        return "safe"
    gap = days_between(streak.last_activity_date, today)
    if gap == 1:
        return "at_risk"
    if gap == 2 and streak.shields_available > 0:
        return "at_risk"
    return "broken"


class StreakService:
    def __init__(
        self,
        store: Optional[StreakStore] = None,
        calendar: Optional[TimezoneCalendar] = None,
        qualifier: Optional[ActivityQualifier] = None,
        catalog: Optional[MilestoneCatalog] = None,
        tier_resolver: Optional[TierResolver] = None,
        dispatcher: Optional[RewardDispatcher] = None,
        cfg: Optional[Settings] = None,
    ):
        self.cfg = cfg or default_settings
        self.store = store if store is not None else get_store()
        self.calendar = calendar or TimezoneCalendar()
        self.catalog = catalog or DEFAULT_CATALOG
        self.ledger = ActivityLedger(self.store, qualifier or ActivityQualifier())
        self.awarder = MilestoneAwarder(self.store, self.catalog)
        self.processor = StreakProcessor(
            self.store,
            self.ledger,
            self.calendar,
            awarder=self.awarder,
            cfg=self.cfg,
        )
        self.tier_resolver = tier_resolver or StaticTierResolver(default_tier=self.cfg.DEFAULT_SUBSCRIPTION_TIER)
        self.dispatcher = dispatcher or LoggingRewardDispatcher()

    # --- activity ---

    def log_activity(
        self,
        user_id: str,
        activity_kind: str,
        activity_value: float,
        source: Optional[str] = None,
        override_timezone: Optional[str] = None,
        override_date: Optional[str] = None,
    ) -> LogActivityResult:
        kind = self._validate_kind(activity_kind)
        value = self._validate_value(activity_value)

        requested_date = parse_date(override_date, field="override_date") if override_date else None

        now = self.calendar.now()
        stored = self.store.get_streak(user_id)
        streak = stored or new_streak(user_id, now, cfg=self.cfg)

        zone = streak.timezone
        if override_timezone:
            if is_valid_zone(override_timezone):
                zone = override_timezone
            else:
                log_event(
                    "warning",
                    "timezone.override_ignored",
                    user_id=user_id,
                    event_type="timezone.override_ignored",
                    extra={"override_timezone": override_timezone, "timezone": streak.timezone},
                )

        today = self.calendar.local_date(now, zone)
        activity_date = today
        if requested_date is not None:
            activity_date = requested_date
            if activity_date > today:
                raise ValidationError("override_date cannot be in the future", field="override_date")

        if stored is None:
            # First report from this user, qualifying or not, creates the record
            self.store.create_streak_if_missing(streak)

        written = self.ledger.record(user_id, activity_date, kind, value, now, source=source)
        newly_qualifying = is_newly_qualifying(written)

        if not newly_qualifying:
            return LogActivityResult(
                activity_logged=True,
                activity_date=activity_date,
                qualifies_for_streak=written.entry.qualifies,
                was_new_qualifying_activity=False,
                streak_processed=False,
                streak_status=self._current_transition(user_id),
            )

        try:
            transition = self.processor.process(user_id, self._tier_cap(user_id))
        except Exception as exc:
            log_event(
                "error",
                "streak.process_failed",
                user_id=user_id,
                event_type="streak.process_failed",
                error_code=getattr(exc, "code", "internal_error"),
                extra={"activity_date": activity_date.isoformat(), "error_type": type(exc).__name__},
                exc_info=True,
            )
            return LogActivityResult(
                activity_logged=True,
                activity_date=activity_date,
                qualifies_for_streak=written.entry.qualifies,
                was_new_qualifying_activity=True,
                streak_processed=False,
                streak_status=None,
                error=PROCESSING_FAILED_MESSAGE,
            )

        return LogActivityResult(
            activity_logged=True,
            activity_date=activity_date,
            qualifies_for_streak=written.entry.qualifies,
            was_new_qualifying_activity=True,
            streak_processed=True,
            streak_status=transition,
            error=self._post_process_error(user_id, transition),
        )

    def process_streak(self, user_id: str) -> Tuple[StreakTransition, Optional[str]]:
        """Re-run processing over already logged state. Writes no ledger rows."""
        transition = self.processor.process(user_id, self._tier_cap(user_id))
        return transition, self._post_process_error(user_id, transition)

    def activity_history(self, user_id: str, limit: int = 30) -> List[ActivityLogEntry]:
        return self.ledger.history(user_id, limit=limit)

    # --- status ---

    def get_status(self, user_id: str) -> StreakStatus:
        now = self.calendar.now()
        streak = self.store.get_streak(user_id) or new_streak(user_id, now, cfg=self.cfg)
        today = self.calendar.local_date(now, streak.timezone)
        return StreakStatus(
            user_id=user_id,
            timezone=streak.timezone,
            today=today,
            current_streak=streak.current_streak,
            longest_streak=streak.longest_streak,
            last_activity_date=streak.last_activity_date,
            streak_started_at=streak.streak_started_at,
            shields_available=streak.shields_available,
            shields_used_this_week=streak.shields_used_this_week,
            total_active_days=streak.total_active_days,
            today_qualified=self.ledger.has_qualifying_activity(user_id, today),
            health=streak_health(streak, today),
            next_milestone=self.awarder.next_milestone(user_id, streak.current_streak),
        )

    def update_timezone(self, user_id: str, zone: str) -> StreakStatus:
        if not is_valid_zone(zone):
            raise ValidationError(f"Unknown timezone: {zone}", field="timezone")

        for attempt in range(1, self.processor.max_attempts + 1):
            now = self.calendar.now()
            streak = load_or_create_streak(self.store, user_id, now, self.cfg)
            if streak.timezone == zone:
                return self.get_status(user_id)
            updated = replace(streak, timezone=zone, updated_at=now)
            if self.store.compare_and_swap_streak(updated, streak.version):
                log_event(
                    "info",
                    "timezone.updated",
                    user_id=user_id,
                    event_type="timezone.updated",
                    extra={"previous_timezone": streak.timezone, "timezone": zone},
                )
                return self.get_status(user_id)
            streak_cas_retries_total.inc()

        raise StreakConflictError("Streak was updated concurrently; retry the request")

    # --- milestones & rewards ---

    def recheck_milestones(self, user_id: str) -> Tuple[List[AwardedMilestone], Optional[str]]:
        """
        Re-run the awarder against the persisted streak.

        Awards are dated on the day the streak reached its current length, so
        a recheck on a later day cannot record a second repeat occurrence.
        """
        streak = self.store.get_streak(user_id)
        if streak is None or streak.current_streak <= 0 or streak.last_activity_date is None:
            return [], None

        awards = self.awarder.check_and_award(
            user_id, streak.current_streak, streak.last_activity_date, self.calendar.now()
        )
        return awards, self._dispatch(user_id, awards)

    def list_catalog(self) -> List[Milestone]:
        return self.catalog.all()

    def list_rewards(self, user_id: str, unclaimed_only: bool = False) -> List[UserReward]:
        rows = self.awarder.list_progress(user_id, self.calendar.now(), unclaimed_only=unclaimed_only)
        return [UserReward(progress=row, milestone=self.catalog.get(row.milestone_id)) for row in rows]

    def claim_reward(self, user_id: str, progress_id: str) -> UserReward:
        progress = self.awarder.claim_reward(user_id, progress_id, self.calendar.now())
        return UserReward(progress=progress, milestone=self.catalog.get(progress.milestone_id))

    # --- helpers ---

    def _tier_cap(self, user_id: str) -> int:
        return shield_cap_for_tier(self.tier_resolver.tier_for(user_id), self.cfg)

    def _current_transition(self, user_id: str) -> StreakTransition:
        """Unchanged view of the stored streak, reported when nothing advanced."""
        latest = self.store.get_streak(user_id) or new_streak(user_id, self.calendar.now(), cfg=self.cfg)
        return StreakTransition(
            kind="none",
            current_streak=latest.current_streak,
            longest_streak=latest.longest_streak,
            shields_remaining=latest.shields_available,
            total_active_days=latest.total_active_days,
            next_milestone=self.awarder.next_milestone(latest.user_id, latest.current_streak),
        )

    def _post_process_error(self, user_id: str, transition: StreakTransition) -> Optional[str]:
        dispatch_error = self._dispatch(user_id, transition.milestones_earned)
        return transition.milestone_error or dispatch_error

    def _dispatch(self, user_id: str, awards: List[AwardedMilestone]) -> Optional[str]:
        if not awards:
            return None
        try:
            self.dispatcher.dispatch(user_id, awards)
        except Exception as exc:
            log_event(
                "error",
                "reward.dispatch_failed",
                user_id=user_id,
                event_type="reward.dispatch_failed",
                error_code="reward_dispatch_error",
                extra={
                    "milestone_ids": ",".join(a.milestone_id for a in awards),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return "Milestones awarded but reward dispatch failed"
        return None

    @staticmethod
    def _validate_kind(activity_kind) -> str:
        if isinstance(activity_kind, ActivityKind):
            return activity_kind.value
        if not activity_kind:
            raise ValidationError("activity_kind is required", field="activity_kind")
        if activity_kind not in ActivityKind.values():
            raise ValidationError(
                f"Invalid activity_kind. Must be one of: {', '.join(ActivityKind.values())}",
                field="activity_kind",
            )
        return activity_kind

    @staticmethod
    def _validate_value(activity_value) -> float:
        if activity_value is None:
            raise ValidationError("activity_value is required", field="activity_value")
        if isinstance(activity_value, bool) or not isinstance(activity_value, (int, float)):
            raise ValidationError("activity_value must be a number", field="activity_value")
        if activity_value != activity_value or activity_value < 0:
            raise ValidationError("activity_value must be a non-negative number", field="activity_value")
        return float(activity_value)


_service_instance: Optional[StreakService] = None


def get_streak_service() -> StreakService:
    """Singleton service used by routes."""
    global _service_instance
    if _service_instance is None:
        _service_instance = StreakService()
    return _service_instance


def reset_streak_service() -> None:
    """FOR TESTING ONLY - forces re-initialization on next get_streak_service() call."""
    global _service_instance
    _service_instance = None
