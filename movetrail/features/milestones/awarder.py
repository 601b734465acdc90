"""
movetrail/features/milestones/awarder.py

Milestone awarding, next-milestone lookup and reward claiming.

Awards are recorded as MilestoneProgress rows; the store's unique key on
(user, milestone, earned_date) makes a duplicate insert a no-op, so a
concurrent second award attempt is reported as "already awarded".
"""

from datetime import date, datetime, timedelta
from typing import List, Optional
from uuid import uuid4

from movetrail.core.errors import ConflictError, NotFoundError
from movetrail.core.logging import log_event
from movetrail.core.metrics import milestones_awarded_total
from movetrail.features.milestones.catalog import DEFAULT_CATALOG, MilestoneCatalog
from movetrail.features.streaks.store import StreakStore
from movetrail.models.milestone import Milestone
from movetrail.models.streak import AwardedMilestone, MilestoneProgress, NextMilestone


def build_award(milestone: Milestone, progress: MilestoneProgress) -> AwardedMilestone:
    return AwardedMilestone(
        progress_id=progress.progress_id,
        milestone_id=milestone.milestone_id,
        day_number=milestone.day_number,
        name=milestone.name,
        description=milestone.description,
        reward_kind=milestone.reward_kind,
        reward_payload=milestone.reward_payload(),
        icon_name=milestone.icon_name,
        celebration_type=milestone.celebration_type,
        reward_expires_at=progress.reward_expires_at,
    )


def reward_expiry(milestone: Milestone, earned_at: datetime) -> Optional[datetime]:
    """Trial rewards lapse trial_days after they are earned; others never do."""
    if not milestone.is_trial:
        return None
    return earned_at + timedelta(days=milestone.reward.trial_days)


class MilestoneAwarder:
    def __init__(self, store: StreakStore, catalog: Optional[MilestoneCatalog] = None):
        self.store = store
        self.catalog = catalog or DEFAULT_CATALOG

    def check_and_award(
        self,
        user_id: str,
        streak_length: int,
        today: date,
        now: datetime,
    ) -> List[AwardedMilestone]:
        """
        Award every milestone a streak of streak_length lands on.

        Non-repeatable entries are awarded once per user, ever. Repeatable
        entries are awarded at most once per calendar day.
        """
        awarded: List[AwardedMilestone] = []
        if streak_length <= 0:
            return awarded

        for milestone in self.catalog.up_to(streak_length):
            if not milestone.occurs_at(streak_length):
                continue

            existing = self.store.list_progress(user_id, milestone.milestone_id)
            if milestone.is_repeatable:
                if any(p.earned_date == today for p in existing):
                    continue
            elif existing:
                continue

            progress = MilestoneProgress(
                progress_id=str(uuid4()),
                user_id=user_id,
                milestone_id=milestone.milestone_id,
                earned_at=now,
                earned_date=today,
                reward_expires_at=reward_expiry(milestone, now),
            )
            if not self.store.insert_progress(progress):
                continue

            milestones_awarded_total.inc(labels={"reward_kind": milestone.reward_kind})
            log_event(
                "info",
                "milestone.awarded",
                user_id=user_id,
                event_type="milestone.awarded",
                extra={
                    "milestone_id": milestone.milestone_id,
                    "day_number": milestone.day_number,
                    "streak_length": streak_length,
                    "reward_kind": milestone.reward_kind,
                },
            )
            awarded.append(build_award(milestone, progress))

        return awarded

    def next_milestone(self, user_id: str, current_streak: int) -> Optional[NextMilestone]:
        """
        Nearest milestone still ahead of current_streak.

        Earned non-repeatable entries are skipped. Once every one-time entry
        is behind the user, the nearest upcoming repeat occurrence is used.
        """
        current_streak = max(0, current_streak)
        earned = {p.milestone_id for p in self.store.list_progress(user_id)}

        for milestone in self.catalog.after(current_streak):
            if milestone.is_repeatable or milestone.milestone_id not in earned:
                return NextMilestone(
                    milestone_id=milestone.milestone_id,
                    day_number=milestone.day_number,
                    name=milestone.name,
                    days_away=milestone.day_number - current_streak,
                )

        best: Optional[NextMilestone] = None
        for milestone in self.catalog.repeatables():
            day = milestone.next_occurrence_after(current_streak)
            if day is None:
                continue
            if best is None or day < best.day_number:
                best = NextMilestone(
                    milestone_id=milestone.milestone_id,
                    day_number=day,
                    name=milestone.name,
                    days_away=day - current_streak,
                )
        return best

    def list_progress(self, user_id: str, now: datetime, unclaimed_only: bool = False) -> List[MilestoneProgress]:
        rows = self.store.list_progress(user_id)
        if unclaimed_only:
            rows = [p for p in rows if not p.reward_claimed and not p.is_expired(now)]
        return rows

    def claim_reward(self, user_id: str, progress_id: str, now: datetime) -> MilestoneProgress:
        progress = self.store.get_progress(progress_id)
        # Other users' rewards are indistinguishable from missing ones
        if progress is None or progress.user_id != user_id:
            raise NotFoundError("Reward not found")
        if progress.reward_claimed:
            raise ConflictError("Reward already claimed", code="already_claimed")
        if progress.is_expired(now):
            raise ConflictError("Reward has expired", code="reward_expired")
        if not self.store.mark_progress_claimed(progress_id, now):
            raise ConflictError("Reward already claimed", code="already_claimed")

        log_event(
            "info",
            "reward.claimed",
            user_id=user_id,
            event_type="reward.claimed",
            extra={"progress_id": progress_id, "milestone_id": progress.milestone_id},
        )
        progress.reward_claimed = True
        progress.reward_claimed_at = now
        return progress
