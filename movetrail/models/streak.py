from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Literal, Optional

StreakHealth = Literal["safe", "at_risk", "broken", "inactive"]
TransitionKind = Literal["none", "already_processed", "started", "continued", "shield_used", "broken"]

DEFAULT_SOURCE = "unknown"


class ActivityKind(str, Enum):
    STEPS = "steps"
    WORKOUT = "workout"
    COMPETITION_GOAL = "competition_goal"
    ACTIVE_MINUTES = "active_minutes"
    RINGS_CLOSED = "rings_closed"
    CUSTOM = "custom"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


@dataclass
class UserStreak:
    """
    Per-user streak state. Mutated only by the streak processor; `version`
    is the compare-and-swap token the stores check on every write.
    """

    user_id: str
    timezone: str
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None
    streak_started_at: Optional[datetime] = None
    shields_available: int = 1
    shields_used_this_week: int = 0
    shield_week_start: Optional[date] = None
    total_active_days: int = 0
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def copy(self) -> UserStreak:
        return replace(self)


@dataclass
class ActivityLogEntry:
    user_id: str
    activity_date: date
    activity_kind: str
    activity_value: float
    qualifies: bool
    source: str = DEFAULT_SOURCE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class LedgerWriteResult:
    entry: ActivityLogEntry
    was_already_qualifying: bool
    created: bool
    # Whether this report on its own met the threshold; entry.qualifies may
    # also reflect a concurrent report for the same day.
    report_qualifies: bool = False


@dataclass
class MilestoneProgress:
    progress_id: str
    user_id: str
    milestone_id: str
    earned_at: datetime
    earned_date: date
    reward_claimed: bool = False
    reward_claimed_at: Optional[datetime] = None
    reward_expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.reward_expires_at is not None and self.reward_expires_at <= now


@dataclass
class AwardedMilestone:
    """A milestone instance granted during one processing run."""

    progress_id: str
    milestone_id: str
    day_number: int
    name: str
    description: str
    reward_kind: str
    reward_payload: dict
    icon_name: str
    celebration_type: str
    reward_expires_at: Optional[datetime] = None


@dataclass
class NextMilestone:
    milestone_id: str
    day_number: int
    name: str
    days_away: int


@dataclass
class StreakTransition:
    """Outcome of one streak processing run."""

    kind: TransitionKind
    current_streak: int
    longest_streak: int
    shields_remaining: int
    total_active_days: int
    streak_continued: bool = False
    streak_started: bool = False
    streak_broken: bool = False
    shield_used: bool = False
    milestones_earned: list[AwardedMilestone] = field(default_factory=list)
    next_milestone: Optional[NextMilestone] = None
    milestone_error: Optional[str] = None

    @property
    def advanced(self) -> bool:
        return self.kind in ("started", "continued", "shield_used", "broken")


@dataclass
class LogActivityResult:
    activity_logged: bool
    activity_date: date
    qualifies_for_streak: bool
    was_new_qualifying_activity: bool
    streak_processed: bool
    streak_status: Optional[StreakTransition] = None
    error: Optional[str] = None


@dataclass
class StreakStatus:
    """Read-only view of a user's streak as of today."""

    user_id: str
    timezone: str
    today: date
    current_streak: int
    longest_streak: int
    last_activity_date: Optional[date]
    streak_started_at: Optional[datetime]
    shields_available: int
    shields_used_this_week: int
    total_active_days: int
    today_qualified: bool
    health: StreakHealth
    next_milestone: Optional[NextMilestone] = None
