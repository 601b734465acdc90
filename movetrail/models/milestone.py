"""
Milestone definitions and their reward payloads.

Reward payloads are a tagged union keyed by `kind`, so the awarder and the
downstream reward-grant collaborator share a typed contract instead of an
open-ended map.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RewardKind(str, Enum):
    BADGE = "badge"
    TRIAL_MOVER = "trial_mover"
    TRIAL_COACH = "trial_coach"
    TRIAL_CRUSHER = "trial_crusher"
    PROFILE_FRAME = "profile_frame"
    LEADERBOARD_FLAIR = "leaderboard_flair"
    APP_ICON = "app_icon"
    POINTS_MULTIPLIER = "points_multiplier"
    CUSTOM = "custom"


TRIAL_KINDS = frozenset({RewardKind.TRIAL_MOVER.value, RewardKind.TRIAL_COACH.value, RewardKind.TRIAL_CRUSHER.value})

CelebrationType = Literal["confetti", "fireworks", "sparkle", "glow"]


class _Reward(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class BadgeReward(_Reward):
    kind: Literal["badge"] = "badge"
    badge_id: str
    badge_name: Optional[str] = None
    badge_tier: Optional[str] = None
    shows_count: bool = False


class TrialReward(_Reward):
    kind: Literal["trial_mover", "trial_coach", "trial_crusher"]
    trial_days: int = Field(default=1, ge=1)
    features: List[str] = Field(default_factory=list)
    badge_id: Optional[str] = None
    badge_name: Optional[str] = None
    badge_tier: Optional[str] = None
    badge_permanent: bool = False
    coach_type: Optional[str] = None
    messages_included: Optional[int] = None


class ProfileFrameReward(_Reward):
    kind: Literal["profile_frame"] = "profile_frame"
    frame_id: str
    frame_name: Optional[str] = None
    frame_rarity: Optional[str] = None


class LeaderboardFlairReward(_Reward):
    kind: Literal["leaderboard_flair"] = "leaderboard_flair"
    flair_id: str
    flair_name: Optional[str] = None
    flair_color: Optional[str] = None
    flair_duration_days: Optional[int] = None
    flair_permanent: bool = False


class AppIconReward(_Reward):
    kind: Literal["app_icon"] = "app_icon"
    icon_id: str
    icon_name: Optional[str] = None
    icon_rarity: Optional[str] = None


class PointsMultiplierReward(_Reward):
    kind: Literal["points_multiplier"] = "points_multiplier"
    multiplier: float = Field(gt=0)
    duration_days: Optional[int] = None


class CustomReward(_Reward):
    kind: Literal["custom"] = "custom"
    data: Dict[str, Any] = Field(default_factory=dict)


RewardPayload = Annotated[
    Union[
        BadgeReward,
        TrialReward,
        ProfileFrameReward,
        LeaderboardFlairReward,
        AppIconReward,
        PointsMultiplierReward,
        CustomReward,
    ],
    Field(discriminator="kind"),
]


class Milestone(BaseModel):
    """A catalog checkpoint on the trail. Immutable once deployed."""

    model_config = ConfigDict(frozen=True)

    milestone_id: str = Field(..., min_length=1)
    day_number: int = Field(..., gt=0)
    name: str
    description: str = ""
    reward: RewardPayload
    icon_name: str = ""
    celebration_type: CelebrationType = "confetti"
    is_repeatable: bool = False
    repeat_interval: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _repeatable_requires_interval(self) -> "Milestone":
        if self.is_repeatable and not self.repeat_interval:
            raise ValueError("repeatable milestones need a positive repeat_interval")
        if not self.is_repeatable and self.repeat_interval is not None:
            raise ValueError("repeat_interval is only valid on repeatable milestones")
        return self

    @property
    def reward_kind(self) -> str:
        return self.reward.kind

    @property
    def is_trial(self) -> bool:
        return self.reward.kind in TRIAL_KINDS

    def reward_payload(self) -> Dict[str, Any]:
        payload = self.reward.model_dump(exclude_none=True)
        payload.pop("kind", None)
        return payload

    def occurs_at(self, streak_length: int) -> bool:
        """True when a streak of this length lands on this milestone."""
        if streak_length < self.day_number:
            return False
        if not self.is_repeatable:
            return streak_length == self.day_number
        return (streak_length - self.day_number) % self.repeat_interval == 0

    def next_occurrence_after(self, streak_length: int) -> Optional[int]:
        """First day strictly after streak_length at which this milestone lands."""
        if streak_length < self.day_number:
            return self.day_number
        if not self.is_repeatable:
            return None
        completed = (streak_length - self.day_number) // self.repeat_interval
        return self.day_number + (completed + 1) * self.repeat_interval
