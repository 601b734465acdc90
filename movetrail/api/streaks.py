"""
movetrail/api/streaks.py
Streak API: log activity, process streaks, status, milestones and rewards.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator

from movetrail.core.auth import get_current_user_id
from movetrail.features.streaks.service import StreakService, UserReward, get_streak_service
from movetrail.models.milestone import Milestone
from movetrail.models.streak import (
    ActivityKind,
    ActivityLogEntry,
    AwardedMilestone,
    LogActivityResult,
    NextMilestone,
    StreakStatus,
    StreakTransition,
)

router = APIRouter(prefix="/v1/streaks", tags=["streaks"])


def get_service() -> StreakService:
    return get_streak_service()


# --- request schemas ---

class LogActivityRequest(BaseModel):
    activity_kind: ActivityKind
    activity_value: float = Field(..., ge=0)
    source: Optional[str] = Field(None, max_length=100)
    override_timezone: Optional[str] = Field(None, max_length=64)
    override_date: Optional[str] = Field(None, description="YYYY-MM-DD, for backfill logging")

    @field_validator("activity_value", mode="before")
    @classmethod
    def _require_json_number(cls, value):
        # Lax float parsing would turn "1500" or true into a number
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("activity_value must be a number")
        return value


class TimezoneUpdateRequest(BaseModel):
    timezone: str = Field(..., min_length=1, max_length=64)


# --- response schemas ---

class NextMilestoneOut(BaseModel):
    milestone_id: str
    day_number: int
    name: str
    days_away: int


class MilestoneEarnedOut(BaseModel):
    progress_id: str
    milestone_id: str
    day_number: int
    name: str
    description: str
    reward_kind: str
    reward_payload: Dict[str, Any]
    icon_name: str
    celebration_type: str
    reward_expires_at: Optional[datetime] = None


class StreakTransitionOut(BaseModel):
    current_streak: int
    longest_streak: int
    streak_continued: bool
    streak_started: bool
    streak_broken: bool
    shield_used: bool
    shields_remaining: int
    milestones_earned: List[MilestoneEarnedOut]
    next_milestone: Optional[NextMilestoneOut] = None
    total_active_days: int


class LogActivityOut(BaseModel):
    activity_logged: bool
    activity_date: date
    qualifies_for_streak: bool
    was_new_qualifying_activity: bool
    streak_processed: bool
    streak_status: Optional[StreakTransitionOut] = None
    error: Optional[str] = None


class ProcessStreakOut(BaseModel):
    streak_status: StreakTransitionOut
    error: Optional[str] = None


class StreakStatusOut(BaseModel):
    user_id: str
    timezone: str
    today: date
    current_streak: int
    longest_streak: int
    last_activity_date: Optional[date] = None
    streak_started_at: Optional[datetime] = None
    shields_available: int
    shields_used_this_week: int
    total_active_days: int
    today_qualified: bool
    health: str
    next_milestone: Optional[NextMilestoneOut] = None


class ActivityEntryOut(BaseModel):
    activity_date: date
    activity_kind: str
    activity_value: float
    qualifies: bool
    source: str


class MilestoneOut(BaseModel):
    milestone_id: str
    day_number: int
    name: str
    description: str
    reward_kind: str
    reward_payload: Dict[str, Any]
    icon_name: str
    celebration_type: str
    is_repeatable: bool
    repeat_interval: Optional[int] = None


class RewardOut(BaseModel):
    progress_id: str
    milestone_id: str
    name: Optional[str] = None
    day_number: Optional[int] = None
    reward_kind: Optional[str] = None
    reward_payload: Dict[str, Any] = {}
    earned_at: datetime
    earned_date: date
    reward_claimed: bool
    reward_claimed_at: Optional[datetime] = None
    reward_expires_at: Optional[datetime] = None


class RecheckOut(BaseModel):
    milestones_earned: List[MilestoneEarnedOut]
    error: Optional[str] = None


# --- serializers ---

def _next_out(next_milestone: Optional[NextMilestone]) -> Optional[NextMilestoneOut]:
    if next_milestone is None:
        return None
    return NextMilestoneOut(
        milestone_id=next_milestone.milestone_id,
        day_number=next_milestone.day_number,
        name=next_milestone.name,
        days_away=next_milestone.days_away,
    )


def _earned_out(award: AwardedMilestone) -> MilestoneEarnedOut:
    return MilestoneEarnedOut(
        progress_id=award.progress_id,
        milestone_id=award.milestone_id,
        day_number=award.day_number,
        name=award.name,
        description=award.description,
        reward_kind=award.reward_kind,
        reward_payload=award.reward_payload,
        icon_name=award.icon_name,
        celebration_type=award.celebration_type,
        reward_expires_at=award.reward_expires_at,
    )


def _transition_out(transition: Optional[StreakTransition]) -> Optional[StreakTransitionOut]:
    if transition is None:
        return None
    return StreakTransitionOut(
        current_streak=transition.current_streak,
        longest_streak=transition.longest_streak,
        streak_continued=transition.streak_continued,
        streak_started=transition.streak_started,
        streak_broken=transition.streak_broken,
        shield_used=transition.shield_used,
        shields_remaining=transition.shields_remaining,
        milestones_earned=[_earned_out(a) for a in transition.milestones_earned],
        next_milestone=_next_out(transition.next_milestone),
        total_active_days=transition.total_active_days,
    )


def _log_result_out(result: LogActivityResult) -> LogActivityOut:
    return LogActivityOut(
        activity_logged=result.activity_logged,
        activity_date=result.activity_date,
        qualifies_for_streak=result.qualifies_for_streak,
        was_new_qualifying_activity=result.was_new_qualifying_activity,
        streak_processed=result.streak_processed,
        streak_status=_transition_out(result.streak_status),
        error=result.error,
    )


def _status_out(status: StreakStatus) -> StreakStatusOut:
    return StreakStatusOut(
        user_id=status.user_id,
        timezone=status.timezone,
        today=status.today,
        current_streak=status.current_streak,
        longest_streak=status.longest_streak,
        last_activity_date=status.last_activity_date,
        streak_started_at=status.streak_started_at,
        shields_available=status.shields_available,
        shields_used_this_week=status.shields_used_this_week,
        total_active_days=status.total_active_days,
        today_qualified=status.today_qualified,
        health=status.health,
        next_milestone=_next_out(status.next_milestone),
    )


def _activity_out(entry: ActivityLogEntry) -> ActivityEntryOut:
    return ActivityEntryOut(
        activity_date=entry.activity_date,
        activity_kind=entry.activity_kind,
        activity_value=entry.activity_value,
        qualifies=entry.qualifies,
        source=entry.source,
    )


def _milestone_out(milestone: Milestone) -> MilestoneOut:
    return MilestoneOut(
        milestone_id=milestone.milestone_id,
        day_number=milestone.day_number,
        name=milestone.name,
        description=milestone.description,
        reward_kind=milestone.reward_kind,
        reward_payload=milestone.reward_payload(),
        icon_name=milestone.icon_name,
        celebration_type=milestone.celebration_type,
        is_repeatable=milestone.is_repeatable,
        repeat_interval=milestone.repeat_interval,
    )


def _reward_out(reward: UserReward) -> RewardOut:
    progress, milestone = reward.progress, reward.milestone
    return RewardOut(
        progress_id=progress.progress_id,
        milestone_id=progress.milestone_id,
        name=milestone.name if milestone else None,
        day_number=milestone.day_number if milestone else None,
        reward_kind=milestone.reward_kind if milestone else None,
        reward_payload=milestone.reward_payload() if milestone else {},
        earned_at=progress.earned_at,
        earned_date=progress.earned_date,
        reward_claimed=progress.reward_claimed,
        reward_claimed_at=progress.reward_claimed_at,
        reward_expires_at=progress.reward_expires_at,
    )


def _ok(data: Any) -> dict:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [item.model_dump(mode="json") for item in data]
    return {"success": True, "data": data}


# --- routes ---

@router.post("/activity")
def log_activity_endpoint(
    body: LogActivityRequest,
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_service),
):
    """Log one activity report and advance the streak if the day newly qualifies."""
    result = service.log_activity(
        user_id,
        body.activity_kind.value,
        body.activity_value,
        source=body.source,
        override_timezone=body.override_timezone,
        override_date=body.override_date,
    )
    return _ok(_log_result_out(result))


@router.post("/process")
def process_streak_endpoint(
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_service),
):
    """Retry streak processing for activity that is already logged."""
    transition, error = service.process_streak(user_id)
    return _ok(ProcessStreakOut(streak_status=_transition_out(transition), error=error))


@router.get("/status")
def get_status_endpoint(
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_service),
):
    return _ok(_status_out(service.get_status(user_id)))


@router.put("/timezone")
def update_timezone_endpoint(
    body: TimezoneUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_service),
):
    return _ok(_status_out(service.update_timezone(user_id, body.timezone)))


@router.get("/activity")
def activity_history_endpoint(
    limit: int = Query(30, ge=1, le=365),
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_service),
):
    """Most recent activity days first."""
    return _ok([_activity_out(e) for e in service.activity_history(user_id, limit=limit)])


@router.get("/milestones")
def list_milestones_endpoint(service: StreakService = Depends(get_service)):
    """The milestone catalog, ordered by day number."""
    return _ok([_milestone_out(m) for m in service.list_catalog()])


@router.post("/milestones/recheck")
def recheck_milestones_endpoint(
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_service),
):
    awards, error = service.recheck_milestones(user_id)
    return _ok(RecheckOut(milestones_earned=[_earned_out(a) for a in awards], error=error))


@router.get("/rewards")
def list_rewards_endpoint(
    unclaimed_only: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_service),
):
    return _ok([_reward_out(r) for r in service.list_rewards(user_id, unclaimed_only=unclaimed_only)])


@router.post("/rewards/{progress_id}/claim")
def claim_reward_endpoint(
    progress_id: str,
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_service),
):
    return _ok(_reward_out(service.claim_reward(user_id, progress_id)))
