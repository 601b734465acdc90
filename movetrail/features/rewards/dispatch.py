"""
Reward dispatch protocol.

Defines the hand-off to the downstream reward-grant and notification
collaborators. Dispatch is fire-and-forget from the engine's point of view:
a failure never unwinds a streak update, it is only reported back.
"""
from typing import List, Protocol

from movetrail.core.logging import log_event
from movetrail.models.streak import AwardedMilestone


class RewardDispatchError(Exception):
    """Raised by a dispatcher when the downstream grant could not be queued."""


class RewardDispatcher(Protocol):
    """
    Protocol for reward-grant dispatchers.

    Implementations receive every milestone awarded during one processing
    run and hand it to whatever grants trials, cosmetics or coins.
    """

    def dispatch(self, user_id: str, awards: List[AwardedMilestone]) -> None:
        """
        Queue reward grants for freshly awarded milestones.

        Raises:
            RewardDispatchError: If the grants could not be handed off
        """
        ...


class LoggingRewardDispatcher:
    """Default dispatcher: records each award as a structured log event."""

    def dispatch(self, user_id: str, awards: List[AwardedMilestone]) -> None:
        for award in awards:
            log_event(
                "info",
                "reward.dispatched",
                user_id=user_id,
                event_type="reward.dispatched",
                extra={
                    "progress_id": award.progress_id,
                    "milestone_id": award.milestone_id,
                    "reward_kind": award.reward_kind,
                    "reward_expires_at": award.reward_expires_at.isoformat() if award.reward_expires_at else None,
                },
            )
