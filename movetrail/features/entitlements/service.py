"""
movetrail/features/entitlements/service.py

Subscription tier lookup and the entitlements derived from it.

Tier resolution is an external concern (billing owns it); the engine only
needs the shield cap for a user's tier.
"""

from enum import Enum
from typing import Dict, Optional, Protocol
import logging

from movetrail.core.config import Settings, settings as default_settings


logger = logging.getLogger(__name__)


class SubscriptionTier(str, Enum):
    STARTER = "starter"
    MOVER = "mover"
    CRUSHER = "crusher"


class TierResolver(Protocol):
    """Supplies a user's subscription tier."""

    def tier_for(self, user_id: str) -> str:
        ...


class StaticTierResolver:
    """
    Tier lookup backed by a fixed mapping.

    Users missing from the mapping get the configured default tier.
    """

    def __init__(self, tiers: Optional[Dict[str, str]] = None, default_tier: Optional[str] = None):
        self._tiers = dict(tiers or {})
        self.default_tier = default_tier or default_settings.DEFAULT_SUBSCRIPTION_TIER

    def tier_for(self, user_id: str) -> str:
        return self._tiers.get(user_id, self.default_tier)

    def set_tier(self, user_id: str, tier: str) -> None:
        self._tiers[user_id] = tier


def shield_cap_for_tier(tier: Optional[str], cfg: Optional[Settings] = None) -> int:
    """
    Maximum shields a user on `tier` may hold.

    Unknown tiers get the starter cap.
    """
    cfg = cfg or default_settings
    caps = {
        SubscriptionTier.STARTER.value: cfg.SHIELD_CAP_STARTER,
        SubscriptionTier.MOVER.value: cfg.SHIELD_CAP_MOVER,
        SubscriptionTier.CRUSHER.value: cfg.SHIELD_CAP_CRUSHER,
    }
    key = (tier or "").lower()
    if key not in caps:
        logger.warning(
            "[entitlements] unknown subscription tier, using starter cap",
            extra={"tier": tier},
        )
        return caps[SubscriptionTier.STARTER.value]
    return caps[key]
