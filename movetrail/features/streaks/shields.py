"""
Shield economy.

A shield forgives exactly one missed day. Each user earns at most one shield
per elapsed 7-day window, up to the cap of their subscription tier.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Tuple

from movetrail.features.streaks.calendar import days_between
from movetrail.models.streak import UserStreak

SHIELD_WINDOW_DAYS = 7


class ShieldAccount:
    def ensure_weekly_window(self, streak: UserStreak, tier_cap: int, today: date) -> Tuple[UserStreak, bool]:
        """
        Maintain the weekly shield window.

        Returns the (possibly) updated copy and whether anything changed.
        A window rolled after several idle weeks still grants one shield.
        """
        tier_cap = max(0, tier_cap)
        updated = replace(streak)

        if updated.shield_week_start is None:
            updated.shield_week_start = today
            updated.shields_used_this_week = 0
        elif days_between(updated.shield_week_start, today) >= SHIELD_WINDOW_DAYS and today > updated.shield_week_start:
            updated.shield_week_start = today
            updated.shields_used_this_week = 0
            updated.shields_available = min(updated.shields_available + 1, tier_cap)

        if updated.shields_available > tier_cap:
            updated.shields_available = tier_cap

        return updated, updated != streak

    def can_bridge(self, streak: UserStreak) -> bool:
        return streak.shields_available > 0

    def consume(self, streak: UserStreak) -> UserStreak:
        if streak.shields_available <= 0:
            raise ValueError("no shield available")
        return replace(
            streak,
            shields_available=streak.shields_available - 1,
            shields_used_this_week=streak.shields_used_this_week + 1,
        )
