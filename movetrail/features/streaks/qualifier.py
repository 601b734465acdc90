"""Which activity reports count toward a streak."""

from __future__ import annotations

from typing import Callable, Dict, Optional

from movetrail.core.config import Settings, settings as default_settings
from movetrail.models.streak import ActivityKind

Rule = Callable[[float], bool]


def build_rules(cfg: Optional[Settings] = None) -> Dict[str, Rule]:
    cfg = cfg or default_settings
    return {
        ActivityKind.STEPS.value: lambda value: value >= cfg.STREAK_MIN_STEPS,
        ActivityKind.WORKOUT.value: lambda value: value >= cfg.STREAK_MIN_WORKOUT_MINUTES,
        ActivityKind.COMPETITION_GOAL.value: lambda value: True,
        ActivityKind.ACTIVE_MINUTES.value: lambda value: value >= cfg.STREAK_MIN_ACTIVE_MINUTES,
        ActivityKind.RINGS_CLOSED.value: lambda value: value >= cfg.STREAK_MIN_RINGS_CLOSED,
        # Custom activities never count unless a rule is configured for them
        ActivityKind.CUSTOM.value: lambda value: False,
    }


class ActivityQualifier:
    """Stateless mapping from (kind, magnitude) to "counts toward streak"."""

    def __init__(self, rules: Optional[Dict[str, Rule]] = None):
        self._rules = rules if rules is not None else build_rules()

    def qualifies(self, kind: str, value: float) -> bool:
        if isinstance(kind, ActivityKind):
            kind = kind.value
        rule = self._rules.get(kind)
        if rule is None:
            return False
        return bool(rule(value))

    def known_kinds(self) -> list[str]:
        return list(self._rules)
