from datetime import date

import pytest

from movetrail.core.config import Settings
from movetrail.features.entitlements.service import StaticTierResolver, shield_cap_for_tier
from movetrail.features.streaks.shields import ShieldAccount
from movetrail.models.streak import UserStreak

START = date(2026, 1, 1)


def _streak(**overrides) -> UserStreak:
    fields = {"user_id": "u1", "timezone": "America/New_York"}
    fields.update(overrides)
    return UserStreak(**fields)


def test_window_initialized_on_first_use():
    account = ShieldAccount()
    updated, changed = account.ensure_weekly_window(_streak(shields_used_this_week=1), 2, START)

    assert changed is True
    assert updated.shield_week_start == START
    assert updated.shields_used_this_week == 0
    assert updated.shields_available == 1


def test_no_grant_inside_the_week():
    account = ShieldAccount()
    streak = _streak(shields_available=0, shield_week_start=START)
    updated, changed = account.ensure_weekly_window(streak, 2, date(2026, 1, 7))

    assert changed is False
    assert updated.shields_available == 0


def test_one_shield_per_elapsed_window_even_after_long_idle():
    account = ShieldAccount()
    streak = _streak(shields_available=0, shields_used_this_week=1, shield_week_start=START)
    updated, changed = account.ensure_weekly_window(streak, 5, date(2026, 3, 1))

    assert changed is True
    assert updated.shields_available == 1
    assert updated.shields_used_this_week == 0
    assert updated.shield_week_start == date(2026, 3, 1)


def test_grant_never_exceeds_cap():
    account = ShieldAccount()
    streak = _streak(shields_available=2, shield_week_start=START)
    updated, _ = account.ensure_weekly_window(streak, 2, date(2026, 1, 8))

    assert updated.shields_available == 2


def test_shields_above_cap_are_clamped():
    account = ShieldAccount()
    streak = _streak(shields_available=5, shield_week_start=START)
    updated, changed = account.ensure_weekly_window(streak, 2, date(2026, 1, 3))

    assert changed is True
    assert updated.shields_available == 2


def test_shield_economy_over_many_weeks():
    account = ShieldAccount()
    streak = _streak(shields_available=0, shield_week_start=START)
    day = START
    for week in range(10):
        day = date.fromordinal(day.toordinal() + 7)
        streak, _ = account.ensure_weekly_window(streak, 3, day)
        assert streak.shields_available <= 3
    assert streak.shields_available == 3


def test_consume_takes_exactly_one():
    account = ShieldAccount()
    updated = account.consume(_streak(shields_available=2, shields_used_this_week=0))

    assert updated.shields_available == 1
    assert updated.shields_used_this_week == 1


def test_consume_without_shield_raises():
    with pytest.raises(ValueError):
        ShieldAccount().consume(_streak(shields_available=0))


def test_tier_caps():
    cfg = Settings()
    assert shield_cap_for_tier("starter", cfg) == 2
    assert shield_cap_for_tier("mover", cfg) == 3
    assert shield_cap_for_tier("crusher", cfg) == 5
    assert shield_cap_for_tier("platinum", cfg) == 2
    assert shield_cap_for_tier(None, cfg) == 2


def test_static_tier_resolver_defaults():
    resolver = StaticTierResolver({"vip": "crusher"}, default_tier="starter")
    assert resolver.tier_for("vip") == "crusher"
    assert resolver.tier_for("someone") == "starter"

    resolver.set_tier("someone", "mover")
    assert resolver.tier_for("someone") == "mover"
