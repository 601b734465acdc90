"""
Service-level tests: activity logging end to end on the in-memory store
with a pinned clock (2026-01-15 10:00 America/New_York).
"""

import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from movetrail.core.errors import StorageError, ValidationError
from movetrail.features.milestones.catalog import MilestoneCatalog
from movetrail.features.rewards.dispatch import RewardDispatchError
from movetrail.features.streaks.service import PROCESSING_FAILED_MESSAGE, StreakService
from movetrail.features.streaks.store import InMemoryStreakStore
from movetrail.models.milestone import BadgeReward, Milestone

DAY_ONE = date(2026, 1, 15)


def _next_day(clock, days=1):
    clock.advance(days=days)


# --- example scenarios ---

def test_first_to_broken_walkthrough(service, clock):
    first = service.log_activity("u1", "workout", 15)
    assert first.qualifies_for_streak is True
    assert first.streak_processed is True
    assert first.streak_status.streak_started is True
    assert first.streak_status.current_streak == 1

    _next_day(clock)
    second = service.log_activity("u1", "steps", 1500)
    assert second.streak_status.streak_continued is True
    assert second.streak_status.current_streak == 2

    _next_day(clock, 2)
    third = service.log_activity("u1", "steps", 3000)
    assert third.streak_status.shield_used is True
    assert third.streak_status.current_streak == 3
    assert third.streak_status.shields_remaining == 0
    assert [m.milestone_id for m in third.streak_status.milestones_earned] == ["first_steps"]

    _next_day(clock, 3)
    fourth = service.log_activity("u1", "active_minutes", 20)
    assert fourth.streak_status.streak_broken is True
    assert fourth.streak_status.current_streak == 1
    assert fourth.streak_status.longest_streak == 3
    assert fourth.streak_status.total_active_days == 4


def test_repeatable_milestone_rows_at_7_and_14(store, calendar, clock):
    weekly = Milestone(
        milestone_id="weekly",
        day_number=7,
        name="Weekly",
        reward=BadgeReward(badge_id="weekly"),
        is_repeatable=True,
        repeat_interval=7,
    )
    service = StreakService(store=store, calendar=calendar, catalog=MilestoneCatalog([weekly]))

    earned_on = []
    for n in range(1, 15):
        result = service.log_activity("u1", "steps", 2000)
        if result.streak_status.milestones_earned:
            earned_on.append(result.streak_status.current_streak)
        _next_day(clock)

    assert earned_on == [7, 14]
    rows = store.list_progress("u1", "weekly")
    assert len(rows) == 2
    assert rows[0].earned_date != rows[1].earned_date


# --- same-day idempotence & monotonicity ---

def test_two_qualifying_reports_same_day_advance_once(service):
    service.log_activity("u1", "steps", 1500)
    again = service.log_activity("u1", "workout", 40)

    assert again.was_new_qualifying_activity is False
    assert again.streak_processed is False
    assert again.streak_status.current_streak == 1
    assert service.get_status("u1").total_active_days == 1


def test_non_qualifying_then_qualifying_same_day(service):
    low = service.log_activity("u1", "steps", 300)
    assert low.qualifies_for_streak is False
    assert low.streak_processed is False
    assert low.streak_status.current_streak == 0

    high = service.log_activity("u1", "steps", 1300)
    assert high.was_new_qualifying_activity is True
    assert high.streak_status.streak_started is True

    low_again = service.log_activity("u1", "steps", 5)
    assert low_again.qualifies_for_streak is True
    assert low_again.was_new_qualifying_activity is False


def test_first_non_qualifying_report_creates_the_streak_record(service, store):
    result = service.log_activity("u1", "steps", 300)

    assert result.qualifies_for_streak is False
    streak = store.get_streak("u1")
    assert streak is not None
    assert streak.current_streak == 0
    assert streak.longest_streak == 0
    assert streak.timezone == "America/New_York"


def test_custom_activity_is_logged_but_never_counts(service):
    result = service.log_activity("u1", "custom", 999)
    assert result.activity_logged is True
    assert result.qualifies_for_streak is False
    assert service.activity_history("u1")[0].activity_kind == "custom"


def test_midnight_boundary_produces_two_streak_days(store, clock):
    from movetrail.features.streaks.calendar import TimezoneCalendar

    clock.set(datetime(2026, 1, 16, 4, 30, tzinfo=timezone.utc))  # 23:30 EST
    service = StreakService(store=store, calendar=TimezoneCalendar(clock))
    first = service.log_activity("u1", "steps", 1200)

    clock.advance(hours=1)  # 00:30 EST next day
    second = service.log_activity("u1", "steps", 1200)

    assert first.activity_date == date(2026, 1, 15)
    assert second.activity_date == date(2026, 1, 16)
    assert second.streak_status.current_streak == 2


# --- validation ---

@pytest.mark.parametrize(
    "kind,value,field",
    [
        ("swimming", 10, "activity_kind"),
        ("", 10, "activity_kind"),
        ("steps", -5, "activity_value"),
        ("steps", None, "activity_value"),
        ("steps", "lots", "activity_value"),
        ("rings_closed", True, "activity_value"),
    ],
)
def test_invalid_input_rejected_before_any_write(service, store, kind, value, field):
    with pytest.raises(ValidationError) as exc:
        service.log_activity("u1", kind, value)
    assert exc.value.field == field
    assert store.list_activity("u1") == []
    assert store.get_streak("u1") is None


def test_future_override_date_rejected(service, store):
    with pytest.raises(ValidationError) as exc:
        service.log_activity("u1", "steps", 2000, override_date="2026-01-16")
    assert exc.value.field == "override_date"
    assert store.list_activity("u1") == []


def test_malformed_override_date_rejected(service):
    with pytest.raises(ValidationError) as exc:
        service.log_activity("u1", "steps", 2000, override_date="01/15/2026")
    assert exc.value.field == "override_date"


def test_week_date_override_rejected(service, store):
    with pytest.raises(ValidationError) as exc:
        service.log_activity("u1", "steps", 2000, override_date="2026-W03-4")
    assert store.list_activity("u1") == []
    assert exc.value.field == "override_date"


def test_backfill_records_the_requested_date(service, store):
    result = service.log_activity("u1", "steps", 2000, override_date="2026-01-10", source="manual")

    assert result.activity_date == date(2026, 1, 10)
    assert store.get_activity("u1", date(2026, 1, 10)).source == "manual"
    # Only today's activity drives the streak
    assert result.streak_status.current_streak == 0


def test_override_timezone_changes_the_activity_date(service):
    result = service.log_activity("u1", "steps", 2000, override_timezone="Pacific/Kiritimati")
    assert result.activity_date == date(2026, 1, 16)
    assert service.get_status("u1").timezone == "America/New_York"


def test_invalid_override_timezone_is_ignored_with_warning(service, caplog):
    with caplog.at_level(logging.WARNING, logger="movetrail"):
        result = service.log_activity("u1", "steps", 2000, override_timezone="Nowhere/Land")

    assert result.activity_date == DAY_ONE
    assert any(r.getMessage() == "timezone.override_ignored" for r in caplog.records)


# --- failure semantics ---

class FlakyStore(InMemoryStreakStore):
    def __init__(self):
        super().__init__()
        self.fail_ledger = False
        self.fail_streak_writes = False
        self.fail_progress = False

    def upsert_activity(self, *args, **kwargs):
        if self.fail_ledger:
            raise StorageError("ledger down")
        return super().upsert_activity(*args, **kwargs)

    def compare_and_swap_streak(self, streak, expected_version):
        if self.fail_streak_writes:
            raise StorageError("streaks down")
        return super().compare_and_swap_streak(streak, expected_version)

    def insert_progress(self, progress):
        if self.fail_progress:
            raise StorageError("progress down")
        return super().insert_progress(progress)


@pytest.fixture
def flaky_store():
    return FlakyStore()


def test_ledger_failure_aborts_request(flaky_store, calendar):
    service = StreakService(store=flaky_store, calendar=calendar)
    flaky_store.fail_ledger = True

    with pytest.raises(StorageError):
        service.log_activity("u1", "steps", 2000)
    assert flaky_store.list_activity("u1") == []


def test_processing_failure_keeps_activity_and_retry_path_recovers(flaky_store, calendar):
    service = StreakService(store=flaky_store, calendar=calendar)
    flaky_store.fail_streak_writes = True

    result = service.log_activity("u1", "steps", 2000)
    assert result.activity_logged is True
    assert result.was_new_qualifying_activity is True
    assert result.streak_processed is False
    assert result.streak_status is None
    assert result.error == PROCESSING_FAILED_MESSAGE
    assert flaky_store.get_activity("u1", DAY_ONE).qualifies is True

    # Re-logging does not re-trigger processing; the dedicated retry path does
    flaky_store.fail_streak_writes = False
    assert service.log_activity("u1", "steps", 2500).was_new_qualifying_activity is False

    transition, error = service.process_streak("u1")
    assert error is None
    assert transition.streak_started is True
    assert transition.current_streak == 1


def test_milestone_failure_reports_error_but_keeps_streak(flaky_store, calendar):
    day_one = Milestone(milestone_id="day_one", day_number=1, name="Day One", reward=BadgeReward(badge_id="d1"))
    service = StreakService(store=flaky_store, calendar=calendar, catalog=MilestoneCatalog([day_one]))
    flaky_store.fail_progress = True

    result = service.log_activity("u1", "steps", 2000)
    assert result.streak_processed is True
    assert result.error
    assert result.streak_status.current_streak == 1
    assert flaky_store.get_streak("u1").current_streak == 1

    flaky_store.fail_progress = False
    awards, error = service.recheck_milestones("u1")
    assert [a.milestone_id for a in awards] == ["day_one"]
    assert error is None
    # A second recheck finds nothing new
    assert service.recheck_milestones("u1")[0] == []


class ExplodingDispatcher:
    def __init__(self):
        self.calls = 0

    def dispatch(self, user_id, awards):
        self.calls += 1
        raise RewardDispatchError("grant service unavailable")


def test_reward_dispatch_failure_is_reported_not_fatal(store, calendar, clock):
    dispatcher = ExplodingDispatcher()
    service = StreakService(store=store, calendar=calendar, dispatcher=dispatcher)

    for _ in range(3):
        result = service.log_activity("u1", "steps", 2000)
        clock.advance(days=1)

    assert dispatcher.calls == 1
    assert result.streak_processed is True
    assert result.error == "Milestones awarded but reward dispatch failed"
    assert [m.milestone_id for m in result.streak_status.milestones_earned] == ["first_steps"]


# --- status, timezone, rewards ---

def test_status_health_progression(service, clock):
    assert service.get_status("new-user").health == "inactive"

    service.log_activity("u1", "steps", 2000)
    status = service.get_status("u1")
    assert status.health == "safe"
    assert status.today_qualified is True
    assert status.next_milestone.day_number == 3
    assert status.next_milestone.days_away == 2

    clock.advance(days=1)
    assert service.get_status("u1").health == "at_risk"

    clock.advance(days=1)
    assert service.get_status("u1").health == "at_risk"  # one shield still bridges

    clock.advance(days=1)
    assert service.get_status("u1").health == "broken"


def test_status_does_not_create_records(service, store):
    service.get_status("ghost")
    assert store.get_streak("ghost") is None


def test_update_timezone(service):
    status = service.update_timezone("u1", "Pacific/Kiritimati")
    assert status.timezone == "Pacific/Kiritimati"
    assert status.today == date(2026, 1, 16)

    with pytest.raises(ValidationError) as exc:
        service.update_timezone("u1", "Atlantis/Capital")
    assert exc.value.field == "timezone"


def test_rewards_listing_and_claiming(service, clock):
    for _ in range(3):
        service.log_activity("u1", "steps", 2000)
        clock.advance(days=1)

    [reward] = service.list_rewards("u1", unclaimed_only=True)
    assert reward.milestone.milestone_id == "first_steps"

    claimed = service.claim_reward("u1", reward.progress.progress_id)
    assert claimed.progress.reward_claimed is True
    assert service.list_rewards("u1", unclaimed_only=True) == []
    assert len(service.list_rewards("u1")) == 1


def test_catalog_listing(service):
    assert service.list_catalog()[0].milestone_id == "first_steps"
