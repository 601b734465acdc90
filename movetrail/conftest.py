# movetrail/conftest.py
from datetime import datetime, timezone

import pytest


# 10:00 in America/New_York (EST, UTC-5)
START = datetime(2026, 1, 15, 15, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """
    Every test starts on the in-memory store with fresh singletons and
    zeroed counters. SQL tests opt in through the `sql_store` fixture.
    """
    from movetrail.core.metrics import METRICS
    from movetrail.features.streaks.service import reset_streak_service
    from movetrail.features.streaks.store import reset_store

    for key in ("DATABASE_URL", "TEST_DATABASE_URL"):
        monkeypatch.delenv(key, raising=False)

    reset_store()
    reset_streak_service()
    METRICS.reset()
    yield
    reset_store()
    reset_streak_service()


@pytest.fixture
def clock():
    from movetrail.core.clock import FixedClock

    return FixedClock(START)


@pytest.fixture
def calendar(clock):
    from movetrail.features.streaks.calendar import TimezoneCalendar

    return TimezoneCalendar(clock)


@pytest.fixture
def store():
    from movetrail.features.streaks.store import InMemoryStreakStore

    return InMemoryStreakStore()


@pytest.fixture
def service(store, calendar):
    from movetrail.features.streaks.service import StreakService

    return StreakService(store=store, calendar=calendar)


@pytest.fixture
def client(service):
    """TestClient whose routes use the fixture service (in-memory, pinned clock)."""
    from fastapi.testclient import TestClient

    from movetrail.api.streaks import get_service
    from movetrail.main import app

    app.dependency_overrides[get_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_service, None)


@pytest.fixture
def sql_store():
    """SqlStreakStore on a private in-memory SQLite database."""
    from movetrail.core.database import create_all_tables, dispose_engine, drop_all_tables, init_engine
    from movetrail.features.streaks.persistence import SqlStreakStore

    dispose_engine()
    init_engine("sqlite://")
    create_all_tables()
    try:
        yield SqlStreakStore()
    finally:
        drop_all_tables()
        dispose_engine()
