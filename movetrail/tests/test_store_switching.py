"""Store selection and readiness checks."""

import pytest

from movetrail.core.database import dispose_engine
from movetrail.core.errors import StorageError
from movetrail.core.metrics import streak_transitions_total
from movetrail.features.streaks.persistence import SqlStreakStore
from movetrail.features.streaks.store import InMemoryStreakStore, get_store, get_streak_store, reset_store


@pytest.fixture
def sqlite_url(monkeypatch):
    dispose_engine()
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    yield
    reset_store()
    dispose_engine()


def test_defaults_to_in_memory_without_database_url():
    assert isinstance(get_streak_store(), InMemoryStreakStore)


def test_uses_sql_store_when_database_reachable(sqlite_url):
    store = get_streak_store()
    assert isinstance(store, SqlStreakStore)
    assert store.ping() is True
    assert store.get_streak("nobody") is None


def test_get_store_is_a_singleton():
    assert get_store() is get_store()
    first = get_store()
    reset_store()
    assert get_store() is not first


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_in_memory(client):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "store": "InMemoryStreakStore"}


def test_readyz_with_sql_store(client, sqlite_url):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json()["store"] == "SqlStreakStore"


@pytest.fixture
def unreachable_database(monkeypatch):
    dispose_engine()
    monkeypatch.setenv("DATABASE_URL", "sqlite:////nonexistent_dir_xyz/streaks.db")
    yield
    reset_store()
    dispose_engine()


def test_unreachable_database_is_not_replaced_by_memory(unreachable_database):
    store = get_streak_store()

    assert isinstance(store, SqlStreakStore)
    assert store.ping() is False
    with pytest.raises(StorageError):
        store.get_streak("u1")


def test_activity_fails_with_503_while_database_is_down(unreachable_database):
    from fastapi.testclient import TestClient

    from movetrail.main import app

    client = TestClient(app)
    resp = client.post(
        "/v1/streaks/activity",
        json={"activity_kind": "steps", "activity_value": 2000},
        headers={"X-User-Id": "u1"},
    )

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "storage_error"
    assert "data" not in resp.json()
    assert streak_transitions_total.value({"kind": "started"}) == 0

    ready = client.get("/readyz")
    assert ready.status_code == 503
