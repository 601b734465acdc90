"""Tests for normalized error responses and identity resolution."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from movetrail.core.config import settings
from movetrail.core.errors import (
    AppError,
    StorageError,
    app_error_handler,
    unhandled_exception_handler,
)
from movetrail.core.middleware.request_id import RequestIdMiddleware

SECRET = "test-signing-secret"


def _token(sub="jwt-user", secret=SECRET, expires_in=timedelta(minutes=5)):
    claims = {"sub": sub, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(claims, secret, algorithm="HS256")


def test_validation_error_has_standard_shape(client):
    resp = client.post(
        "/v1/streaks/activity",
        json={"activity_kind": "steps", "activity_value": -1},
        headers={"X-User-Id": "u1"},
    )
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]


def test_missing_identity_is_unauthorized(client):
    resp = client.get("/v1/streaks/status")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_bearer_token_identifies_user(client, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", SECRET)

    resp = client.get("/v1/streaks/status", headers={"Authorization": f"Bearer {_token()}"})
    assert resp.status_code == 200
    assert resp.json()["data"]["user_id"] == "jwt-user"


def test_header_identity_refused_once_secret_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", SECRET)

    resp = client.get("/v1/streaks/status", headers={"X-User-Id": "spoofed"})
    assert resp.status_code == 401


@pytest.mark.parametrize(
    "token",
    [
        _token(secret="some-other-secret"),
        _token(expires_in=timedelta(minutes=-5)),
        "not-a-jwt",
    ],
)
def test_bad_tokens_rejected(client, monkeypatch, token):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", SECRET)

    resp = client.get("/v1/streaks/status", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_not_found_route_normalized(client):
    resp = client.post("/v1/streaks/rewards/missing-id/claim", headers={"X-User-Id": "u1"})
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"
    assert resp.json()["error"]["request_id"] == resp.headers.get("x-request-id")


def _error_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/storage")
    async def storage():
        raise StorageError("database unreachable")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    return app


def test_storage_error_maps_to_503():
    client = TestClient(_error_app())
    resp = client.get("/storage")
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "storage_error"


def test_unhandled_exception_maps_to_500():
    client = TestClient(_error_app(), raise_server_exceptions=False)
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert "kaboom" not in body["error"]["message"]
