"""
Health endpoints.

Liveness has no dependencies; readiness probes the streak store and, when
a database is configured, the required tables.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from movetrail.features.streaks.persistence import SqlStreakStore
from movetrail.features.streaks.store import get_store

logger = logging.getLogger("movetrail")

root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "user_streaks",
    "streak_activity_log",
    "user_milestone_progress",
]


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: store connectivity + required tables."""
    store = get_store()
    try:
        if not store.ping():
            return JSONResponse(status_code=503, content={"status": "error", "detail": "store unreachable"})

        if isinstance(store, SqlStreakStore):
            from movetrail.core.database import get_engine

            inspector = inspect(get_engine())
            missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
            if missing:
                detail = f"missing tables: {', '.join(missing)}"
                logger.warning(f"[readyz] {detail}")
                return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

        return {"status": "ok", "store": type(store).__name__}
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "store unreachable"})
