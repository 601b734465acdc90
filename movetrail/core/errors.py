"""
Error types and the FastAPI handlers that render them.

Every error response has the same body:

    {"error": {"code", "message", "request_id", ["field"]}, "detail": message}

and echoes the request id in the x-request-id header.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from movetrail.core.logging import LOGGER_NAME, get_request_id

logger = logging.getLogger(LOGGER_NAME)


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    """Bad input. `field` names the offending request field when known."""
    code = "validation_error"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field


class AuthenticationError(AppError):
    code = "unauthorized"
    status_code = 401


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class StreakConflictError(ConflictError):
    """A streak update kept losing the compare-and-swap race."""
    code = "streak_conflict"


class StorageError(AppError):
    """The durable store rejected or failed a read/write."""
    code = "storage_error"
    status_code = 503


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(status_code: int, code: str, message: str, request_id: str, field: Optional[str] = None) -> JSONResponse:
    error = {"code": code, "message": message, "request_id": request_id}
    if field:
        error["field"] = field
    response = JSONResponse(status_code=status_code, content={"error": error, "detail": message})
    response.headers["x-request-id"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return error_response(exc.status_code, exc.code, exc.message, rid, getattr(exc, "field", None))


def _first_invalid_field(exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return None, "Invalid request"
    first = errors[0]
    path = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(path) or None
    reason = str(first.get("msg"))
    return field, (f"{field}: {reason}" if field else reason)


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    rid = _request_id_for(request)
    field, message = _first_invalid_field(exc)
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": "validation_error", "field": field})
    return error_response(400, "validation_error", message, rid, field)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id_for(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return error_response(exc.status_code, code, str(exc.detail or "HTTP error"), rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id_for(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return error_response(500, "internal_error", "Unexpected error", rid)
