import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from movetrail.core.logging import LOGGER_NAME, bound_request_id, latency_bucket_ms


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Give every request an id (echoing the caller's when present) and log its outcome."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid

        with bound_request_id(rid):
            started = time.perf_counter()
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000
            response.headers[self.header_name] = rid

            logging.getLogger(LOGGER_NAME).info(
                "request.complete",
                extra={
                    "request_id": rid,
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "latency_bucket": latency_bucket_ms(elapsed_ms),
                },
            )
            return response
