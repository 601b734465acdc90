from starlette.middleware.base import BaseHTTPMiddleware

from movetrail.core.metrics import http_requests_total, normalize_path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count served requests by method, normalized path and status."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        try:
            http_requests_total.inc({
                "method": request.method.upper(),
                "path": normalize_path(request.url.path),
                "status": str(response.status_code),
            })
        except Exception:
            # Metrics must never fail a request
            pass
        return response
