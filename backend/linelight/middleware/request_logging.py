"""Request logging middleware: one line per request with method, path, status, duration and client ip."""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from linelight.monitoring.metrics import record_request

logger = logging.getLogger(__name__)

# High-frequency probes stay out of the request log
QUIET_PATHS = frozenset({"/metrics", "/favicon.ico"})


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Record per-status metrics for every request and log everything except QUIET_PATHS."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        record_request(response.status_code)
        if request.url.path not in QUIET_PATHS:
            logger.info(
                "request method=%s path=%s status=%s duration_ms=%.1f client=%s",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                _client_ip(request),
                extra={"path": request.url.path, "status": response.status_code},
            )
        return response
