"""
MBTA v3 JSON:API client.
Every request passes through the sliding-window rate limiter, then a retry loop with exponential
backoff for transient failures. No caching at this layer; see linelight.cache.resource_cache.
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

import httpx

from linelight.mbta.rate_limit import SlidingWindowRateLimiter
from linelight.monitoring.metrics import UpstreamTelemetry

logger = logging.getLogger(__name__)

MBTA_BASE = "https://api-v3.mbta.com"
MBTA_REQUEST_TIMEOUT_SECONDS = 10.0
MBTA_RATE_LIMIT_WINDOW_SECONDS = 10.0
MBTA_RATE_LIMIT_MAX_REQUESTS = 6
MBTA_MAX_RETRIES = 4
MBTA_RETRY_BASE_DELAY_SECONDS = 0.5
MBTA_RETRY_MAX_DELAY_SECONDS = 7.5
MBTA_RETRY_JITTER_RATIO = 0.3
RETRYABLE_STATUSES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
ERROR_BODY_MAX_CHARS = 180

QueryParams = dict[str, Any]


class MbtaRequestError(RuntimeError):
    """Terminal upstream failure: non-retryable status or retries exhausted."""

    def __init__(self, message: str, *, path: str, status_code: int | None = None):
        super().__init__(message)
        self.path = path
        self.status_code = status_code


def compute_backoff_seconds(
    attempt: int,
    base_delay: float = MBTA_RETRY_BASE_DELAY_SECONDS,
    max_delay: float = MBTA_RETRY_MAX_DELAY_SECONDS,
) -> float:
    """Exponential backoff capped at max_delay, then +/-30% jitter."""
    delay = min(max_delay, base_delay * (2 ** min(attempt, 10)))
    jitter = random.uniform(-MBTA_RETRY_JITTER_RATIO, MBTA_RETRY_JITTER_RATIO)
    return max(0.0, delay * (1 + jitter))


def _clean_params(params: QueryParams | None) -> dict[str, Any]:
    """Drop None values; lists become comma-joined filter values, booleans lowercase strings."""
    cleaned: dict[str, Any] = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        elif isinstance(value, (list, tuple, set)):
            cleaned[key] = ",".join(str(v) for v in value)
        else:
            cleaned[key] = value
    return cleaned


class MbtaClient:
    """Async client for the MBTA v3 API with rate limiting, retry/backoff and telemetry."""

    def __init__(
        self,
        api_key: str = "",
        base_url: str = MBTA_BASE,
        *,
        rate_limit_window_seconds: float = MBTA_RATE_LIMIT_WINDOW_SECONDS,
        rate_limit_max_requests: int = MBTA_RATE_LIMIT_MAX_REQUESTS,
        max_retries: int = MBTA_MAX_RETRIES,
        retry_base_delay_seconds: float = MBTA_RETRY_BASE_DELAY_SECONDS,
        retry_max_delay_seconds: float = MBTA_RETRY_MAX_DELAY_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._api_key = api_key
        self._base = base_url.rstrip("/")
        self._max_retries = max_retries
        self._base_delay = retry_base_delay_seconds
        self._max_delay = retry_max_delay_seconds
        self._transport = transport
        self._sleep = sleep
        self._http: httpx.AsyncClient | None = None
        self.telemetry = UpstreamTelemetry()
        self.rate_limiter = SlidingWindowRateLimiter(
            rate_limit_window_seconds,
            rate_limit_max_requests,
            on_delay=self.telemetry.record_rate_limit_delay,
        )

    @property
    def base_url(self) -> str:
        return self._base

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            headers = {"Accept": "application/vnd.api+json"}
            if self._api_key:
                headers["x-api-key"] = self._api_key
            self._http = httpx.AsyncClient(
                base_url=self._base,
                headers=headers,
                timeout=MBTA_REQUEST_TIMEOUT_SECONDS,
                transport=self._transport,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def get(self, path: str, params: QueryParams | None = None) -> dict[str, Any]:
        """
        GET a JSON:API document. Retryable statuses and network errors are retried up to
        max_retries times; other statuses raise MbtaRequestError immediately.
        """
        await self.rate_limiter.acquire(path)
        query = _clean_params(params)
        last_error: str = "unknown error"
        for attempt in range(self._max_retries + 1):
            status_code: int | None = None
            try:
                resp = await self._client().get(path, params=query)
                status_code = resp.status_code
                if resp.is_success:
                    data = resp.json()
                    self.telemetry.record_success(path)
                    return data
                body = resp.text[:ERROR_BODY_MAX_CHARS]
                if status_code not in RETRYABLE_STATUSES:
                    msg = f"MBTA request failed ({status_code}) for {path}" + (f" - {body}" if body else "")
                    self.telemetry.record_failure(path, msg)
                    logger.warning(
                        "telemetry mbta_request_failed path=%s status=%s",
                        path,
                        status_code,
                        extra={"path": path, "status": status_code},
                    )
                    raise MbtaRequestError(msg, path=path, status_code=status_code)
                last_error = f"retryable status {status_code}" + (f" - {body}" if body else "")
                self.telemetry.record_retryable(path, status_code)
            except httpx.TimeoutException as e:
                last_error = f"timeout: {e}"
                self.telemetry.record_retryable(path, None)
            except (httpx.TransportError, ValueError) as e:
                last_error = f"{type(e).__name__}: {e}"
                self.telemetry.record_retryable(path, None)
            if attempt < self._max_retries:
                delay = compute_backoff_seconds(attempt, self._base_delay, self._max_delay)
                logger.warning(
                    "telemetry mbta_retry attempt=%s path=%s status=%s wait_ms=%.0f",
                    attempt + 1,
                    path,
                    status_code,
                    delay * 1000,
                    extra={"attempt": attempt + 1, "path": path, "status": status_code},
                )
                await self._sleep(delay)
        msg = f"MBTA request exhausted retries for {path}: {last_error}"
        self.telemetry.record_failure(path, msg)
        logger.error("telemetry mbta_retries_exhausted path=%s error=%s", path, last_error)
        raise MbtaRequestError(msg, path=path)

    async def get_routes(self, params: QueryParams | None = None) -> dict[str, Any]:
        return await self.get("/routes", params)

    async def get_lines(self, params: QueryParams | None = None) -> dict[str, Any]:
        return await self.get("/lines", params)

    async def get_stops(self, params: QueryParams | None = None) -> dict[str, Any]:
        return await self.get("/stops", params)

    async def get_predictions(self, params: QueryParams | None = None) -> dict[str, Any]:
        return await self.get("/predictions", params)

    async def get_schedules(self, params: QueryParams | None = None) -> dict[str, Any]:
        return await self.get("/schedules", params)

    async def get_vehicles(self, params: QueryParams | None = None) -> dict[str, Any]:
        return await self.get("/vehicles", params)

    async def get_alerts(self, params: QueryParams | None = None) -> dict[str, Any]:
        return await self.get("/alerts", params)

    async def get_live_facilities(self, params: QueryParams | None = None) -> dict[str, Any]:
        return await self.get("/live_facilities", params)

    async def get_shapes(self, params: QueryParams | None = None) -> dict[str, Any]:
        return await self.get("/shapes", params)

    async def get_trips(self, params: QueryParams | None = None) -> dict[str, Any]:
        return await self.get("/trips", params)
