"""
Sliding-window rate limiter for outgoing MBTA requests.

At most `max_requests` start within any `window_seconds`, and consecutive requests are spaced by
at least `window / max_requests` (never less than 50 ms). Callers over budget are delayed, never
rejected. Waiters queue on one asyncio.Lock, which hands out slots in arrival order.
"""
import asyncio
import logging
import random
import time
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

MIN_SPACING_FLOOR_SECONDS = 0.05
MAX_JITTER_SECONDS = 0.25


class SlidingWindowRateLimiter:
    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        *,
        on_delay: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max(1, max_requests)
        self.min_spacing_seconds = max(MIN_SPACING_FLOOR_SECONDS, window_seconds / self.max_requests)
        self._on_delay = on_delay
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._next_available = 0.0
        self._lock = asyncio.Lock()

    def _required_wait(self, now: float) -> float:
        while self._timestamps and now - self._timestamps[0] > self.window_seconds:
            self._timestamps.popleft()
        window_wait = 0.0
        if len(self._timestamps) >= self.max_requests:
            window_wait = max(0.0, self.window_seconds - (now - self._timestamps[0]))
        spacing_wait = max(0.0, self._next_available - now)
        return max(window_wait, spacing_wait)

    async def acquire(self, path: str = "") -> float:
        """Wait for a request slot. Returns the total seconds spent waiting."""
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                wait = self._required_wait(now)
                if wait <= 0:
                    self._timestamps.append(now)
                    self._next_available = now + self.min_spacing_seconds
                    return waited
                jitter = random.random() * min(MAX_JITTER_SECONDS, wait * 0.25)
                total = wait + jitter
                logger.debug(
                    "telemetry mbta_rate_limited path=%s wait_ms=%.0f pending=%s",
                    path,
                    total * 1000,
                    len(self._timestamps),
                )
                if self._on_delay is not None:
                    self._on_delay(total * 1000)
                waited += total
                await self._sleep(total)
