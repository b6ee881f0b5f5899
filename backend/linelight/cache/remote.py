"""
Optional remote JSON cache (Redis). Every operation is best-effort: failures are logged and
behave as a cache miss or a no-op, so callers never branch on whether Redis is configured.
"""
import json
import logging
from typing import Any, Literal, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

RemoteCacheStatus = Literal["disabled", "connecting", "ready", "error"]


class RemoteCache(Protocol):
    @property
    def status(self) -> RemoteCacheStatus: ...

    @property
    def available(self) -> bool: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def get_json(self, key: str) -> Any | None: ...

    async def set_json(self, key: str, value: Any, ttl_ms: int | None = None) -> None: ...


class NoopRemoteCache:
    """Used when no Redis URL is configured."""

    status: RemoteCacheStatus = "disabled"
    available = False

    async def connect(self) -> None:
        logger.info("telemetry remote_cache_disabled")

    async def close(self) -> None:
        return None

    async def get_json(self, key: str) -> Any | None:
        return None

    async def set_json(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        return None


class RedisRemoteCache:
    def __init__(self, url: str, client: aioredis.Redis | None = None):
        self._url = url
        self._client = client if client is not None else aioredis.from_url(url)
        self._status: RemoteCacheStatus = "connecting"
        self.last_error: str | None = None

    @property
    def status(self) -> RemoteCacheStatus:
        return self._status

    @property
    def available(self) -> bool:
        return self._status == "ready"

    async def connect(self) -> None:
        if self._status == "ready":
            return
        self._status = "connecting"
        try:
            await self._client.ping()
        except Exception as e:
            self._status = "error"
            self.last_error = str(e)
            logger.error("telemetry remote_cache_connect_error error=%s", str(e), extra={"error": str(e)})
            return
        self._status = "ready"
        self.last_error = None
        logger.info("telemetry remote_cache_connected")

    async def close(self) -> None:
        if self._status in ("disabled", "error"):
            return
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("telemetry remote_cache_close_error error=%s", str(e))
        self._status = "disabled"

    async def get_json(self, key: str) -> Any | None:
        if not self.available:
            return None
        try:
            payload = await self._client.get(key)
            if not payload:
                return None
            return json.loads(payload)
        except Exception as e:
            logger.warning(
                "telemetry remote_cache_get_error key=%s error=%s",
                key,
                str(e),
                extra={"key": key, "error": str(e)},
            )
            return None

    async def set_json(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        if not self.available:
            return
        try:
            serialized = json.dumps(value)
            if ttl_ms and ttl_ms > 0:
                await self._client.set(key, serialized, px=ttl_ms)
            else:
                await self._client.set(key, serialized)
        except Exception as e:
            logger.warning(
                "telemetry remote_cache_set_error key=%s error=%s",
                key,
                str(e),
                extra={"key": key, "error": str(e)},
            )


def create_remote_cache(url: str | None) -> RemoteCache:
    if not url:
        logger.info("telemetry remote_cache_not_configured cache=memory_only")
        return NoopRemoteCache()
    return RedisRemoteCache(url)
