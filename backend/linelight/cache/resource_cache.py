"""
Process-wide store of the latest MBTA resource collections.

Each setter publishes a brand-new CacheEntry instead of mutating the previous one, so request
handlers always read a complete snapshot without locks. A remote cache (Redis) mirrors entries
best-effort: hydrate() seeds memory at startup and every set schedules a write-through task.
"""
import asyncio
import logging
import time
from typing import Any, Callable, NamedTuple

from linelight.cache.remote import NoopRemoteCache, RemoteCache

logger = logging.getLogger(__name__)

KEY_PREFIX = "linelight:cache:"
HOME_SNAPSHOT_PREFIX = f"{KEY_PREFIX}home:"

RESOURCE_KINDS = ("routes", "lines", "stops", "stop_routes", "predictions", "vehicles", "alerts", "trips", "shapes")

# Remote TTLs in ms; kinds not listed are stored without expiry
REMOTE_TTL_MS = {
    "predictions": 60_000,
    "vehicles": 60_000,
    "alerts": 120_000,
}
HOME_SNAPSHOT_TTL_MS = 30_000
STALE_PREDICTIONS_THRESHOLD_MS = 90_000

Resource = dict[str, Any]
StopRouteMap = dict[str, frozenset[str]]
Coordinate = dict[str, float]
RouteShapeMap = dict[str, list[list[Coordinate]]]


class CacheEntry(NamedTuple):
    data: Any
    fetched_at: int  # epoch ms


def _to_remote(kind: str, data: Any) -> Any:
    """Flatten map/set valued kinds to JSON-safe pairs."""
    if kind == "stop_routes":
        return [[stop_id, sorted(route_ids)] for stop_id, route_ids in data.items()]
    if kind == "shapes":
        return [[route_id, paths] for route_id, paths in data.items()]
    return data


def _from_remote(kind: str, data: Any) -> Any:
    if kind == "stop_routes":
        return {stop_id: frozenset(route_ids) for stop_id, route_ids in data}
    if kind == "shapes":
        return {route_id: paths for route_id, paths in data}
    return data


class ResourceCache:
    def __init__(
        self,
        remote: RemoteCache | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.remote: RemoteCache = remote if remote is not None else NoopRemoteCache()
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._home_snapshots: dict[str, CacheEntry] = {}
        self._last_fetched_at = 0
        self._pending: set[asyncio.Task] = set()

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _next_fetched_at(self) -> int:
        fetched_at = max(self.now_ms(), self._last_fetched_at + 1)
        self._last_fetched_at = fetched_at
        return fetched_at

    def _set(self, kind: str, data: Any) -> CacheEntry:
        entry = CacheEntry(data=data, fetched_at=self._next_fetched_at())
        self._entries[kind] = entry
        self._persist(kind, entry)
        return entry

    def _get(self, kind: str) -> CacheEntry | None:
        return self._entries.get(kind)

    def _schedule(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _persist(self, kind: str, entry: CacheEntry) -> None:
        if not self.remote.available:
            return
        payload = {"data": _to_remote(kind, entry.data), "fetched_at": entry.fetched_at}
        self._schedule(self.remote.set_json(f"{KEY_PREFIX}{kind}", payload, REMOTE_TTL_MS.get(kind)))

    async def flush(self) -> None:
        """Wait for in-flight write-through tasks (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def hydrate(self) -> None:
        """Seed memory from the remote cache. Kinds already set locally are left alone."""
        if not self.remote.available:
            return

        async def load(kind: str) -> None:
            payload = await self.remote.get_json(f"{KEY_PREFIX}{kind}")
            if not isinstance(payload, dict) or "data" not in payload:
                return
            if kind in self._entries:
                return
            try:
                data = _from_remote(kind, payload["data"])
                fetched_at = int(payload.get("fetched_at") or 0)
            except (TypeError, ValueError) as e:
                logger.warning("telemetry cache_hydrate_error kind=%s error=%s", kind, str(e))
                return
            self._entries[kind] = CacheEntry(data=data, fetched_at=fetched_at)
            self._last_fetched_at = max(self._last_fetched_at, fetched_at)
            logger.info("telemetry cache_hydrated kind=%s", kind, extra={"kind": kind})

        await asyncio.gather(*(load(kind) for kind in RESOURCE_KINDS))

    def set_routes(self, data: list[Resource]) -> CacheEntry:
        return self._set("routes", data)

    def get_routes(self) -> CacheEntry | None:
        return self._get("routes")

    def set_lines(self, data: list[Resource]) -> CacheEntry:
        return self._set("lines", data)

    def get_lines(self) -> CacheEntry | None:
        return self._get("lines")

    def set_stops(self, data: list[Resource]) -> CacheEntry:
        return self._set("stops", data)

    def get_stops(self) -> CacheEntry | None:
        return self._get("stops")

    def set_stop_routes(self, data: StopRouteMap) -> CacheEntry:
        return self._set("stop_routes", data)

    def get_stop_routes(self) -> CacheEntry | None:
        return self._get("stop_routes")

    def set_predictions(self, data: list[Resource]) -> CacheEntry:
        return self._set("predictions", data)

    def get_predictions(self) -> CacheEntry | None:
        return self._get("predictions")

    def set_vehicles(self, data: list[Resource]) -> CacheEntry:
        return self._set("vehicles", data)

    def get_vehicles(self) -> CacheEntry | None:
        return self._get("vehicles")

    def set_alerts(self, data: list[Resource]) -> CacheEntry:
        return self._set("alerts", data)

    def get_alerts(self) -> CacheEntry | None:
        return self._get("alerts")

    def set_trips(self, data: list[Resource]) -> CacheEntry:
        return self._set("trips", data)

    def get_trips(self) -> CacheEntry | None:
        return self._get("trips")

    def set_shapes(self, data: RouteShapeMap) -> CacheEntry:
        return self._set("shapes", data)

    def get_shapes(self) -> CacheEntry | None:
        return self._get("shapes")

    async def get_home_snapshot(self, key: str) -> dict | None:
        """Memory first (fresh for 30s), then the remote cache."""
        entry = self._home_snapshots.get(key)
        if entry is not None:
            if self.now_ms() - entry.fetched_at <= HOME_SNAPSHOT_TTL_MS:
                return entry.data
            self._home_snapshots.pop(key, None)
        payload = await self.remote.get_json(f"{HOME_SNAPSHOT_PREFIX}{key}")
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            self._home_snapshots[key] = CacheEntry(
                data=payload["data"], fetched_at=int(payload.get("fetched_at") or self.now_ms())
            )
            return payload["data"]
        return None

    def _prune_home_snapshots(self, now_ms: int) -> None:
        # Keys carry client-supplied favorite ids; expired entries must not accumulate
        expired = [k for k, e in self._home_snapshots.items() if now_ms - e.fetched_at > HOME_SNAPSHOT_TTL_MS]
        for k in expired:
            del self._home_snapshots[k]

    async def set_home_snapshot(self, key: str, payload: dict) -> None:
        entry = CacheEntry(data=payload, fetched_at=self.now_ms())
        self._prune_home_snapshots(entry.fetched_at)
        self._home_snapshots[key] = entry
        await self.remote.set_json(
            f"{HOME_SNAPSHOT_PREFIX}{key}",
            {"data": payload, "fetched_at": entry.fetched_at},
            HOME_SNAPSHOT_TTL_MS,
        )

    def get_health(self) -> dict:
        predictions = self.get_predictions()
        age = self.now_ms() - predictions.fetched_at if predictions is not None else None
        return {
            "remote_cache_status": self.remote.status,
            "predictions_age_ms": age,
            "predictions_is_stale": age > STALE_PREDICTIONS_THRESHOLD_MS if age is not None else True,
        }
