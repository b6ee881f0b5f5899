"""
Background refresh of the resource cache. Each job runs in its own asyncio task: wait the initial
delay, run, log the outcome, sleep the interval, repeat. A failed run is retried on the next tick.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, NamedTuple

from linelight.cache.resource_cache import ResourceCache
from linelight.data.stations import parent_station_id, resolve_boardable_parent
from linelight.data.stops_repo import index_stops
from linelight.mbta.jsonapi import attributes, first_relationship_id, included_of_type, resource_list
from linelight.stations.home import HomeQuery, build_home_snapshot
from linelight.views.shapes import decode_shapes

logger = logging.getLogger(__name__)

TARGET_ROUTE_TYPES = (0, 1, 2, 3)  # light rail, heavy rail, commuter rail, bus
FALLBACK_ROUTE_IDS = (
    "Red",
    "Orange",
    "Blue",
    "Green-B",
    "Green-C",
    "Green-D",
    "Green-E",
    "Mattapan",
    "741",  # SL1
    "742",  # SL2
    "743",  # SL3
    "CR-Fitchburg",
    "CR-Franklin",
)

PARENT_BATCH_SIZE = 80
STOPS_PAGE_LIMIT = 5000
ROUTE_STOPS_PAGE_LIMIT = 200


class Hotspot(NamedTuple):
    name: str
    lat: float
    lng: float
    radius_meters: float
    limit: int


HOME_SNAPSHOT_HOTSPOTS = (
    Hotspot("downtown-crossing", 42.3555, -71.0605, 1200, 10),
    Hotspot("logan-airport", 42.3656, -71.0096, 1500, 8),
    Hotspot("harvard-square", 42.3734, -71.1189, 1200, 10),
)


class PollingJob(NamedTuple):
    name: str
    interval_seconds: float
    initial_delay_seconds: float
    run: Callable[[], Awaitable[None]]


def chunked(values: list[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(values), size):
        yield values[i : i + size]


class Poller:
    """Owns the polling jobs for one client/cache pair."""

    def __init__(
        self,
        client,
        cache: ResourceCache,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.cache = cache
        self._sleep = sleep
        self.selected_route_ids: list[str] = list(FALLBACK_ROUTE_IDS)
        self._tasks: list[asyncio.Task] = []
        self.jobs = self._create_jobs()

    def target_route_ids(self) -> list[str]:
        return self.selected_route_ids or list(FALLBACK_ROUTE_IDS)

    def _create_jobs(self) -> list[PollingJob]:
        return [
            PollingJob("routes", 3600, 0, self.refresh_routes),
            PollingJob("lines", 3600, 2, self.refresh_lines),
            PollingJob("stops", 6 * 3600, 4, self.refresh_stops),
            PollingJob("vehicles", 30, 6, self.refresh_vehicles),
            PollingJob("predictions", 20, 8, self.refresh_predictions),
            PollingJob("alerts", 60, 10, self.refresh_alerts),
            PollingJob("trips", 300, 12, self.refresh_trips),
            PollingJob("shapes", 6 * 3600, 14, self.refresh_shapes),
            PollingJob("home-hotspots", 45, 20, self.warm_home_hotspots),
        ]

    async def refresh_routes(self) -> None:
        routes = resource_list(await self.client.get_routes({"filter[type]": TARGET_ROUTE_TYPES}))
        self.cache.set_routes(routes)
        self.selected_route_ids = [r["id"] for r in routes if attributes(r).get("type") in TARGET_ROUTE_TYPES]

    async def refresh_lines(self) -> None:
        self.cache.set_lines(resource_list(await self.client.get_lines({"include": "routes"})))

    async def _fetch_stops_by_ids(self, ids: list[str]) -> list[dict]:
        found = []
        for batch in chunked(ids, PARENT_BATCH_SIZE):
            resp = await self.client.get_stops(
                {"filter[id]": batch, "page[limit]": max(50, len(batch)), "include": "parent_station"}
            )
            found.extend(resource_list(resp))
            found.extend(included_of_type(resp, "stop").values())
        return found

    async def refresh_stops(self) -> None:
        resp = await self.client.get_stops(
            {"filter[route_type]": TARGET_ROUTE_TYPES, "page[limit]": STOPS_PAGE_LIMIT, "include": "parent_station"}
        )
        merged = index_stops(resource_list(resp))
        merged.update(included_of_type(resp, "stop"))

        missing_parents = sorted(
            {pid for stop in merged.values() if (pid := parent_station_id(stop)) and pid not in merged}
        )
        if missing_parents:
            try:
                merged.update(index_stops(await self._fetch_stops_by_ids(missing_parents)))
            except Exception as e:
                logger.warning("telemetry parent_stations_error count=%s error=%s", len(missing_parents), str(e))
        self.cache.set_stops(list(merged.values()))

        stop_routes: dict[str, set[str]] = {}
        for chunk in chunked(self.target_route_ids(), 5):
            for route_id in chunk:
                try:
                    route_resp = await self.client.get_stops(
                        {"filter[route]": route_id, "page[limit]": ROUTE_STOPS_PAGE_LIMIT, "include": "parent_station"}
                    )
                    for stop in resource_list(route_resp):
                        target = resolve_boardable_parent(stop, merged) or stop
                        stop_routes.setdefault(target["id"], set()).add(route_id)
                except Exception as e:
                    logger.warning("telemetry route_stops_error route=%s error=%s", route_id, str(e))
                await self._sleep(0.075)
        self.cache.set_stop_routes({stop_id: frozenset(ids) for stop_id, ids in stop_routes.items()})

    async def refresh_vehicles(self) -> None:
        vehicles = []
        for chunk in chunked(self.target_route_ids(), 20):
            vehicles.extend(resource_list(await self.client.get_vehicles({"filter[route]": chunk})))
            await self._sleep(0.05)
        self.cache.set_vehicles(vehicles)

    async def refresh_predictions(self) -> None:
        predictions = []
        for chunk in chunked(self.target_route_ids(), 10):
            resp = await self.client.get_predictions(
                {"filter[route]": chunk, "include": "route,stop,trip", "page[limit]": 500}
            )
            predictions.extend(resource_list(resp))
            await self._sleep(0.06)
        self.cache.set_predictions(predictions)

    async def refresh_alerts(self) -> None:
        self.cache.set_alerts(resource_list(await self.client.get_alerts()))

    async def refresh_trips(self) -> None:
        trips = []
        for chunk in chunked(self.target_route_ids(), 10):
            trips.extend(resource_list(await self.client.get_trips({"filter[route]": chunk, "page[limit]": 500})))
            await self._sleep(0.06)
        self.cache.set_trips(trips)

    async def refresh_shapes(self) -> None:
        shapes: dict[str, list] = {}
        for chunk in chunked(self.target_route_ids(), 5):
            resp = await self.client.get_shapes({"filter[route]": chunk, "page[limit]": 2000})
            for shape in resource_list(resp):
                route_id = first_relationship_id(shape, "route")
                if route_id:
                    shapes.setdefault(route_id, []).extend(decode_shapes([shape]))
            await self._sleep(0.12)
        self.cache.set_shapes({route_id: paths for route_id, paths in shapes.items() if paths})

    async def warm_home_hotspots(self) -> None:
        for hotspot in HOME_SNAPSHOT_HOTSPOTS:
            try:
                await build_home_snapshot(
                    self.cache,
                    self.client,
                    HomeQuery(
                        lat=hotspot.lat,
                        lng=hotspot.lng,
                        radius_meters=hotspot.radius_meters,
                        limit=hotspot.limit,
                    ),
                )
            except Exception as e:
                logger.warning("telemetry hotspot_warm_error hotspot=%s error=%s", hotspot.name, str(e))
            await self._sleep(0.15)

    async def run_job_once(self, job: PollingJob) -> bool:
        start = time.perf_counter()
        try:
            await job.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "telemetry polling_job_failed job=%s error=%s",
                job.name,
                str(e),
                extra={"job": job.name, "error": str(e)},
            )
            return False
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "telemetry polling_job_completed job=%s duration_ms=%.0f",
            job.name,
            duration_ms,
            extra={"job": job.name, "duration_ms": duration_ms},
        )
        return True

    async def _job_loop(self, job: PollingJob) -> None:
        await self._sleep(job.initial_delay_seconds)
        while True:
            await self.run_job_once(job)
            await self._sleep(job.interval_seconds)

    def start(self) -> None:
        if self._tasks:
            logger.warning("Poller already running")
            return
        self._tasks = [asyncio.create_task(self._job_loop(job), name=f"poll-{job.name}") for job in self.jobs]
        logger.info("Started %s polling jobs", len(self._tasks))

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Stopped polling jobs")
