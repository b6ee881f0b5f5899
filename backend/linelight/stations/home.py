"""
Home snapshot: nearby and favorite stations with their next departures.

Platform-level stops are rolled up into one StationGroup per canonical station, ETAs are loaded
per platform (cached predictions first, live fetch as fallback) and merged per station, grouped
by (route, direction). Responses are cached for 30s under a quantized query key so nearby
requests share one build.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from linelight.cache.resource_cache import ResourceCache
from linelight.data.geo import haversine_distance_m
from linelight.data.modes import Mode, route_type_to_mode
from linelight.data.stations import (
    build_station_children,
    canonical_station,
    classify_stop,
    is_boardable_stop,
)
from linelight.data.stops_repo import index_stops, search_nearby, stop_name, stop_position
from linelight.eta.blender import BlendOptions
from linelight.eta.models import BlendedDeparture, StopEtaSnapshot
from linelight.eta.service import (
    CachedSnapshotOptions,
    get_cached_stop_eta_snapshot,
    get_stop_eta_snapshot,
)
from linelight.mbta.jsonapi import attributes
from linelight.stations.models import HomeEta, HomeResponse, HomeRouteSummary, HomeStopSummary

logger = logging.getLogger(__name__)

HOME_CACHE_COORD_PRECISION = 0.01  # ~1.1 km
HOME_CACHE_RADIUS_INCREMENT = 250
HOME_CACHE_MAX_LIMIT = 50
CANDIDATE_MULTIPLIER = 4
NEXT_TIMES_PER_ROUTE = 3
HOME_MIN_LOOKAHEAD_MINUTES = -2
HOME_MAX_LOOKAHEAD_MINUTES = 30

StopSnapshotFetcher = Callable[..., Awaitable[StopEtaSnapshot]]


@dataclass(frozen=True)
class HomeQuery:
    lat: float
    lng: float
    radius_meters: float
    limit: int
    favorite_stop_ids: tuple[str, ...] = ()


@dataclass
class StationGroup:
    station: dict
    platform_stop_ids: dict[str, None] = field(default_factory=dict)  # insertion-ordered set
    min_distance_m: float = math.inf


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def quantize_coordinate(value: float) -> str:
    return f"{_round_half_up(value / HOME_CACHE_COORD_PRECISION) * HOME_CACHE_COORD_PRECISION:.4f}"


def quantize_radius(meters: float) -> int:
    return max(
        HOME_CACHE_RADIUS_INCREMENT,
        _round_half_up(meters / HOME_CACHE_RADIUS_INCREMENT) * HOME_CACHE_RADIUS_INCREMENT,
    )


def build_home_cache_key(query: HomeQuery) -> str:
    limit = max(1, min(HOME_CACHE_MAX_LIMIT, query.limit))
    favorites = ",".join(query.favorite_stop_ids) if query.favorite_stop_ids else "none"
    return (
        f"{quantize_coordinate(query.lat)}:{quantize_coordinate(query.lng)}"
        f":r{quantize_radius(query.radius_meters)}:l{limit}:f{favorites}"
    )


def direction_label(direction_id: int | None, unknown: str = "Unknown") -> str:
    if direction_id == 0:
        return "Inbound"
    if direction_id == 1:
        return "Outbound"
    return unknown


def _normalize_label(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip()
    return value or None


def _eta_sort_key(departure: BlendedDeparture) -> float:
    return departure.eta_minutes if departure.eta_minutes is not None else math.inf


def group_by_route_direction(departures: list[BlendedDeparture]) -> list[list[BlendedDeparture]]:
    """Group by (route_id, direction_id) in first-seen order; each group sorted by ETA."""
    groups: dict[tuple[str, int | None], list[BlendedDeparture]] = {}
    for departure in departures:
        groups.setdefault((departure.route_id or "unknown", departure.direction_id), []).append(departure)
    return [sorted(group, key=_eta_sort_key) for group in groups.values()]


def group_destination(group: list[BlendedDeparture]) -> str | None:
    """The first departure's headsign, else the first usable headsign among its siblings."""
    for departure in group:
        label = _normalize_label(departure.headsign)
        if label:
            return label
    return None


def group_departures_by_route(departures: list[BlendedDeparture]) -> list[HomeRouteSummary]:
    summaries = []
    for group in group_by_route_direction(departures):
        primary = group[0]
        summaries.append(
            HomeRouteSummary(
                route_id=primary.route_id or "unknown",
                short_name=primary.route_id or "Route",
                direction=direction_label(primary.direction_id),
                destination=group_destination(group),
                direction_id=primary.direction_id,
                next_times=[
                    HomeEta(eta_minutes=d.eta_minutes, source=d.eta_source, status=d.status)
                    for d in group[:NEXT_TIMES_PER_ROUTE]
                ],
            )
        )
    return summaries


def build_route_modes(routes: list[dict] | None) -> dict[str, Mode]:
    return {route["id"]: route_type_to_mode(attributes(route).get("type")) for route in routes or []}


def add_stop_to_group(
    groups: dict[str, StationGroup],
    stop: dict,
    distance_m: float,
    stop_index: dict[str, dict],
    children: dict[str, list[dict]],
) -> None:
    """Merge `stop` into the group of its canonical station, pulling in sibling platforms."""
    meta = canonical_station(stop, stop_index)
    if meta is None:
        return
    group = groups.get(meta.canonical_id)
    if group is None:
        group = StationGroup(station=meta.station, min_distance_m=distance_m)
        groups[meta.canonical_id] = group
    else:
        group.min_distance_m = min(group.min_distance_m, distance_m)
        if classify_stop(meta.station) == "station" and classify_stop(group.station) != "station":
            group.station = meta.station

    def add_platform(candidate: dict | None) -> None:
        if candidate is not None and is_boardable_stop(candidate):
            group.platform_stop_ids[candidate["id"]] = None

    add_platform(stop)
    if meta.station["id"] != stop["id"]:
        add_platform(meta.station)
    children_key = meta.parent_station_id or (
        meta.station["id"] if classify_stop(meta.station) == "station" else None
    )
    for child in children.get(children_key, []) if children_key else []:
        add_platform(child)


def _distance_to(stop: dict, lat: float, lng: float) -> float:
    position = stop_position(stop)
    if position is None:
        return math.inf
    return haversine_distance_m(lat, lng, position[0], position[1])


async def load_platform_departures(
    cache: ResourceCache,
    client,
    stop_ids: list[str],
    stop_index: dict[str, dict],
    *,
    max_lookahead_minutes: int,
    fetch_stop_snapshot: StopSnapshotFetcher = get_stop_eta_snapshot,
    now: datetime | None = None,
) -> dict[str, list[BlendedDeparture]]:
    """
    Departures per platform. Cached predictions first; the rest are fetched live concurrently.
    A failed live fetch is logged and that platform contributes nothing.
    """
    now = now or datetime.now(timezone.utc)
    result: dict[str, list[BlendedDeparture]] = {}
    missing: list[str] = []
    for stop_id in stop_ids:
        cached = get_cached_stop_eta_snapshot(
            cache,
            stop_id,
            CachedSnapshotOptions(
                now=now,
                min_lookahead_minutes=HOME_MIN_LOOKAHEAD_MINUTES,
                max_lookahead_minutes=max_lookahead_minutes,
                stop_name=stop_name(stop_index.get(stop_id)),
            ),
        )
        if cached is not None:
            result[stop_id] = cached.departures
        else:
            missing.append(stop_id)

    async def fetch(stop_id: str) -> StopEtaSnapshot | None:
        try:
            return await fetch_stop_snapshot(
                client,
                stop_id,
                BlendOptions(
                    now=now,
                    min_lookahead_minutes=HOME_MIN_LOOKAHEAD_MINUTES,
                    max_lookahead_minutes=max_lookahead_minutes,
                    stop_name=stop_name(stop_index.get(stop_id)),
                ),
            )
        except Exception as e:
            logger.error(
                "telemetry stop_snapshot_error stop_id=%s error=%s",
                stop_id,
                str(e),
                extra={"stop_id": stop_id, "error": str(e)},
            )
            return None

    snapshots = await asyncio.gather(*(fetch(stop_id) for stop_id in missing))
    for stop_id, snapshot in zip(missing, snapshots):
        if snapshot is not None:
            result[stop_id] = snapshot.departures
    return result


def _summarize(
    group: StationGroup,
    departures_by_stop: dict[str, list[BlendedDeparture]],
    route_modes: dict[str, Mode],
) -> HomeStopSummary:
    departures = [d for stop_id in group.platform_stop_ids for d in departures_by_stop.get(stop_id, [])]
    routes = group_departures_by_route(departures)
    modes: dict[Mode, None] = {}
    for route in routes:
        mode = route_modes.get(route.route_id)
        if mode:
            modes[mode] = None
    return HomeStopSummary(
        stop_id=group.station["id"],
        name=stop_name(group.station) or group.station["id"],
        distance_meters=round(group.min_distance_m, 1),
        modes=list(modes),
        routes=routes,
        platform_stop_ids=list(group.platform_stop_ids),
    )


async def build_home_snapshot(
    cache: ResourceCache,
    client,
    query: HomeQuery,
    *,
    fetch_stop_snapshot: StopSnapshotFetcher = get_stop_eta_snapshot,
    now: datetime | None = None,
) -> HomeResponse:
    cache_key = build_home_cache_key(query)
    cached = await cache.get_home_snapshot(cache_key)
    if cached is not None:
        logger.info("telemetry home_snapshot cache_hit=true key=%s", cache_key, extra={"cache_hit": True})
        return HomeResponse.model_validate(cached)
    logger.info("telemetry home_snapshot cache_hit=false key=%s", cache_key, extra={"cache_hit": False})

    now = now or datetime.now(timezone.utc)
    stops_entry = cache.get_stops()
    routes_entry = cache.get_routes()
    stop_routes_entry = cache.get_stop_routes()
    all_stops = stops_entry.data if stops_entry else []
    stop_index = index_stops(all_stops)
    children = build_station_children(all_stops)
    route_modes = build_route_modes(routes_entry.data if routes_entry else None)

    nearby = search_nearby(
        all_stops,
        query.lat,
        query.lng,
        query.radius_meters,
        limit=query.limit * CANDIDATE_MULTIPLIER,
        stop_routes=stop_routes_entry.data if stop_routes_entry else None,
    )
    nearby_groups: dict[str, StationGroup] = {}
    for candidate in nearby:
        add_stop_to_group(nearby_groups, candidate.stop, candidate.distance_m, stop_index, children)
    limited_nearby = sorted(nearby_groups.values(), key=lambda g: g.min_distance_m)[: query.limit]

    favorite_groups: dict[str, StationGroup] = {}
    for stop_id in query.favorite_stop_ids:
        stop = stop_index.get(stop_id)
        if stop is not None:
            add_stop_to_group(favorite_groups, stop, _distance_to(stop, query.lat, query.lng), stop_index, children)

    targets: dict[str, None] = {}
    for group in [*limited_nearby, *favorite_groups.values()]:
        targets.update(group.platform_stop_ids)
    departures_by_stop = await load_platform_departures(
        cache,
        client,
        [stop_id for stop_id in targets if stop_id in stop_index],
        stop_index,
        max_lookahead_minutes=HOME_MAX_LOOKAHEAD_MINUTES,
        fetch_stop_snapshot=fetch_stop_snapshot,
        now=now,
    )

    favorites: list[HomeStopSummary] = []
    seen: set[str] = set()
    for stop_id in query.favorite_stop_ids:
        stop = stop_index.get(stop_id)
        meta = canonical_station(stop, stop_index) if stop is not None else None
        if meta is None or meta.canonical_id in seen or meta.canonical_id not in favorite_groups:
            continue
        seen.add(meta.canonical_id)
        favorites.append(_summarize(favorite_groups[meta.canonical_id], departures_by_stop, route_modes))

    response = HomeResponse(
        favorites=favorites,
        nearby=[_summarize(group, departures_by_stop, route_modes) for group in limited_nearby],
        generated_at=now,
    )
    await cache.set_home_snapshot(cache_key, response.model_dump(mode="json"))
    return response
