"""
Station list for the map: one entry per canonical station with the routes serving it (static
relationships, the polled stop -> route map, and live predictions) and its platform markers.
"""
from typing import Any

from linelight.cache.resource_cache import ResourceCache
from linelight.cache.ttl import TTLCache
from linelight.data.modes import Mode, route_type_to_mode
from linelight.data.stations import classify_stop, parent_station_id
from linelight.data.stops_repo import index_stops, stop_position
from linelight.mbta.jsonapi import attributes, first_relationship_id, relationship_ids

STATION_CACHE_TTL_SECONDS = 30
DEFAULT_STATION_LIMIT = 200
_ROUTE_RELATIONSHIPS = ("route", "routes", "line", "lines", "route_patterns")


def _predicted_routes_by_stop(predictions: list[dict]) -> dict[str, set[str]]:
    by_stop: dict[str, set[str]] = {}
    for prediction in predictions:
        stop_id = first_relationship_id(prediction, "stop")
        route_id = first_relationship_id(prediction, "route")
        if stop_id and route_id:
            by_stop.setdefault(stop_id, set()).add(route_id)
    return by_stop


def _route_modes(lines: list[dict] | None, routes: list[dict] | None) -> dict[str, Mode]:
    if not lines or not routes:
        return {}
    routes_by_id = {route["id"]: route for route in routes}
    modes: dict[str, Mode] = {}
    for line in lines:
        for route_id in relationship_ids(line, "routes"):
            route = routes_by_id.get(route_id)
            if route is not None:
                modes[route_id] = route_type_to_mode(attributes(route).get("type"))
    return modes


def _marker(stop: dict) -> dict[str, Any] | None:
    position = stop_position(stop)
    if position is None:
        return None
    return {"stop_id": stop["id"], "name": attributes(stop).get("name"), "latitude": position[0], "longitude": position[1]}


def build_station_summaries(
    cache: ResourceCache,
    *,
    limit: int = DEFAULT_STATION_LIMIT,
    mode: Mode | None = None,
    memo: TTLCache | None = None,
) -> list[dict]:
    """Results are memoized per (mode, limit) in `memo` when one is given."""
    cache_key = f"{mode or 'all'}|{limit}"
    cached = memo.get(cache_key) if memo is not None else None
    if cached is not None:
        return cached

    stops_entry = cache.get_stops()
    if stops_entry is None:
        return []
    predictions_entry = cache.get_predictions()
    lines_entry = cache.get_lines()
    routes_entry = cache.get_routes()
    stop_routes_entry = cache.get_stop_routes()

    stop_index = index_stops(stops_entry.data)
    predicted = _predicted_routes_by_stop(predictions_entry.data if predictions_entry else [])
    route_modes = _route_modes(
        lines_entry.data if lines_entry else None,
        routes_entry.data if routes_entry else None,
    )
    static_routes = stop_routes_entry.data if stop_routes_entry else {}

    buckets: dict[str, dict[str, Any]] = {}
    for stop in stops_entry.data:
        if stop_position(stop) is None:
            continue
        kind = classify_stop(stop)
        if kind in ("entrance", "other"):
            continue
        canonical_id = stop["id"] if kind == "station" else parent_station_id(stop) or stop["id"]
        canonical = stop_index.get(canonical_id, stop)

        route_ids: set[str] = set()
        for name in _ROUTE_RELATIONSHIPS:
            route_ids.update(relationship_ids(stop, name))
        route_ids.update(static_routes.get(stop["id"], ()))
        route_ids.update(predicted.get(stop["id"], ()))

        bucket = buckets.setdefault(
            canonical_id, {"stop": canonical, "routes": {}, "modes": {}, "platforms": {}}
        )
        for route_id in sorted(route_ids):
            bucket["routes"][route_id] = None
            route_mode = route_modes.get(route_id)
            if route_mode:
                bucket["modes"][route_mode] = None
        bucket["platforms"][stop["id"]] = stop
        bucket["platforms"][canonical["id"]] = canonical

    summaries = []
    for bucket in buckets.values():
        station = bucket["stop"]
        position = stop_position(station)
        if position is None:
            continue
        if mode and mode not in bucket["modes"]:
            continue
        markers = [m for m in (_marker(p) for p in bucket["platforms"].values()) if m is not None]
        summaries.append(
            {
                "stop_id": station["id"],
                "name": attributes(station).get("name") or station["id"],
                "latitude": position[0],
                "longitude": position[1],
                "routes_serving": list(bucket["routes"]),
                "modes_served": list(bucket["modes"]),
                "platform_stop_ids": list(bucket["platforms"]),
                "platform_markers": markers,
            }
        )
    limited = summaries[:limit]
    if memo is not None:
        memo.set(cache_key, limited)
    return limited
