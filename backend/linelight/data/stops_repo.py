"""
Stop lookups over the cached MBTA stop collection: flat records and Haversine nearby search.
"""
import math
from typing import Any, NamedTuple

from linelight.data.geo import haversine_distance_m
from linelight.data.stations import parent_station_id
from linelight.mbta.jsonapi import attributes

Stop = dict[str, Any]


class StopRecord(NamedTuple):
    stop_id: str
    stop_name: str
    lat: float | None
    lng: float | None
    location_type: int | None
    parent_station_id: str | None
    platform_code: str | None


class NearbyStop(NamedTuple):
    stop: Stop
    distance_m: float


def to_stop_record(stop: Stop) -> StopRecord:
    attrs = attributes(stop)
    return StopRecord(
        stop_id=stop["id"],
        stop_name=attrs.get("name") or stop["id"],
        lat=attrs.get("latitude"),
        lng=attrs.get("longitude"),
        location_type=attrs.get("location_type"),
        parent_station_id=parent_station_id(stop),
        platform_code=attrs.get("platform_code"),
    )


def index_stops(stops: list[Stop] | None) -> dict[str, Stop]:
    return {stop["id"]: stop for stop in stops or [] if stop.get("id")}


def stop_name(stop: Stop | None) -> str | None:
    return attributes(stop).get("name") if stop else None


def stop_position(stop: Stop | None) -> tuple[float, float] | None:
    attrs = attributes(stop)
    lat, lng = attrs.get("latitude"), attrs.get("longitude")
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None
    return float(lat), float(lng)


def _bbox_delta_deg(lat: float, lng: float, radius_m: float) -> tuple[float, float]:
    """Approximate lat/lng deltas for a bounding box around (lat, lng) with radius_m meters."""
    # 1 deg lat ~ 111 km; 1 deg lng ~ 111 * cos(lat) km
    km = radius_m / 1000.0
    dlat = km / 111.0
    dlng = km / (111.0 * max(0.01, math.cos(math.radians(lat))))
    return dlat, dlng


def search_nearby(
    stops: list[Stop] | None,
    lat: float,
    lng: float,
    radius_m: float,
    limit: int = 10,
    stop_routes: dict[str, Any] | None = None,
) -> list[NearbyStop]:
    """
    Return stops within radius_m of (lat, lng), sorted by distance, up to limit.
    When a stop -> routes map is given, stops with no serving route are skipped.
    Bounding box prefilter (padded 10%) then Haversine filter/sort.
    """
    if not stops or limit <= 0:
        return []
    dlat, dlng = _bbox_delta_deg(lat, lng, radius_m * 1.1)
    with_dist: list[NearbyStop] = []
    for stop in stops:
        if stop_routes is not None and not stop_routes.get(stop.get("id")):
            continue
        position = stop_position(stop)
        if position is None:
            continue
        s_lat, s_lng = position
        if abs(s_lat - lat) > dlat or abs(s_lng - lng) > dlng:
            continue
        d = haversine_distance_m(lat, lng, s_lat, s_lng)
        if d <= radius_m:
            with_dist.append(NearbyStop(stop=stop, distance_m=d))
    with_dist.sort(key=lambda x: x.distance_m)
    return with_dist[:limit]
