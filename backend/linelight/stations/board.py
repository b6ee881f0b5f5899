"""
Station board: every departure across a station's platforms for the next hour, grouped by
route and direction, plus a bounded detail list and the station's active alerts.
"""
import logging
import math
from datetime import datetime, timezone

from linelight.cache.resource_cache import ResourceCache
from linelight.data.geo import haversine_distance_m
from linelight.data.modes import route_type_to_mode
from linelight.data.stations import canonical_station, is_boardable_stop, parent_station_id
from linelight.data.stops_repo import index_stops, stop_name, stop_position
from linelight.eta.models import BlendedDeparture
from linelight.eta.service import get_stop_eta_snapshot
from linelight.mbta.jsonapi import attributes
from linelight.stations.home import (
    StopSnapshotFetcher,
    direction_label,
    group_by_route_direction,
    group_destination,
    load_platform_departures,
)
from linelight.stations.models import (
    StationAlert,
    StationBoardDetails,
    StationBoardPrimary,
    StationBoardResponse,
    StationBoardRoutePrimary,
    StationDeparture,
    StationEta,
)
from linelight.views.alerts import (
    DEFAULT_ALERT_HEADER,
    alert_route_ids,
    alert_stop_ids,
    severity_label,
)

logger = logging.getLogger(__name__)

BOARD_MAX_LOOKAHEAD_MINUTES = 60
BOARD_EXTRA_ETAS = 3
BOARD_MAX_DETAIL_ROWS = 60
BOARD_MAX_DETAIL_ROWS_PER_DIRECTION = 6
WALK_METERS_PER_MINUTE = 80


def collect_platform_stop_ids(stops: list[dict], station: dict) -> list[str]:
    """The station itself plus every boardable stop whose parent is the station."""
    ids = {station["id"]: None}
    for stop in stops:
        if parent_station_id(stop) == station["id"] and is_boardable_stop(stop):
            ids[stop["id"]] = None
    return list(ids)


def _final_time_key(departure: BlendedDeparture) -> tuple[int, datetime]:
    if departure.final_time is None:
        return 1, datetime.max.replace(tzinfo=timezone.utc)
    return 0, departure.final_time


def to_station_eta(departure: BlendedDeparture) -> StationEta:
    return StationEta(
        eta_minutes=departure.eta_minutes,
        scheduled_time=departure.scheduled_time,
        predicted_time=departure.predicted_time,
        source=departure.eta_source,
        status=departure.status,
        trip_id=departure.trip_id,
    )


def to_station_departure(departure: BlendedDeparture) -> StationDeparture:
    return StationDeparture(
        route_id=departure.route_id or "unknown",
        short_name=departure.route_id or "Route",
        direction=direction_label(departure.direction_id, unknown="Unknown direction"),
        destination=departure.headsign or "—",
        scheduled_time=departure.scheduled_time,
        predicted_time=departure.predicted_time,
        eta_minutes=departure.eta_minutes,
        source=departure.eta_source,
        status=departure.status,
    )


def build_primary_routes(departures: list[BlendedDeparture], routes: dict[str, dict]) -> list[StationBoardRoutePrimary]:
    primary_routes = []
    for group in group_by_route_direction(departures):
        primary = group[0]
        route = routes.get(primary.route_id or "")
        primary_routes.append(
            StationBoardRoutePrimary(
                route_id=primary.route_id or "unknown",
                short_name=primary.route_id or "Route",
                mode=route_type_to_mode(attributes(route).get("type")) if route else "other",
                direction=direction_label(primary.direction_id),
                direction_id=primary.direction_id,
                destination=group_destination(group),
                primary_eta=to_station_eta(primary),
                extra_etas=[to_station_eta(d) for d in group[1 : 1 + BOARD_EXTRA_ETAS]],
            )
        )
    return primary_routes


def build_detail_rows(departures: list[BlendedDeparture]) -> list[StationDeparture]:
    """Departures in time order, at most 6 per (route, direction) and 60 overall."""
    per_direction: dict[tuple[str | None, int | None], int] = {}
    rows: list[StationDeparture] = []
    for departure in departures:
        key = (departure.route_id, departure.direction_id)
        if per_direction.get(key, 0) >= BOARD_MAX_DETAIL_ROWS_PER_DIRECTION:
            continue
        per_direction[key] = per_direction.get(key, 0) + 1
        rows.append(to_station_departure(departure))
        if len(rows) >= BOARD_MAX_DETAIL_ROWS:
            break
    return rows


def build_station_alerts(alerts: list[dict] | None, route_ids: set[str], stop_ids: set[str]) -> list[StationAlert]:
    result = []
    for alert in alerts or []:
        if not (alert_route_ids(alert) & route_ids or alert_stop_ids(alert) & stop_ids):
            continue
        attrs = attributes(alert)
        result.append(
            StationAlert(
                id=alert["id"],
                severity=severity_label(attrs.get("severity")),
                header=attrs.get("header_text") or attrs.get("header") or DEFAULT_ALERT_HEADER,
                description=attrs.get("description_text") or None,
                effect=attrs.get("effect") or "UNKNOWN",
            )
        )
    return result


async def build_station_board(
    cache: ResourceCache,
    client,
    stop_id: str,
    *,
    lat: float | None = None,
    lng: float | None = None,
    fetch_stop_snapshot: StopSnapshotFetcher = get_stop_eta_snapshot,
    now: datetime | None = None,
) -> StationBoardResponse | None:
    """
    Board for the requested stop's canonical station and all of its platforms. None when the stop
    is unknown or has no boardable parent.
    """
    stops_entry = cache.get_stops()
    if stops_entry is None:
        return None
    stop_index = index_stops(stops_entry.data)
    requested = stop_index.get(stop_id)
    if requested is None:
        return None
    meta = canonical_station(requested, stop_index)
    if meta is None:
        return None
    station = meta.station

    platform_ids = collect_platform_stop_ids(stops_entry.data, station)
    by_stop = await load_platform_departures(
        cache,
        client,
        platform_ids,
        stop_index,
        max_lookahead_minutes=BOARD_MAX_LOOKAHEAD_MINUTES,
        fetch_stop_snapshot=fetch_stop_snapshot,
        now=now,
    )
    departures = sorted(
        (d for platform_id in platform_ids for d in by_stop.get(platform_id, [])),
        key=_final_time_key,
    )

    routes_entry = cache.get_routes()
    routes = {route["id"]: route for route in routes_entry.data} if routes_entry else {}
    alerts_entry = cache.get_alerts()
    served_routes = {d.route_id for d in departures if d.route_id}

    primary = StationBoardPrimary(
        stop_id=station["id"],
        stop_name=stop_name(station) or station["id"],
        routes=build_primary_routes(departures, routes),
    )
    position = stop_position(station)
    if lat is not None and lng is not None and position is not None:
        distance = haversine_distance_m(lat, lng, position[0], position[1])
        primary.distance_meters = round(distance, 1)
        primary.walk_minutes = math.floor(distance / WALK_METERS_PER_MINUTE + 0.5)

    logger.info(
        "telemetry station_board stop_id=%s platforms=%s departures=%s",
        station["id"],
        len(platform_ids),
        len(departures),
        extra={"stop_id": station["id"], "platforms": len(platform_ids), "departures": len(departures)},
    )
    return StationBoardResponse(
        primary=primary,
        details=StationBoardDetails(
            departures=build_detail_rows(departures),
            alerts=build_station_alerts(alerts_entry.data if alerts_entry else None, served_routes, set(platform_ids)),
            facilities=[],
        ),
    )
