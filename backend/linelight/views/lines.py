"""
Line summaries and per-line overview: lines joined to routes, vehicles, alerts and predictions by
relationship id. Segment health compares each stop's observed headway against the line's typical
headway.
"""
from datetime import datetime, timezone

from linelight.cache.resource_cache import ResourceCache
from linelight.data.modes import Mode, route_type_to_mode
from linelight.data.stops_repo import index_stops, stop_position
from linelight.eta.blender import parse_timestamp
from linelight.mbta.jsonapi import attributes, first_relationship_id, relationship_ids
from linelight.views.alerts import DEFAULT_ALERT_HEADER, alert_route_ids, alerts_for_routes
from linelight.views.models import (
    Coordinate,
    LineAlertSummary,
    LineOverview,
    LineSummariesResponse,
    LineSummary,
    SegmentHealth,
    SegmentStatus,
)

DEFAULT_LINE_COLOR = "#6366f1"
MINOR_DEVIATION_MINUTES = 2


def ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def line_route_ids(line: dict) -> list[str]:
    """Routes in the line's relationship; a line without any stands for the route of the same id."""
    return relationship_ids(line, "routes") or [line["id"]]


def _first_route(line: dict, routes: dict[str, dict]) -> dict | None:
    return next((routes[r] for r in line_route_ids(line) if r in routes), None)


def line_color(line: dict, routes: dict[str, dict]) -> str:
    color = attributes(line).get("color")
    if color:
        return f"#{color}"
    route_color = attributes(_first_route(line, routes)).get("color")
    return f"#{route_color}" if route_color else DEFAULT_LINE_COLOR


def line_mode(line: dict, routes: dict[str, dict]) -> Mode:
    return route_type_to_mode(attributes(_first_route(line, routes)).get("type"))


def line_display_name(line: dict) -> str:
    attrs = attributes(line)
    return attrs.get("long_name") or attrs.get("short_name") or line["id"]


def build_line_summaries(cache: ResourceCache, *, mode: Mode | None = None) -> LineSummariesResponse:
    generated_at = datetime.now(timezone.utc)
    lines_entry = cache.get_lines()
    routes_entry = cache.get_routes()
    if lines_entry is None or routes_entry is None:
        return LineSummariesResponse(ready=False, lines=[], generated_at=generated_at)

    routes = {route["id"]: route for route in routes_entry.data}
    vehicles_entry = cache.get_vehicles()
    alerts_entry = cache.get_alerts()
    vehicle_counts: dict[str, int] = {}
    for vehicle in vehicles_entry.data if vehicles_entry else []:
        route_id = first_relationship_id(vehicle, "route")
        if route_id:
            vehicle_counts[route_id] = vehicle_counts.get(route_id, 0) + 1
    alert_routes = [alert_route_ids(alert) for alert in (alerts_entry.data if alerts_entry else [])]
    updated_at = ms_to_datetime(
        max(
            lines_entry.fetched_at,
            routes_entry.fetched_at,
            vehicles_entry.fetched_at if vehicles_entry else 0,
            alerts_entry.fetched_at if alerts_entry else 0,
        )
    )

    summaries = []
    for line in lines_entry.data:
        route_ids = set(line_route_ids(line))
        summary = LineSummary(
            line_id=line["id"],
            display_name=line_display_name(line),
            color=line_color(line, routes),
            mode=line_mode(line, routes),
            has_alerts=any(ids & route_ids for ids in alert_routes),
            vehicle_count=sum(vehicle_counts.get(r, 0) for r in route_ids),
            updated_at=updated_at,
        )
        if mode is None or summary.mode == mode:
            summaries.append(summary)
    return LineSummariesResponse(ready=True, lines=summaries, generated_at=generated_at)


def _prediction_time(prediction: dict) -> datetime | None:
    attrs = attributes(prediction)
    return parse_timestamp(attrs.get("arrival_time")) or parse_timestamp(attrs.get("departure_time"))


def _direction(prediction: dict) -> int:
    direction = attributes(prediction).get("direction_id")
    return direction if direction is not None else 0


def _positive_deltas_minutes(times: list[datetime]) -> list[float]:
    ordered = sorted(times)
    deltas = [(b - a).total_seconds() / 60 for a, b in zip(ordered, ordered[1:])]
    return [d for d in deltas if d > 0]


def compute_typical_headway(predictions: list[dict]) -> float | None:
    """Mean over directions of the mean positive gap between consecutive predicted times."""
    by_direction: dict[int, list[datetime]] = {}
    for prediction in predictions:
        time = _prediction_time(prediction)
        if time is not None:
            by_direction.setdefault(_direction(prediction), []).append(time)
    averages = []
    for times in by_direction.values():
        deltas = _positive_deltas_minutes(times)
        if deltas:
            averages.append(sum(deltas) / len(deltas))
    return sum(averages) / len(averages) if averages else None


def compute_stop_headways(predictions: list[dict]) -> dict[tuple[int, str], float]:
    """Gap between the next two predicted arrivals per (direction, stop)."""
    grouped: dict[tuple[int, str], list[datetime]] = {}
    for prediction in predictions:
        stop_id = first_relationship_id(prediction, "stop")
        time = _prediction_time(prediction)
        if stop_id and time is not None:
            grouped.setdefault((_direction(prediction), stop_id), []).append(time)
    headways = {}
    for key, times in grouped.items():
        if len(times) < 2:
            continue
        first, second = sorted(times)[:2]
        delta = (second - first).total_seconds() / 60
        if delta > 0:
            headways[key] = delta
    return headways


def segment_health(headway: float | None, typical: float | None) -> SegmentHealth:
    if headway is None:
        return "minor_issues"
    if typical is None:
        return "good"
    if headway > typical * 2:
        return "major_issues"
    if headway - typical > MINOR_DEVIATION_MINUTES:
        return "minor_issues"
    return "good"


def _coordinates(from_stop: dict | None, to_stop: dict | None) -> list[Coordinate]:
    a, b = stop_position(from_stop), stop_position(to_stop)
    if a is None or b is None:
        return []
    return [Coordinate(lat=a[0], lng=a[1]), Coordinate(lat=b[0], lng=b[1])]


def build_segments(
    line_id: str,
    predictions: list[dict],
    stop_index: dict[str, dict],
    typical: float | None,
) -> list[SegmentStatus]:
    """Consecutive stop pairs per direction, ordered by the stop sequence seen in predictions."""
    sequences: dict[int, dict[int, str]] = {}
    for prediction in predictions:
        sequence = attributes(prediction).get("stop_sequence")
        stop_id = first_relationship_id(prediction, "stop")
        if stop_id and sequence is not None:
            sequences.setdefault(_direction(prediction), {}).setdefault(sequence, stop_id)

    stop_headways = compute_stop_headways(predictions)
    segments = []
    for direction_id, by_sequence in sequences.items():
        ordered = [by_sequence[s] for s in sorted(by_sequence)]
        for from_id, to_id in zip(ordered, ordered[1:]):
            if from_id == to_id:
                continue
            headway = stop_headways.get((direction_id, to_id), typical)
            segments.append(
                SegmentStatus(
                    segment_id=f"{line_id}-{direction_id}-{from_id}-{to_id}",
                    from_stop_id=from_id,
                    to_stop_id=to_id,
                    direction_id=direction_id,
                    headway_minutes=headway,
                    headway_deviation_minutes=headway - typical if headway is not None and typical is not None else None,
                    health=segment_health(headway, typical),
                    coordinates=_coordinates(stop_index.get(from_id), stop_index.get(to_id)),
                )
            )
    return segments


def build_line_overview(cache: ResourceCache, line_id: str) -> LineOverview | None:
    """None when the line is unknown or routes/stops have not been polled yet."""
    lines_entry = cache.get_lines()
    routes_entry = cache.get_routes()
    stops_entry = cache.get_stops()
    line = next((l for l in lines_entry.data if l["id"] == line_id), None) if lines_entry else None
    if line is None or routes_entry is None or stops_entry is None:
        return None

    routes = {route["id"]: route for route in routes_entry.data}
    route_ids = line_route_ids(line)
    wanted = set(route_ids)
    vehicles_entry = cache.get_vehicles()
    predictions_entry = cache.get_predictions()
    alerts_entry = cache.get_alerts()
    shapes_entry = cache.get_shapes()

    active_vehicles = sum(
        1 for v in (vehicles_entry.data if vehicles_entry else []) if first_relationship_id(v, "route") in wanted
    )
    predictions = [
        p for p in (predictions_entry.data if predictions_entry else []) if first_relationship_id(p, "route") in wanted
    ]
    typical = compute_typical_headway(predictions)
    alerts = [
        LineAlertSummary(
            alert_id=alert["id"],
            header=attributes(alert).get("header_text") or DEFAULT_ALERT_HEADER,
            severity=attributes(alert).get("severity"),
            effect=attributes(alert).get("effect"),
            lifecycle=attributes(alert).get("lifecycle"),
        )
        for alert in alerts_for_routes(alerts_entry.data if alerts_entry else None, route_ids)
    ]
    shape_paths = [
        [Coordinate(**point) for point in path]
        for route_id in route_ids
        for path in (shapes_entry.data.get(route_id, []) if shapes_entry else [])
    ]
    primary_route = routes.get(route_ids[0])

    return LineOverview(
        line_id=line["id"],
        display_name=line_display_name(line),
        color=line_color(line, routes),
        mode=route_type_to_mode(attributes(primary_route).get("type")),
        active_vehicles=active_vehicles,
        typical_headway_minutes=typical,
        alerts=alerts,
        segments=build_segments(line["id"], predictions, index_stops(stops_entry.data), typical),
        shape_paths=shape_paths,
        updated_at=ms_to_datetime(
            max(
                lines_entry.fetched_at,
                vehicles_entry.fetched_at if vehicles_entry else 0,
                predictions_entry.fetched_at if predictions_entry else 0,
            )
        ),
    )
