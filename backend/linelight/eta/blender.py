"""
ETA blender: reconcile scheduled departures and live predictions for one stop.

Schedules and predictions are matched on (trip_id, stop_id, stop_sequence); all three must be
present. A matched prediction is consumed so it is emitted once. Predictions left over become
their own rows. Rows are then restricted to the lookahead window and sorted by final time.
"""
import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from linelight.eta.models import BlendedDeparture, EtaSource, ServiceStatus
from linelight.mbta.jsonapi import (
    attributes,
    first_relationship_id,
    included_of_type,
    resource_list,
)

DEFAULT_WINDOW_MINUTES = 90
DEFAULT_MIN_LOOKAHEAD_MINUTES = -2
DEFAULT_MAX_LOOKAHEAD_MINUTES = 30
DEFAULT_MAX_RESULTS = 200
INCLUDE = "trip,route,stop"

# Substring -> status, checked in order; first match wins
_STATUS_RULES: tuple[tuple[str, ServiceStatus], ...] = (
    ("delay", "delayed"),
    ("cancel", "cancelled"),
    ("skip", "skipped"),
    ("no service", "no_service"),
    ("hold", "delayed"),
)


@dataclass(frozen=True)
class BlendOptions:
    now: datetime | None = None
    window_minutes: int = DEFAULT_WINDOW_MINUTES
    min_lookahead_minutes: int = DEFAULT_MIN_LOOKAHEAD_MINUTES
    max_lookahead_minutes: int = DEFAULT_MAX_LOOKAHEAD_MINUTES
    max_results: int = DEFAULT_MAX_RESULTS
    stop_name: str | None = None

    def resolved_now(self) -> datetime:
        return self.now if self.now is not None else datetime.now(timezone.utc)

    def window(self, now: datetime) -> tuple[datetime, datetime]:
        return (
            now + timedelta(minutes=self.min_lookahead_minutes),
            now + timedelta(minutes=self.max_lookahead_minutes),
        )


def parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def minutes_between(start: datetime, end: datetime | None) -> int | None:
    """Whole minutes from start to end, halves rounded up."""
    if end is None:
        return None
    return math.floor((end - start).total_seconds() / 60 + 0.5)


def derive_status(status_text: str | None, has_prediction: bool, schedule_only: bool) -> ServiceStatus:
    if not has_prediction:
        return "on_time" if schedule_only else "unknown"
    raw = (status_text or "").lower()
    for needle, status in _STATUS_RULES:
        if needle in raw:
            return status
    return "on_time"


def _event_time(resource: dict[str, Any] | None) -> datetime | None:
    attrs = attributes(resource)
    return parse_timestamp(attrs.get("departure_time")) or parse_timestamp(attrs.get("arrival_time"))


def match_key(resource: dict[str, Any]) -> tuple[str, str, int] | None:
    trip_id = first_relationship_id(resource, "trip")
    stop_id = first_relationship_id(resource, "stop")
    sequence = attributes(resource).get("stop_sequence")
    if not trip_id or not stop_id or sequence is None:
        return None
    return trip_id, stop_id, sequence


def _trip_headsign(trip_id: str | None, trips: dict[str, dict[str, Any]]) -> str | None:
    if not trip_id:
        return None
    return attributes(trips.get(trip_id)).get("headsign") or None


def prediction_to_departure(
    stop_id: str,
    prediction: dict[str, Any],
    now: datetime,
    *,
    stop_name: str | None = None,
    headsign: str | None = None,
) -> BlendedDeparture:
    attrs = attributes(prediction)
    predicted = _event_time(prediction)
    return BlendedDeparture(
        stop_id=stop_id,
        stop_name=stop_name,
        route_id=first_relationship_id(prediction, "route"),
        direction_id=attrs.get("direction_id"),
        trip_id=first_relationship_id(prediction, "trip"),
        stop_sequence=attrs.get("stop_sequence"),
        headsign=headsign,
        predicted_time=predicted,
        final_time=predicted,
        eta_minutes=minutes_between(now, predicted),
        eta_source="prediction",
        status=derive_status(attrs.get("status"), True, False),
    )


def blend_departures(
    stop_id: str,
    schedule_response: dict[str, Any],
    prediction_response: dict[str, Any],
    now: datetime,
    stop_name: str | None = None,
) -> list[BlendedDeparture]:
    """Match schedules to predictions. Returns unfiltered rows: schedules first, then leftover predictions."""
    schedule_trips = included_of_type(schedule_response, "trip")
    prediction_trips = included_of_type(prediction_response, "trip")

    predictions: dict[tuple[str, str, int], dict[str, Any]] = {}
    unkeyed: list[dict[str, Any]] = []
    for prediction in resource_list(prediction_response):
        key = match_key(prediction)
        if key is None:
            unkeyed.append(prediction)
        else:
            predictions[key] = prediction

    rows: list[BlendedDeparture] = []
    for schedule in resource_list(schedule_response):
        key = match_key(schedule)
        prediction = predictions.pop(key, None) if key is not None else None
        s_attrs = attributes(schedule)
        p_attrs = attributes(prediction)

        scheduled = _event_time(schedule)
        predicted = _event_time(prediction)
        final = predicted or scheduled
        trip_id = first_relationship_id(schedule, "trip")
        headsign = (
            _trip_headsign(trip_id, schedule_trips)
            or _trip_headsign(first_relationship_id(prediction, "trip"), prediction_trips)
            or s_attrs.get("stop_headsign")
            or None
        )
        direction_id = p_attrs.get("direction_id")
        if direction_id is None:
            direction_id = s_attrs.get("direction_id")
        stop_sequence = s_attrs.get("stop_sequence")
        if stop_sequence is None:
            stop_sequence = p_attrs.get("stop_sequence")
        source: EtaSource = "prediction" if predicted else "schedule" if scheduled else "unknown"

        rows.append(
            BlendedDeparture(
                stop_id=stop_id,
                stop_name=stop_name,
                route_id=first_relationship_id(schedule, "route"),
                direction_id=direction_id,
                trip_id=trip_id,
                stop_sequence=stop_sequence,
                headsign=headsign,
                scheduled_time=scheduled,
                predicted_time=predicted,
                final_time=final,
                eta_minutes=minutes_between(now, final),
                eta_source=source,
                status=derive_status(
                    p_attrs.get("status"),
                    prediction is not None,
                    prediction is None and scheduled is not None,
                ),
                discrepancy_minutes=minutes_between(scheduled, predicted) if scheduled and predicted else None,
            )
        )

    for prediction in [*predictions.values(), *unkeyed]:
        rows.append(
            prediction_to_departure(
                stop_id,
                prediction,
                now,
                stop_name=stop_name,
                headsign=_trip_headsign(first_relationship_id(prediction, "trip"), prediction_trips),
            )
        )
    return rows


def finalize_departures(rows: list[BlendedDeparture], start: datetime, end: datetime) -> list[BlendedDeparture]:
    """Drop rows without a final time or outside [start, end]; stable sort by final time."""
    kept = [row for row in rows if row.final_time is not None and start <= row.final_time <= end]
    return sorted(kept, key=lambda row: row.final_time)


def _format_hhmm(value: datetime, service_day: datetime) -> str:
    """HH:MM in UTC; times on the following day continue past 24:00."""
    value = value.astimezone(timezone.utc)
    days = (value.date() - service_day.astimezone(timezone.utc).date()).days
    hours = max(0, days * 24 + value.hour)
    minutes = value.minute if days * 24 + value.hour >= 0 else 0
    return f"{hours:02d}:{minutes:02d}"


async def fetch_stop_sources(client, stop_id: str, options: BlendOptions, now: datetime) -> tuple[dict, dict]:
    """Fetch schedules and predictions for a stop concurrently. Either failure propagates."""
    start, _ = options.window(now)
    schedule_end = now + timedelta(minutes=max(options.window_minutes, options.max_lookahead_minutes))
    # TODO: format min_time/max_time in the agency's service timezone instead of UTC
    schedule_params = {
        "filter[stop]": stop_id,
        "min_time": _format_hhmm(start, now),
        "max_time": _format_hhmm(schedule_end, now),
        "include": INCLUDE,
        "page[limit]": options.max_results,
    }
    prediction_params = {
        "filter[stop]": stop_id,
        "include": INCLUDE,
        "page[limit]": options.max_results,
    }
    schedules, predictions = await asyncio.gather(
        client.get_schedules(schedule_params),
        client.get_predictions(prediction_params),
    )
    return schedules, predictions


async def fetch_blended_departures(client, stop_id: str, options: BlendOptions | None = None) -> list[BlendedDeparture]:
    """Live-fetch and blend departures for one stop, restricted to the lookahead window."""
    options = options or BlendOptions()
    now = options.resolved_now()
    schedules, predictions = await fetch_stop_sources(client, stop_id, options, now)
    rows = blend_departures(stop_id, schedules, predictions, now, options.stop_name)
    start, end = options.window(now)
    return finalize_departures(rows, start, end)
