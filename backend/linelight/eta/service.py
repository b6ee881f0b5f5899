"""
Per-stop ETA snapshots.

Two access modes: a cache-only snapshot built from the polled prediction pool (no network), and a
live snapshot that blends schedules with predictions and fills gaps by interpolating along the
stop sequence.
"""
import bisect
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from linelight.cache.resource_cache import ResourceCache
from linelight.eta.blender import (
    BlendOptions,
    blend_departures,
    fetch_stop_sources,
    finalize_departures,
    minutes_between,
    prediction_to_departure,
)
from linelight.eta.models import BlendedDeparture, StopEtaSnapshot
from linelight.mbta.jsonapi import first_relationship_id


@dataclass(frozen=True)
class CachedSnapshotOptions:
    now: datetime | None = None
    min_lookahead_minutes: int = -2
    max_lookahead_minutes: int = 30
    max_results: int = 50
    stop_name: str | None = None


class KnownTime(NamedTuple):
    sequence: int
    time: datetime


def _known_times(rows: list[BlendedDeparture]) -> list[KnownTime]:
    known = [
        KnownTime(row.stop_sequence, row.final_time)
        for row in rows
        if row.stop_sequence is not None and row.final_time is not None
    ]
    known.sort(key=lambda k: k.sequence)
    return known


def previous_bound(known: list[KnownTime], sequences: list[int], sequence: int) -> KnownTime | None:
    """Nearest known entry with a smaller stop sequence."""
    i = bisect.bisect_left(sequences, sequence)
    return known[i - 1] if i > 0 else None


def next_bound(known: list[KnownTime], sequences: list[int], sequence: int) -> KnownTime | None:
    """Nearest known entry with a larger stop sequence."""
    i = bisect.bisect_right(sequences, sequence)
    return known[i] if i < len(known) else None


def _interpolate(start: KnownTime, end: KnownTime, sequence: int) -> datetime:
    if end.sequence == start.sequence:
        return start.time
    ratio = (sequence - start.sequence) / (end.sequence - start.sequence)
    return start.time + (end.time - start.time) * ratio


def interpolate_departures(rows: list[BlendedDeparture], now: datetime | None = None) -> list[BlendedDeparture]:
    """
    Fill rows missing a final time from the nearest known stop sequences on either side.
    Both bounds: linear interpolation, tagged "blended". One or none: fall back to the row's
    scheduled time, else leave it time-less.
    """
    now = now or datetime.now(timezone.utc)
    known = _known_times(rows)
    sequences = [k.sequence for k in known]
    result: list[BlendedDeparture] = []
    for row in rows:
        if row.final_time is not None or row.stop_sequence is None:
            result.append(row)
            continue
        prev = previous_bound(known, sequences, row.stop_sequence)
        nxt = next_bound(known, sequences, row.stop_sequence)
        if prev is not None and nxt is not None:
            final = _interpolate(prev, nxt, row.stop_sequence)
            result.append(
                row.model_copy(
                    update={"final_time": final, "eta_minutes": minutes_between(now, final), "eta_source": "blended"}
                )
            )
        elif row.scheduled_time is not None:
            result.append(
                row.model_copy(
                    update={"final_time": row.scheduled_time, "eta_minutes": minutes_between(now, row.scheduled_time)}
                )
            )
        else:
            result.append(row)
    return result


def get_cached_stop_eta_snapshot(
    cache: ResourceCache,
    stop_id: str,
    options: CachedSnapshotOptions | None = None,
) -> StopEtaSnapshot | None:
    """
    Snapshot from cached predictions only. None when predictions were never polled or nothing
    for this stop falls in the lookahead window (a cache miss, not an error).
    """
    options = options or CachedSnapshotOptions()
    entry = cache.get_predictions()
    if entry is None:
        return None
    predictions = [p for p in entry.data if first_relationship_id(p, "stop") == stop_id]
    if not predictions:
        return None

    now = options.now or datetime.now(timezone.utc)
    start = now + timedelta(minutes=options.min_lookahead_minutes)
    end = now + timedelta(minutes=options.max_lookahead_minutes)
    rows = [prediction_to_departure(stop_id, p, now, stop_name=options.stop_name) for p in predictions]
    departures = finalize_departures(rows, start, end)[: options.max_results]
    if not departures:
        return None
    return StopEtaSnapshot(stop_id=stop_id, generated_at=now, departures=departures)


async def get_stop_eta_snapshot(client, stop_id: str, options: BlendOptions | None = None) -> StopEtaSnapshot:
    """Live snapshot: fetch and blend, interpolate gaps, then window and sort."""
    options = options or BlendOptions()
    now = options.resolved_now()
    schedules, predictions = await fetch_stop_sources(client, stop_id, options, now)
    rows = blend_departures(stop_id, schedules, predictions, now, options.stop_name)
    start, end = options.window(now)
    departures = finalize_departures(interpolate_departures(rows, now), start, end)
    return StopEtaSnapshot(stop_id=stop_id, generated_at=now, departures=departures)
