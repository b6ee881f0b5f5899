"""
ETA coverage diagnostics: blend a set of stops live and report how much of each stop's board is
backed by predictions, plus schedule vs prediction drift and a CSV of every row.
"""
import asyncio
import csv
import io
from datetime import datetime, timezone

from linelight.data.stops_repo import stop_name
from linelight.eta.blender import BlendOptions, fetch_blended_departures
from linelight.eta.models import BlendedDeparture

LOW_COVERAGE_THRESHOLD = 0.4

CSV_COLUMNS = [
    "stop_id",
    "stop_name",
    "route_id",
    "trip_id",
    "direction_id",
    "headsign",
    "scheduled_time",
    "prediction_time",
    "final_time",
    "eta_minutes",
    "eta_source",
    "status",
    "delay_minutes",
]


def _delay_stats(rows: list[BlendedDeparture]) -> tuple[float | None, int | None]:
    delays = [row.discrepancy_minutes for row in rows if row.discrepancy_minutes is not None]
    if not delays:
        return None, None
    return round(sum(delays) / len(delays), 1), max(delays)


def summarize_departures(rows: list[BlendedDeparture]) -> dict:
    average, maximum = _delay_stats(rows)
    return {
        "total": len(rows),
        "with_predictions": sum(1 for row in rows if row.eta_source == "prediction"),
        "schedule_only": sum(1 for row in rows if row.eta_source == "schedule"),
        "average_delay_minutes": average,
        "maximum_delay_minutes": maximum,
    }


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""


def departures_to_csv(rows: list[BlendedDeparture]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for row in rows:
        writer.writerow(
            [
                row.stop_id,
                row.stop_name or "",
                row.route_id or "",
                row.trip_id or "",
                "" if row.direction_id is None else row.direction_id,
                row.headsign or "",
                _iso(row.scheduled_time),
                _iso(row.predicted_time),
                _iso(row.final_time),
                "" if row.eta_minutes is None else row.eta_minutes,
                row.eta_source,
                row.status,
                "" if row.discrepancy_minutes is None else row.discrepancy_minutes,
            ]
        )
    return buf.getvalue().rstrip("\n")


def build_aggregate_summary(stops: list[dict]) -> dict:
    total = sum(s["summary"]["total"] for s in stops)
    predicted = sum(s["summary"]["with_predictions"] for s in stops)
    scheduled = sum(s["summary"]["schedule_only"] for s in stops)
    average, maximum = _delay_stats([row for s in stops for row in s["departures"]])

    coverage = []
    for s in stops:
        summary = s["summary"]
        ratio = summary["with_predictions"] / summary["total"] if summary["total"] else 0
        coverage.append(
            {
                "stop_id": s["stop_id"],
                "stop_name": s.get("stop_name"),
                "total_departures": summary["total"],
                "prediction_departures": summary["with_predictions"],
                "prediction_coverage_pct": round(ratio * 100, 1),
            }
        )
    coverage.sort(key=lambda c: c["prediction_coverage_pct"])
    low = [
        c
        for c in coverage
        if c["total_departures"] > 0 and c["prediction_coverage_pct"] / 100 < LOW_COVERAGE_THRESHOLD
    ]
    return {
        "total_stops": len(stops),
        "total_departures": total,
        "prediction_departures": predicted,
        "schedule_departures": scheduled,
        "prediction_coverage_pct": round(predicted / total * 100, 1) if total else 0,
        "average_delay_minutes": average,
        "maximum_delay_minutes": maximum,
        "stop_coverage": coverage,
        "low_coverage_stops": low,
    }


async def generate_eta_report(
    client,
    stop_ids: list[str],
    *,
    stop_index: dict[str, dict] | None = None,
    window_minutes: int | None = None,
    min_lookahead_minutes: int | None = None,
    max_lookahead_minutes: int | None = None,
) -> dict:
    stop_index = stop_index or {}
    overrides = {
        k: v
        for k, v in (
            ("window_minutes", window_minutes),
            ("min_lookahead_minutes", min_lookahead_minutes),
            ("max_lookahead_minutes", max_lookahead_minutes),
        )
        if v is not None
    }

    async def one(stop_id: str) -> dict:
        name = stop_name(stop_index.get(stop_id))
        rows = await fetch_blended_departures(client, stop_id, BlendOptions(stop_name=name, **overrides))
        return {"stop_id": stop_id, "stop_name": name, "departures": rows, "summary": summarize_departures(rows)}

    stops = await asyncio.gather(*(one(stop_id) for stop_id in stop_ids))
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "stops": [
            {**s, "departures": [row.model_dump(mode="json") for row in s["departures"]]} for s in stops
        ],
        "csv": departures_to_csv([row for s in stops for row in s["departures"]]),
        "aggregate_summary": build_aggregate_summary(list(stops)),
    }
