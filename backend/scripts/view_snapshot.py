#!/usr/bin/env python3
"""
Fetch the core MBTA collections once and print a snapshot of the derived views as JSON.

Useful for eyeballing line summaries, a sample line overview and the home snapshot for a point
without running the server or the pollers.

  python scripts/view_snapshot.py --lat 42.3555 --lng -71.0605
  python scripts/view_snapshot.py --output samples/view-check.json
"""
import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add backend root to path
backend = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend))

from linelight.cache.resource_cache import ResourceCache
from linelight.mbta.client import MbtaClient
from linelight.mbta.jsonapi import resource_list
from linelight.polling.scheduler import FALLBACK_ROUTE_IDS
from linelight.stations.home import HomeQuery, build_home_snapshot
from linelight.views.insights import build_system_insights
from linelight.views.lines import build_line_overview, build_line_summaries
from settings import get_settings

SAMPLE_LINE = "line-Red"


async def load_cache(client: MbtaClient, cache: ResourceCache) -> None:
    routes = await client.get_routes({"filter[type]": (0, 1, 2, 3)})
    lines = await client.get_lines({"include": "routes"})
    stops = await client.get_stops({"filter[route_type]": (0, 1), "page[limit]": 5000})
    predictions = await client.get_predictions(
        {"filter[route]": FALLBACK_ROUTE_IDS, "include": "route,stop,trip", "page[limit]": 500}
    )
    vehicles = await client.get_vehicles({"filter[route]": FALLBACK_ROUTE_IDS})
    alerts = await client.get_alerts()
    cache.set_routes(resource_list(routes))
    cache.set_lines(resource_list(lines))
    cache.set_stops(resource_list(stops))
    cache.set_predictions(resource_list(predictions))
    cache.set_vehicles(resource_list(vehicles))
    cache.set_alerts(resource_list(alerts))


async def build_snapshot(args: argparse.Namespace) -> dict:
    settings = get_settings()
    client = MbtaClient(api_key=settings.mbta_api_key, base_url=settings.mbta_api_base_url)
    cache = ResourceCache()
    try:
        await load_cache(client, cache)
        summaries = build_line_summaries(cache)
        active_line = next((line.line_id for line in summaries.lines if line.vehicle_count > 0), SAMPLE_LINE)
        overview = build_line_overview(cache, active_line)
        home = await build_home_snapshot(
            cache,
            client,
            HomeQuery(lat=args.lat, lng=args.lng, radius_meters=args.radius, limit=args.limit),
        )
        insights = build_system_insights(cache)
    finally:
        await client.aclose()
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "line_summary_ready": summaries.ready,
        "sample_line_id": active_line,
        "sample_overview_vehicles": overview.active_vehicles if overview else None,
        "sample_segments": [s.model_dump(mode="json") for s in overview.segments[:3]] if overview else [],
        "home": home.model_dump(mode="json"),
        "system_trouble_count": len(insights.top_trouble_segments),
        "upstream": client.telemetry.snapshot(),
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Print a one-shot snapshot of the derived views")
    parser.add_argument("--lat", type=float, default=42.3555, help="Latitude for the home snapshot (default: Downtown Crossing)")
    parser.add_argument("--lng", type=float, default=-71.0605, help="Longitude for the home snapshot")
    parser.add_argument("--radius", type=float, default=1200, help="Search radius in meters")
    parser.add_argument("--limit", type=int, default=10, help="Max nearby stations")
    parser.add_argument("--output", type=Path, default=None, help="Write JSON here instead of stdout")
    args = parser.parse_args()

    try:
        snapshot = asyncio.run(build_snapshot(args))
    except Exception as e:
        print(f"Error: view snapshot failed: {e}", file=sys.stderr)
        return 1

    text = json.dumps(snapshot, indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text, encoding="utf-8")
        print(f"View snapshot saved to {args.output}")
    else:
        print(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
