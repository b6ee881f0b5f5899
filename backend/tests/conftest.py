"""Pytest configuration and fixtures."""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure backend root is on path when running pytest from repo root or backend
backend = Path(__file__).resolve().parent.parent
if str(backend) not in sys.path:
    sys.path.insert(0, str(backend))

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes: float) -> str:
    return (NOW + timedelta(minutes=minutes)).isoformat()


def rel(resource_type: str, resource_id: str | None) -> dict:
    return {"data": {"type": resource_type, "id": resource_id} if resource_id else None}


def make_stop(stop_id, name=None, lat=42.3555, lng=-71.0605, location_type=0, parent=None, **attrs):
    return {
        "type": "stop",
        "id": stop_id,
        "attributes": {
            "name": name or stop_id,
            "latitude": lat,
            "longitude": lng,
            "location_type": location_type,
            **attrs,
        },
        "relationships": {"parent_station": rel("stop", parent)},
    }


def make_route(route_id, route_type=1, color="DA291C", text_color="FFFFFF", **attrs):
    return {
        "type": "route",
        "id": route_id,
        "attributes": {"type": route_type, "color": color, "text_color": text_color, **attrs},
    }


def make_line(line_id, route_ids, color=None, long_name=None, short_name=None):
    return {
        "type": "line",
        "id": line_id,
        "attributes": {"color": color, "long_name": long_name, "short_name": short_name},
        "relationships": {"routes": {"data": [{"type": "route", "id": r} for r in route_ids]}},
    }


def make_prediction(
    pred_id,
    stop_id,
    route_id="Red",
    trip_id=None,
    sequence=None,
    arrival=None,
    departure=None,
    direction_id=0,
    status=None,
):
    return {
        "type": "prediction",
        "id": pred_id,
        "attributes": {
            "arrival_time": arrival,
            "departure_time": departure,
            "direction_id": direction_id,
            "stop_sequence": sequence,
            "status": status,
        },
        "relationships": {
            "stop": rel("stop", stop_id),
            "route": rel("route", route_id),
            "trip": rel("trip", trip_id),
        },
    }


def make_schedule(sched_id, stop_id, route_id="Red", trip_id=None, sequence=None, arrival=None, departure=None, direction_id=0):
    return {
        "type": "schedule",
        "id": sched_id,
        "attributes": {
            "arrival_time": arrival,
            "departure_time": departure,
            "direction_id": direction_id,
            "stop_sequence": sequence,
        },
        "relationships": {
            "stop": rel("stop", stop_id),
            "route": rel("route", route_id),
            "trip": rel("trip", trip_id),
        },
    }


def make_vehicle(vehicle_id, route_id, lat=42.35, lng=-71.06, bearing=90, trip_id=None):
    return {
        "type": "vehicle",
        "id": vehicle_id,
        "attributes": {
            "latitude": lat,
            "longitude": lng,
            "bearing": bearing,
            "updated_at": "2024-05-01T12:00:00Z",
        },
        "relationships": {"route": rel("route", route_id), "trip": rel("trip", trip_id)},
    }


def make_alert(alert_id, route_ids=(), stop_ids=(), severity=5, header="Delays"):
    return {
        "type": "alert",
        "id": alert_id,
        "attributes": {
            "header_text": header,
            "severity": severity,
            "effect": "DELAY",
            "lifecycle": "NEW",
            "informed_entity": [{"route": r} for r in route_ids] + [{"stop": s} for s in stop_ids],
        },
    }


class FakeMbtaClient:
    """Stands in for MbtaClient: canned JSON:API documents per resource, calls recorded."""

    def __init__(self, responses: dict | None = None, errors: dict | None = None):
        self.responses = responses or {}
        self.errors = errors or {}
        self.calls: list[tuple[str, dict]] = []

    async def _get(self, resource: str, params=None):
        self.calls.append((resource, dict(params or {})))
        if resource in self.errors:
            raise self.errors[resource]
        response = self.responses.get(resource, {"data": []})
        return response(params or {}) if callable(response) else response

    def calls_for(self, resource: str) -> list[dict]:
        return [params for name, params in self.calls if name == resource]

    async def get_routes(self, params=None):
        return await self._get("routes", params)

    async def get_lines(self, params=None):
        return await self._get("lines", params)

    async def get_stops(self, params=None):
        return await self._get("stops", params)

    async def get_predictions(self, params=None):
        return await self._get("predictions", params)

    async def get_schedules(self, params=None):
        return await self._get("schedules", params)

    async def get_vehicles(self, params=None):
        return await self._get("vehicles", params)

    async def get_alerts(self, params=None):
        return await self._get("alerts", params)

    async def get_trips(self, params=None):
        return await self._get("trips", params)

    async def get_shapes(self, params=None):
        return await self._get("shapes", params)


@pytest.fixture
def fake_client():
    return FakeMbtaClient()


@pytest.fixture
def cache():
    from linelight.cache.resource_cache import ResourceCache

    return ResourceCache()


def downtown_stops() -> list[dict]:
    """Park Street (two Red platforms and an entrance), Downtown Crossing (one Orange platform), Harvard far away."""
    return [
        make_stop("place-pktrm", "Park Street", lat=42.3564, lng=-71.0624, location_type=1),
        make_stop("70075", "Park Street", lat=42.3564, lng=-71.0624, parent="place-pktrm"),
        make_stop("70076", "Park Street", lat=42.3564, lng=-71.0624, parent="place-pktrm"),
        make_stop("door-pktrm-tremont", "Park Street - Tremont St", lat=42.3564, lng=-71.0624, location_type=2, parent="place-pktrm"),
        make_stop("place-dwnxg", "Downtown Crossing", lat=42.3555, lng=-71.0605, location_type=1),
        make_stop("70077", "Downtown Crossing", lat=42.3555, lng=-71.0605, parent="place-dwnxg"),
        make_stop("place-harsq", "Harvard", lat=42.3734, lng=-71.1189, location_type=1),
    ]


class FakeSnapshotFetcher:
    """Stands in for get_stop_eta_snapshot: canned departures per stop, calls recorded."""

    def __init__(self, departures: dict | None = None, failing=()):
        self.departures = departures or {}
        self.failing = set(failing)
        self.calls: list[str] = []

    async def __call__(self, client, stop_id, options=None):
        from linelight.eta.models import StopEtaSnapshot

        self.calls.append(stop_id)
        if stop_id in self.failing:
            raise RuntimeError(f"upstream failed for {stop_id}")
        return StopEtaSnapshot(stop_id=stop_id, generated_at=NOW, departures=self.departures.get(stop_id, []))
