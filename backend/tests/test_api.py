"""Tests for the HTTP API: routing, parameter handling and the {error, message} error shape."""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

import main
from conftest import (
    FakeMbtaClient,
    downtown_stops,
    make_alert,
    make_line,
    make_prediction,
    make_route,
    make_vehicle,
)
from linelight.cache.resource_cache import ResourceCache
from linelight.cache.ttl import TTLCache


@pytest.fixture
def cache():
    cache = ResourceCache()
    cache.set_stops(downtown_stops())
    cache.set_routes([make_route("Red"), make_route("Orange", color="ED8B00")])
    cache.set_lines(
        [
            make_line("line-Red", ["Red"], color="DA291C", long_name="Red Line"),
            make_line("line-Orange", ["Orange"], long_name="Orange Line"),
        ]
    )
    cache.set_vehicles([make_vehicle("v1", "Red"), make_vehicle("v2", "Orange")])
    cache.set_alerts([make_alert("a1", route_ids=["Red"])])
    cache.set_predictions([make_prediction("p1", "70077", route_id="Orange")])
    return cache


@pytest.fixture
def mbta():
    return FakeMbtaClient()


@pytest.fixture
def client(cache, mbta):
    """TestClient with app state pointed at a seeded cache and a fake upstream client (lifespan not run)."""
    main.app.state.cache = cache
    main.app.state.mbta_client = mbta
    main.app.state.station_memo = TTLCache(30)
    yield TestClient(main.app)
    main.app.state.cache = None
    main.app.state.mbta_client = None
    main.app.state.station_memo = None


@pytest.fixture
def empty_client():
    """TestClient before startup has populated app state."""
    main.app.state.cache = None
    main.app.state.mbta_client = None
    return TestClient(main.app)


def test_health_before_startup(empty_client):
    r = empty_client.get("/api/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["cached_routes"] == 0
    assert data["cache_health"] is None
    assert data["remote_cache"] == {"status": "disabled", "error": None, "healthy": False}


def test_health_reports_cache(client):
    data = client.get("/api/health").json()
    assert data["cached_routes"] == 2
    assert data["cache_health"] is not None
    assert data["remote_cache"]["status"] == "disabled"


def test_metrics_and_favicon(client):
    assert client.get("/favicon.ico").status_code == 204
    data = client.get("/metrics").json()
    assert data["requests_total"] >= 1
    assert "uptime_seconds" in data


def test_unknown_path_uses_error_shape(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_home_requires_coordinates(client):
    r = client.get("/api/home", params={"lat": 42.35})
    assert r.status_code == 400
    assert r.json() == {"error": "bad_request", "message": "lat and lng are required"}


def test_home_rejects_out_of_range(client):
    r = client.get("/api/home", params={"lat": 95, "lng": -71.06})
    assert r.status_code == 400
    assert r.json()["error"] == "bad_request"


def test_home_rejects_non_numeric(client):
    r = client.get("/api/home", params={"lat": "north", "lng": -71.06})
    assert r.status_code == 400
    assert r.json() == {"error": "bad_request", "message": "Invalid parameters: lat"}


def test_home_snapshot(client):
    r = client.get("/api/home", params={"lat": 42.3560, "lng": -71.0615, "limit": 99})
    assert r.status_code == 200
    data = r.json()
    assert [s["stop_id"] for s in data["nearby"]] == ["place-pktrm", "place-dwnxg"]
    assert data["favorites"] == []


def test_home_snapshot_with_favorites(client):
    r = client.get(
        "/api/home", params={"lat": 42.3560, "lng": -71.0615, "favorites": "70075, 70076,,place-dwnxg"}
    )
    assert r.status_code == 200
    assert [f["stop_id"] for f in r.json()["favorites"]] == ["place-pktrm", "place-dwnxg"]


def test_home_snapshot_failure(client):
    """Unexpected errors building the snapshot surface as a 500 with the error shape."""
    with patch("main.build_home_snapshot", side_effect=RuntimeError("boom")):
        r = client.get("/api/home", params={"lat": 42.35, "lng": -71.06})
    assert r.status_code == 500
    assert r.json() == {"error": "internal_error", "message": "Unable to build home snapshot"}


def test_home_unavailable_before_startup(empty_client):
    r = empty_client.get("/api/home", params={"lat": 42.35, "lng": -71.06})
    assert r.status_code == 503
    assert r.json()["error"] == "unavailable"


def test_station_board(client):
    r = client.get("/api/stations/70075/board", params={"lat": 42.3560, "lng": -71.0615})
    assert r.status_code == 200
    data = r.json()
    assert data["primary"]["stop_id"] == "place-pktrm"
    assert data["primary"]["walk_minutes"] == 1
    assert data["details"]["facilities"] == []


def test_station_board_unknown_stop(client):
    r = client.get("/api/stations/nope/board")
    assert r.status_code == 404
    assert r.json() == {"error": "not_found", "message": "Station data unavailable"}


def test_trip_track_not_found(client, mbta):
    r = client.get("/api/trips/T404/track")
    assert r.status_code == 404
    assert r.json() == {"error": "not_found", "message": "Trip data unavailable"}
    assert mbta.calls_for("predictions")[0]["filter[trip]"] == "T404"


def test_trip_track_upstream_failure(cache):
    main.app.state.cache = cache
    main.app.state.mbta_client = FakeMbtaClient(errors={"predictions": RuntimeError("upstream down")})
    try:
        r = TestClient(main.app).get("/api/trips/T1/track")
    finally:
        main.app.state.cache = None
        main.app.state.mbta_client = None
    assert r.status_code == 500
    assert r.json() == {"error": "internal_error", "message": "Unable to build trip track"}


def test_stations(client):
    r = client.get("/api/stations", params={"mode": "not-a-mode"})
    assert r.status_code == 200
    ids = [s["stop_id"] for s in r.json()["stations"]]
    assert set(ids) == {"place-pktrm", "place-dwnxg", "place-harsq"}
    assert len(client.get("/api/stations", params={"limit": 1}).json()["stations"]) == 1


def test_lines(client):
    data = client.get("/api/lines").json()
    assert data["ready"] is True
    red = next(line for line in data["lines"] if line["line_id"] == "line-Red")
    assert red["has_alerts"] is True
    assert red["vehicle_count"] == 1


def test_lines_unavailable_before_startup(empty_client):
    r = empty_client.get("/api/lines")
    assert r.status_code == 503
    assert r.json() == {"error": "unavailable", "message": "Service is starting up. Try again shortly."}


def test_line_overview(client):
    r = client.get("/api/lines/line-Red/overview")
    assert r.status_code == 200
    assert r.json()["line"]["line_id"] == "line-Red"
    assert r.json()["line"]["active_vehicles"] == 1
    assert client.get("/api/lines/line-Purple/overview").status_code == 404


def test_shapes_not_available(client, mbta):
    r = client.get("/api/routes/Red/shapes")
    assert r.status_code == 404
    assert r.json() == {"error": "not_found", "message": "Route shapes not available"}
    assert mbta.calls_for("shapes") == [{"filter[route]": "Red", "page[limit]": 2000}]


def test_line_shapes_from_cache(client, cache):
    cache.set_shapes({"Red": [[{"lat": 42.35, "lng": -71.06}, {"lat": 42.36, "lng": -71.07}]]})
    r = client.get("/api/lines/Red/shapes")
    assert r.status_code == 200
    assert r.json()["color"] == "#DA291C"


def test_vehicles_mode_filter(client):
    data = client.get("/api/vehicles", params={"mode": "bus"}).json()
    assert data["vehicles"] == []
    assert len(client.get("/api/vehicles").json()["vehicles"]) == 2


def test_system_insights(client):
    data = client.get("/api/system/insights").json()["insights"]
    assert {line["line_id"] for line in data["lines"]} == {"line-Red", "line-Orange"}
    assert [t["line_id"] for t in data["top_trouble_segments"]] == ["line-Red"]


def test_raw_routes(client):
    data = client.get("/api/raw/routes").json()
    assert [r["id"] for r in data["routes"]] == ["Red", "Orange"]
    assert data["fetched_at"] > 0


def test_eta_report_requires_stop_id(client):
    r = client.get("/api/dev/reports/eta")
    assert r.status_code == 400
    assert r.json()["error"] == "bad_request"


def test_eta_report(client):
    r = client.get("/api/dev/reports/eta", params={"stop_id": "70075,70076"})
    assert r.status_code == 200
    assert [s["stop_id"] for s in r.json()["stops"]] == ["70075", "70076"]


def test_station_mapping_report(client):
    r = client.get("/api/dev/reports/stations", params={"stop_id": "place-pktrm"})
    assert r.status_code == 200
    assert r.json()["counts_by_kind"]["entrance"] == 1
