"""Tests for the line, insight, vehicle, trip and shape views."""
import pytest
from conftest import (
    NOW,
    FakeMbtaClient,
    at,
    make_alert,
    make_line,
    make_prediction,
    make_route,
    make_stop,
    make_vehicle,
    rel,
)

from linelight.views.insights import build_system_insights, pain_score
from linelight.views.lines import (
    build_line_overview,
    build_line_summaries,
    compute_typical_headway,
    segment_health,
)
from linelight.views.models import LineSummary
from linelight.views.shapes import build_line_shapes
from linelight.views.trips import build_trip_track, trip_destination
from linelight.views.vehicles import build_route_line_index, build_vehicle_snapshots

POLYLINE = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"


def _seed_network(cache):
    cache.set_routes(
        [
            make_route("Red"),
            make_route("Orange", color="ED8B00"),
            make_route("1", route_type=3, color="FFC72C", text_color="000000"),
        ]
    )
    cache.set_lines(
        [
            make_line("line-Red", ["Red"], color="DA291C", long_name="Red Line"),
            make_line("line-Orange", ["Orange"], long_name="Orange Line"),
            make_line("line-1", ["1"], short_name="1"),
        ]
    )
    no_position = make_vehicle("v2", "Red")
    no_position["attributes"]["latitude"] = None
    cache.set_vehicles(
        [
            make_vehicle("v1", "Red", trip_id="T1"),
            no_position,
            make_vehicle("v3", "Orange"),
            make_vehicle("v4", "1", lat=42.33, lng=-71.08),
        ]
    )
    cache.set_alerts([make_alert("a1", route_ids=["Red"], severity=5)])


def _seed_red_predictions(cache):
    """Two trips past three stops; the second trip is far behind at the last stop."""
    cache.set_stops(
        [
            make_stop("s-a", "Alpha", lat=42.35, lng=-71.06),
            make_stop("s-b", "Bravo", lat=42.36, lng=-71.07),
            make_stop("s-c", "Charlie", lat=42.37, lng=-71.08),
        ]
    )
    cache.set_predictions(
        [
            make_prediction("p1", "s-a", trip_id="T1", sequence=1, arrival=at(0)),
            make_prediction("p2", "s-b", trip_id="T1", sequence=2, arrival=at(2)),
            make_prediction("p3", "s-c", trip_id="T1", sequence=3, arrival=at(4)),
            make_prediction("p4", "s-a", trip_id="T2", sequence=1, arrival=at(6)),
            make_prediction("p5", "s-b", trip_id="T2", sequence=2, arrival=at(8)),
            make_prediction("p6", "s-c", trip_id="T2", sequence=3, arrival=at(22)),
            make_prediction("p7", "70077", route_id="Orange", sequence=1, arrival=at(1)),
        ]
    )


def test_line_summaries_not_ready(cache):
    response = build_line_summaries(cache)
    assert response.ready is False
    assert response.lines == []


def test_line_summaries_join_routes_vehicles_and_alerts(cache):
    _seed_network(cache)
    response = build_line_summaries(cache)
    assert response.ready is True
    lines = {line.line_id: line for line in response.lines}
    red = lines["line-Red"]
    assert red.display_name == "Red Line"
    assert red.color == "#DA291C"
    assert red.mode == "subway"
    assert red.has_alerts is True
    assert red.vehicle_count == 2
    assert lines["line-Orange"].color == "#ED8B00"
    assert lines["line-Orange"].has_alerts is False
    assert lines["line-1"].display_name == "1"
    assert lines["line-1"].mode == "bus"


def test_line_summaries_filter_by_mode(cache):
    _seed_network(cache)
    response = build_line_summaries(cache, mode="bus")
    assert [line.line_id for line in response.lines] == ["line-1"]


def test_typical_headway_averages_directions():
    predictions = [
        make_prediction("p1", "s-a", arrival=at(0)),
        make_prediction("p2", "s-a", arrival=at(4)),
        make_prediction("p3", "s-a", arrival=at(0), direction_id=1),
        make_prediction("p4", "s-a", arrival=at(10), direction_id=1),
    ]
    assert compute_typical_headway(predictions) == pytest.approx(7)
    assert compute_typical_headway([]) is None


def test_segment_health_thresholds():
    assert segment_health(None, 5) == "minor_issues"
    assert segment_health(9, None) == "good"
    assert segment_health(6.5, 5) == "good"
    assert segment_health(7.5, 5) == "minor_issues"
    assert segment_health(11, 5) == "major_issues"


def test_line_overview_segments(cache):
    _seed_network(cache)
    _seed_red_predictions(cache)
    cache.set_shapes({"Red": [[{"lat": 42.35, "lng": -71.06}, {"lat": 42.36, "lng": -71.07}]]})

    overview = build_line_overview(cache, "line-Red")
    assert overview.active_vehicles == 2
    assert overview.typical_headway_minutes == pytest.approx(4.4)
    assert [a.alert_id for a in overview.alerts] == ["a1"]
    assert overview.alerts[0].header == "Delays"
    assert len(overview.shape_paths) == 1

    segments = {s.segment_id: s for s in overview.segments}
    assert set(segments) == {"line-Red-0-s-a-s-b", "line-Red-0-s-b-s-c"}
    first = segments["line-Red-0-s-a-s-b"]
    assert first.headway_minutes == pytest.approx(6)
    assert first.health == "good"
    assert len(first.coordinates) == 2
    assert segments["line-Red-0-s-b-s-c"].health == "major_issues"


def test_line_overview_unavailable(cache):
    assert build_line_overview(cache, "line-Red") is None
    _seed_network(cache)
    # stops never polled
    assert build_line_overview(cache, "line-Red") is None
    _seed_red_predictions(cache)
    assert build_line_overview(cache, "line-Green") is None


def test_pain_score():
    summary = LineSummary(
        line_id="line-Red",
        display_name="Red Line",
        color="#DA291C",
        mode="subway",
        has_alerts=True,
        vehicle_count=0,
        updated_at=NOW,
    )
    assert pain_score(summary) == 80
    assert pain_score(summary.model_copy(update={"has_alerts": False, "vehicle_count": 25})) == 40


def test_system_insights(cache):
    _seed_network(cache)
    insights = build_system_insights(cache)
    scores = {line.line_id: line.pain_score for line in insights.lines}
    assert scores == {"line-Red": 78, "line-Orange": 49, "line-1": 49}
    assert [(t.line_id, t.severity) for t in insights.top_trouble_segments] == [("line-Red", 8)]
    assert insights.top_trouble_segments[0].summary == "Red Line has active alerts"


def test_route_line_index_first_line_wins():
    lines = [make_line("line-Green", ["Green-B", "Green-C"]), make_line("line-Other", ["Green-B"])]
    assert build_route_line_index(lines) == {"Green-B": "line-Green", "Green-C": "line-Green"}


def test_vehicle_snapshots(cache):
    _seed_network(cache)
    response = build_vehicle_snapshots(cache)
    vehicles = {v.vehicle_id: v for v in response.vehicles}
    assert set(vehicles) == {"v1", "v3", "v4"}
    assert vehicles["v1"].line_id == "line-Red"
    assert vehicles["v1"].mode == "subway"
    assert vehicles["v4"].mode == "bus"
    assert [v.vehicle_id for v in build_vehicle_snapshots(cache, mode="bus").vehicles] == ["v4"]


def test_vehicle_snapshots_empty_until_polled(cache):
    cache.set_vehicles([make_vehicle("v1", "Red")])
    assert build_vehicle_snapshots(cache).vehicles == []


def test_trip_destination():
    assert trip_destination(0) == "Inbound trip"
    assert trip_destination(1) == "Outbound trip"
    assert trip_destination(None) == "Outbound trip"


@pytest.mark.asyncio
async def test_trip_track(cache):
    cache.set_stops([make_stop("s-a", "Alpha"), make_stop("s-c", "Charlie")])
    client = FakeMbtaClient(
        {
            "predictions": {
                "data": [
                    make_prediction("p3", "s-c", trip_id="T1", sequence=3, arrival=at(10), direction_id=1),
                    make_prediction("p9", "s-y", trip_id="T1"),
                    make_prediction("p1", "s-a", trip_id="T1", sequence=1, arrival=at(-1), direction_id=1),
                    make_prediction("p8", "s-x", trip_id="T1"),
                ],
                "included": [make_stop("s-x", "Included Stop")],
            },
            "vehicles": {"data": [make_vehicle("v1", "Red", lat=42.35, lng=-71.06, trip_id="T1")]},
        }
    )

    track = await build_trip_track(client, cache, "T1", now=NOW)

    assert client.calls_for("predictions") == [{"filter[trip]": "T1", "include": "stop,route", "page[limit]": 50}]
    assert client.calls_for("vehicles") == [{"filter[trip]": "T1"}]
    assert track.route_id == "Red"
    assert track.destination == "Outbound trip"
    assert track.vehicle.id == "v1"
    assert track.vehicle.position.lat == 42.35
    assert [(s.stop_id, s.stop_name, s.eta_minutes, s.source) for s in track.upcoming_stops] == [
        ("s-a", "Alpha", 0, "prediction"),
        ("s-c", "Charlie", 10, "prediction"),
        ("s-y", "Upcoming stop", None, "unknown"),
        ("s-x", "Included Stop", None, "unknown"),
    ]


@pytest.mark.asyncio
async def test_trip_track_without_predictions(cache):
    client = FakeMbtaClient()
    assert await build_trip_track(client, cache, "T404", now=NOW) is None
    assert client.calls_for("vehicles") == []


def _shape(shape_id, polyline, route_id="Red"):
    return {
        "type": "shape",
        "id": shape_id,
        "attributes": {"polyline": polyline},
        "relationships": {"route": rel("route", route_id)},
    }


@pytest.mark.asyncio
async def test_line_shapes_fetched_and_published(cache):
    """A miss fetches, decodes, and publishes a new map without touching the old one."""
    _seed_network(cache)
    before = {"Orange": [[{"lat": 1.0, "lng": 2.0}, {"lat": 3.0, "lng": 4.0}]]}
    cache.set_shapes(before)
    client = FakeMbtaClient({"shapes": {"data": [_shape("sh1", POLYLINE), _shape("sh2", "_p~iF~ps|U")]}})

    response = await build_line_shapes(cache, client, "Red")

    assert client.calls_for("shapes") == [{"filter[route]": "Red", "page[limit]": 2000}]
    assert response.color == "#DA291C"
    assert response.text_color == "#FFFFFF"
    assert len(response.shapes) == 1
    assert response.shapes[0][0].lat == pytest.approx(38.5)
    assert response.shapes[0][0].lng == pytest.approx(-120.2)
    assert set(cache.get_shapes().data) == {"Orange", "Red"}
    assert set(before) == {"Orange"}


@pytest.mark.asyncio
async def test_line_shapes_served_from_cache(cache):
    cache.set_shapes({"Red": [[{"lat": 1.0, "lng": 2.0}, {"lat": 3.0, "lng": 4.0}]]})
    client = FakeMbtaClient()
    response = await build_line_shapes(cache, client, "Red")
    assert client.calls == []
    assert response.color is None
    assert len(response.shapes[0]) == 2


@pytest.mark.asyncio
async def test_line_shapes_nothing_decodable(cache):
    client = FakeMbtaClient({"shapes": {"data": [_shape("sh2", "_p~iF~ps|U")]}})
    assert await build_line_shapes(cache, client, "Red") is None
    assert cache.get_shapes() is None
