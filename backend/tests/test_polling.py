"""Tests for the polling jobs that refresh the resource cache."""
import asyncio

import pytest
from conftest import FakeMbtaClient, make_route, make_stop, make_vehicle, rel

from linelight.polling.scheduler import FALLBACK_ROUTE_IDS, TARGET_ROUTE_TYPES, Poller, chunked


async def _no_sleep(seconds):
    return None


def _job(poller, name):
    return next(job for job in poller.jobs if job.name == name)


def test_chunked():
    assert list(chunked(["a", "b", "c", "d", "e"], 2)) == [["a", "b"], ["c", "d"], ["e"]]
    assert list(chunked([], 3)) == []


def test_job_schedule():
    poller = Poller(FakeMbtaClient(), None)
    schedule = {job.name: (job.interval_seconds, job.initial_delay_seconds) for job in poller.jobs}
    assert schedule["predictions"] == (20, 8)
    assert schedule["vehicles"] == (30, 6)
    assert schedule["stops"] == (21600, 4)
    assert schedule["home-hotspots"] == (45, 20)
    assert poller.target_route_ids() == list(FALLBACK_ROUTE_IDS)


@pytest.mark.asyncio
async def test_routes_job_selects_target_routes(cache):
    client = FakeMbtaClient(
        {"routes": {"data": [make_route("Red"), make_route("1", route_type=3), make_route("Boat-F1", route_type=4)]}}
    )
    poller = Poller(client, cache, sleep=_no_sleep)

    assert await poller.run_job_once(_job(poller, "routes")) is True

    assert client.calls_for("routes") == [{"filter[type]": TARGET_ROUTE_TYPES}]
    assert [r["id"] for r in cache.get_routes().data] == ["Red", "1", "Boat-F1"]
    assert poller.selected_route_ids == ["Red", "1"]


@pytest.mark.asyncio
async def test_stops_job_fetches_missing_parents_and_maps_routes(cache):
    """Parents missing from the bulk load are fetched; entrances map to their station."""
    platform = make_stop("70075", parent="place-pktrm")
    entrance = make_stop("door-pktrm", location_type=2, parent="place-pktrm")
    station = make_stop("place-pktrm", "Park Street", location_type=1)

    def stops(params):
        if "filter[id]" in params:
            return {"data": [station]}
        return {"data": [platform, entrance]}

    client = FakeMbtaClient({"stops": stops})
    poller = Poller(client, cache, sleep=_no_sleep)
    poller.selected_route_ids = ["Red"]

    assert await poller.run_job_once(_job(poller, "stops")) is True

    assert {s["id"] for s in cache.get_stops().data} == {"70075", "door-pktrm", "place-pktrm"}
    assert [p["filter[id]"] for p in client.calls_for("stops") if "filter[id]" in p] == [["place-pktrm"]]
    assert cache.get_stop_routes().data == {"70075": frozenset({"Red"}), "place-pktrm": frozenset({"Red"})}


@pytest.mark.asyncio
async def test_stops_job_survives_route_lookup_failure(cache):
    def stops(params):
        if "filter[route]" in params:
            raise RuntimeError("boom")
        return {"data": [make_stop("70075")]}

    client = FakeMbtaClient({"stops": stops})
    poller = Poller(client, cache, sleep=_no_sleep)
    poller.selected_route_ids = ["Red"]

    assert await poller.run_job_once(_job(poller, "stops")) is True
    assert cache.get_stop_routes().data == {}


@pytest.mark.asyncio
async def test_vehicles_job_chunks_routes(cache):
    client = FakeMbtaClient({"vehicles": lambda params: {"data": [make_vehicle(f"v{len(params['filter[route]'])}", "Red")]}})
    poller = Poller(client, cache, sleep=_no_sleep)
    poller.selected_route_ids = [f"route-{i}" for i in range(25)]

    assert await poller.run_job_once(_job(poller, "vehicles")) is True

    assert [len(p["filter[route]"]) for p in client.calls_for("vehicles")] == [20, 5]
    assert [v["id"] for v in cache.get_vehicles().data] == ["v20", "v5"]


@pytest.mark.asyncio
async def test_predictions_job_params(cache):
    client = FakeMbtaClient()
    poller = Poller(client, cache, sleep=_no_sleep)
    poller.selected_route_ids = ["Red", "Orange"]

    await poller.run_job_once(_job(poller, "predictions"))

    assert client.calls_for("predictions") == [
        {"filter[route]": ["Red", "Orange"], "include": "route,stop,trip", "page[limit]": 500}
    ]
    assert cache.get_predictions().data == []


@pytest.mark.asyncio
async def test_shapes_job_groups_by_route(cache):
    shape = {
        "type": "shape",
        "id": "sh1",
        "attributes": {"polyline": "_p~iF~ps|U_ulLnnqC_mqNvxq`@"},
        "relationships": {"route": rel("route", "Red")},
    }
    client = FakeMbtaClient({"shapes": {"data": [shape]}})
    poller = Poller(client, cache, sleep=_no_sleep)
    poller.selected_route_ids = ["Red"]

    await poller.run_job_once(_job(poller, "shapes"))

    assert list(cache.get_shapes().data) == ["Red"]
    assert len(cache.get_shapes().data["Red"][0]) == 3


@pytest.mark.asyncio
async def test_failed_job_returns_false(cache):
    """A failing job is logged and leaves the cache untouched."""
    client = FakeMbtaClient(errors={"alerts": RuntimeError("upstream down")})
    poller = Poller(client, cache, sleep=_no_sleep)

    assert await poller.run_job_once(_job(poller, "alerts")) is False
    assert cache.get_alerts() is None


@pytest.mark.asyncio
async def test_hotspot_warming_survives_errors(cache):
    poller = Poller(FakeMbtaClient(), cache, sleep=_no_sleep)
    assert await poller.run_job_once(_job(poller, "home-hotspots")) is True


@pytest.mark.asyncio
async def test_start_and_stop(cache):
    """Jobs with no initial delay run right away; stop cancels every task."""
    client = FakeMbtaClient({"routes": {"data": [make_route("Red")]}})
    poller = Poller(client, cache)

    poller.start()
    poller.start()
    assert len(poller._tasks) == len(poller.jobs)
    await asyncio.sleep(0.01)
    await poller.stop()

    assert len(client.calls_for("routes")) == 1
    assert poller._tasks == []
