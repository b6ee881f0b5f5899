"""
Trip tracking: the remaining stops of one trip with minutes-to-arrival, plus the vehicle running
it when the API reports one. Fetched live on each request; only the stop names come from cache.
"""
from datetime import datetime, timezone

from linelight.cache.resource_cache import ResourceCache
from linelight.data.stops_repo import index_stops, stop_name
from linelight.eta.blender import minutes_between, parse_timestamp
from linelight.mbta.jsonapi import attributes, first_relationship_id, included_of_type, resource_list
from linelight.views.models import Coordinate, TripTrackResponse, TripUpcomingStop, TripVehicle

PREDICTION_PAGE_LIMIT = 50
DEFAULT_STOP_NAME = "Upcoming stop"


def trip_destination(direction_id: int | None) -> str:
    return "Inbound trip" if direction_id == 0 else "Outbound trip"


def _sequence_key(prediction: dict) -> tuple[int, int]:
    sequence = attributes(prediction).get("stop_sequence")
    return (1, 0) if sequence is None else (0, sequence)


def _to_trip_vehicle(vehicle: dict | None) -> TripVehicle | None:
    attrs = attributes(vehicle)
    lat, lng = attrs.get("latitude"), attrs.get("longitude")
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None
    return TripVehicle(
        id=vehicle["id"],
        position=Coordinate(lat=lat, lng=lng),
        bearing=attrs.get("bearing"),
        last_updated=attrs.get("updated_at"),
    )


async def build_trip_track(
    client,
    cache: ResourceCache,
    trip_id: str,
    *,
    now: datetime | None = None,
) -> TripTrackResponse | None:
    """None when the API has no predictions for the trip."""
    now = now or datetime.now(timezone.utc)
    predictions_resp = await client.get_predictions(
        {"filter[trip]": trip_id, "include": "stop,route", "page[limit]": PREDICTION_PAGE_LIMIT}
    )
    predictions = resource_list(predictions_resp)
    if not predictions:
        return None

    stops_entry = cache.get_stops()
    stop_index = index_stops(stops_entry.data if stops_entry else [])
    stop_index.update(included_of_type(predictions_resp, "stop"))

    vehicles_resp = await client.get_vehicles({"filter[trip]": trip_id})
    vehicles = resource_list(vehicles_resp)

    upcoming = []
    for prediction in sorted(predictions, key=_sequence_key):
        stop_id = first_relationship_id(prediction, "stop")
        if not stop_id:
            continue
        attrs = attributes(prediction)
        time = parse_timestamp(attrs.get("arrival_time")) or parse_timestamp(attrs.get("departure_time"))
        eta = minutes_between(now, time)
        upcoming.append(
            TripUpcomingStop(
                stop_id=stop_id,
                stop_name=stop_name(stop_index.get(stop_id)) or DEFAULT_STOP_NAME,
                eta_minutes=max(0, eta) if eta is not None else None,
                source="prediction" if time is not None else "unknown",
            )
        )

    first = predictions[0]
    return TripTrackResponse(
        trip_id=trip_id,
        route_id=first_relationship_id(first, "route") or "",
        destination=trip_destination(attributes(first).get("direction_id")),
        vehicle=_to_trip_vehicle(vehicles[0] if vehicles else None),
        upcoming_stops=upcoming,
    )
