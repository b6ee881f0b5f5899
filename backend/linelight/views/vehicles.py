"""Live vehicle positions tagged with their route, line and mode."""
from datetime import datetime, timezone

from linelight.cache.resource_cache import ResourceCache
from linelight.data.modes import Mode, route_type_to_mode
from linelight.mbta.jsonapi import attributes, first_relationship_id, relationship_ids
from linelight.views.models import VehicleSnapshot, VehiclesResponse


def build_route_line_index(lines: list[dict]) -> dict[str, str]:
    """route id -> line id; the first line claiming a route wins."""
    index: dict[str, str] = {}
    for line in lines:
        for route_id in relationship_ids(line, "routes"):
            index.setdefault(route_id, line["id"])
    return index


def build_vehicle_snapshots(cache: ResourceCache, *, mode: Mode | None = None) -> VehiclesResponse:
    generated_at = datetime.now(timezone.utc)
    vehicles_entry = cache.get_vehicles()
    routes_entry = cache.get_routes()
    lines_entry = cache.get_lines()
    if vehicles_entry is None or routes_entry is None or lines_entry is None:
        return VehiclesResponse(vehicles=[], generated_at=generated_at)

    route_modes = {r["id"]: route_type_to_mode(attributes(r).get("type")) for r in routes_entry.data}
    route_lines = build_route_line_index(lines_entry.data)

    snapshots = []
    for vehicle in vehicles_entry.data:
        attrs = attributes(vehicle)
        lat, lng = attrs.get("latitude"), attrs.get("longitude")
        if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
            continue
        route_id = first_relationship_id(vehicle, "route")
        vehicle_mode = route_modes.get(route_id, "other") if route_id else "other"
        if mode is not None and vehicle_mode != mode:
            continue
        snapshots.append(
            VehicleSnapshot(
                vehicle_id=vehicle["id"],
                route_id=route_id,
                line_id=route_lines.get(route_id) if route_id else None,
                mode=vehicle_mode,
                latitude=lat,
                longitude=lng,
                bearing=attrs.get("bearing"),
                updated_at=attrs.get("updated_at"),
            )
        )
    return VehiclesResponse(vehicles=snapshots, generated_at=generated_at)
