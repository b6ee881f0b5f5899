"""Route type (GTFS) to rider-facing mode."""
from typing import Any, Literal

Mode = Literal["subway", "bus", "commuter_rail", "ferry", "other"]

MODES: tuple[str, ...] = ("subway", "bus", "commuter_rail", "ferry", "other")

_ROUTE_TYPE_MODES: dict[int, Mode] = {
    0: "subway",  # light rail
    1: "subway",  # heavy rail
    2: "commuter_rail",
    3: "bus",
    4: "ferry",
}


def route_type_to_mode(route_type: Any) -> Mode:
    if isinstance(route_type, bool) or not isinstance(route_type, int):
        return "other"
    return _ROUTE_TYPE_MODES.get(route_type, "other")


def is_mode(value: str | None) -> bool:
    return bool(value) and value in MODES
