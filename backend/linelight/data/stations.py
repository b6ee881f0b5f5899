"""
Station topology: classify MBTA stops by location_type and roll platforms up to the
station-level stop a rider sees. Pure functions over stop resources; no I/O.
"""
from typing import Any, Literal, NamedTuple

from linelight.mbta.jsonapi import attributes, first_relationship_id

StationKind = Literal["station", "platform", "entrance", "other"]

Stop = dict[str, Any]

_LOCATION_TYPE_KINDS: dict[int, StationKind] = {
    0: "platform",
    1: "station",
    2: "entrance",
    4: "platform",  # boarding area
}


def classify_stop(stop: Stop | None) -> StationKind:
    if not stop:
        return "other"
    location_type = attributes(stop).get("location_type")
    if location_type is None:
        location_type = 0
    return _LOCATION_TYPE_KINDS.get(location_type, "other")


def is_boardable(kind: StationKind) -> bool:
    return kind in ("station", "platform")


def is_boardable_stop(stop: Stop | None) -> bool:
    return stop is not None and is_boardable(classify_stop(stop))


def parent_station_id(stop: Stop | None) -> str | None:
    return first_relationship_id(stop, "parent_station")


def resolve_boardable_parent(stop: Stop, stop_index: dict[str, Stop]) -> Stop | None:
    """
    Return the stop itself when it is a station or platform, else its parent when that parent is
    loaded and boardable. Entrances without a usable parent resolve to None.
    """
    if is_boardable_stop(stop):
        return stop
    parent_id = parent_station_id(stop)
    if not parent_id:
        return None
    parent = stop_index.get(parent_id)
    if parent is None:
        return None
    return parent if is_boardable_stop(parent) else None


def resolve_canonical_station(stop: Stop, stop_index: dict[str, Stop]) -> Stop | None:
    """The station-level stop a rider sees for `stop`; a platform without a station parent stands alone."""
    kind = classify_stop(stop)
    if kind == "station":
        return stop
    parent = stop_index.get(parent_station_id(stop) or "")
    if kind == "platform":
        if parent is not None and classify_stop(parent) == "station":
            return parent
        return stop
    if parent is not None and is_boardable_stop(parent):
        return parent
    return None


def build_station_children(stops: list[Stop]) -> dict[str, list[Stop]]:
    """Map parent station id -> its platform children, in input order."""
    children: dict[str, list[Stop]] = {}
    for stop in stops:
        parent_id = parent_station_id(stop)
        if not parent_id or classify_stop(stop) != "platform":
            continue
        children.setdefault(parent_id, []).append(stop)
    return children


class CanonicalStation(NamedTuple):
    station: Stop
    canonical_id: str
    parent_station_id: str | None


def canonical_station(stop: Stop, stop_index: dict[str, Stop]) -> CanonicalStation | None:
    """
    Resolve `stop` (entrances via their boardable parent) to its canonical station. The canonical
    id is the parent station id when there is one, so sibling platforms share a key.
    """
    boardable = resolve_boardable_parent(stop, stop_index)
    if boardable is None:
        return None
    station = resolve_canonical_station(boardable, stop_index)
    if station is None:
        return None
    parent_id = parent_station_id(boardable)
    return CanonicalStation(station=station, canonical_id=parent_id or station["id"], parent_station_id=parent_id)
