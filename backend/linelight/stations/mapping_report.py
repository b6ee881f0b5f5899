"""
Station mapping diagnostics: how each stop classifies, which parent it rolls up to and what is
wrong with it (non-boardable, platform without a parent, parent missing from the stop set).
"""
import csv
import io
from dataclasses import asdict, astuple, dataclass, field
from datetime import datetime, timezone

from linelight.data.stations import StationKind, classify_stop, is_boardable
from linelight.data.stops_repo import index_stops, to_stop_record

CSV_COLUMNS = [
    "stop_id",
    "name",
    "kind",
    "location_type",
    "parent_station_id",
    "parent_station_name",
    "platform_code",
    "latitude",
    "longitude",
    "is_boardable",
    "issues",
]


@dataclass(frozen=True)
class BoundingBox:
    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float | None, lng: float | None) -> bool:
        if lat is None or lng is None:
            return False
        return self.south <= lat <= self.north and self.west <= lng <= self.east


@dataclass
class StationMappingRow:
    stop_id: str
    name: str
    kind: StationKind
    location_type: int | None
    parent_station_id: str | None
    parent_station_name: str | None
    platform_code: str | None
    latitude: float | None
    longitude: float | None
    is_boardable: bool
    issues: list[str] = field(default_factory=list)


def _to_csv(rows: list[StationMappingRow]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for row in rows:
        values = list(astuple(row))
        values[-1] = "|".join(row.issues)
        writer.writerow("" if v is None else str(v).lower() if isinstance(v, bool) else v for v in values)
    return buf.getvalue().rstrip("\n")


def build_station_mapping_report(
    stops: list[dict],
    *,
    stop_ids: list[str] | None = None,
    bounding_box: BoundingBox | None = None,
    limit: int | None = None,
) -> dict:
    """Rows for the focus stops (or their children), optionally restricted to a bounding box."""
    stop_index = index_stops(stops)
    focus = set(stop_ids) if stop_ids else None

    records = []
    for stop in stops:
        record = to_stop_record(stop)
        if bounding_box is not None and not bounding_box.contains(record.lat, record.lng):
            continue
        if focus is not None and record.stop_id not in focus and record.parent_station_id not in focus:
            continue
        records.append((record, classify_stop(stop)))
    records.sort(key=lambda r: r[0].stop_name)
    if limit is not None:
        records = records[:limit]

    rows: list[StationMappingRow] = []
    counts: dict[str, int] = {"station": 0, "platform": 0, "entrance": 0, "other": 0}
    for record, kind in records:
        parent = stop_index.get(record.parent_station_id or "")
        parent_name = to_stop_record(parent).stop_name if parent is not None else None
        boardable = is_boardable(kind)
        issues = []
        if not boardable:
            issues.append("non_boardable")
        if kind == "platform" and not record.parent_station_id:
            issues.append("missing_parent_station")
        if record.parent_station_id and parent is None:
            issues.append("parent_not_loaded")
        counts[kind] += 1
        rows.append(
            StationMappingRow(
                stop_id=record.stop_id,
                name=record.stop_name,
                kind=kind,
                location_type=record.location_type,
                parent_station_id=record.parent_station_id,
                parent_station_name=parent_name,
                platform_code=record.platform_code,
                latitude=record.lat,
                longitude=record.lng,
                is_boardable=boardable,
                issues=issues,
            )
        )

    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "rows": [asdict(row) for row in rows],
        "counts_by_kind": counts,
        "csv": _to_csv(rows),
    }
