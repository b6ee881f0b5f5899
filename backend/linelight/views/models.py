"""Pydantic models for line, insight, vehicle, trip and shape responses."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from linelight.data.modes import Mode
from linelight.eta.models import EtaSource

SegmentHealth = Literal["good", "minor_issues", "major_issues"]


class Coordinate(BaseModel):
    lat: float
    lng: float


class LineSummary(BaseModel):
    line_id: str
    display_name: str
    color: str
    mode: Mode
    has_alerts: bool
    vehicle_count: int
    updated_at: datetime


class LineSummariesResponse(BaseModel):
    ready: bool
    lines: list[LineSummary]
    generated_at: datetime


class LineAlertSummary(BaseModel):
    alert_id: str
    header: str
    severity: int | None = None
    effect: str | None = None
    lifecycle: str | None = None


class SegmentStatus(BaseModel):
    segment_id: str
    from_stop_id: str
    to_stop_id: str
    direction_id: int | None
    headway_minutes: float | None
    headway_deviation_minutes: float | None
    health: SegmentHealth
    coordinates: list[Coordinate]


class LineOverview(BaseModel):
    line_id: str
    display_name: str
    color: str
    mode: Mode
    active_vehicles: int
    expected_vehicles: int | None = None
    typical_headway_minutes: float | None
    alerts: list[LineAlertSummary]
    segments: list[SegmentStatus]
    shape_paths: list[list[Coordinate]]
    updated_at: datetime


class LineInsight(BaseModel):
    line_id: str
    display_name: str
    mode: Mode
    pain_score: int
    average_delay_minutes: float | None = None
    headway_variance_minutes: float | None = None
    active_alerts: int
    active_vehicles: int


class SegmentTroubleSummary(BaseModel):
    line_id: str
    summary: str
    severity: int


class SystemInsights(BaseModel):
    generated_at: datetime
    lines: list[LineInsight]
    top_trouble_segments: list[SegmentTroubleSummary]


class VehicleSnapshot(BaseModel):
    vehicle_id: str
    route_id: str | None
    line_id: str | None
    mode: Mode
    latitude: float
    longitude: float
    bearing: float | None = None
    updated_at: str | None = None


class VehiclesResponse(BaseModel):
    vehicles: list[VehicleSnapshot]
    generated_at: datetime


class TripVehicle(BaseModel):
    id: str
    position: Coordinate
    bearing: float | None = None
    last_updated: str | None = None


class TripUpcomingStop(BaseModel):
    stop_id: str
    stop_name: str
    eta_minutes: int | None
    source: EtaSource


class TripTrackResponse(BaseModel):
    trip_id: str
    route_id: str
    destination: str
    vehicle: TripVehicle | None = None
    upcoming_stops: list[TripUpcomingStop]


class LineShapeResponse(BaseModel):
    line_id: str
    color: str | None
    text_color: str | None
    shapes: list[list[Coordinate]]
