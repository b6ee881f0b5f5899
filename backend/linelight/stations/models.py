"""Pydantic models for the home snapshot, station board and station list responses."""
from datetime import datetime

from pydantic import BaseModel

from linelight.data.modes import Mode
from linelight.eta.models import EtaSource, ServiceStatus


class HomeEta(BaseModel):
    eta_minutes: int | None
    source: EtaSource
    status: ServiceStatus


class HomeRouteSummary(BaseModel):
    route_id: str
    short_name: str
    direction: str
    destination: str | None = None
    direction_id: int | None
    next_times: list[HomeEta]


class HomeStopSummary(BaseModel):
    stop_id: str
    name: str
    distance_meters: float
    modes: list[Mode]
    routes: list[HomeRouteSummary]
    platform_stop_ids: list[str]


class HomeResponse(BaseModel):
    favorites: list[HomeStopSummary]
    nearby: list[HomeStopSummary]
    generated_at: datetime


class StationEta(BaseModel):
    eta_minutes: int | None
    scheduled_time: datetime | None = None
    predicted_time: datetime | None = None
    source: EtaSource
    status: ServiceStatus
    trip_id: str | None = None


class StationBoardRoutePrimary(BaseModel):
    route_id: str
    short_name: str
    mode: Mode
    direction: str
    direction_id: int | None = None
    destination: str | None = None
    primary_eta: StationEta | None
    extra_etas: list[StationEta]


class StationBoardPrimary(BaseModel):
    stop_id: str
    stop_name: str
    distance_meters: float | None = None
    walk_minutes: int | None = None
    routes: list[StationBoardRoutePrimary]


class StationDeparture(BaseModel):
    route_id: str
    short_name: str
    direction: str
    destination: str
    scheduled_time: datetime | None = None
    predicted_time: datetime | None = None
    eta_minutes: int | None = None
    source: EtaSource
    status: ServiceStatus


class StationAlert(BaseModel):
    id: str
    severity: str
    header: str
    description: str | None = None
    effect: str


class StationFacility(BaseModel):
    id: str
    type: str
    status: str
    description: str | None = None


class StationBoardDetails(BaseModel):
    departures: list[StationDeparture]
    alerts: list[StationAlert]
    facilities: list[StationFacility]


class StationBoardResponse(BaseModel):
    primary: StationBoardPrimary
    details: StationBoardDetails
