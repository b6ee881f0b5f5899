"""Pydantic models for blended departures and per-stop ETA snapshots."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

EtaSource = Literal["prediction", "schedule", "blended", "unknown"]
ServiceStatus = Literal["on_time", "delayed", "cancelled", "skipped", "no_service", "unknown"]


class BlendedDeparture(BaseModel):
    """
    One departure at one stop after reconciling schedule and prediction data.
    final_time is predicted_time when known, else scheduled_time. Instances are frozen;
    transformations go through model_copy(update=...).
    """

    model_config = ConfigDict(frozen=True)

    stop_id: str
    stop_name: str | None = None
    route_id: str | None = None
    direction_id: int | None = None
    trip_id: str | None = None
    stop_sequence: int | None = None
    headsign: str | None = None
    scheduled_time: datetime | None = None
    predicted_time: datetime | None = None
    final_time: datetime | None = None
    eta_minutes: int | None = None
    eta_source: EtaSource = "unknown"
    status: ServiceStatus = "unknown"
    discrepancy_minutes: int | None = None


class StopEtaSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    stop_id: str
    generated_at: datetime
    departures: list[BlendedDeparture]
