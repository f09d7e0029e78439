"""Pydantic schemas for the monitoring endpoints (live map, tracks, purge)."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from snowops.models.base import VehicleStatusEnum


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; tag them so they render with a 'Z'."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _UTCModel(BaseModel):
    model_config = {"from_attributes": True}


class LastGPSRead(_UTCModel):
    lat: float
    lon: float
    captured_at: datetime
    speed_kmh: float
    heading_deg: float
    is_simulated: bool = False

    @field_validator("captured_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class LiveVehicleRead(_UTCModel):
    vehicle_id: uuid.UUID
    plate_number: str
    contractor_id: Optional[uuid.UUID] = None
    last_gps: Optional[LastGPSRead] = None
    status: VehicleStatusEnum


class LiveVehiclesResponse(BaseModel):
    timestamp: datetime
    vehicles: list[LiveVehicleRead]

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class TrackPointRead(_UTCModel):
    lat: float
    lon: float
    captured_at: datetime
    speed_kmh: float
    heading_deg: float

    @field_validator("captured_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class TrackResponse(BaseModel):
    model_config = {"populate_by_name": True}

    vehicle_id: uuid.UUID
    from_: datetime = Field(alias="from")
    to: datetime
    points: list[TrackPointRead]

    @field_validator("from_", "to")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class PurgeResponse(BaseModel):
    deleted: int
    cutoff: datetime

    @field_validator("cutoff")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class SimulatorStatusRead(BaseModel):
    plate_number: str
    vehicle_id: uuid.UUID
    state: str
    route: Optional[str] = None
    segment_index: Optional[int] = None
    progress: Optional[float] = None
    ticks_ok: int = 0
    ticks_failed: int = 0
    entry_events: int = 0
    last_error: Optional[str] = None
    last_sample_at: Optional[datetime] = None


class RuntimeStatusResponse(BaseModel):
    enabled: bool
    running: bool = False
    route_policy: Optional[str] = None
    speed_kmh: Optional[float] = None
    interval_seconds: Optional[float] = None
    retention_days: Optional[int] = None
    simulators: list[SimulatorStatusRead] = []
    janitor: Optional[dict] = None
