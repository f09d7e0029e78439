"""Live vehicle status: latest fresh position per visible vehicle.

Status is derived from the age of the newest sample:

  age <  in_trip threshold (default 2 min)  -> IN_TRIP
  age <  freshness window  (default 5 min)  -> IDLE
  otherwise, or no sample in the window     -> OFFLINE

Samples older than the freshness window are never fetched, so the third
branch normally only applies to vehicles with no position at all.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from snowops.config import settings
from snowops.models.base import VehicleStatusEnum
from snowops.modules.telemetry_store import is_simulated, latest_for_vehicles
from snowops.modules.vehicle_registry import list_visible
from snowops.modules.visibility import VisibilityScope
from snowops.utils.geo import point_in_bbox

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    def __post_init__(self):
        if self.min_lat > self.max_lat or self.min_lon > self.max_lon:
            raise ValueError("Bounding box min values must not exceed max values")
        if not (-90 <= self.min_lat <= 90 and -90 <= self.max_lat <= 90):
            raise ValueError("Bounding box latitude out of range")
        if not (-180 <= self.min_lon <= 180 and -180 <= self.max_lon <= 180):
            raise ValueError("Bounding box longitude out of range")

    def contains(self, lat: float, lon: float) -> bool:
        return point_in_bbox(lat, lon, self.min_lat, self.min_lon, self.max_lat, self.max_lon)


@dataclass(frozen=True)
class LastPosition:
    lat: float
    lon: float
    captured_at: datetime
    speed_kmh: float
    heading_deg: float
    is_simulated: bool


@dataclass(frozen=True)
class LiveVehicleView:
    vehicle_id: uuid.UUID
    plate_number: str
    contractor_id: Optional[uuid.UUID]
    status: VehicleStatusEnum
    last_gps: Optional[LastPosition] = None


def classify_status(
    age_seconds: Optional[float],
    in_trip_seconds: float = 120,
    freshness_seconds: float = 300,
) -> VehicleStatusEnum:
    if age_seconds is None:
        return VehicleStatusEnum.OFFLINE
    if age_seconds < in_trip_seconds:
        return VehicleStatusEnum.IN_TRIP
    if age_seconds < freshness_seconds:
        return VehicleStatusEnum.IDLE
    return VehicleStatusEnum.OFFLINE


class LiveStatusResolver:
    def __init__(
        self,
        freshness_seconds: float | None = None,
        in_trip_seconds: float | None = None,
    ):
        self.freshness_seconds = (
            settings.LIVE_FRESHNESS_SECONDS if freshness_seconds is None else freshness_seconds
        )
        self.in_trip_seconds = (
            settings.LIVE_IN_TRIP_SECONDS if in_trip_seconds is None else in_trip_seconds
        )

    def resolve(
        self,
        db: Session,
        scope: VisibilityScope,
        contractor_id: uuid.UUID | None = None,
        bbox: BoundingBox | None = None,
        now: datetime | None = None,
    ) -> list[LiveVehicleView]:
        """Build the live view for every vehicle the scope can see.

        With a bounding box only vehicles whose fresh position lies inside it
        are returned.
        """
        now = now or datetime.now(timezone.utc).replace(tzinfo=None)
        vehicles = list_visible(db, scope, contractor_id=contractor_id)
        if not vehicles:
            return []

        since = now - timedelta(seconds=self.freshness_seconds)
        latest = latest_for_vehicles(db, [v.id for v in vehicles], since)

        views: list[LiveVehicleView] = []
        for vehicle in vehicles:
            point = latest.get(vehicle.id)
            if bbox is not None and (point is None or not bbox.contains(point.lat, point.lon)):
                continue
            last_gps = None
            age = None
            if point is not None:
                age = (now - point.captured_at).total_seconds()
                last_gps = LastPosition(
                    lat=point.lat,
                    lon=point.lon,
                    captured_at=point.captured_at,
                    speed_kmh=point.speed_kmh,
                    heading_deg=point.heading_deg,
                    is_simulated=is_simulated(point.raw_payload),
                )
            views.append(LiveVehicleView(
                vehicle_id=vehicle.id,
                plate_number=vehicle.plate_number,
                contractor_id=vehicle.contractor_id,
                status=classify_status(age, self.in_trip_seconds, self.freshness_seconds),
                last_gps=last_gps,
            ))
        logger.debug("Live view: %d of %d visible vehicles", len(views), len(vehicles))
        return views
