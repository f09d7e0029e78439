from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from snowops.api.deps import get_principal
from snowops.database import get_db
from snowops.modules.live_status import BoundingBox, LiveStatusResolver
from snowops.modules.retention import purge_points
from snowops.modules.track_query import get_track
from snowops.modules.visibility import Principal, scope_for
from snowops.schemas.monitoring import (
    LastGPSRead,
    LiveVehicleRead,
    LiveVehiclesResponse,
    PurgeResponse,
    RuntimeStatusResponse,
    TrackPointRead,
    TrackResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_bbox(
    min_lat: Optional[float],
    min_lon: Optional[float],
    max_lat: Optional[float],
    max_lon: Optional[float],
) -> Optional[BoundingBox]:
    values = (min_lat, min_lon, max_lat, max_lon)
    if all(v is None for v in values):
        return None
    if any(v is None for v in values):
        raise HTTPException(
            status_code=422,
            detail="Bounding box requires all of min_lat, min_lon, max_lat, max_lon",
        )
    return BoundingBox(min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon)


@router.get("/monitoring/vehicles-live", tags=["monitoring"], response_model=LiveVehiclesResponse)
def vehicles_live(
    min_lat: Optional[float] = Query(None, ge=-90, le=90),
    min_lon: Optional[float] = Query(None, ge=-180, le=180),
    max_lat: Optional[float] = Query(None, ge=-90, le=90),
    max_lon: Optional[float] = Query(None, ge=-180, le=180),
    contractor_id: Optional[uuid.UUID] = Query(None, description="Only this contractor's vehicles"),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Latest position and trip status for every vehicle the caller can see."""
    bbox = _parse_bbox(min_lat, min_lon, max_lat, max_lon)
    scope = scope_for(principal)
    now = _utcnow()
    views = LiveStatusResolver().resolve(db, scope, contractor_id=contractor_id, bbox=bbox, now=now)
    return LiveVehiclesResponse(
        timestamp=now,
        vehicles=[
            LiveVehicleRead(
                vehicle_id=v.vehicle_id,
                plate_number=v.plate_number,
                contractor_id=v.contractor_id,
                status=v.status,
                last_gps=LastGPSRead.model_validate(v.last_gps) if v.last_gps else None,
            )
            for v in views
        ],
    )


@router.get("/monitoring/vehicles/{vehicle_id}/track", tags=["monitoring"], response_model=TrackResponse)
def vehicle_track(
    vehicle_id: uuid.UUID,
    from_: Optional[datetime] = Query(None, alias="from", description="RFC3339, default: one hour before 'to'"),
    to: Optional[datetime] = Query(None, description="RFC3339, default: now"),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    scope = scope_for(principal)
    track = get_track(db, scope, vehicle_id, start=_to_naive_utc(from_), end=_to_naive_utc(to))
    return TrackResponse(
        vehicle_id=track.vehicle_id,
        from_=track.start,
        to=track.end,
        points=[TrackPointRead.model_validate(p) for p in track.points],
    )


@router.delete("/monitoring/gps-points", tags=["monitoring"], response_model=PurgeResponse)
def delete_gps_points(
    older_than: Optional[datetime] = Query(None, description="RFC3339 cutoff; must be in the past"),
    days: Optional[int] = Query(None, description="Delete points older than this many days"),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Administrative bulk delete of GPS points (city administration only)."""
    result = purge_points(db, principal, older_than=_to_naive_utc(older_than), days=days)
    return PurgeResponse(**result)


@router.get("/monitoring/simulator", tags=["monitoring"], response_model=RuntimeStatusResponse)
def simulator_status(request: Request, principal: Principal = Depends(get_principal)):
    runtime = getattr(request.app.state, "telemetry_runtime", None)
    if runtime is None:
        return RuntimeStatusResponse(enabled=False)
    return RuntimeStatusResponse(enabled=True, **runtime.status())
