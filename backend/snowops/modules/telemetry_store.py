"""GPS point store: append-only writes and the read queries behind the API.

Samples are inserted one row per transaction, so a reader either sees a
complete sample or nothing. Rows are never updated; they leave the table only
through ``delete_older_than`` (retention janitor / administrative purge).
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from snowops.models.gps_point import GPSPoint

logger = logging.getLogger(__name__)

SIMULATOR_SOURCE = "osm-simulator"


@dataclass(frozen=True)
class TelemetrySample:
    vehicle_id: uuid.UUID
    captured_at: datetime
    lat: float
    lon: float
    speed_kmh: float
    heading_deg: float
    payload: dict = field(default_factory=dict)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    gps_device_id: Optional[uuid.UUID] = None

    @property
    def geofence_event(self) -> Optional[dict]:
        return self.payload.get("geofence_event")

    def to_row(self) -> GPSPoint:
        return GPSPoint(
            id=self.id,
            gps_device_id=self.gps_device_id,
            vehicle_id=self.vehicle_id,
            captured_at=self.captured_at,
            lat=self.lat,
            lon=self.lon,
            speed_kmh=self.speed_kmh,
            heading_deg=self.heading_deg,
            raw_payload=json.dumps(self.payload) if self.payload else None,
        )


def build_payload(
    route_name: Optional[str] = None,
    geofence_event: Optional[dict] = None,
    simulated: bool = True,
    source: str = SIMULATOR_SOURCE,
) -> dict:
    payload: dict = {"simulated": simulated, "source": source}
    if route_name:
        payload["route"] = route_name
    if geofence_event:
        payload["geofence_event"] = geofence_event
    return payload


def decode_payload(raw: Optional[str]) -> dict:
    """Parse a stored raw_payload; anything unreadable decodes to ``{}``."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def is_simulated(raw: Optional[str]) -> bool:
    return decode_payload(raw).get("simulated") is True


def persist_sample(db: Session, sample: TelemetrySample) -> GPSPoint:
    """Insert one sample and commit. Rolls back and re-raises on failure."""
    row = sample.to_row()
    db.add(row)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    return row


def latest_for_vehicles(
    db: Session,
    vehicle_ids: Iterable[uuid.UUID],
    since: datetime,
) -> dict[uuid.UUID, GPSPoint]:
    """Most recent point per vehicle with ``captured_at >= since``.

    Vehicles with no point in the window are absent from the result.
    """
    ids = list(vehicle_ids)
    if not ids:
        return {}
    latest = (
        db.query(
            GPSPoint.vehicle_id.label("vehicle_id"),
            func.max(GPSPoint.captured_at).label("max_at"),
        )
        .filter(GPSPoint.vehicle_id.in_(ids), GPSPoint.captured_at >= since)
        .group_by(GPSPoint.vehicle_id)
        .subquery()
    )
    rows = (
        db.query(GPSPoint)
        .join(
            latest,
            and_(
                GPSPoint.vehicle_id == latest.c.vehicle_id,
                GPSPoint.captured_at == latest.c.max_at,
            ),
        )
        .all()
    )
    result: dict[uuid.UUID, GPSPoint] = {}
    for row in rows:
        # Two samples with an identical timestamp: keep one
        result.setdefault(row.vehicle_id, row)
    return result


def track_points(
    db: Session,
    vehicle_id: uuid.UUID,
    start: datetime,
    end: datetime,
) -> list[GPSPoint]:
    """All points for one vehicle in [start, end], ascending by captured_at."""
    return (
        db.query(GPSPoint)
        .filter(
            GPSPoint.vehicle_id == vehicle_id,
            GPSPoint.captured_at >= start,
            GPSPoint.captured_at <= end,
        )
        .order_by(GPSPoint.captured_at.asc())
        .all()
    )


def delete_older_than(db: Session, cutoff: datetime) -> int:
    """Delete points captured strictly before ``cutoff``. Returns count deleted.

    Note: Does NOT commit the transaction. The caller is responsible
    for calling db.commit() when ready.
    """
    return (
        db.query(GPSPoint)
        .filter(GPSPoint.captured_at < cutoff)
        .delete(synchronize_session=False)
    )
