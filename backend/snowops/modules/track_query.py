"""Time-ranged vehicle tracks."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from snowops.config import settings
from snowops.models.gps_point import GPSPoint
from snowops.modules.telemetry_store import track_points
from snowops.modules.vehicle_registry import get_visible
from snowops.modules.visibility import VisibilityScope


@dataclass
class Track:
    vehicle_id: uuid.UUID
    start: datetime
    end: datetime
    points: list[GPSPoint] = field(default_factory=list)


def get_track(
    db: Session,
    scope: VisibilityScope,
    vehicle_id: uuid.UUID,
    start: datetime | None = None,
    end: datetime | None = None,
    now: datetime | None = None,
) -> Track:
    """Return every point of ``vehicle_id`` in [start, end], oldest first.

    ``end`` defaults to now and ``start`` to TRACK_DEFAULT_WINDOW_MINUTES
    before ``end``. Raises NotFoundError when the vehicle is missing or not
    visible to the caller, ValueError when start is after end.
    """
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    end = end or now
    start = start or end - timedelta(minutes=settings.TRACK_DEFAULT_WINDOW_MINUTES)
    if start > end:
        raise ValueError("'from' must not be after 'to'")

    vehicle = get_visible(db, scope, vehicle_id)
    return Track(
        vehicle_id=vehicle.id,
        start=start,
        end=end,
        points=track_points(db, vehicle.id, start, end),
    )
