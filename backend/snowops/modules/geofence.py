"""Geofence detector: edge-triggered entry events against active polygons.

Each tick the simulator hands the detector its new position. The detector
walks the currently active polygons (fetched fresh every call, so edits made
by the polygon service take effect on the next tick), stops at the first one
that contains the point, and fires an ENTRY event only on an
outside -> inside transition. Leaving a polygon is not reported, and moving
directly from one polygon into an overlapping neighbour is not a new entry.

Polygon / camera lookups go through two small collaborator protocols:
  * SqlPolygonStore / SqlCameraStore: PostGIS via GeoAlchemy2 (ST_Contains)
  * StaticPolygonStore / StaticCameraStore: in-memory shapely geometries,
    used by ``snowops simulate --dry-run`` and the tests
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path as FilePath
from typing import Iterable, Optional, Protocol

import yaml
from shapely.geometry import Point, shape as shapely_shape
from shapely import wkt as shapely_wkt
from sqlalchemy import func
from sqlalchemy.orm import Session

from snowops.models.base import CameraTypeEnum, GeofenceEventTypeEnum
from snowops.models.camera import Camera
from snowops.models.polygon import Polygon

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolygonRef:
    id: uuid.UUID
    name: str


@dataclass(frozen=True)
class CameraRef:
    id: uuid.UUID
    type: str
    is_active: bool = True


class PolygonStore(Protocol):
    def list_active(self) -> list[PolygonRef]: ...

    def contains(self, polygon_id: uuid.UUID, lat: float, lon: float) -> bool: ...


class CameraStore(Protocol):
    def list_by_polygon(self, polygon_id: uuid.UUID) -> list[CameraRef]: ...


# ── PostGIS-backed stores ─────────────────────────────────────────────────────

class SqlPolygonStore:
    def __init__(self, db: Session):
        self.db = db

    def list_active(self) -> list[PolygonRef]:
        rows = (
            self.db.query(Polygon.id, Polygon.name)
            .filter(Polygon.is_active.is_(True))
            .order_by(Polygon.created_at.asc())
            .all()
        )
        return [PolygonRef(id=r.id, name=r.name) for r in rows]

    def contains(self, polygon_id: uuid.UUID, lat: float, lon: float) -> bool:
        # PostGIS takes (x, y) = (lon, lat)
        point = func.ST_SetSRID(func.ST_MakePoint(lon, lat), 4326)
        result = (
            self.db.query(func.ST_Contains(Polygon.geometry, point))
            .filter(Polygon.id == polygon_id)
            .scalar()
        )
        return bool(result)


class SqlCameraStore:
    def __init__(self, db: Session):
        self.db = db

    def list_by_polygon(self, polygon_id: uuid.UUID) -> list[CameraRef]:
        rows = (
            self.db.query(Camera)
            .filter(Camera.polygon_id == polygon_id)
            .order_by(Camera.created_at.asc())
            .all()
        )
        return [CameraRef(id=c.id, type=_enum_value(c.type), is_active=c.is_active) for c in rows]


# ── In-memory stores ──────────────────────────────────────────────────────────

class StaticPolygonStore:
    """Shapely polygons held in memory, in listing order."""

    def __init__(self, polygons: Iterable[tuple[PolygonRef, object]] = ()):
        self._polygons: list[tuple[PolygonRef, object]] = list(polygons)

    def add(self, ref: PolygonRef, geometry) -> None:
        self._polygons.append((ref, geometry))

    def list_active(self) -> list[PolygonRef]:
        return [ref for ref, _ in self._polygons]

    def contains(self, polygon_id: uuid.UUID, lat: float, lon: float) -> bool:
        for ref, geom in self._polygons:
            if ref.id == polygon_id:
                # Same boundary semantics as ST_Contains: edge points are outside
                return geom.contains(Point(lon, lat))
        return False


@dataclass
class StaticCameraStore:
    cameras: dict[uuid.UUID, list[CameraRef]] = field(default_factory=dict)

    def list_by_polygon(self, polygon_id: uuid.UUID) -> list[CameraRef]:
        return list(self.cameras.get(polygon_id, []))


def load_static_stores(config_path: str | FilePath) -> tuple[StaticPolygonStore, StaticCameraStore]:
    """Load polygons (and their cameras) from a YAML file for offline runs.

    Geometry may be a GeoJSON-style mapping or a WKT string, ``lon lat`` order:

        polygons:
          - name: Landfill North
            geometry: {type: Polygon, coordinates: [[[69.148, 54.872], ...]]}
            cameras:
              - {type: LPR}
    """
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    polygons = StaticPolygonStore()
    cameras = StaticCameraStore()
    for p_data in data.get("polygons", []):
        raw_geom = p_data.get("geometry")
        if isinstance(raw_geom, dict):
            geom = shapely_shape(raw_geom)
        elif isinstance(raw_geom, str):
            geom = shapely_wkt.loads(raw_geom)
        else:
            raise ValueError(f"Polygon '{p_data.get('name')}' has no geometry")
        ref = PolygonRef(id=uuid.UUID(p_data["id"]) if p_data.get("id") else uuid.uuid4(), name=p_data["name"])
        polygons.add(ref, geom)
        cameras.cameras[ref.id] = [
            CameraRef(
                id=uuid.UUID(c["id"]) if c.get("id") else uuid.uuid4(),
                type=c.get("type", CameraTypeEnum.LPR.value),
                is_active=c.get("is_active", True),
            )
            for c in p_data.get("cameras", [])
        ]
    logger.info("Loaded %d polygon(s) from %s", len(polygons.list_active()), config_path)
    return polygons, cameras


# ── Detector ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GeofenceMembership:
    """Per-simulator inside/outside state carried between ticks."""

    inside_polygon_id: Optional[uuid.UUID] = None
    was_inside: bool = False


@dataclass(frozen=True)
class GeofenceEvent:
    polygon_id: uuid.UUID
    polygon_name: str
    detected_at: datetime
    camera_id: Optional[uuid.UUID] = None
    event_type: str = GeofenceEventTypeEnum.ENTRY.value

    def to_payload(self) -> dict:
        return {
            "event_type": self.event_type,
            "polygon_id": str(self.polygon_id),
            "polygon_name": self.polygon_name,
            "camera_id": str(self.camera_id) if self.camera_id else None,
            "detected_at": self.detected_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }


class GeofenceDetector:
    def __init__(self, polygons: PolygonStore, cameras: CameraStore):
        self.polygons = polygons
        self.cameras = cameras

    def locate(self, lat: float, lon: float) -> Optional[PolygonRef]:
        """First active polygon containing the point, in listing order."""
        for poly in self.polygons.list_active():
            if self.polygons.contains(poly.id, lat, lon):
                return poly
        return None

    def entry_camera(self, polygon_id: uuid.UUID) -> Optional[uuid.UUID]:
        for cam in self.cameras.list_by_polygon(polygon_id):
            if cam.is_active and _enum_value(cam.type) == CameraTypeEnum.LPR.value:
                return cam.id
        return None

    def evaluate(
        self,
        membership: GeofenceMembership,
        lat: float,
        lon: float,
        at: datetime,
    ) -> tuple[GeofenceMembership, Optional[GeofenceEvent]]:
        """Return the membership for this tick and the entry event, if one fired.

        Lookup failures propagate; the caller drops the tick and keeps the
        previous membership.
        """
        matched = self.locate(lat, lon)
        new_membership = GeofenceMembership(
            inside_polygon_id=matched.id if matched else None,
            was_inside=matched is not None,
        )
        if matched is None or membership.was_inside:
            return new_membership, None

        event = GeofenceEvent(
            polygon_id=matched.id,
            polygon_name=matched.name,
            detected_at=at,
            camera_id=self.entry_camera(matched.id),
        )
        logger.info(
            "Geofence entry: polygon=%s (%s) camera=%s",
            matched.name, matched.id, event.camera_id,
        )
        return new_membership, event


def _enum_value(value) -> str:
    return value.value if hasattr(value, "value") else str(value)
