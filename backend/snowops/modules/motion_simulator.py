"""Motion simulator: drives one vehicle along a road at a fixed speed.

Every tick the simulator
  1. advances its cursor by ``speed_kmh / 3.6 * interval_seconds`` metres
     along the current path (see ``advance``),
  2. runs the geofence detector on the new position,
  3. persists one GPS point whose payload carries the provenance flags and,
     on an entry tick, the geofence event.

A tick that fails anywhere is logged and dropped: the cursor and geofence
membership stay as they were and the next tick retries from the same place.

Segment crossing is a single-step look-ahead. If the distance left on the
current segment is shorter than one tick of travel the cursor moves to the
start of the next segment; any overshoot inside that segment is clamped at
its end rather than carried into the following one. The sub-metre error this
causes at normal tick rates is accepted.
"""
from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from snowops.modules.geofence import (
    GeofenceDetector,
    GeofenceMembership,
    SqlCameraStore,
    SqlPolygonStore,
)
from snowops.modules.path_catalog import (
    ROUTE_POLICY_FIRST,
    Path,
    PathCatalog,
    SimulatorConfigError,
    Waypoint,
    lerp,
    segment_at,
)
from snowops.modules.telemetry_store import TelemetrySample, build_payload, persist_sample

logger = logging.getLogger(__name__)

STATE_STOPPED = "STOPPED"
STATE_RUNNING = "RUNNING"


@dataclass(frozen=True)
class SimulationCursor:
    path: Path
    index: int = 0
    progress: float = 0.0


@dataclass(frozen=True)
class Step:
    cursor: SimulationCursor
    position: Waypoint
    heading_deg: float
    restarted: bool = False


def advance(
    cursor: SimulationCursor,
    distance_per_tick: float,
    restart: Callable[[], Path],
) -> Step:
    """Compute the next cursor and position without touching any state.

    ``restart`` is called when the cursor runs off the end of its path and
    returns the path to start over on (index 0, progress 0).
    """
    path, index, progress = cursor.path, cursor.index, cursor.progress
    restarted = False

    segment = segment_at(path, index)
    if segment is None:
        path, index, progress = restart(), 0, 0.0
        restarted = True
        segment = segment_at(path, index)
        if segment is None:
            raise SimulatorConfigError(f"Route '{path.name}' has no segments")

    segment_length = segment.length_meters
    if (1.0 - progress) * segment_length < distance_per_tick:
        index, progress = index + 1, 0.0
        segment = segment_at(path, index)
        if segment is None:
            path, index = restart(), 0
            restarted = True
            segment = segment_at(path, index)
            if segment is None:
                raise SimulatorConfigError(f"Route '{path.name}' has no segments")
        segment_length = segment.length_meters

    if segment_length > 0:
        fraction = min(1.0, distance_per_tick / segment_length)
    else:
        # Duplicate waypoint: jump straight to the segment end
        fraction = 1.0
    progress = min(1.0, progress + fraction)

    return Step(
        cursor=SimulationCursor(path=path, index=index, progress=progress),
        position=lerp(segment.start, segment.end, progress),
        heading_deg=segment.heading_deg,
        restarted=restarted,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _default_detector(db: Session) -> GeofenceDetector:
    return GeofenceDetector(SqlPolygonStore(db), SqlCameraStore(db))


class MotionSimulator:
    """One simulated vehicle. Owns its cursor and geofence membership exclusively."""

    def __init__(
        self,
        vehicle_id: uuid.UUID,
        catalog: PathCatalog,
        *,
        speed_kmh: float = 20.0,
        interval_seconds: float = 5.0,
        route_policy: str = ROUTE_POLICY_FIRST,
        db_factory: Callable[[], Session] | None = None,
        detector_factory: Callable[[Optional[Session]], GeofenceDetector] = _default_detector,
        persist: Callable[[Session, TelemetrySample], Any] | None = persist_sample,
        rng: random.Random | None = None,
    ):
        if speed_kmh <= 0:
            raise SimulatorConfigError(f"Simulator speed must be positive, got {speed_kmh}")
        if interval_seconds <= 0:
            raise SimulatorConfigError(f"Tick interval must be positive, got {interval_seconds}")
        self.vehicle_id = vehicle_id
        self.catalog = catalog
        self.speed_kmh = speed_kmh
        self.interval_seconds = interval_seconds
        self.route_policy = route_policy
        self.distance_per_tick = speed_kmh / 3.6 * interval_seconds
        if db_factory is None and detector_factory is _default_detector:
            # The PostGIS-backed detector needs a session every tick
            from snowops.database import SessionLocal
            db_factory = SessionLocal
        self._db_factory = db_factory
        self._detector_factory = detector_factory
        self._persist = persist
        self._rng = rng

        self.state = STATE_STOPPED
        self._finished = False
        self.cursor: Optional[SimulationCursor] = None
        self.membership = GeofenceMembership()
        self.stats: dict[str, Any] = {
            "ticks_ok": 0,
            "ticks_failed": 0,
            "entry_events": 0,
            "last_error": None,
            "last_sample_at": None,
        }

    def _select_path(self) -> Path:
        return self.catalog.select(self.route_policy, rng=self._rng)

    def start(self) -> None:
        """Validate the catalog and place the cursor at the start of a path.

        Raises SimulatorConfigError when there is nothing to drive.
        """
        if self.state == STATE_RUNNING:
            return
        if self._finished:
            raise RuntimeError("Simulator was stopped; create a new one to restart")
        path = self._select_path()
        self.cursor = SimulationCursor(path=path)
        self.membership = GeofenceMembership()
        self.state = STATE_RUNNING
        logger.info(
            "GPS simulator started: vehicle=%s route=%s routes=%d speed=%.1f km/h interval=%.1fs",
            self.vehicle_id, path.name, len(self.catalog), self.speed_kmh, self.interval_seconds,
        )

    def stop(self) -> None:
        if self.state == STATE_STOPPED:
            return
        self.state = STATE_STOPPED
        self._finished = True
        logger.info(
            "GPS simulator stopped: vehicle=%s ticks_ok=%d ticks_failed=%d",
            self.vehicle_id, self.stats["ticks_ok"], self.stats["ticks_failed"],
        )

    def tick(self, now: datetime | None = None) -> Optional[TelemetrySample]:
        """Run one transition. Returns the emitted sample, or None if the tick was dropped."""
        if self.state != STATE_RUNNING or self.cursor is None:
            raise RuntimeError("Simulator is not running")
        now = now or _utcnow()

        db = None
        try:
            if self._db_factory is not None:
                db = self._db_factory()
            step = advance(self.cursor, self.distance_per_tick, self._select_path)
            detector = self._detector_factory(db)
            membership, event = detector.evaluate(
                self.membership, step.position.lat, step.position.lon, now
            )
            sample = TelemetrySample(
                vehicle_id=self.vehicle_id,
                captured_at=now,
                lat=step.position.lat,
                lon=step.position.lon,
                speed_kmh=self.speed_kmh,
                heading_deg=step.heading_deg,
                payload=build_payload(
                    route_name=step.cursor.path.name,
                    geofence_event=event.to_payload() if event else None,
                ),
            )
            if self._persist is not None:
                self._persist(db, sample)
        except Exception as exc:
            logger.error("Failed to update GPS position for vehicle %s: %s", self.vehicle_id, exc)
            if db is not None:
                db.rollback()
            self.stats["ticks_failed"] += 1
            self.stats["last_error"] = str(exc)
            return None
        finally:
            if db is not None:
                db.close()

        if step.restarted:
            logger.debug("Vehicle %s reached the end of its route, restarting on %s",
                         self.vehicle_id, step.cursor.path.name)
        self.cursor = step.cursor
        self.membership = membership
        self.stats["ticks_ok"] += 1
        self.stats["last_sample_at"] = now
        if event is not None:
            self.stats["entry_events"] += 1
        return sample

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick every ``interval_seconds`` until ``stop_event`` is set.

        The first tick fires one interval after the call. Each tick runs in a
        worker thread; a slow tick delays this vehicle's next tick only.
        """
        self.start()
        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    await asyncio.to_thread(self.tick)
        finally:
            self.stop()

    def status(self) -> dict:
        return {
            "vehicle_id": str(self.vehicle_id),
            "state": self.state,
            "route": self.cursor.path.name if self.cursor else None,
            "segment_index": self.cursor.index if self.cursor else None,
            "progress": round(self.cursor.progress, 4) if self.cursor else None,
            **self.stats,
        }
