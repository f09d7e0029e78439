"""Background telemetry tasks: one producer per simulated vehicle plus the janitor.

All tasks share a single stop event. ``stop()`` sets it and waits for every
task to finish its current tick or sweep before returning.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable

from sqlalchemy.orm import Session

from snowops.config import settings
from snowops.modules.motion_simulator import MotionSimulator
from snowops.modules.path_catalog import PathCatalog, SimulatorConfigError, load_path_catalog
from snowops.modules.retention import RetentionJanitor
from snowops.modules.vehicle_registry import get_or_create

logger = logging.getLogger(__name__)


class TelemetryRuntime:
    def __init__(
        self,
        *,
        catalog: PathCatalog | None = None,
        plates: list[str] | None = None,
        speed_kmh: float | None = None,
        interval_seconds: float | None = None,
        route_policy: str | None = None,
        retention_days: int | None = None,
        cleanup_interval_seconds: float | None = None,
        db_factory: Callable[[], Session] | None = None,
        simulator_factory: Callable[..., MotionSimulator] = MotionSimulator,
    ):
        if db_factory is None:
            from snowops.database import SessionLocal
            db_factory = SessionLocal
        self.catalog = catalog
        self.plates = plates if plates is not None else settings.simulator_plates
        self.speed_kmh = speed_kmh if speed_kmh is not None else settings.GPS_SIMULATOR_SPEED_KMH
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.GPS_SIMULATOR_INTERVAL_SECONDS
        )
        self.route_policy = route_policy or settings.GPS_SIMULATOR_ROUTE_POLICY
        self.retention_days = (
            retention_days if retention_days is not None else settings.GPS_SIMULATOR_CLEANUP_DAYS
        )
        self.cleanup_interval_seconds = (
            cleanup_interval_seconds
            if cleanup_interval_seconds is not None
            else settings.GPS_SIMULATOR_CLEANUP_INTERVAL_SECONDS
        )
        self._db_factory = db_factory
        self._simulator_factory = simulator_factory

        self.simulators: dict[str, MotionSimulator] = {}
        self.janitor: RetentionJanitor | None = None
        self._stop_event: asyncio.Event | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def _bootstrap_vehicles(self) -> dict[str, uuid.UUID]:
        db = self._db_factory()
        try:
            return {plate: get_or_create(db, plate).id for plate in self.plates}
        finally:
            db.close()

    async def start(self) -> None:
        """Validate configuration, bootstrap vehicles and launch the tasks.

        Raises SimulatorConfigError before any task starts if the routes or
        plates are unusable.
        """
        if self.running:
            return
        if not self.plates:
            raise SimulatorConfigError("No simulator vehicle plates configured")
        if self.catalog is None:
            self.catalog = load_path_catalog(settings.ROUTES_CONFIG)
        # Fails fast on an empty catalog or untraversable route
        self.catalog.select(self.route_policy)

        vehicle_ids = await asyncio.to_thread(self._bootstrap_vehicles)

        self._stop_event = asyncio.Event()
        for plate, vehicle_id in vehicle_ids.items():
            sim = self._simulator_factory(
                vehicle_id,
                self.catalog,
                speed_kmh=self.speed_kmh,
                interval_seconds=self.interval_seconds,
                route_policy=self.route_policy,
                db_factory=self._db_factory,
            )
            sim.start()
            self.simulators[plate] = sim
            self._tasks.append(asyncio.create_task(sim.run(self._stop_event), name=f"gps-sim-{plate}"))

        self.janitor = RetentionJanitor(
            self.retention_days,
            interval_seconds=self.cleanup_interval_seconds,
            db_factory=self._db_factory,
        )
        if self.janitor.enabled:
            self._tasks.append(
                asyncio.create_task(self.janitor.run(self._stop_event), name="gps-retention")
            )
        logger.info(
            "Telemetry runtime started: %d simulator(s), retention %s",
            len(self.simulators),
            f"{self.retention_days}d" if self.janitor.enabled else "disabled",
        )

    async def stop(self) -> None:
        if not self.running:
            return
        self._stop_event.set()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                logger.error("Telemetry task %s exited with error: %s", task.get_name(), result)
        self._tasks = []
        logger.info("Telemetry runtime stopped")

    def status(self) -> dict:
        return {
            "running": self.running,
            "route_policy": self.route_policy,
            "speed_kmh": self.speed_kmh,
            "interval_seconds": self.interval_seconds,
            "retention_days": self.retention_days,
            "simulators": [
                {"plate_number": plate, **sim.status()} for plate, sim in self.simulators.items()
            ],
            "janitor": dict(self.janitor.stats) if self.janitor else None,
        }
