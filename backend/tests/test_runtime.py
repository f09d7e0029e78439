"""Tests for the background telemetry runtime (simulators + janitor)."""
import asyncio
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from snowops.models import Base, GPSPoint, Vehicle
from snowops.modules.geofence import GeofenceDetector, StaticCameraStore, StaticPolygonStore
from snowops.modules.motion_simulator import MotionSimulator
from snowops.modules.path_catalog import PathCatalog, SimulatorConfigError, make_path
from snowops.modules.telemetry_runtime import TelemetryRuntime

ROUTE = make_path("Test Route", [(54.0, 69.0), (54.0, 69.01), (54.01, 69.01)])


@pytest.fixture
def file_db(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'telemetry.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine, tables=[Vehicle.__table__, GPSPoint.__table__])
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


def _static_simulator(vehicle_id, catalog, **kwargs):
    detector = GeofenceDetector(StaticPolygonStore(), StaticCameraStore())
    return MotionSimulator(vehicle_id, catalog, detector_factory=lambda db: detector, **kwargs)


def _runtime(file_db, **kwargs):
    defaults = dict(
        catalog=PathCatalog([ROUTE]),
        plates=["TEST-001"],
        speed_kmh=60.0,
        interval_seconds=0.05,
        route_policy="first",
        retention_days=0,
        cleanup_interval_seconds=3600,
        db_factory=file_db,
        simulator_factory=_static_simulator,
    )
    defaults.update(kwargs)
    return TelemetryRuntime(**defaults)


def test_start_persists_points_and_stops(file_db):
    runtime = _runtime(file_db)

    async def scenario():
        await runtime.start()
        assert runtime.running
        await asyncio.sleep(0.4)
        await runtime.stop()

    asyncio.run(scenario())
    assert not runtime.running

    db = file_db()
    try:
        vehicle = db.query(Vehicle).filter(Vehicle.plate_number == "TEST-001").one()
        points = db.query(GPSPoint).filter(GPSPoint.vehicle_id == vehicle.id).all()
        assert len(points) >= 2
        assert all(p.speed_kmh == 60.0 for p in points)
    finally:
        db.close()

    status = runtime.status()
    assert status["running"] is False
    assert status["janitor"]["sweeps"] == 0
    sim_status = status["simulators"][0]
    assert sim_status["plate_number"] == "TEST-001"
    assert sim_status["state"] == "STOPPED"
    assert sim_status["route"] == "Test Route"
    assert sim_status["ticks_ok"] >= 2


def test_one_task_per_plate_plus_janitor(file_db):
    runtime = _runtime(file_db, plates=["TEST-001", "TEST-002"], retention_days=7)

    async def scenario():
        await runtime.start()
        names = sorted(t.get_name() for t in runtime._tasks)
        await runtime.stop()
        return names

    names = asyncio.run(scenario())
    assert names == ["gps-retention", "gps-sim-TEST-001", "gps-sim-TEST-002"]
    db = file_db()
    try:
        assert db.query(Vehicle).count() == 2
    finally:
        db.close()


def test_disabled_retention_has_no_janitor_task(file_db):
    runtime = _runtime(file_db)

    async def scenario():
        await runtime.start()
        names = [t.get_name() for t in runtime._tasks]
        await runtime.stop()
        return names

    assert asyncio.run(scenario()) == ["gps-sim-TEST-001"]


def test_empty_catalog_fails_before_any_task(file_db):
    runtime = _runtime(file_db, catalog=PathCatalog([]))

    async def scenario():
        with pytest.raises(SimulatorConfigError):
            await runtime.start()

    asyncio.run(scenario())
    assert not runtime.running
    assert runtime.simulators == {}


def test_no_plates_rejected(file_db):
    runtime = _runtime(file_db, plates=[])
    with pytest.raises(SimulatorConfigError):
        asyncio.run(runtime.start())


def test_stop_is_idempotent(file_db):
    runtime = _runtime(file_db)

    async def scenario():
        await runtime.stop()
        await runtime.start()
        await runtime.stop()
        await runtime.stop()

    asyncio.run(scenario())
    assert not runtime.running


def test_reuses_existing_vehicle(file_db):
    db = file_db()
    existing = Vehicle(plate_number="TEST-001")
    db.add(existing)
    db.commit()
    existing_id = existing.id
    db.close()

    runtime = _runtime(file_db)

    async def scenario():
        await runtime.start()
        await runtime.stop()

    asyncio.run(scenario())
    assert runtime.simulators["TEST-001"].vehicle_id == existing_id
    assert isinstance(existing_id, uuid.UUID)
