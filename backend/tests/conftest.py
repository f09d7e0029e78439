"""Shared test fixtures: mock sessions, in-memory SQLite sessions, API clients."""
import os

# Keep the lifespan from starting background simulators against a real database
os.environ.setdefault("GPS_SIMULATOR_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime

import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from snowops.main import app, limiter
from snowops.database import get_db
from snowops.models import Base, GPSPoint, Vehicle


@pytest.fixture
def mock_db():
    """MagicMock database session: returns None for all queries by default."""
    session = MagicMock()
    session.query.return_value.filter.return_value.first.return_value = None
    session.query.return_value.filter.return_value.all.return_value = []
    session.query.return_value.filter.return_value.order_by.return_value.all.return_value = []
    session.get.return_value = None
    return session


@pytest.fixture
def api_client(mock_db):
    """TestClient with DB dependency overridden to use a MagicMock session."""
    def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    limiter.reset()
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def session_factory():
    """sessionmaker over a single shared in-memory SQLite connection.

    Only the telemetry tables are created; polygons/cameras need PostGIS.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=[Vehicle.__table__, GPSPoint.__table__])
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def sqlite_client(db):
    """TestClient backed by the in-memory SQLite session."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    limiter.reset()
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def make_vehicle(db):
    def _make(plate: str, contractor_id=None, driver_id=None) -> Vehicle:
        v = Vehicle(plate_number=plate, contractor_id=contractor_id, driver_id=driver_id)
        db.add(v)
        db.commit()
        return v
    return _make


@pytest.fixture
def add_point(db):
    def _add(vehicle: Vehicle, captured_at: datetime, lat: float = 54.87, lon: float = 69.14,
             raw_payload: str | None = '{"simulated": true, "source": "osm-simulator"}') -> GPSPoint:
        p = GPSPoint(
            vehicle_id=vehicle.id,
            captured_at=captured_at,
            lat=lat,
            lon=lon,
            speed_kmh=20.0,
            heading_deg=45.0,
            raw_payload=raw_payload,
        )
        db.add(p)
        db.commit()
        return p
    return _add

