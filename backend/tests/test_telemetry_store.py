"""Tests for the GPS point store (SQLite-backed)."""
import json
import uuid
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from snowops.models.gps_point import GPSPoint
from snowops.modules.geofence import GeofenceEvent
from snowops.modules.telemetry_store import (
    TelemetrySample,
    build_payload,
    decode_payload,
    is_simulated,
    latest_for_vehicles,
    persist_sample,
    track_points,
)

NOW = datetime(2026, 1, 15, 12, 0, 0)


def _sample(vehicle_id, captured_at=NOW, **payload_kw):
    return TelemetrySample(
        vehicle_id=vehicle_id,
        captured_at=captured_at,
        lat=54.87,
        lon=69.14,
        speed_kmh=20.0,
        heading_deg=63.4,
        payload=build_payload(**payload_kw),
    )


class TestPersist:
    def test_inserts_one_row(self, db, make_vehicle):
        v = make_vehicle("TEST-001")
        row = persist_sample(db, _sample(v.id, route_name="Primary Highway 1"))
        stored = db.query(GPSPoint).one()
        assert stored.id == row.id
        assert stored.vehicle_id == v.id
        assert stored.heading_deg == pytest.approx(63.4)
        assert json.loads(stored.raw_payload) == {
            "simulated": True, "source": "osm-simulator", "route": "Primary Highway 1",
        }

    def test_no_dedup(self, db, make_vehicle):
        v = make_vehicle("TEST-001")
        persist_sample(db, _sample(v.id))
        persist_sample(db, _sample(v.id))
        assert db.query(GPSPoint).count() == 2

    def test_geofence_event_round_trip(self, db, make_vehicle):
        v = make_vehicle("TEST-001")
        pid = uuid.uuid4()
        event = GeofenceEvent(polygon_id=pid, polygon_name="Landfill North", detected_at=NOW)
        persist_sample(db, _sample(v.id, geofence_event=event.to_payload()))

        payload = decode_payload(db.query(GPSPoint).one().raw_payload)
        assert payload["geofence_event"]["polygon_id"] == str(pid)
        assert payload["geofence_event"]["polygon_name"] == "Landfill North"
        assert payload["geofence_event"]["event_type"] == "ENTRY"
        assert payload["geofence_event"]["camera_id"] is None

    def test_commit_failure_rolls_back_and_raises(self):
        session = MagicMock()
        session.commit.side_effect = RuntimeError("disk full")
        with pytest.raises(RuntimeError):
            persist_sample(session, _sample(uuid.uuid4()))
        session.rollback.assert_called_once()


class TestPayload:
    def test_decode_malformed(self):
        assert decode_payload("{not json") == {}
        assert decode_payload("[1, 2]") == {}
        assert decode_payload(None) == {}
        assert decode_payload("") == {}

    def test_is_simulated_requires_boolean_true(self):
        assert is_simulated('{"simulated": true}')
        assert not is_simulated('{"simulated": "true"}')
        assert not is_simulated('{"simulated": false}')
        assert not is_simulated("garbage")
        assert not is_simulated(None)


class TestLatestForVehicles:
    def test_newest_in_window(self, db, make_vehicle, add_point):
        a = make_vehicle("A-1")
        b = make_vehicle("B-1")
        c = make_vehicle("C-1")
        add_point(a, NOW - timedelta(seconds=200), lat=54.1)
        newest_a = add_point(a, NOW - timedelta(seconds=30), lat=54.2)
        add_point(b, NOW - timedelta(seconds=250))
        add_point(c, NOW - timedelta(minutes=10))

        result = latest_for_vehicles(db, [a.id, b.id, c.id], since=NOW - timedelta(minutes=5))
        assert set(result) == {a.id, b.id}
        assert result[a.id].id == newest_a.id
        assert result[a.id].lat == pytest.approx(54.2)

    def test_empty_ids(self, db):
        assert latest_for_vehicles(db, [], since=NOW) == {}

    def test_window_bound_inclusive(self, db, make_vehicle, add_point):
        v = make_vehicle("A-1")
        add_point(v, NOW - timedelta(minutes=5))
        result = latest_for_vehicles(db, [v.id], since=NOW - timedelta(minutes=5))
        assert v.id in result


class TestTrackPoints:
    def test_ascending_regardless_of_insert_order(self, db, make_vehicle, add_point):
        v = make_vehicle("A-1")
        for minutes in (10, 30, 20, 40, 5):
            add_point(v, NOW - timedelta(minutes=minutes))
        points = track_points(db, v.id, NOW - timedelta(hours=1), NOW)
        times = [p.captured_at for p in points]
        assert times == sorted(times)
        assert len(times) == 5

    def test_bounds_inclusive(self, db, make_vehicle, add_point):
        v = make_vehicle("A-1")
        start, end = NOW - timedelta(minutes=30), NOW
        add_point(v, start)
        add_point(v, end)
        add_point(v, start - timedelta(seconds=1))
        add_point(v, end + timedelta(seconds=1))
        assert [p.captured_at for p in track_points(db, v.id, start, end)] == [start, end]

    def test_other_vehicles_excluded(self, db, make_vehicle, add_point):
        a = make_vehicle("A-1")
        b = make_vehicle("B-1")
        add_point(b, NOW - timedelta(minutes=1))
        assert track_points(db, a.id, NOW - timedelta(hours=1), NOW) == []
