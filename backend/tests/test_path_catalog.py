"""Tests for the path model and route catalog loading."""
import random
from pathlib import Path as FilePath

import pytest

from snowops.modules.path_catalog import (
    FALLBACK_PATH,
    Path,
    PathCatalog,
    SimulatorConfigError,
    Waypoint,
    load_path_catalog,
    make_path,
    segment_at,
)

REPO_ROOT = FilePath(__file__).resolve().parents[2]


@pytest.fixture
def three_point_path():
    return make_path("Test Road", [[54.0, 69.0], [54.001, 69.0], [54.002, 69.0]])


class TestSegmentAt:
    def test_first_and_last_segment(self, three_point_path):
        seg0 = segment_at(three_point_path, 0)
        seg1 = segment_at(three_point_path, 1)
        assert seg0.start == Waypoint(54.0, 69.0)
        assert seg0.end == Waypoint(54.001, 69.0)
        assert seg1.end == Waypoint(54.002, 69.0)

    def test_past_end_is_none(self, three_point_path):
        assert segment_at(three_point_path, 2) is None
        assert segment_at(three_point_path, 10) is None

    def test_negative_index_is_none(self, three_point_path):
        assert segment_at(three_point_path, -1) is None

    def test_single_point_path_has_no_segments(self):
        path = make_path("Stub", [[54.0, 69.0]])
        assert segment_at(path, 0) is None
        assert not path.is_traversable


class TestPath:
    def test_length_is_sum_of_segments(self, three_point_path):
        seg_total = sum(
            segment_at(three_point_path, i).length_meters for i in range(three_point_path.segment_count)
        )
        assert three_point_path.length_meters == pytest.approx(seg_total)
        assert three_point_path.length_meters == pytest.approx(222.4, rel=1e-3)

    def test_segment_heading_north(self, three_point_path):
        assert segment_at(three_point_path, 0).heading_deg == pytest.approx(0.0, abs=1e-9)

    def test_waypoint_out_of_range_rejected(self):
        with pytest.raises(SimulatorConfigError, match="out of range"):
            make_path("Bad", [[95.0, 69.0], [54.0, 69.0]])


class TestCatalogSelect:
    def test_first_policy_is_deterministic(self, three_point_path):
        other = make_path("Other", [[55.0, 70.0], [55.1, 70.1]])
        catalog = PathCatalog([three_point_path, other])
        assert catalog.select("first") is three_point_path
        assert catalog.select("first") is three_point_path

    def test_random_policy_returns_member(self, three_point_path):
        other = make_path("Other", [[55.0, 70.0], [55.1, 70.1]])
        catalog = PathCatalog([three_point_path, other])
        rng = random.Random(42)
        for _ in range(10):
            assert catalog.select("random", rng=rng) in (three_point_path, other)

    def test_empty_catalog(self):
        with pytest.raises(SimulatorConfigError, match="empty"):
            PathCatalog([]).select()

    def test_untraversable_selection(self):
        catalog = PathCatalog([Path(name="Stub", waypoints=(Waypoint(54.0, 69.0),))])
        with pytest.raises(SimulatorConfigError, match="at least 2"):
            catalog.select()

    def test_unknown_policy(self, three_point_path):
        with pytest.raises(SimulatorConfigError, match="Unknown route policy"):
            PathCatalog([three_point_path]).select("weighted")

    def test_get_by_name(self, three_point_path):
        catalog = PathCatalog([three_point_path])
        assert catalog.get("Test Road") is three_point_path
        assert catalog.get("Nope") is None


class TestLoadPathCatalog:
    def test_repo_routes_file(self):
        catalog = load_path_catalog(REPO_ROOT / "config" / "routes.yaml")
        names = [p.name for p in catalog]
        assert names == ["Primary Highway 1", "Primary Highway 2", "Primary Highway 3"]
        assert catalog.select().waypoints[0] == Waypoint(54.87, 69.14)

    def test_missing_file_uses_fallback(self, tmp_path, caplog):
        catalog = load_path_catalog(tmp_path / "nope.yaml")
        assert list(catalog) == [FALLBACK_PATH]
        assert "fallback" in caplog.text.lower()

    def test_fallback_route_shape(self):
        assert FALLBACK_PATH.name == "Fallback Route"
        assert len(FALLBACK_PATH.waypoints) == 6
        assert FALLBACK_PATH.waypoints[0] == Waypoint(54.87, 69.14)
        assert FALLBACK_PATH.waypoints[-1] == Waypoint(54.88, 69.165)

    def test_fallback_segments_are_sub_kilometre(self):
        for i in range(FALLBACK_PATH.segment_count):
            assert segment_at(FALLBACK_PATH, i).length_meters < 1000

    def test_custom_file(self, tmp_path):
        cfg = tmp_path / "routes.yaml"
        cfg.write_text(
            "routes:\n"
            "  - name: Lenin Street\n"
            "    waypoints:\n"
            "      - [54.86, 69.13]\n"
            "      - [54.865, 69.135]\n"
            "  - waypoints:\n"
            "      - [54.85, 69.12]\n"
            "      - [54.855, 69.125]\n"
        )
        catalog = load_path_catalog(cfg)
        assert [p.name for p in catalog] == ["Lenin Street", "Route 2"]

    def test_empty_routes_file_gives_empty_catalog(self, tmp_path):
        cfg = tmp_path / "routes.yaml"
        cfg.write_text("routes: []\n")
        catalog = load_path_catalog(cfg)
        assert len(catalog) == 0
        with pytest.raises(SimulatorConfigError):
            catalog.select()

    def test_malformed_route_raises(self, tmp_path):
        cfg = tmp_path / "routes.yaml"
        cfg.write_text("routes:\n  - just a string\n")
        with pytest.raises(SimulatorConfigError, match="not a mapping"):
            load_path_catalog(cfg)
