"""Road paths for the motion simulator.

A Path is an ordered polyline of waypoints; consecutive waypoints form
segments. A PathCatalog is the read-only set of paths a simulator may drive.

Paths are loaded from ``config/routes.yaml``:

    routes:
      - name: Primary Highway 1
        waypoints:
          - [54.8700, 69.1400]
          - [54.8720, 69.1450]

When the file cannot be read a single built-in fallback route is used so the
simulator still has something to drive in development.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from pathlib import Path as FilePath
from typing import Iterable, Optional

import yaml

from snowops.utils.geo import haversine_meters, initial_bearing_deg, interpolate

logger = logging.getLogger(__name__)

ROUTE_POLICY_FIRST = "first"
ROUTE_POLICY_RANDOM = "random"
ROUTE_POLICIES = (ROUTE_POLICY_FIRST, ROUTE_POLICY_RANDOM)


class SimulatorConfigError(ValueError):
    """Route configuration the simulator cannot start with."""


@dataclass(frozen=True)
class Waypoint:
    lat: float
    lon: float


@dataclass(frozen=True)
class Segment:
    start: Waypoint
    end: Waypoint

    @property
    def length_meters(self) -> float:
        return distance(self.start, self.end)

    @property
    def heading_deg(self) -> float:
        return bearing(self.start, self.end)


@dataclass(frozen=True)
class Path:
    name: str
    waypoints: tuple[Waypoint, ...]

    @property
    def is_traversable(self) -> bool:
        return len(self.waypoints) >= 2

    @property
    def segment_count(self) -> int:
        return max(len(self.waypoints) - 1, 0)

    @property
    def length_meters(self) -> float:
        return sum(
            distance(a, b) for a, b in zip(self.waypoints, self.waypoints[1:])
        )


def distance(a: Waypoint, b: Waypoint) -> float:
    """Great-circle distance between two waypoints in metres."""
    return haversine_meters(a.lat, a.lon, b.lat, b.lon)


def bearing(a: Waypoint, b: Waypoint) -> float:
    """Initial bearing from a to b in degrees [0, 360)."""
    return initial_bearing_deg(a.lat, a.lon, b.lat, b.lon)


def lerp(a: Waypoint, b: Waypoint, t: float) -> Waypoint:
    lat, lon = interpolate(a.lat, a.lon, b.lat, b.lon, t)
    return Waypoint(lat, lon)


def segment_at(path: Path, index: int) -> Optional[Segment]:
    """Return segment ``index`` of *path*, or None once the index runs off the end."""
    if index < 0 or index >= len(path.waypoints) - 1:
        return None
    return Segment(path.waypoints[index], path.waypoints[index + 1])


def make_path(name: str, points: Iterable[Iterable[float]]) -> Path:
    """Build a Path from ``[[lat, lon], ...]`` pairs."""
    waypoints = []
    for pt in points:
        lat, lon = (float(v) for v in pt)
        if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
            raise SimulatorConfigError(f"Route '{name}': waypoint ({lat}, {lon}) out of range")
        waypoints.append(Waypoint(lat, lon))
    return Path(name=name, waypoints=tuple(waypoints))


class PathCatalog:
    """Read-only collection of named paths."""

    def __init__(self, paths: Iterable[Path]):
        self._paths: tuple[Path, ...] = tuple(paths)

    def __len__(self) -> int:
        return len(self._paths)

    def __iter__(self):
        return iter(self._paths)

    @property
    def paths(self) -> tuple[Path, ...]:
        return self._paths

    def get(self, name: str) -> Optional[Path]:
        for p in self._paths:
            if p.name == name:
                return p
        return None

    def select(self, policy: str = ROUTE_POLICY_FIRST, rng: random.Random | None = None) -> Path:
        """Pick the path a simulator (re)starts on.

        Raises SimulatorConfigError on an empty catalog, an unknown policy, or
        when the chosen path has fewer than two waypoints.
        """
        if not self._paths:
            raise SimulatorConfigError("Route catalog is empty")
        if policy == ROUTE_POLICY_FIRST:
            chosen = self._paths[0]
        elif policy == ROUTE_POLICY_RANDOM:
            chosen = (rng or random).choice(self._paths)
        else:
            raise SimulatorConfigError(
                f"Unknown route policy '{policy}' (expected one of {', '.join(ROUTE_POLICIES)})"
            )
        if not chosen.is_traversable:
            raise SimulatorConfigError(
                f"Route '{chosen.name}' has {len(chosen.waypoints)} waypoint(s); at least 2 are required"
            )
        return chosen


# Petropavlovsk, the first primary highway; used when no route file is available
FALLBACK_PATH = make_path(
    "Fallback Route",
    [
        [54.8700, 69.1400],
        [54.8720, 69.1450],
        [54.8740, 69.1500],
        [54.8760, 69.1550],
        [54.8780, 69.1600],
        [54.8800, 69.1650],
    ],
)


def load_path_catalog(config_path: str | FilePath) -> PathCatalog:
    """Load routes from YAML.

    A missing or unparseable file falls back to FALLBACK_PATH with a warning.
    A file that parses but contains a malformed route raises
    SimulatorConfigError.
    """
    path = FilePath(config_path)
    if not path.exists():
        # config/ lives at the repo root, one level above backend/
        alt = FilePath(__file__).resolve().parents[3] / path
        if alt.exists():
            path = alt
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Could not load routes from %s (%s); using fallback route", config_path, exc)
        return PathCatalog([FALLBACK_PATH])

    routes = data.get("routes", []) if isinstance(data, dict) else []
    paths = []
    for i, r_data in enumerate(routes):
        if not isinstance(r_data, dict):
            raise SimulatorConfigError(f"Route #{i} in {path} is not a mapping")
        name = r_data.get("name") or f"Route {i + 1}"
        paths.append(make_path(name, r_data.get("waypoints") or []))

    logger.info("Loaded %d route(s) from %s", len(paths), path)
    return PathCatalog(paths)
