"""
Procedural heat zones: irregular, spline-smoothed polygons that slow
agents down while they are inside one.

The active zone set is an immutable tuple swapped in as a whole on every
regeneration, so readers on other threads always see either the old or
the new set.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import numpy as np
from scipy.interpolate import splev, splprep
from shapely.geometry import Point, Polygon
from shapely.prepared import prep

from roadsim.core.geo import LatLon, destination_point, encode_polyline
from roadsim.core.road_network import RoadNetwork

logger = logging.getLogger(__name__)

POLYGON_VERTICES = 12
JITTER_RANGE = (0.7, 1.3)
SMOOTHED_VERTICES = 96

CENTER_MODES = ("bounds", "intersections")


@dataclass(frozen=True)
class HeatZone:
    """A closed polygon ring of ``(lon, lat)`` vertices with an intensity."""

    id: str
    ring: tuple[tuple[float, float], ...]
    intensity: float
    radius: float
    center: LatLon
    timestamp: str
    _prepared: Any = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_prepared", prep(Polygon(self.ring)))

    def contains(self, point: LatLon) -> bool:
        return self._prepared.contains(Point(point[1], point[0]))

    def to_feature(self) -> dict[str, Any]:
        return {
            "type": "Feature",
            "properties": {
                "id": self.id,
                "intensity": self.intensity,
                "timestamp": self.timestamp,
                "radius": self.radius,
            },
            "geometry": {
                "type": "Polygon",
                "coordinates": [[list(pt) for pt in self.ring]],
            },
        }

    def to_path(self) -> str:
        return encode_polyline((lat, lon) for lon, lat in self.ring)


def irregular_ring(
    center: LatLon, radius_km: float, rng: np.random.Generator,
) -> list[tuple[float, float]]:
    """12 jittered vertices around ``center``, closed, as ``(lon, lat)``."""
    ring: list[tuple[float, float]] = []
    for i in range(POLYGON_VERTICES):
        bearing = 360.0 * i / POLYGON_VERTICES
        jitter = rng.uniform(*JITTER_RANGE)
        lat, lon = destination_point(center, radius_km * jitter, bearing)
        ring.append((lon, lat))
    ring.append(ring[0])
    return ring


def smooth_ring(
    ring: list[tuple[float, float]], samples: int = SMOOTHED_VERTICES,
) -> list[tuple[float, float]]:
    """Resample a closed ring along a periodic cubic spline through its vertices."""
    xs = np.array([p[0] for p in ring], dtype=float)
    ys = np.array([p[1] for p in ring], dtype=float)
    tck, _ = splprep([xs, ys], s=0, per=True)
    u = np.linspace(0.0, 1.0, samples, endpoint=False)
    sx, sy = splev(u, tck)
    smoothed = [(float(x), float(y)) for x, y in zip(sx, sy)]
    smoothed.append(smoothed[0])
    return smoothed


class HeatZoneEngine:
    """Generates, holds and queries the active heat-zone set."""

    def __init__(self, rng: np.random.Generator | None = None) -> None:
        self.rng = rng if rng is not None else np.random.default_rng()
        self._zones: tuple[HeatZone, ...] = ()
        self._lock = threading.Lock()

    @property
    def zones(self) -> tuple[HeatZone, ...]:
        return self._zones

    def clear(self) -> None:
        with self._lock:
            self._zones = ()

    def generate(
        self,
        network: RoadNetwork,
        count: int = 5,
        radius_range: tuple[float, float] = (0.5, 2.0),
        intensity_range: tuple[float, float] = (0.3, 1.0),
        center_mode: str = "bounds",
        scale_by_connectivity: bool = False,
    ) -> tuple[HeatZone, ...]:
        """Build a new zone set and make it the active one.

        Args:
            network: Road network used to choose zone centers.
            count: Number of zones.
            radius_range: ``(min, max)`` radius in km.
            intensity_range: ``(min, max)`` intensity in ``[0, 1]``.
            center_mode: ``"bounds"`` for uniform centers inside the
                network bounding box, ``"intersections"`` for centers on
                junction nodes weighted by their connection count.
            scale_by_connectivity: In intersection mode, scale each radius
                by the junction's connectivity.

        Returns:
            The new active zone set.
        """
        if center_mode not in CENTER_MODES:
            raise ValueError(f"Unknown center mode: {center_mode!r}")

        junctions = network.intersections() if center_mode == "intersections" else []
        if center_mode == "intersections" and not junctions:
            logger.info("No intersections in network, falling back to bounds")
        if junctions:
            degrees = np.array([n.degree for n in junctions], dtype=float)
            weights = degrees / degrees.sum()
        else:
            (min_lat, min_lon), (max_lat, max_lon) = network.bounds()

        timestamp = datetime.now(timezone.utc).isoformat()
        zones: list[HeatZone] = []
        for _ in range(count):
            radius = float(self.rng.uniform(*radius_range))
            intensity = float(self.rng.uniform(*intensity_range))
            if junctions:
                node = junctions[int(self.rng.choice(len(junctions), p=weights))]
                center = node.coordinates
                if scale_by_connectivity:
                    radius *= min(1.5, node.degree / 3)
            else:
                center = (
                    float(self.rng.uniform(min_lat, max_lat)),
                    float(self.rng.uniform(min_lon, max_lon)),
                )
            ring = smooth_ring(irregular_ring(center, radius, self.rng))
            zones.append(HeatZone(
                id=str(uuid.uuid4()),
                ring=tuple(ring),
                intensity=intensity,
                radius=radius,
                center=center,
                timestamp=timestamp,
            ))

        snapshot = tuple(zones)
        with self._lock:
            self._zones = snapshot
        return snapshot

    def is_in_zone(self, point: LatLon) -> bool:
        """True if ``point`` lies inside any active zone."""
        return any(zone.contains(point) for zone in self._zones)

    def to_features(self) -> list[dict[str, Any]]:
        return [zone.to_feature() for zone in self._zones]

    def to_paths(self) -> list[str]:
        return [zone.to_path() for zone in self._zones]
