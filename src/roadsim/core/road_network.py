"""
Road network graph built from GeoJSON line geometry.

Every consecutive vertex pair of a ``LineString`` becomes a pair of
directed edges (forward and reverse). Nodes are deduplicated by their
exact formatted coordinate, so two features only share a junction when
they carry bit-identical vertices.

Nodes and edges live in flat dictionaries keyed by string id; adjacency
is stored as edge-id lists, never as object references.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import numpy as np

from roadsim.core.geo import (
    LatLon,
    haversine_km,
    initial_bearing,
    project_to_segment,
    reverse_bearing,
)


class EmptyNetworkError(RuntimeError):
    """Raised when a query needs at least one node and the graph has none."""


@dataclass
class Node:
    """A graph vertex. ``connections`` holds outgoing edge ids in build order."""

    id: str
    coordinates: LatLon
    connections: list[str] = field(default_factory=list)

    @property
    def degree(self) -> int:
        return len(self.connections)


@dataclass(frozen=True)
class Edge:
    """A directed street segment.

    Endpoint coordinates are copied onto the edge so movement code can
    interpolate without looking nodes up.
    """

    id: str
    street_id: str
    start: str
    end: str
    start_coords: LatLon
    end_coords: LatLon
    distance: float
    bearing: float
    name: str = ""
    is_u_turn: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "street_id": self.street_id,
            "name": self.name,
            "start": {"id": self.start, "coordinates": list(self.start_coords)},
            "end": {"id": self.end, "coordinates": list(self.end_coords)},
            "distance": self.distance,
            "bearing": self.bearing,
        }


@dataclass(frozen=True)
class Route:
    """Contiguous sequence of edges with its total length in km."""

    edges: tuple[Edge, ...]
    distance: float

    @property
    def start(self) -> str | None:
        return self.edges[0].start if self.edges else None

    @property
    def end(self) -> str | None:
        return self.edges[-1].end if self.edges else None

    def __len__(self) -> int:
        return len(self.edges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "edges": [e.to_dict() for e in self.edges],
            "distance": self.distance,
        }


@dataclass
class Road:
    """All segments sharing one display name."""

    name: str
    node_ids: dict[str, None] = field(default_factory=dict)  # ordered set
    streets: list[list[list[float]]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "node_ids": list(self.node_ids),
            "coordinates": [pt for street in self.streets for pt in street],
        }


@dataclass(frozen=True)
class NearestEdge:
    edge: Edge
    point: LatLon
    fraction: float
    distance: float


def node_key(lat: float, lon: float) -> str:
    """Deduplication key for a coordinate. Exact match, no tolerance."""
    return f"{float(lat)},{float(lon)}"


def _line_parts(geometry: dict[str, Any]) -> list[list[Any]]:
    gtype = geometry.get("type")
    coords = geometry.get("coordinates")
    if not isinstance(coords, list):
        return []
    if gtype == "LineString":
        return [coords]
    if gtype == "MultiLineString":
        return [part for part in coords if isinstance(part, list)]
    return []


def _parse_vertex(raw: Any) -> LatLon | None:
    """GeoJSON ``[lon, lat, ...]`` -> ``(lat, lon)``, or None if malformed."""
    if not isinstance(raw, (list, tuple)) or len(raw) < 2:
        return None
    lon, lat = raw[0], raw[1]
    if isinstance(lon, bool) or isinstance(lat, bool):
        return None
    if not isinstance(lon, (int, float)) or not isinstance(lat, (int, float)):
        return None
    return (float(lat), float(lon))


class RoadNetwork:
    """Immutable-after-build routable road graph.

    Attributes:
        nodes: Node id -> Node.
        edges: Edge id -> Edge (both directions).
        roads: Display name -> Road, used for name search.
    """

    def __init__(self) -> None:
        self.nodes: dict[str, Node] = {}
        self.edges: dict[str, Edge] = {}
        self.roads: dict[str, Road] = {}
        self._data: dict[str, Any] = {"type": "FeatureCollection", "features": []}
        self._node_ids: list[str] = []
        self._edge_ids: list[str] = []

    # ---- Construction ----

    @classmethod
    def from_geojson(cls, data: dict[str, Any]) -> RoadNetwork:
        """Build a network from a GeoJSON FeatureCollection dict.

        Non-line features and malformed geometries are skipped.
        """
        network = cls()
        network._data = data
        for feature in data.get("features") or []:
            if not isinstance(feature, dict):
                continue
            geometry = feature.get("geometry")
            if not isinstance(geometry, dict):
                continue
            parts = _line_parts(geometry)
            if not parts:
                continue
            props = feature.get("properties") or {}
            street_id = str(props.get("id") or uuid.uuid4())
            name = str(props.get("name") or "")
            for part in parts:
                network._add_line(part, street_id, name)
        network._node_ids = list(network.nodes)
        network._edge_ids = list(network.edges)
        return network

    @classmethod
    def load(cls, path: str | Path) -> RoadNetwork:
        """Read a GeoJSON file from disk and build the network."""
        with open(path, encoding="utf-8") as fh:
            return cls.from_geojson(json.load(fh))

    def _add_line(self, coords: list[Any], street_id: str, name: str) -> None:
        vertices = [_parse_vertex(c) for c in coords]
        if len(vertices) < 2 or any(v is None for v in vertices):
            return

        road = self.roads.get(name)
        if road is None:
            road = Road(name=name)
            self.roads[name] = road
        road.streets.append([[lon, lat] for lat, lon in vertices])

        for a, b in zip(vertices, vertices[1:]):
            node1 = self._get_or_create_node(a)
            node2 = self._get_or_create_node(b)
            road.node_ids[node1.id] = None
            road.node_ids[node2.id] = None
            if node1.id == node2.id:
                continue  # zero-length segment

            forward_id = f"{node1.id}-{node2.id}"
            if forward_id in self.edges:
                continue  # segment already present from another feature

            distance = haversine_km(node1.coordinates, node2.coordinates)
            bearing = initial_bearing(node1.coordinates, node2.coordinates)
            forward = Edge(
                id=forward_id,
                street_id=street_id,
                start=node1.id,
                end=node2.id,
                start_coords=node1.coordinates,
                end_coords=node2.coordinates,
                distance=distance,
                bearing=bearing,
                name=name,
            )
            reverse = Edge(
                id=f"{node2.id}-{node1.id}",
                street_id=street_id,
                start=node2.id,
                end=node1.id,
                start_coords=node2.coordinates,
                end_coords=node1.coordinates,
                distance=distance,
                bearing=reverse_bearing(bearing),
                name=name,
            )
            self.edges[forward.id] = forward
            self.edges[reverse.id] = reverse
            node1.connections.append(forward.id)
            node2.connections.append(reverse.id)

    def _get_or_create_node(self, coords: LatLon) -> Node:
        key = node_key(*coords)
        node = self.nodes.get(key)
        if node is None:
            node = Node(id=key, coordinates=coords)
            self.nodes[key] = node
        return node

    # ---- Size ----

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def __len__(self) -> int:
        return len(self.nodes)

    # ---- Lookups ----

    def node(self, node_id: str) -> Node:
        return self.nodes[node_id]

    def outgoing(self, node_id: str) -> Iterator[Edge]:
        """Yield the edges that start at ``node_id``."""
        for edge_id in self.nodes[node_id].connections:
            yield self.edges[edge_id]

    def connected_edges(self, edge: Edge) -> list[Edge]:
        """Edges leaving ``edge.end``, excluding the way straight back.

        An empty list means ``edge`` runs into a dead end.
        """
        return [e for e in self.outgoing(edge.end) if e.end != edge.start]

    @staticmethod
    def u_turn(edge: Edge) -> Edge:
        """Synthetic reversed copy of ``edge``; never stored in the graph."""
        return Edge(
            id=f"{edge.end}-{edge.start}",
            street_id=edge.street_id,
            start=edge.end,
            end=edge.start,
            start_coords=edge.end_coords,
            end_coords=edge.start_coords,
            distance=edge.distance,
            bearing=reverse_bearing(edge.bearing),
            name=edge.name,
            is_u_turn=True,
        )

    def random_edge(self, rng: np.random.Generator) -> Edge:
        if not self._edge_ids:
            raise EmptyNetworkError("Network has no edges")
        return self.edges[self._edge_ids[int(rng.integers(len(self._edge_ids)))]]

    def random_node(self, rng: np.random.Generator) -> Node:
        if not self._node_ids:
            raise EmptyNetworkError("Network has no nodes")
        return self.nodes[self._node_ids[int(rng.integers(len(self._node_ids)))]]

    def find_nearest_node(self, point: LatLon) -> Node:
        """Closest node by haversine distance. Linear scan over all nodes."""
        if not self.nodes:
            raise EmptyNetworkError("Network has no nodes")
        return min(
            self.nodes.values(),
            key=lambda n: haversine_km(point, n.coordinates),
        )

    def find_nearest_edge(self, point: LatLon) -> NearestEdge:
        """Closest street segment to ``point`` and where it projects onto it."""
        if not self.edges:
            raise EmptyNetworkError("Network has no edges")
        best: NearestEdge | None = None
        for edge in self.edges.values():
            projected, fraction = project_to_segment(
                point, edge.start_coords, edge.end_coords,
            )
            dist = haversine_km(point, projected)
            if best is None or dist < best.distance:
                best = NearestEdge(edge, projected, fraction, dist)
        return best

    def intersections(self, min_degree: int = 3) -> list[Node]:
        """Nodes where at least ``min_degree`` edges meet."""
        return [n for n in self.nodes.values() if n.degree >= min_degree]

    def bounds(self) -> tuple[LatLon, LatLon]:
        """``((min_lat, min_lon), (max_lat, max_lon))`` over all nodes."""
        if not self.nodes:
            raise EmptyNetworkError("Network has no nodes")
        lats = [n.coordinates[0] for n in self.nodes.values()]
        lons = [n.coordinates[1] for n in self.nodes.values()]
        return (min(lats), min(lons)), (max(lats), max(lons))

    def search_by_name(self, query: str) -> list[dict[str, Any]]:
        """Case-insensitive substring search over road names."""
        needle = query.lower()
        return [
            road.to_dict()
            for name, road in self.roads.items()
            if needle in name.lower()
        ]

    def all_roads(self) -> list[dict[str, Any]]:
        return [road.to_dict() for road in self.roads.values()]

    def to_geojson(self) -> dict[str, Any]:
        """The FeatureCollection the network was built from."""
        return self._data
