"""
Core agent dataclass for the road fleet simulator.

An agent is one simulated vehicle: where it is on the graph, how fast it
is going, and which route (if any) it is following. Agent state is only
mutated by that agent's own tick or by an explicit redirection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from roadsim.core.geo import LatLon
from roadsim.core.road_network import Edge, Route


class AgentStatus(str, Enum):
    """Duty status reported by the roster service."""

    ON_SHIFT = "ONSHIFT"
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    UNTRACKED = "UNTRACKED"
    UNKNOWN = "UNKNOWN"


@dataclass
class AgentFlags:
    has_connectivity: bool = True
    engine_issue: bool = False
    low_fuel: bool = False
    in_heat_zone: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "has_connectivity": self.has_connectivity,
            "engine_issue": self.engine_issue,
            "low_fuel": self.low_fuel,
            "in_heat_zone": self.in_heat_zone,
        }


@dataclass
class Agent:
    """A simulated vehicle moving over the road network."""

    # === Identity ===
    id: str
    name: str
    status: AgentStatus
    current_edge: Edge

    flags: AgentFlags = field(default_factory=AgentFlags)

    # === Kinematics ===
    position: LatLon | None = None
    speed: float = 0.0        # km/h
    bearing: float | None = None
    progress: float = 0.0     # fraction of current_edge, [0, 1)

    # === Movement state ===
    visited_edges: set[str] = field(default_factory=set)
    route: Route | None = None
    # Index of current_edge inside route; -1 while still approaching the
    # route's first edge.
    route_index: int = -1
    next_edge_hint: Edge | None = None
    # Random route planned for when the current route ends.
    next_route: Route | None = None
    last_tick_ms: float | None = None

    def __post_init__(self) -> None:
        if self.position is None:
            self.position = self.current_edge.start_coords
        if self.bearing is None:
            self.bearing = self.current_edge.bearing

    @property
    def is_following(self) -> bool:
        """True while a route with edges still ahead is installed."""
        return self.route is not None and self.route_index < len(self.route.edges)

    def remaining_route_edges(self) -> tuple[Edge, ...]:
        """Route edges from the current one (inclusive) to the destination."""
        if self.route is None:
            return ()
        return self.route.edges[max(self.route_index, 0):]

    def eta_seconds(self) -> float | None:
        """Remaining route time at the current speed, or None if unknown."""
        edges = self.remaining_route_edges()
        if not edges or self.speed <= 0:
            return None
        return sum(e.distance / self.speed for e in edges) * 3600

    def snapshot(self) -> dict[str, Any]:
        """Public per-agent view pushed to observers."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "flags": self.flags.to_dict(),
            "position": list(self.position),
            "speed": self.speed,
            "heading": self.bearing,
        }

    def route_payload(self) -> dict[str, Any] | None:
        if self.route is None:
            return None
        edges = self.remaining_route_edges()
        return {
            "vehicle_id": self.id,
            "route": {
                "edges": [e.to_dict() for e in edges],
                "distance": sum(e.distance for e in edges),
            },
            "eta": self.eta_seconds(),
        }

    def __repr__(self) -> str:
        mode = "following" if self.is_following else "wandering"
        return (
            f"Agent(id={self.id!r}, name={self.name!r}, status={self.status.value}, "
            f"speed={self.speed:.1f}, {mode})"
        )
