"""
Per-agent kinematic update: speed integration, position integration,
route following and novelty-seeking wandering.

An agent with an installed route is *following*; otherwise it is
*wandering*. Each tick first updates speed (looking one edge ahead to
decide whether to brake for a turn) and then consumes ``speed * elapsed``
kilometres of road, walking across as many edges as that distance spans.
"""

from __future__ import annotations

import logging
from enum import Enum

import numpy as np

from roadsim.core.agent import Agent, AgentFlags, AgentStatus
from roadsim.core.config import SimulationConfig
from roadsim.core.events import EventBus
from roadsim.core.geo import LatLon, bearing_delta, interpolate
from roadsim.core.heat_zones import HeatZoneEngine
from roadsim.core.pathfinding import find_route
from roadsim.core.road_network import Edge, RoadNetwork, Route

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000.0


class RouteStatus(str, Enum):
    """Outcome of an explicit routing request."""

    OK = "ok"
    NO_ROUTE = "no_route"
    NO_CONNECTIONS = "no_connections"


class AgentSimulator:
    """Advances agents over a road network.

    Holds no per-agent state of its own; everything lives on the Agent.
    ``config`` may be swapped for a new object between ticks.
    """

    def __init__(
        self,
        network: RoadNetwork,
        heat_zones: HeatZoneEngine,
        config: SimulationConfig,
        rng: np.random.Generator | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.network = network
        self.heat_zones = heat_zones
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng()
        self.events = events

    # ------------------------------------------------------------------
    # Creation & reset
    # ------------------------------------------------------------------
    def spawn(
        self,
        agent_id: str,
        name: str,
        status: AgentStatus = AgentStatus.UNKNOWN,
        position: LatLon | None = None,
    ) -> Agent:
        """Create an agent on a random edge, or on the edge nearest ``position``."""
        progress = 0.0
        if position is None:
            edge = self.network.random_edge(self.rng)
        else:
            nearest = self.network.find_nearest_edge(position)
            edge = nearest.edge
            progress = min(nearest.fraction, 0.999)

        agent = Agent(
            id=agent_id,
            name=name,
            status=status,
            current_edge=edge,
            flags=AgentFlags(
                has_connectivity=bool(self.rng.random() > 0.3),
                engine_issue=bool(self.rng.random() > 0.95),
                low_fuel=bool(self.rng.random() > 0.7),
            ),
            position=interpolate(edge.start_coords, edge.end_coords, progress),
            speed=self.config.min_speed,
            bearing=edge.bearing,
            progress=progress,
            visited_edges={edge.id},
        )
        return agent

    def reset_agent(self, agent: Agent) -> None:
        """Put a stuck agent back on a fresh random edge."""
        edge = self.network.random_edge(self.rng)
        agent.current_edge = edge
        agent.position = edge.start_coords
        agent.bearing = edge.bearing
        agent.progress = 0.0
        agent.speed = self.config.min_speed
        agent.visited_edges = {edge.id}
        agent.route = None
        agent.route_index = -1
        agent.next_edge_hint = None
        agent.next_route = None
        agent.flags.in_heat_zone = False

    # ------------------------------------------------------------------
    # Next-edge selection
    # ------------------------------------------------------------------
    def next_edge(self, agent: Agent) -> Edge:
        """The edge the agent will enter when it leaves its current one.

        The wandering choice and the route that follows a finished one are
        cached on the agent, so the edge used to decide braking is the edge
        actually taken.
        """
        if agent.route is not None:
            idx = agent.route_index + 1
            if idx < len(agent.route.edges):
                return agent.route.edges[idx]
            onward = self._plan_onward_route(agent)
            if onward is not None:
                return onward.edges[0]

        hint = agent.next_edge_hint
        if hint is None or hint.start != agent.current_edge.end:
            hint = self._choose_wander_edge(agent)
            agent.next_edge_hint = hint
        return hint

    def _choose_wander_edge(self, agent: Agent) -> Edge:
        candidates = self.network.connected_edges(agent.current_edge)
        if not candidates:
            return self.network.u_turn(agent.current_edge)
        unvisited = [e for e in candidates if e.id not in agent.visited_edges]
        pool = unvisited or candidates
        return pool[int(self.rng.integers(len(pool)))]

    def _plan_onward_route(self, agent: Agent) -> Route | None:
        onward = agent.next_route
        if onward is None or onward.start != agent.current_edge.end:
            onward = self._random_route(agent.current_edge.end)
            agent.next_route = onward
        return onward

    def _take_wander_edge(self, agent: Agent) -> Edge:
        edge = self.next_edge(agent)
        agent.next_edge_hint = None
        if not edge.is_u_turn:
            agent.visited_edges.add(edge.id)
        return edge

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def tick(self, agent: Agent, delta_ms: float, now_ms: float | None = None) -> float:
        """Advance one agent by ``delta_ms``. Returns km travelled."""
        self.update_speed(agent, delta_ms)
        travelled = self.update_position(agent, delta_ms)
        agent.last_tick_ms = now_ms
        return travelled

    def update_speed(self, agent: Agent, delta_ms: float) -> float:
        cfg = self.config
        hours = delta_ms / MS_PER_HOUR
        in_zone = self.heat_zones.is_in_zone(agent.position)
        agent.flags.in_heat_zone = in_zone

        upcoming = self.next_edge(agent)
        if bearing_delta(agent.bearing, upcoming.bearing) > cfg.turn_threshold:
            speed = agent.speed - cfg.deceleration * hours
        else:
            speed = agent.speed + cfg.acceleration * hours
        if in_zone:
            speed *= cfg.heat_zone_speed_factor

        speed = min(cfg.max_speed, max(cfg.min_speed, speed))
        if cfg.speed_variation > 0:
            speed *= 1 + self.rng.uniform(-cfg.speed_variation, cfg.speed_variation)
            speed = min(cfg.max_speed, max(cfg.min_speed, speed))
        agent.speed = float(speed)
        return agent.speed

    def update_position(self, agent: Agent, delta_ms: float) -> float:
        """Move along the graph by ``speed * elapsed``. Returns km travelled."""
        remaining = agent.speed * delta_ms / MS_PER_HOUR
        travelled = 0.0

        edge_left = (1.0 - agent.progress) * agent.current_edge.distance
        while remaining > edge_left:
            remaining -= edge_left
            travelled += edge_left
            edge = agent.current_edge
            agent.progress = 1.0
            agent.position = edge.end_coords
            agent.bearing = edge.bearing
            self._advance(agent)
            edge_left = agent.current_edge.distance

        edge = agent.current_edge
        agent.progress += remaining / edge.distance
        travelled += remaining
        agent.position = interpolate(edge.start_coords, edge.end_coords, agent.progress)
        agent.bearing = edge.bearing
        return travelled

    def _advance(self, agent: Agent) -> None:
        """Step onto the next edge at the end of the current one."""
        route = agent.route
        if route is not None:
            idx = agent.route_index + 1
            if idx < len(route.edges):
                agent.current_edge = route.edges[idx]
                agent.route_index = idx
                agent.progress = 0.0
                agent.next_edge_hint = None
                return

            agent.route = None
            agent.route_index = -1
            if self.events is not None:
                self.events.publish("destination", {
                    "vehicle_id": agent.id,
                    "position": list(agent.position),
                })
            onward = self._plan_onward_route(agent)
            agent.next_route = None
            if onward is not None:
                agent.route = onward
                agent.current_edge = onward.edges[0]
                agent.route_index = 0
                agent.progress = 0.0
                agent.next_edge_hint = None
                self._publish_route(agent)
                return

        agent.current_edge = self._take_wander_edge(agent)
        agent.progress = 0.0

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------
    def set_destination(self, agent: Agent, point: LatLon) -> RouteStatus:
        """Route ``agent`` to the graph node nearest ``point``.

        On success the agent is snapped to the start of the route's first
        edge. Reaching the target node from where the agent already is
        counts as success and leaves it wandering.
        """
        start = self.network.find_nearest_node(agent.position)
        goal = self.network.find_nearest_node(point)
        if start.degree == 0 or goal.degree == 0:
            logger.info("Start/end node has no connections for %s", agent.id)
            return RouteStatus.NO_CONNECTIONS

        route = find_route(
            self.network, start.id, goal.id,
            max_expansions=self.config.route_search_budget,
        )
        if route is None:
            logger.info("No route found for %s to %s", agent.id, goal.id)
            return RouteStatus.NO_ROUTE
        agent.next_route = None
        if not route.edges:
            agent.route = None
            agent.route_index = -1
            return RouteStatus.OK

        agent.route = route
        agent.route_index = 0
        agent.current_edge = route.edges[0]
        agent.progress = 0.0
        agent.position = route.edges[0].start_coords
        agent.bearing = route.edges[0].bearing
        agent.next_edge_hint = None
        self._publish_route(agent)
        return RouteStatus.OK

    def assign_random_destination(self, agent: Agent, attempts: int = 5) -> bool:
        """Route from the end of the current edge to a random node.

        The agent keeps its current edge and joins the route when it
        reaches that edge's end. Retries with other nodes when a pick is
        unreachable or is the start itself.
        """
        route = self._random_route(agent.current_edge.end, attempts)
        if route is None:
            return False
        agent.route = route
        agent.route_index = -1
        agent.next_edge_hint = None
        agent.next_route = None
        self._publish_route(agent)
        return True

    def _random_route(self, start: str, attempts: int = 5) -> Route | None:
        for _ in range(attempts):
            goal = self.network.random_node(self.rng)
            if goal.id == start or goal.degree == 0:
                continue
            route = find_route(
                self.network, start, goal.id,
                max_expansions=self.config.route_search_budget,
            )
            if route:
                return route
        return None

    def _publish_route(self, agent: Agent) -> None:
        if self.events is not None:
            self.events.publish("route", agent.route_payload())
