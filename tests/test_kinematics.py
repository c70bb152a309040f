"""
Tests for the per-agent movement model.

Covers speed integration (turn braking, dead-end braking, heat-zone
slowdown, bounds), position integration across multiple edges, wandering
edge choice and explicit routing outcomes.
"""

import pytest
import numpy as np

from conftest import GRID_SPACING, chain_geojson, collection, grid_geojson, line_feature
from roadsim.core.agent import Agent, AgentStatus
from roadsim.core.config import SimulationConfig
from roadsim.core.events import EventBus
from roadsim.core.geo import interpolate
from roadsim.core.heat_zones import HeatZoneEngine
from roadsim.core.kinematics import MS_PER_HOUR, AgentSimulator, RouteStatus
from roadsim.core.road_network import RoadNetwork, node_key

S = GRID_SPACING


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_sim(network, events=None, seed=0, **overrides):
    rng = np.random.default_rng(seed)
    config = SimulationConfig(**overrides)
    return AgentSimulator(network, HeatZoneEngine(rng=rng), config, rng=rng, events=events)


def _make_agent(network, start, end, speed=20.0):
    edge = network.edges[f"{node_key(*start)}-{node_key(*end)}"]
    return Agent(
        id="a1", name="V1", status=AgentStatus.ONLINE,
        current_edge=edge, speed=speed, visited_edges={edge.id},
    )


# ---------------------------------------------------------------------------
# Speed
# ---------------------------------------------------------------------------


class TestSpeed:
    def test_speed_stays_within_bounds(self, grid_network):
        sim = _make_sim(grid_network, min_speed=15, max_speed=45, speed_variation=0.3)
        agents = [sim.spawn(str(i), f"V{i}") for i in range(5)]
        for _ in range(200):
            for agent in agents:
                sim.tick(agent, 5000)
                assert 15 <= agent.speed <= 45

    def test_monotone_acceleration_on_straight_road(self, chain_network):
        sim = _make_sim(
            chain_network, speed_variation=0.0, acceleration=3600.0,
            min_speed=20, max_speed=60,
        )
        agent = _make_agent(chain_network, (0.0, 0.0), (0.0, 0.001))
        speeds = []
        for _ in range(30):
            sim.tick(agent, 1000)
            speeds.append(agent.speed)
        assert all(b >= a for a, b in zip(speeds, speeds[1:]))
        assert speeds[-1] == pytest.approx(50.0)

    def test_speed_capped_at_max(self, chain_network):
        sim = _make_sim(chain_network, speed_variation=0.0, acceleration=360_000.0)
        agent = _make_agent(chain_network, (0.0, 0.0), (0.0, 0.001))
        sim.tick(agent, 1000)
        assert agent.speed == 60.0

    def test_brakes_before_sharp_turn(self, grid_network):
        sim = _make_sim(grid_network, speed_variation=0.0, deceleration=3600.0)
        # Row 0 eastbound into the corner; the only way on is north.
        agent = _make_agent(grid_network, (0.0, S), (0.0, 2 * S), speed=50.0)
        sim.tick(agent, 1000)
        assert agent.speed == pytest.approx(49.0)

    def test_brakes_before_dead_end(self, ab_network):
        sim = _make_sim(ab_network, speed_variation=0.0, deceleration=3600.0)
        agent = _make_agent(ab_network, (0.0, 0.0), (0.0, 1.0), speed=50.0)
        sim.tick(agent, 1000)
        assert agent.speed == pytest.approx(49.0)

    def test_heat_zone_slows_agent_before_dead_end(self):
        network = RoadNetwork.from_geojson(collection(
            line_feature([(0.0, 0.0), (0.001, 0.0)]),
        ))
        sim = _make_sim(
            network, speed_variation=0.0, deceleration=0.0,
            min_speed=5, heat_zone_speed_factor=0.5,
        )
        sim.heat_zones.generate(network, count=1, radius_range=(50.0, 50.0))
        agent = _make_agent(network, (0.0, 0.0), (0.0, 0.001), speed=40.0)
        assert sim.next_edge(agent).is_u_turn
        sim.update_speed(agent, 1000)
        assert agent.flags.in_heat_zone
        assert agent.speed == pytest.approx(20.0)

    def test_heat_zone_slows_agent(self, chain_network):
        sim = _make_sim(
            chain_network, speed_variation=0.0, acceleration=0.0,
            min_speed=5, heat_zone_speed_factor=0.5,
        )
        sim.heat_zones.generate(chain_network, count=1, radius_range=(50.0, 50.0))
        agent = _make_agent(chain_network, (0.0, 0.0), (0.0, 0.001), speed=40.0)
        sim.tick(agent, 1000)
        assert agent.flags.in_heat_zone
        assert agent.speed == pytest.approx(20.0)

    def test_heat_zone_flag_clears_outside(self, chain_network):
        sim = _make_sim(chain_network)
        agent = _make_agent(chain_network, (0.0, 0.0), (0.0, 0.001))
        agent.flags.in_heat_zone = True
        sim.tick(agent, 1000)
        assert not agent.flags.in_heat_zone


# ---------------------------------------------------------------------------
# Position
# ---------------------------------------------------------------------------


class TestPosition:
    def test_distance_accounting_across_edges(self):
        network = RoadNetwork.from_geojson(chain_geojson(points=200))
        sim = _make_sim(network)
        agent = _make_agent(network, (0.0, 0.0), (0.0, 0.001), speed=60.0)
        travelled = sim.update_position(agent, 60_000)
        assert travelled == pytest.approx(1.0)
        # ~0.111 km edges: the agent crossed several of them
        assert agent.current_edge.start != node_key(0.0, 0.0)
        expected_lon = 1.0 / 111.195
        assert agent.position[1] == pytest.approx(expected_lon, rel=1e-3)

    def test_position_matches_progress(self, grid_network):
        sim = _make_sim(grid_network, seed=3)
        agent = sim.spawn("a", "A")
        for _ in range(50):
            sim.tick(agent, 5000)
            edge = agent.current_edge
            assert 0.0 <= agent.progress <= 1.0
            expected = interpolate(edge.start_coords, edge.end_coords, agent.progress)
            assert agent.position == pytest.approx(expected)
            assert agent.bearing == edge.bearing

    def test_travelled_equals_speed_times_time(self, grid_network):
        sim = _make_sim(grid_network, seed=4)
        agent = sim.spawn("a", "A")
        for _ in range(20):
            travelled = sim.tick(agent, 5000)
            assert travelled == pytest.approx(agent.speed * 5000 / MS_PER_HOUR)

    def test_single_segment_shuttles_back_and_forth(self):
        network = RoadNetwork.from_geojson(collection(
            line_feature([(0.0, 0.0), (0.001, 0.0)]),
        ))
        sim = _make_sim(network, speed_variation=0.0)
        agent = _make_agent(network, (0.0, 0.0), (0.0, 0.001))
        ends = set()
        for _ in range(10):
            travelled = sim.tick(agent, 20_000)
            assert travelled == pytest.approx(20.0 * 20_000 / MS_PER_HOUR)
            assert 0.0 <= agent.progress <= 1.0
            ends.add(agent.current_edge.end)
        assert ends == {node_key(0.0, 0.0), node_key(0.0, 0.001)}

    def test_u_turn_at_dead_end(self, chain_network):
        sim = _make_sim(chain_network)
        last = chain_network.edges[f"{node_key(0.0, 48 * 0.001)}-{node_key(0.0, 49 * 0.001)}"]
        agent = Agent(id="a", name="A", status=AgentStatus.ONLINE,
                      current_edge=last, speed=20.0, progress=0.9)
        sim.update_position(agent, 5000)
        assert agent.current_edge.start == node_key(0.0, 49 * 0.001)
        assert agent.current_edge.end == node_key(0.0, 48 * 0.001)


# ---------------------------------------------------------------------------
# Wandering
# ---------------------------------------------------------------------------


class TestWandering:
    def test_prefers_unvisited_edges(self, grid_network):
        sim = _make_sim(grid_network)
        agent = _make_agent(grid_network, (S, 0.0), (S, S))
        center = node_key(S, S)
        agent.visited_edges |= {
            f"{center}-{node_key(S, 2 * S)}",
            f"{center}-{node_key(2 * S, S)}",
        }
        for _ in range(10):
            agent.next_edge_hint = None
            assert sim.next_edge(agent).end == node_key(0.0, S)

    def test_falls_back_to_any_edge_when_all_visited(self, grid_network):
        sim = _make_sim(grid_network)
        agent = _make_agent(grid_network, (S, 0.0), (S, S))
        candidates = grid_network.connected_edges(agent.current_edge)
        agent.visited_edges |= {e.id for e in candidates}
        seen = set()
        for _ in range(50):
            agent.next_edge_hint = None
            seen.add(sim.next_edge(agent).id)
        assert seen == {e.id for e in candidates}

    def test_lookahead_is_the_edge_taken(self, grid_network):
        sim = _make_sim(grid_network, seed=11)
        agent = _make_agent(grid_network, (S, 0.0), (S, S), speed=60.0)
        planned = sim.next_edge(agent)
        sim.update_position(agent, 90_000)  # 1.5 km: onto the next edge only
        assert agent.current_edge.id == planned.id
        assert planned.id in agent.visited_edges

    def test_lookahead_at_route_end_is_the_edge_taken(self, grid_network):
        sim = _make_sim(grid_network, seed=11)
        agent = _make_agent(grid_network, (0.0, 0.0), (0.0, S), speed=60.0)
        assert sim.set_destination(agent, (0.0, S)) is RouteStatus.OK
        assert len(agent.route) == 1
        planned = sim.next_edge(agent)
        onward = agent.next_route
        assert onward is not None and onward.edges[0] is planned

        sim.update_position(agent, 90_000)  # 1.5 km: onto the next edge only
        assert agent.current_edge.id == planned.id
        assert agent.route is onward
        assert agent.route_index == 0
        assert agent.next_route is None


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


class TestRouting:
    def test_set_destination_installs_route(self, grid_network):
        bus = EventBus()
        sub = bus.subscribe()
        sim = _make_sim(grid_network, events=bus)
        agent = _make_agent(grid_network, (0.0, 0.0), (0.0, S))
        status = sim.set_destination(agent, (2 * S, 2 * S))
        assert status is RouteStatus.OK
        assert agent.route.end == node_key(2 * S, 2 * S)
        assert agent.current_edge == agent.route.edges[0]
        assert agent.position == agent.route.edges[0].start_coords
        assert agent.is_following
        assert [e.type for e in sub.drain()] == ["route"]

    def test_destination_at_current_node_leaves_agent_wandering(self, grid_network):
        sim = _make_sim(grid_network)
        agent = _make_agent(grid_network, (0.0, 0.0), (0.0, S))
        assert sim.set_destination(agent, (0.0, 0.0)) is RouteStatus.OK
        assert agent.route is None

    def test_unreachable_destination(self):
        network = RoadNetwork.from_geojson(collection(
            line_feature([(0, 0), (0.01, 0)]),
            line_feature([(1, 1), (1.01, 1)]),
        ))
        sim = _make_sim(network)
        agent = _make_agent(network, (0.0, 0.0), (0.0, 0.01))
        assert sim.set_destination(agent, (1.0, 1.0)) is RouteStatus.NO_ROUTE
        assert agent.route is None

    def test_destination_without_connections(self):
        data = grid_geojson()
        data["features"].append(line_feature([(1.0, 1.0), (1.0, 1.0)], name="Stub"))
        network = RoadNetwork.from_geojson(data)
        sim = _make_sim(network)
        agent = _make_agent(network, (0.0, 0.0), (0.0, S))
        assert sim.set_destination(agent, (1.0, 1.0)) is RouteStatus.NO_CONNECTIONS

    def test_route_followed_to_destination_then_rerouted(self, grid_network):
        bus = EventBus()
        sub = bus.subscribe()
        sim = _make_sim(grid_network, events=bus, speed_variation=0.0)
        agent = _make_agent(grid_network, (0.0, 0.0), (0.0, S), speed=60.0)
        sim.set_destination(agent, (2 * S, 2 * S))
        sub.drain()
        for _ in range(10):
            sim.tick(agent, 60_000)
        types = [e.type for e in sub.drain()]
        assert "destination" in types
        assert types[types.index("destination") + 1] == "route"

    def test_route_edges_followed_in_order(self, grid_network):
        sim = _make_sim(grid_network, speed_variation=0.0)
        agent = _make_agent(grid_network, (0.0, 0.0), (0.0, S), speed=20.0)
        sim.set_destination(agent, (2 * S, 2 * S))
        route = agent.route
        visited = [agent.current_edge.id]
        for _ in range(200):
            sim.tick(agent, 5000)
            if agent.route is not route:
                break
            if agent.current_edge.id != visited[-1]:
                visited.append(agent.current_edge.id)
        assert visited == [e.id for e in route.edges]

    def test_random_destination_starts_at_current_edge_end(self, grid_network):
        sim = _make_sim(grid_network, seed=5)
        agent = _make_agent(grid_network, (0.0, 0.0), (0.0, S))
        assert sim.assign_random_destination(agent)
        assert agent.route.start == agent.current_edge.end
        assert agent.route_index == -1

    def test_spawn_at_position(self, ab_network):
        sim = _make_sim(ab_network)
        agent = sim.spawn("a", "A", position=(0.0, 0.5))
        assert agent.progress == pytest.approx(0.5, abs=1e-3)
        assert agent.position[1] == pytest.approx(0.5, abs=1e-3)
        assert agent.speed == sim.config.min_speed

    def test_reset_agent(self, grid_network):
        sim = _make_sim(grid_network)
        agent = _make_agent(grid_network, (0.0, 0.0), (0.0, S))
        sim.set_destination(agent, (2 * S, 2 * S))
        agent.progress = 0.7
        sim.reset_agent(agent)
        assert agent.route is None
        assert agent.progress == 0.0
        assert agent.visited_edges == {agent.current_edge.id}
