"""
A* shortest-path search over a :class:`RoadNetwork`.

Edge cost and heuristic are both haversine kilometres, so the heuristic
is admissible and consistent and the first time the goal is popped its
path is optimal.
"""

from __future__ import annotations

import heapq

from roadsim.core.geo import haversine_km
from roadsim.core.road_network import Edge, RoadNetwork, Route


def find_route(
    network: RoadNetwork,
    start: str,
    goal: str,
    max_expansions: int | None = None,
) -> Route | None:
    """Find the shortest route between two nodes.

    Args:
        network: Graph to search.
        start: Start node id.
        goal: Goal node id.
        max_expansions: Optional search budget. When more nodes than this
            are expanded the search gives up and returns None.

    Returns:
        A Route (empty when ``start == goal``), or None when the goal is
        unreachable from ``start`` or the budget ran out.
    """
    if start not in network.nodes or goal not in network.nodes:
        return None
    if start == goal:
        return Route(edges=(), distance=0.0)

    goal_coords = network.nodes[goal].coordinates

    def heuristic(node_id: str) -> float:
        return haversine_km(network.nodes[node_id].coordinates, goal_coords)

    # Priority queue: (f_score, counter, node_id)
    # counter keeps pops deterministic for equal f-scores
    counter = 0
    open_set: list[tuple[float, int, str]] = [(heuristic(start), counter, start)]
    came_from: dict[str, Edge] = {}
    g_score: dict[str, float] = {start: 0.0}
    closed: set[str] = set()
    expansions = 0

    while open_set:
        _, _, current = heapq.heappop(open_set)
        if current in closed:
            continue  # stale entry superseded by a cheaper push

        if current == goal:
            return _reconstruct(came_from, start, goal)

        closed.add(current)
        expansions += 1
        if max_expansions is not None and expansions > max_expansions:
            return None

        current_g = g_score[current]
        for edge in network.outgoing(current):
            if edge.end in closed:
                continue
            tentative = current_g + edge.distance
            if tentative < g_score.get(edge.end, float("inf")):
                came_from[edge.end] = edge
                g_score[edge.end] = tentative
                counter += 1
                heapq.heappush(
                    open_set, (tentative + heuristic(edge.end), counter, edge.end),
                )

    return None


def _reconstruct(came_from: dict[str, Edge], start: str, goal: str) -> Route:
    edges: list[Edge] = []
    total = 0.0
    current = goal
    while current != start:
        edge = came_from[current]
        edges.append(edge)
        total += edge.distance
        current = edge.start
    edges.reverse()
    return Route(edges=tuple(edges), distance=total)
