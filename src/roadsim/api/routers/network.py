"""Road network query endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from roadsim.api.schemas import (
    NearestEdgeResponse,
    NearestNodeResponse,
    Point,
    SearchRequest,
)

router = APIRouter()


@router.get("/")
def get_network(request: Request) -> dict[str, Any]:
    """The GeoJSON FeatureCollection the network was built from."""
    return request.app.state.orchestrator.network.to_geojson()


@router.get("/roads")
def list_roads(request: Request) -> list[dict[str, Any]]:
    return request.app.state.orchestrator.network.all_roads()


@router.post("/search")
def search_roads(req: SearchRequest, request: Request) -> list[dict[str, Any]]:
    return request.app.state.orchestrator.network.search_by_name(req.query)


@router.post("/nearest-node", response_model=NearestNodeResponse)
def nearest_node(req: Point, request: Request):
    node = request.app.state.orchestrator.network.find_nearest_node(req.as_tuple())
    return {
        "id": node.id,
        "coordinates": list(node.coordinates),
        "connections": list(node.connections),
    }


@router.post("/nearest-edge", response_model=NearestEdgeResponse)
def nearest_edge(req: Point, request: Request):
    nearest = request.app.state.orchestrator.network.find_nearest_edge(req.as_tuple())
    return {
        "edge": nearest.edge.to_dict(),
        "point": list(nearest.point),
        "fraction": nearest.fraction,
        "distance": nearest.distance,
    }
