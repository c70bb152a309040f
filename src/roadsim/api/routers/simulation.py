"""Simulation lifecycle, options and routing endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from roadsim.api.schemas import (
    DirectionsRequest,
    DirectionsResponse,
    OptionsUpdate,
    StartRequest,
    StatusResponse,
)
from roadsim.core.config import ConfigError

router = APIRouter()


@router.get("/status", response_model=StatusResponse)
def get_status(request: Request):
    return request.app.state.orchestrator.status()


@router.post("/start", response_model=StatusResponse)
def start_simulation(request: Request, req: StartRequest | None = None):
    orch = request.app.state.orchestrator
    options = None
    if req is not None and req.options is not None:
        options = req.options.model_dump(exclude_unset=True)
    try:
        orch.start(options)
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return orch.status()


@router.post("/stop", response_model=StatusResponse)
def stop_simulation(request: Request):
    orch = request.app.state.orchestrator
    orch.stop()
    return orch.status()


@router.post("/reset", response_model=StatusResponse)
def reset_simulation(request: Request):
    orch = request.app.state.orchestrator
    orch.reset()
    return orch.status()


@router.get("/options")
def get_options(request: Request) -> dict[str, Any]:
    return request.app.state.orchestrator.get_options().to_dict()


@router.post("/options")
def update_options(req: OptionsUpdate, request: Request) -> dict[str, Any]:
    orch = request.app.state.orchestrator
    try:
        config = orch.set_options(req.model_dump(exclude_unset=True))
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return config.to_dict()


@router.post("/directions", response_model=DirectionsResponse)
def set_directions(req: DirectionsRequest, request: Request):
    """Route one or more vehicles to the same destination."""
    orch = request.app.state.orchestrator
    point = req.destination.as_tuple()
    try:
        results = orch.set_destinations((vid, point) for vid in req.vehicle_ids)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=e.args[0])
    return {"results": {vid: status.value for vid, status in results.items()}}


@router.get("/routes")
def get_routes(request: Request) -> list[dict[str, Any]]:
    return request.app.state.orchestrator.routes()
