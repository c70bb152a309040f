"""Vehicle snapshot endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

router = APIRouter()


@router.get("/")
def list_vehicles(request: Request) -> list[dict[str, Any]]:
    return request.app.state.orchestrator.snapshots()


@router.get("/{vehicle_id}")
def get_vehicle(vehicle_id: str, request: Request) -> dict[str, Any]:
    orch = request.app.state.orchestrator
    try:
        return orch.snapshot(vehicle_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Vehicle '{vehicle_id}' not found")
