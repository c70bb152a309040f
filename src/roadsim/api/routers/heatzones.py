"""Heat-zone endpoints."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Query, Request

from roadsim.api.schemas import GenerateHeatZonesRequest

router = APIRouter()


@router.get("/")
def get_heat_zones(
    request: Request,
    format: Literal["features", "paths"] = Query("features"),
) -> list[Any]:
    """Active zones as GeoJSON polygon features or encoded polylines."""
    return request.app.state.orchestrator.heat_zone_export(as_paths=format == "paths")


@router.post("/generate")
def generate_heat_zones(
    request: Request, req: GenerateHeatZonesRequest | None = None,
) -> list[dict[str, Any]]:
    req = req or GenerateHeatZonesRequest()
    if req.min_radius > req.max_radius or req.min_intensity > req.max_intensity:
        raise HTTPException(status_code=422, detail="min must not exceed max")
    try:
        return request.app.state.orchestrator.regenerate_heat_zones(
            count=req.count,
            radius_range=(req.min_radius, req.max_radius),
            intensity_range=(req.min_intensity, req.max_intensity),
            center_mode=req.center_mode,
            scale_by_connectivity=req.scale_by_connectivity,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
