"""
Pydantic models for API request/response validation.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any


# === Shared ===

class Point(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lon)


# === Simulation ===

# Options whose live value may be None; explicit nulls clear them.
NULLABLE_OPTIONS = frozenset({"position_origin_ref_id", "route_search_budget"})

class OptionsUpdate(BaseModel):
    """Partial option update; omitted fields keep their current value.

    Only the options in ``NULLABLE_OPTIONS`` accept an explicit null.
    """

    model_config = ConfigDict(extra="forbid")

    update_interval_ms: int | None = None
    min_speed: float | None = None
    max_speed: float | None = None
    speed_variation: float | None = None
    acceleration: float | None = None
    deceleration: float | None = None
    turn_threshold: float | None = None
    heat_zone_speed_factor: float | None = None
    update_server: bool | None = None
    sync_interval_ms: int | None = None
    fleet_timeout_s: float | None = None
    use_adapter: bool | None = None
    position_origin_ref_id: str | None = None
    heat_zone_refresh_ms: int | None = None
    heat_zone_count: int | None = None
    heat_zone_min_radius: float | None = None
    heat_zone_max_radius: float | None = None
    heat_zone_min_intensity: float | None = None
    heat_zone_max_intensity: float | None = None
    heat_zone_center_mode: str | None = None
    heat_zone_scale_by_connectivity: bool | None = None
    stuck_timeout_ms: int | None = None
    route_search_budget: int | None = None

    @model_validator(mode="after")
    def _only_optional_fields_cleared(self) -> OptionsUpdate:
        for name in self.model_fields_set - NULLABLE_OPTIONS:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class StartRequest(BaseModel):
    options: OptionsUpdate | None = None


class StatusResponse(BaseModel):
    interval: int
    running: bool
    vehicle_count: int
    vehicles: list[dict[str, Any]]


class DirectionsRequest(BaseModel):
    vehicle_ids: list[str] = Field(min_length=1)
    destination: Point


class DirectionsResponse(BaseModel):
    results: dict[str, str]


# === Network ===

class SearchRequest(BaseModel):
    query: str = Field(min_length=1)


class NearestNodeResponse(BaseModel):
    id: str
    coordinates: list[float]
    connections: list[str]


class NearestEdgeResponse(BaseModel):
    edge: dict[str, Any]
    point: list[float]
    fraction: float
    distance: float


# === Heat zones ===

class GenerateHeatZonesRequest(BaseModel):
    count: int = Field(default=16, ge=0, le=500)
    min_radius: float = Field(default=0.3, gt=0)
    max_radius: float = Field(default=1.0, gt=0)
    min_intensity: float = Field(default=0.3, ge=0, le=1)
    max_intensity: float = Field(default=1.0, ge=0, le=1)
    center_mode: str = "bounds"
    scale_by_connectivity: bool = False
