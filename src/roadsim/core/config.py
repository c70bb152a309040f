"""
Master configuration for the road fleet simulator.

Every tunable of the movement model, the scheduler and the heat-zone
generator lives here. Option updates arrive as partial dicts and are
merged into a fresh, validated copy; a config object is never mutated
in place while ticks may be reading it.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from typing import Any, Mapping


class ConfigError(ValueError):
    """Raised for unknown option keys or inconsistent values."""


@dataclass
class SimulationConfig:
    """Simulation options. Use ``merged()`` to apply partial updates."""

    # === Scheduling ===
    update_interval_ms: int = 5000

    # === Speed model (km/h, km/h per hour) ===
    min_speed: float = 20.0
    max_speed: float = 60.0
    speed_variation: float = 0.1      # symmetric multiplicative jitter amplitude
    acceleration: float = 5.0
    deceleration: float = 7.0
    turn_threshold: float = 30.0      # degrees; larger turns brake
    heat_zone_speed_factor: float = 0.5

    # === External sync ===
    update_server: bool = False
    sync_interval_ms: int = 5000
    fleet_timeout_s: float = 5.0
    use_adapter: bool = False
    position_origin_ref_id: str | None = None

    # === Heat zones ===
    heat_zone_refresh_ms: int = 300_000   # 0 disables periodic regeneration
    heat_zone_count: int = 16
    heat_zone_min_radius: float = 0.3     # km
    heat_zone_max_radius: float = 1.0
    heat_zone_min_intensity: float = 0.3
    heat_zone_max_intensity: float = 1.0
    heat_zone_center_mode: str = "bounds"  # 'bounds' | 'intersections'
    heat_zone_scale_by_connectivity: bool = False

    # === Robustness ===
    stuck_timeout_ms: int = 0             # 0 disables stuck detection
    route_search_budget: int | None = None

    random_seed: int | None = None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate(self) -> SimulationConfig:
        """Raise ConfigError if the options are inconsistent."""
        problems: list[str] = []
        if self.min_speed < 0:
            problems.append("min_speed must be >= 0")
        if self.min_speed > self.max_speed:
            problems.append("min_speed must not exceed max_speed")
        if self.acceleration < 0 or self.deceleration < 0:
            problems.append("acceleration and deceleration must be >= 0")
        if not 0 <= self.speed_variation < 1:
            problems.append("speed_variation must be in [0, 1)")
        if not 0 < self.heat_zone_speed_factor <= 1:
            problems.append("heat_zone_speed_factor must be in (0, 1]")
        if self.turn_threshold < 0:
            problems.append("turn_threshold must be >= 0")
        if self.update_interval_ms <= 0 or self.sync_interval_ms <= 0:
            problems.append("intervals must be positive")
        if self.heat_zone_refresh_ms < 0 or self.stuck_timeout_ms < 0:
            problems.append("heat_zone_refresh_ms and stuck_timeout_ms must be >= 0")
        if 0 < self.stuck_timeout_ms <= self.update_interval_ms:
            problems.append("stuck_timeout_ms must exceed update_interval_ms")
        if self.fleet_timeout_s <= 0:
            problems.append("fleet_timeout_s must be positive")
        if self.heat_zone_count < 0:
            problems.append("heat_zone_count must be >= 0")
        if not 0 < self.heat_zone_min_radius <= self.heat_zone_max_radius:
            problems.append("heat zone radius range is invalid")
        if not 0 <= self.heat_zone_min_intensity <= self.heat_zone_max_intensity <= 1:
            problems.append("heat zone intensity range is invalid")
        if self.heat_zone_center_mode not in ("bounds", "intersections"):
            problems.append("heat_zone_center_mode must be 'bounds' or 'intersections'")
        if self.route_search_budget is not None and self.route_search_budget <= 0:
            problems.append("route_search_budget must be positive")
        if problems:
            raise ConfigError("; ".join(problems))
        return self

    # ------------------------------------------------------------------
    # Merging & serialization
    # ------------------------------------------------------------------
    def merged(self, updates: Mapping[str, Any]) -> SimulationConfig:
        """Return a validated copy with ``updates`` applied."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(updates) - known)
        if unknown:
            raise ConfigError(f"Unknown option(s): {', '.join(unknown)}")
        d = self.to_dict()
        d.update(updates)
        return SimulationConfig.from_dict(d).validate()

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> SimulationConfig:
        return cls(**dict(d))

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, s: str) -> SimulationConfig:
        return cls.from_dict(json.loads(s))

    def diff(self, other: SimulationConfig) -> dict[str, tuple[Any, Any]]:
        """Return options that differ between two configs."""
        return {
            k: (v, getattr(other, k))
            for k, v in self.to_dict().items()
            if v != getattr(other, k)
        }

    @property
    def heat_zone_options(self) -> dict[str, Any]:
        """Keyword arguments for ``HeatZoneEngine.generate``."""
        return {
            "count": self.heat_zone_count,
            "radius_range": (self.heat_zone_min_radius, self.heat_zone_max_radius),
            "intensity_range": (
                self.heat_zone_min_intensity, self.heat_zone_max_intensity,
            ),
            "center_mode": self.heat_zone_center_mode,
            "scale_by_connectivity": self.heat_zone_scale_by_connectivity,
        }

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------
    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SimulationConfig:
        """Build a config from environment variables, falling back to defaults.

        Unset or empty variables keep the default value.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for var, (name, convert) in _ENV_VARS.items():
            raw = env.get(var)
            if raw is None or raw.strip() == "":
                continue
            try:
                overrides[name] = convert(raw)
            except ValueError:
                raise ConfigError(f"Invalid value for {var}: {raw!r}")
        return cls(**overrides).validate()


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _ms_to_s(raw: str) -> float:
    return float(raw) / 1000.0


_ENV_VARS: dict[str, tuple[str, Any]] = {
    "UPDATE_INTERVAL": ("update_interval_ms", int),
    "MIN_SPEED": ("min_speed", float),
    "MAX_SPEED": ("max_speed", float),
    "ACCELERATION": ("acceleration", float),
    "DECELERATION": ("deceleration", float),
    "TURN_THRESHOLD": ("turn_threshold", float),
    "SPEED_VARIATION": ("speed_variation", float),
    "HEATZONE_SPEED_FACTOR": ("heat_zone_speed_factor", float),
    "UPDATE_SERVER": ("update_server", _parse_bool),
    "UPDATE_SERVER_TIMEOUT": ("fleet_timeout_s", _ms_to_s),
    "SYNC_INTERVAL": ("sync_interval_ms", int),
    "USE_ADAPTER": ("use_adapter", _parse_bool),
    "HEATZONE_REFRESH": ("heat_zone_refresh_ms", int),
    "STUCK_TIMEOUT": ("stuck_timeout_ms", int),
    "POSITION_ORIGIN_REF_ID": ("position_origin_ref_id", str),
    "RANDOM_SEED": ("random_seed", int),
}
