"""
Simulation lifecycle: options, roster, scheduling and snapshots.

The orchestrator owns every mutable piece of the simulation and exposes
the control surface used by the API layer: start / stop / reset,
option updates, explicit routing, heat-zone regeneration and queries.

Scheduling uses one repeating scheduler task per agent plus two global
tasks: a housekeeping tick (location sync and stuck-agent detection) and
the periodic heat-zone refresh.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

import numpy as np

from roadsim.core.agent import Agent
from roadsim.core.config import SimulationConfig
from roadsim.core.events import EventBus
from roadsim.core.geo import LatLon
from roadsim.core.heat_zones import HeatZoneEngine
from roadsim.core.kinematics import AgentSimulator, RouteStatus
from roadsim.core.road_network import EmptyNetworkError, RoadNetwork
from roadsim.core.scheduler import Scheduler, TaskHandle
from roadsim.fleet.client import DemoFleetClient, FleetClient, LocationReport

logger = logging.getLogger(__name__)


class SimulationOrchestrator:
    """Owns agents and drives their ticks.

    Parameters
    ----------
    network : RoadNetwork
        Road graph; must contain at least one node.
    client : FleetClient | None
        Default roster/sync provider. ``None`` uses a demo roster.
    adapter : FleetClient | None
        Alternative provider selected by ``config.use_adapter``.
    config : SimulationConfig | None
        Initial options.
    scheduler : Scheduler | None
        Task scheduler; pass one with a ManualClock for virtual time.
    events : EventBus | None
        Outbound event queue.
    """

    def __init__(
        self,
        network: RoadNetwork,
        client: FleetClient | None = None,
        adapter: FleetClient | None = None,
        config: SimulationConfig | None = None,
        scheduler: Scheduler | None = None,
        events: EventBus | None = None,
        load_roster: bool = True,
    ) -> None:
        if len(network) == 0:
            raise EmptyNetworkError("Cannot simulate on an empty road network")

        self.network = network
        self.config = (config or SimulationConfig()).validate()
        self.rng = np.random.default_rng(self.config.random_seed)
        self.events = events or EventBus()
        self.scheduler = scheduler or Scheduler()
        self.heat_zones = HeatZoneEngine(rng=self.rng)
        self.simulator = AgentSimulator(
            network, self.heat_zones, self.config, rng=self.rng, events=self.events,
        )
        self.client = client or DemoFleetClient(seed=self.config.random_seed)
        self.adapter = adapter

        self.agents: dict[str, Agent] = {}
        self._agent_tasks: dict[str, TaskHandle] = {}
        self._housekeeping_task: TaskHandle | None = None
        self._zone_task: TaskHandle | None = None
        self._running = False
        # Serializes agent mutation between scheduler ticks and API calls.
        self._lock = threading.RLock()

        if load_roster:
            self.load_roster()

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    @property
    def active_client(self) -> FleetClient:
        if self.config.use_adapter and self.adapter is not None:
            return self.adapter
        return self.client

    def load_roster(self, replace: bool = False) -> int:
        """Fetch the roster and create one agent per entry.

        With ``replace`` the current agents are dropped, but only once a
        roster has been fetched. A failing roster service leaves the
        simulation with whatever agents it already has. Returns the number
        of agents created.
        """
        client = self.active_client
        try:
            entries = client.fetch_roster()
        except Exception:
            logger.warning(
                "Failed to fetch roster from %s", client.provider, exc_info=True,
            )
            return 0

        created = 0
        with self._lock:
            if replace:
                self.agents.clear()
            for entry in entries:
                if entry.id in self.agents:
                    continue
                agent = self.simulator.spawn(
                    entry.id, entry.name, entry.status, position=entry.position,
                )
                self.agents[agent.id] = agent
                self.simulator.assign_random_destination(agent)
                created += 1
        logger.info("Loaded %d agents from %s", created, client.provider)
        return created

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    def start(self, options: Mapping[str, Any] | None = None) -> None:
        """Merge ``options`` and (re)arm all scheduled tasks."""
        if options:
            self._apply_options(options)
        self._arm_tasks()
        self._running = True
        if self.config.heat_zone_refresh_ms > 0 and not self.heat_zones.zones:
            self.regenerate_heat_zones()
        self.scheduler.start()
        logger.info(
            "Simulation started: %d agents every %d ms",
            len(self.agents), self.config.update_interval_ms,
        )
        self._publish_status()

    def stop(self) -> None:
        """Cancel every scheduled task. Agent state is kept.

        Returns immediately; a tick already executing finishes with the
        options it started with.
        """
        self._cancel_tasks()
        was_running = self._running
        self._running = False
        if was_running:
            logger.info("Simulation stopped")
        self._publish_status()

    def reset(self) -> None:
        """Stop and replace all agents and routes from a fresh roster.

        The current agents are kept when the roster cannot be fetched.
        """
        self._cancel_tasks()
        self._running = False
        self.load_roster(replace=True)
        logger.info("Simulation reset")
        self._publish_status()

    def close(self) -> None:
        self._cancel_tasks()
        self._running = False
        self.scheduler.close()

    def _arm_tasks(self) -> None:
        self._cancel_tasks()
        cfg = self.config
        # Stuck detection counts from the moment tasks are armed.
        now = self.scheduler.now_ms()
        with self._lock:
            for agent in self.agents.values():
                agent.last_tick_ms = now
        for agent_id in list(self.agents):
            self._agent_tasks[agent_id] = self.scheduler.schedule_repeating(
                f"agent:{agent_id}",
                cfg.update_interval_ms,
                lambda elapsed, aid=agent_id: self._tick_agent(aid, elapsed),
            )
        if cfg.update_server or cfg.stuck_timeout_ms > 0:
            interval = cfg.sync_interval_ms
            if not cfg.update_server:
                interval = cfg.stuck_timeout_ms
            self._housekeeping_task = self.scheduler.schedule_repeating(
                "housekeeping", interval, self._housekeeping_tick,
            )
        if cfg.heat_zone_refresh_ms > 0:
            self._zone_task = self.scheduler.schedule_repeating(
                "heatzones", cfg.heat_zone_refresh_ms,
                lambda elapsed: self.regenerate_heat_zones(),
            )

    def _cancel_tasks(self) -> None:
        for handle in list(self._agent_tasks.values()):
            self.scheduler.cancel(handle)
        self._agent_tasks.clear()
        self.scheduler.cancel(self._housekeeping_task)
        self.scheduler.cancel(self._zone_task)
        self._housekeeping_task = None
        self._zone_task = None

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def _tick_agent(self, agent_id: str, elapsed_ms: float) -> None:
        with self._lock:
            agent = self.agents.get(agent_id)
            if agent is None:
                return
            self.simulator.tick(agent, elapsed_ms, now_ms=self.scheduler.now_ms())
            snapshot = agent.snapshot()
        self.events.publish("vehicle", snapshot)

    def _housekeeping_tick(self, elapsed_ms: float) -> None:
        if self.config.stuck_timeout_ms > 0:
            self.reset_stuck_agents()
        if self.config.update_server:
            self.sync_locations()

    def reset_stuck_agents(self) -> list[str]:
        """Reset agents that have not ticked within ``stuck_timeout_ms``."""
        timeout = self.config.stuck_timeout_ms
        now = self.scheduler.now_ms()
        reset: list[str] = []
        with self._lock:
            for agent in self.agents.values():
                last = agent.last_tick_ms
                if last is not None and now - last > timeout:
                    self.simulator.reset_agent(agent)
                    agent.last_tick_ms = now
                    reset.append(agent.id)
        for agent_id in reset:
            logger.warning("Agent %s was stuck and has been reset", agent_id)
        return reset

    def sync_locations(self) -> bool:
        """Push every agent's position to the active fleet client.

        Failures are logged and swallowed; the next cycle retries with
        fresh positions.
        """
        received_at = datetime.now(timezone.utc).isoformat()
        with self._lock:
            reports = [
                LocationReport(
                    id=a.id,
                    latitude=a.position[0],
                    longitude=a.position[1],
                    position_received_at=received_at,
                    position_origin_ref_id=self.config.position_origin_ref_id,
                )
                for a in self.agents.values()
            ]
        client = self.active_client
        try:
            client.push_locations(reports)
        except Exception:
            logger.warning(
                "Failed to sync %d locations to %s", len(reports), client.provider,
                exc_info=True,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def get_options(self) -> SimulationConfig:
        return self.config

    def set_options(self, options: Mapping[str, Any]) -> SimulationConfig:
        """Merge a partial option dict into the live configuration.

        Raises ConfigError for invalid values. Switching the roster source
        (``use_adapter``) stops and resets the simulation; interval
        changes re-arm running tasks; everything else applies on the next
        tick.
        """
        previous = self.config
        self._apply_options(options)
        changed = previous.diff(self.config)

        if "use_adapter" in changed:
            self.reset()
        elif self._running and changed.keys() & {
            "update_interval_ms", "sync_interval_ms", "update_server",
            "stuck_timeout_ms", "heat_zone_refresh_ms",
        }:
            self._arm_tasks()
        return self.config

    def _apply_options(self, options: Mapping[str, Any]) -> None:
        new = self.config.merged(options)
        self.config = new
        self.simulator.config = new
        self.events.publish("options", new.to_dict())

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def set_destination(self, agent_id: str, point: LatLon) -> RouteStatus:
        """Route one agent. Raises KeyError for an unknown agent."""
        with self._lock:
            agent = self.agents.get(agent_id)
            if agent is None:
                raise KeyError(f"Vehicle '{agent_id}' not found")
            return self.simulator.set_destination(agent, point)

    def set_destinations(
        self, requests: Iterable[tuple[str, LatLon]],
    ) -> dict[str, RouteStatus]:
        requests = list(requests)
        missing = [aid for aid, _ in requests if aid not in self.agents]
        if missing:
            raise KeyError(f"Vehicle(s) not found: {', '.join(missing)}")
        return {aid: self.set_destination(aid, point) for aid, point in requests}

    def routes(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                a.route_payload() for a in self.agents.values() if a.route is not None
            ]

    # ------------------------------------------------------------------
    # Heat zones
    # ------------------------------------------------------------------

    def regenerate_heat_zones(self, **overrides: Any) -> list[dict[str, Any]]:
        """Replace the active heat zones and publish them."""
        options = {**self.config.heat_zone_options, **overrides}
        zones = self.heat_zones.generate(self.network, **options)
        logger.info("Generated %d heat zones", len(zones))
        features = self.heat_zones.to_features()
        self.events.publish("heatzones", features)
        return features

    def heat_zone_export(self, as_paths: bool = False) -> list[Any]:
        if as_paths:
            return self.heat_zones.to_paths()
        return self.heat_zones.to_features()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self, agent_id: str) -> dict[str, Any]:
        with self._lock:
            agent = self.agents.get(agent_id)
            if agent is None:
                raise KeyError(f"Vehicle '{agent_id}' not found")
            return agent.snapshot()

    def snapshots(self) -> list[dict[str, Any]]:
        with self._lock:
            return [a.snapshot() for a in self.agents.values()]

    def status(self) -> dict[str, Any]:
        return {
            "interval": self.config.update_interval_ms,
            "running": self._running,
            "vehicle_count": len(self.agents),
            "vehicles": self.snapshots(),
        }

    def _publish_status(self) -> None:
        self.events.publish("status", self.status())
