"""
FastAPI application factory for the road fleet simulator.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from roadsim.api.routers import heatzones, simulation, vehicles
from roadsim.api.routers import network as network_routes
from roadsim.core.config import SimulationConfig
from roadsim.core.orchestrator import SimulationOrchestrator
from roadsim.core.road_network import RoadNetwork
from roadsim.fleet.client import FleetClient, create_client

logger = logging.getLogger(__name__)

# Load .env from the project root first, then CWD
_project_root = Path(__file__).resolve().parents[3]  # src/roadsim/api/app.py -> project root
load_dotenv(_project_root / ".env")
load_dotenv(Path.cwd() / ".env")

STREAM_POLL_S = 0.1


def build_orchestrator(
    network: RoadNetwork | None = None,
    client: FleetClient | None = None,
    adapter: FleetClient | None = None,
    config: SimulationConfig | None = None,
) -> SimulationOrchestrator:
    """Assemble an orchestrator, filling anything not given from the environment."""
    config = config or SimulationConfig.from_env()
    if network is None:
        path = os.environ.get("GEOJSON_PATH", "export.geojson")
        network = RoadNetwork.load(path)
        logger.info(
            "Loaded %s: %d nodes, %d edges", path, network.node_count, network.edge_count,
        )
    if client is None:
        client = create_client(
            os.environ.get("FLEET_PROVIDER", "demo"),
            api_url=os.environ.get("API_URL"),
            token=os.environ.get("TOKEN"),
            timeout=config.fleet_timeout_s,
            seed=config.random_seed,
        )
    if adapter is None and os.environ.get("ADAPTER_URL"):
        adapter = create_client(
            "adapter", adapter_url=os.environ["ADAPTER_URL"], timeout=config.fleet_timeout_s,
        )
    return SimulationOrchestrator(network, client=client, adapter=adapter, config=config)


def create_app(
    network: RoadNetwork | None = None,
    client: FleetClient | None = None,
    adapter: FleetClient | None = None,
    config: SimulationConfig | None = None,
    orchestrator: SimulationOrchestrator | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    With no network or orchestrator given, the network is loaded from
    ``GEOJSON_PATH`` when the application starts up.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.orchestrator is None:
            app.state.orchestrator = build_orchestrator(config=config)
        yield
        app.state.orchestrator.close()

    application = FastAPI(
        title="Road Fleet Simulator API",
        description="Control and observe a simulated vehicle fleet on a road network",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if orchestrator is None and network is not None:
        orchestrator = build_orchestrator(network, client, adapter, config)
    application.state.orchestrator = orchestrator

    application.include_router(simulation.router, prefix="/api/simulation", tags=["simulation"])
    application.include_router(vehicles.router, prefix="/api/vehicles", tags=["vehicles"])
    application.include_router(network_routes.router, prefix="/api/network", tags=["network"])
    application.include_router(heatzones.router, prefix="/api/heatzones", tags=["heatzones"])

    @application.get("/api/health")
    def health_check():
        return {"status": "ok"}

    @application.websocket("/ws")
    async def stream(websocket: WebSocket):
        """Push simulation events as ``{type, data}`` JSON messages."""
        orch = websocket.app.state.orchestrator
        await websocket.accept()
        sub = orch.events.subscribe()
        try:
            await websocket.send_json({"type": "status", "data": orch.status()})
            while True:
                for event in sub.drain():
                    await websocket.send_json(event.to_dict())
                try:
                    message = await asyncio.wait_for(websocket.receive(), STREAM_POLL_S)
                except asyncio.TimeoutError:
                    continue
                if message["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        finally:
            sub.close()

    return application


app = create_app()
