"""Integration tests for the simulator REST and WebSocket API."""

import pytest
from fastapi.testclient import TestClient

from conftest import GRID_SPACING
from roadsim.api.app import create_app
from roadsim.core.config import SimulationConfig
from roadsim.core.orchestrator import SimulationOrchestrator
from roadsim.core.scheduler import ManualClock, Scheduler
from roadsim.fleet.client import DemoFleetClient

S = GRID_SPACING


@pytest.fixture
def orchestrator(grid_network):
    return SimulationOrchestrator(
        grid_network,
        client=DemoFleetClient(count=4, seed=2),
        config=SimulationConfig(random_seed=2, heat_zone_refresh_ms=0),
        scheduler=Scheduler(ManualClock()),
    )


@pytest.fixture
def client(orchestrator):
    app = create_app(orchestrator=orchestrator)
    return TestClient(app)


class TestHealthCheck:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestSimulationLifecycle:
    def test_status(self, client):
        resp = client.get("/api/simulation/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["running"] is False
        assert data["vehicle_count"] == 4
        assert data["interval"] == 5000

    def test_start_and_stop(self, client):
        resp = client.post("/api/simulation/start")
        assert resp.status_code == 200
        assert resp.json()["running"] is True

        resp = client.post("/api/simulation/stop")
        assert resp.json()["running"] is False

    def test_start_with_options(self, client):
        resp = client.post("/api/simulation/start", json={"options": {"update_interval_ms": 1000}})
        assert resp.status_code == 200
        assert resp.json()["interval"] == 1000

    def test_start_with_invalid_options(self, client):
        resp = client.post("/api/simulation/start", json={"options": {"min_speed": 500}})
        assert resp.status_code == 422

    def test_reset(self, client):
        client.post("/api/simulation/start")
        resp = client.post("/api/simulation/reset")
        assert resp.status_code == 200
        data = resp.json()
        assert data["running"] is False
        assert data["vehicle_count"] == 4


class TestOptions:
    def test_get_options(self, client):
        resp = client.get("/api/simulation/options")
        assert resp.status_code == 200
        assert resp.json()["min_speed"] == 20.0

    def test_update_options(self, client):
        resp = client.post("/api/simulation/options", json={"max_speed": 45.0})
        assert resp.status_code == 200
        assert resp.json()["max_speed"] == 45.0
        assert client.get("/api/simulation/options").json()["max_speed"] == 45.0

    def test_inconsistent_options(self, client):
        resp = client.post("/api/simulation/options", json={"min_speed": 80.0})
        assert resp.status_code == 422

    def test_unknown_option(self, client):
        resp = client.post("/api/simulation/options", json={"warp": 9})
        assert resp.status_code == 422

    def test_null_clears_optional_option(self, client):
        client.post("/api/simulation/options", json={
            "route_search_budget": 500, "position_origin_ref_id": "origin-1",
        })
        resp = client.post("/api/simulation/options", json={
            "route_search_budget": None, "position_origin_ref_id": None,
        })
        assert resp.status_code == 200
        assert resp.json()["route_search_budget"] is None
        assert resp.json()["position_origin_ref_id"] is None

    def test_null_rejected_for_required_option(self, client):
        resp = client.post("/api/simulation/options", json={"max_speed": None})
        assert resp.status_code == 422
        assert client.get("/api/simulation/options").json()["max_speed"] == 60.0


class TestDirections:
    def test_route_vehicles(self, client, orchestrator):
        ids = list(orchestrator.agents)[:2]
        resp = client.post("/api/simulation/directions", json={
            "vehicle_ids": ids,
            "destination": {"lat": 2 * S, "lon": 2 * S},
        })
        assert resp.status_code == 200
        results = resp.json()["results"]
        assert set(results) == set(ids)
        assert set(results.values()) <= {"ok", "no_route", "no_connections"}

    def test_unknown_vehicle(self, client):
        resp = client.post("/api/simulation/directions", json={
            "vehicle_ids": ["nope"],
            "destination": {"lat": 0.0, "lon": 0.0},
        })
        assert resp.status_code == 404

    def test_invalid_coordinates(self, client, orchestrator):
        resp = client.post("/api/simulation/directions", json={
            "vehicle_ids": list(orchestrator.agents)[:1],
            "destination": {"lat": 95.0, "lon": 0.0},
        })
        assert resp.status_code == 422

    def test_routes(self, client):
        resp = client.get("/api/simulation/routes")
        assert resp.status_code == 200
        for payload in resp.json():
            assert {"vehicle_id", "route", "eta"} <= set(payload)


class TestVehicles:
    def test_list(self, client):
        resp = client.get("/api/vehicles/")
        assert resp.status_code == 200
        assert len(resp.json()) == 4

    def test_get_one(self, client, orchestrator):
        vid = next(iter(orchestrator.agents))
        resp = client.get(f"/api/vehicles/{vid}")
        assert resp.status_code == 200
        assert resp.json()["id"] == vid

    def test_not_found(self, client):
        assert client.get("/api/vehicles/missing").status_code == 404


class TestNetwork:
    def test_geojson(self, client):
        data = client.get("/api/network/").json()
        assert data["type"] == "FeatureCollection"
        assert len(data["features"]) == 6

    def test_roads(self, client):
        assert len(client.get("/api/network/roads").json()) == 6

    def test_search(self, client):
        resp = client.post("/api/network/search", json={"query": "column"})
        assert sorted(r["name"] for r in resp.json()) == ["Column 0", "Column 1", "Column 2"]

    def test_nearest_node(self, client):
        resp = client.post("/api/network/nearest-node", json={"lat": 0.0101, "lon": 0.0099})
        assert resp.status_code == 200
        assert resp.json()["coordinates"] == [S, S]
        assert len(resp.json()["connections"]) == 4

    def test_nearest_edge(self, client):
        resp = client.post("/api/network/nearest-edge", json={"lat": 0.0001, "lon": 0.005})
        assert resp.status_code == 200
        data = resp.json()
        assert 0.0 <= data["fraction"] <= 1.0
        assert data["distance"] == pytest.approx(0.0111, abs=1e-3)


class TestHeatZones:
    def test_initially_empty(self, client):
        assert client.get("/api/heatzones/").json() == []

    def test_generate_and_list(self, client):
        resp = client.post("/api/heatzones/generate", json={"count": 3})
        assert resp.status_code == 200
        assert len(resp.json()) == 3

        features = client.get("/api/heatzones/").json()
        assert [f["geometry"]["type"] for f in features] == ["Polygon"] * 3

        paths = client.get("/api/heatzones/", params={"format": "paths"}).json()
        assert len(paths) == 3
        assert all(isinstance(p, str) for p in paths)

    def test_generate_defaults(self, client):
        resp = client.post("/api/heatzones/generate")
        assert resp.status_code == 200
        assert len(resp.json()) == 16

    def test_invalid_center_mode(self, client):
        resp = client.post("/api/heatzones/generate", json={"center_mode": "random"})
        assert resp.status_code == 422

    def test_inverted_radius_range(self, client):
        resp = client.post("/api/heatzones/generate", json={"min_radius": 2.0, "max_radius": 1.0})
        assert resp.status_code == 422

    def test_invalid_format(self, client):
        assert client.get("/api/heatzones/", params={"format": "kml"}).status_code == 422


class TestStream:
    def test_initial_status_message(self, client):
        with client.websocket_connect("/ws") as ws:
            message = ws.receive_json()
        assert message["type"] == "status"
        assert message["data"]["vehicle_count"] == 4

    def test_events_are_forwarded(self, client, orchestrator):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            orchestrator.regenerate_heat_zones(count=1)
            message = ws.receive_json()
        assert message["type"] == "heatzones"
        assert len(message["data"]) == 1


class TestAppFactory:
    def test_network_loaded_from_env_on_startup(self, monkeypatch, geojson_file):
        monkeypatch.setenv("GEOJSON_PATH", str(geojson_file))
        monkeypatch.setenv("RANDOM_SEED", "1")
        with TestClient(create_app()) as client:
            data = client.get("/api/simulation/status").json()
        assert data["vehicle_count"] == 70

    def test_network_argument(self, grid_network):
        app = create_app(
            network=grid_network,
            client=DemoFleetClient(count=2),
            config=SimulationConfig(heat_zone_refresh_ms=0),
        )
        with TestClient(app) as client:
            assert client.get("/api/simulation/status").json()["vehicle_count"] == 2
