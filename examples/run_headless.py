#!/usr/bin/env python3
"""Run a fleet on a synthetic street grid in virtual time and print results."""

import logging

from roadsim.core.config import SimulationConfig
from roadsim.core.orchestrator import SimulationOrchestrator
from roadsim.core.road_network import RoadNetwork
from roadsim.core.scheduler import ManualClock, Scheduler
from roadsim.fleet.client import DemoFleetClient


def grid_geojson(rows=6, cols=6, spacing=0.005, origin=(52.37, 4.89)):
    """Manhattan-style grid of named streets as a GeoJSON FeatureCollection."""
    lat0, lon0 = origin
    features = []
    for r in range(rows):
        lat = lat0 + r * spacing
        features.append({
            "type": "Feature",
            "properties": {"name": f"Street {r}"},
            "geometry": {
                "type": "LineString",
                "coordinates": [[lon0 + c * spacing, lat] for c in range(cols)],
            },
        })
    for c in range(cols):
        lon = lon0 + c * spacing
        features.append({
            "type": "Feature",
            "properties": {"name": f"Avenue {c}"},
            "geometry": {
                "type": "LineString",
                "coordinates": [[lon, lat0 + r * spacing] for r in range(rows)],
            },
        })
    return {"type": "FeatureCollection", "features": features}


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    config = SimulationConfig(
        update_interval_ms=1000,
        heat_zone_count=4,
        heat_zone_refresh_ms=60_000,
        update_server=True,
        random_seed=42,
    )
    network = RoadNetwork.from_geojson(grid_geojson())
    client = DemoFleetClient(count=10, seed=42)
    scheduler = Scheduler(ManualClock())
    orch = SimulationOrchestrator(network, client=client, config=config, scheduler=scheduler)

    print(f"=== Road network: {network.node_count} nodes, {network.edge_count} edges ===")
    print(f"Vehicles: {len(orch.agents)}")
    print()

    orch.start()
    print(f"{'Sec':>4} {'MeanKmh':>8} {'InZone':>6} {'Routed':>6}")
    print("-" * 28)
    for second in range(0, 120, 10):
        scheduler.advance(10_000)
        snaps = orch.snapshots()
        mean_speed = sum(s["speed"] for s in snaps) / len(snaps)
        in_zone = sum(1 for s in snaps if s["flags"]["in_heat_zone"])
        print(f"{second + 10:4d} {mean_speed:8.1f} {in_zone:6d} {len(orch.routes()):6d}")
    orch.stop()

    print()
    print(f"Location syncs pushed: {len(client.pushed)}")
    print(f"Active heat zones: {len(orch.heat_zone_export())}")
    for snap in snaps[:5]:
        lat, lon = snap["position"]
        print(f"  {snap['name']:>4} {snap['status']:>9} ({lat:.5f}, {lon:.5f}) {snap['speed']:5.1f} km/h")


if __name__ == "__main__":
    main()
