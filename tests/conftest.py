"""
Shared test configuration.

Clears every environment variable the simulator reads so a developer's
shell or ``.env`` cannot leak into tests, and provides small synthetic
road networks built from GeoJSON.
"""

import json

import pytest

from roadsim.core.road_network import RoadNetwork

_ENV_KEYS = (
    "GEOJSON_PATH", "FLEET_PROVIDER", "API_URL", "TOKEN", "ADAPTER_URL",
    "UPDATE_INTERVAL", "MIN_SPEED", "MAX_SPEED", "ACCELERATION", "DECELERATION",
    "TURN_THRESHOLD", "SPEED_VARIATION", "HEATZONE_SPEED_FACTOR", "UPDATE_SERVER",
    "UPDATE_SERVER_TIMEOUT", "SYNC_INTERVAL", "USE_ADAPTER", "HEATZONE_REFRESH",
    "STUCK_TIMEOUT", "POSITION_ORIGIN_REF_ID", "RANDOM_SEED",
)

GRID_SPACING = 0.01  # degrees, ~1.1 km at the equator


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Run every test with the simulator's environment variables unset."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def line_feature(coords, name="", street_id=None):
    """GeoJSON LineString feature from ``[lon, lat]`` pairs."""
    props = {"name": name}
    if street_id is not None:
        props["id"] = street_id
    return {
        "type": "Feature",
        "properties": props,
        "geometry": {"type": "LineString", "coordinates": [list(c) for c in coords]},
    }


def collection(*features):
    return {"type": "FeatureCollection", "features": list(features)}


def grid_geojson(size=3, spacing=GRID_SPACING):
    """``size`` x ``size`` street grid anchored at (0, 0).

    Rows are named "Row <r>" and columns "Column <c>". Vertex coordinates
    are computed identically for rows and columns so junctions are shared.
    """
    features = []
    for r in range(size):
        features.append(line_feature(
            [(c * spacing, r * spacing) for c in range(size)], name=f"Row {r}",
        ))
    for c in range(size):
        features.append(line_feature(
            [(c * spacing, r * spacing) for r in range(size)], name=f"Column {c}",
        ))
    return collection(*features)


def chain_geojson(points=50, spacing=0.001):
    """Straight east-bound road along the equator."""
    return collection(line_feature(
        [(i * spacing, 0.0) for i in range(points)], name="Equator Road",
    ))


@pytest.fixture
def grid_network():
    return RoadNetwork.from_geojson(grid_geojson())


@pytest.fixture
def chain_network():
    return RoadNetwork.from_geojson(chain_geojson())


@pytest.fixture
def ab_network():
    """One street from A (0, 0) to B (0, 1): a single undirected segment."""
    return RoadNetwork.from_geojson(collection(
        line_feature([(0.0, 0.0), (1.0, 0.0)], name="A-B"),
    ))


@pytest.fixture
def geojson_file(tmp_path):
    path = tmp_path / "network.geojson"
    path.write_text(json.dumps(grid_geojson()))
    return path
