"""
Fleet service clients: fetch the vehicle roster and push position reports.

Three providers share one interface:

- ``graphql``: the dispatch GraphQL API (bearer token).
- ``adapter``: a REST adapter exposing ``GET /vehicles`` and ``POST /sync``.
- ``demo``: an in-process generated roster, no network access.

Every network call carries a timeout and raises :class:`FleetClientError`
on failure; callers decide whether that is fatal.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from roadsim.core.agent import AgentStatus
from roadsim.fleet.roster import (
    RosterEntry,
    order_roster,
    parse_adapter_records,
    parse_vehicle_records,
)


class FleetClientError(Exception):
    """Raised when the fleet service cannot be reached or answers badly."""


@dataclass
class LocationReport:
    """One position sample pushed to the fleet service."""

    id: str
    latitude: float
    longitude: float
    position_received_at: str | None = None
    position_origin_ref_id: str | None = None

    def to_wire(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }
        if self.position_received_at is not None:
            d["positionReceivedAt"] = self.position_received_at
        if self.position_origin_ref_id is not None:
            d["positionOriginRefId"] = self.position_origin_ref_id
        return d


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class FleetClient(ABC):
    """Common interface for roster/sync providers."""

    provider: str

    @abstractmethod
    def fetch_roster(self) -> list[RosterEntry]: ...

    @abstractmethod
    def push_locations(self, reports: list[LocationReport]) -> None: ...


def _request_json(
    url: str,
    method: str = "GET",
    payload: Any = None,
    headers: dict[str, str] | None = None,
    timeout: float = 5.0,
) -> Any:
    data = json.dumps(payload).encode() if payload is not None else None
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json", **(headers or {})},
        method=method,
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read().decode()
    except (urllib.error.URLError, TimeoutError, OSError) as e:
        raise FleetClientError(f"{method} {url} failed: {e}") from e
    if not body:
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise FleetClientError(f"{method} {url} returned invalid JSON") from e


# ---------------------------------------------------------------------------
# Dispatch GraphQL API
# ---------------------------------------------------------------------------

GET_VEHICLES_QUERY = """
query {
  vehicles {
    nodes {
      id
      callsign
      isOnline
      _currentShift { id }
      _trackingType
      vehicleTypeRef { value }
    }
  }
}
"""

SEND_LOCATION_MUTATION = """
mutation SendLocation($input: UpsertVehiclesInput!) {
  upsertVehicles(input: $input) {
    vehicles { callsign latitude longitude }
    clientMutationId
  }
}
"""


class GraphQLFleetClient(FleetClient):
    """Roster and location sync against the dispatch GraphQL endpoint."""

    provider = "graphql"

    def __init__(self, api_url: str, token: str | None = None, timeout: float = 5.0) -> None:
        if not api_url:
            raise FleetClientError("API_URL is required for the graphql provider")
        self.api_url = api_url
        self.token = token
        self.timeout = timeout

    def _execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        body = _request_json(
            self.api_url,
            method="POST",
            payload={"query": query, "variables": variables or {}},
            headers=headers,
            timeout=self.timeout,
        )
        if not isinstance(body, dict):
            raise FleetClientError("GraphQL response is not an object")
        if body.get("errors"):
            raise FleetClientError(f"GraphQL errors: {body['errors']}")
        return body.get("data") or {}

    def fetch_roster(self) -> list[RosterEntry]:
        data = self._execute(GET_VEHICLES_QUERY)
        nodes = ((data.get("vehicles") or {}).get("nodes")) or []
        return parse_vehicle_records(nodes)

    def push_locations(self, reports: list[LocationReport]) -> None:
        if not reports:
            return
        self._execute(
            SEND_LOCATION_MUTATION,
            {"input": {"vehicle": [r.to_wire() for r in reports]}},
        )


# ---------------------------------------------------------------------------
# REST adapter
# ---------------------------------------------------------------------------

class AdapterClient(FleetClient):
    """Roster and sync through a REST adapter service."""

    provider = "adapter"

    def __init__(self, base_url: str, timeout: float = 5.0) -> None:
        if not base_url:
            raise FleetClientError("ADAPTER_URL is required for the adapter provider")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def fetch_roster(self) -> list[RosterEntry]:
        body = _request_json(f"{self.base_url}/vehicles", timeout=self.timeout)
        if not isinstance(body, list):
            raise FleetClientError("Adapter /vehicles did not return a list")
        return parse_adapter_records(body)

    def push_locations(self, reports: list[LocationReport]) -> None:
        _request_json(
            f"{self.base_url}/sync",
            method="POST",
            payload=[r.to_wire() for r in reports],
            timeout=self.timeout,
        )


# ---------------------------------------------------------------------------
# Demo (offline)
# ---------------------------------------------------------------------------

@dataclass
class DemoFleetClient(FleetClient):
    """Generated roster of ``count`` vehicles; pushes are kept in memory."""

    count: int = 70
    seed: int | None = None
    pushed: list[list[LocationReport]] = field(default_factory=list)

    provider = "demo"

    def fetch_roster(self) -> list[RosterEntry]:
        rng = np.random.default_rng(self.seed)
        statuses = list(AgentStatus)
        entries = [
            RosterEntry(
                id=str(i),
                name=f"V{i}",
                status=statuses[int(rng.integers(len(statuses)))],
            )
            for i in range(self.count)
        ]
        return order_roster(entries)

    def push_locations(self, reports: list[LocationReport]) -> None:
        self.pushed.append(list(reports))


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_client(
    provider: str = "demo",
    api_url: str | None = None,
    token: str | None = None,
    adapter_url: str | None = None,
    timeout: float = 5.0,
    demo_count: int = 70,
    seed: int | None = None,
) -> FleetClient:
    """Create a fleet client for the given provider.

    Parameters
    ----------
    provider : str
        ``"graphql"``, ``"adapter"`` or ``"demo"``.
    """
    if provider == "graphql":
        return GraphQLFleetClient(api_url or "", token=token, timeout=timeout)
    elif provider == "adapter":
        return AdapterClient(adapter_url or "", timeout=timeout)
    elif provider == "demo":
        return DemoFleetClient(count=demo_count, seed=seed)
    else:
        raise ValueError(
            f"Unknown provider: {provider!r}. Use 'graphql', 'adapter' or 'demo'."
        )
