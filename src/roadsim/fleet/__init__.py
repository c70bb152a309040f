"""Fleet service integration: roster fetch and location sync."""

from roadsim.fleet.client import (
    AdapterClient,
    DemoFleetClient,
    FleetClient,
    FleetClientError,
    GraphQLFleetClient,
    LocationReport,
    create_client,
)
from roadsim.fleet.roster import RosterEntry, classify_status, order_roster

__all__ = [
    "AdapterClient",
    "DemoFleetClient",
    "FleetClient",
    "FleetClientError",
    "GraphQLFleetClient",
    "LocationReport",
    "create_client",
    "RosterEntry",
    "classify_status",
    "order_roster",
]
