"""
Roster parsing and duty-status classification.

The dispatch API returns every vehicle in the account; only medical unit
types are simulated, ordered on-shift first, then online, offline and
untracked.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from roadsim.core.agent import AgentStatus
from roadsim.core.geo import LatLon

MEDICAL_TYPES = frozenset({
    "ALS", "BLS", "UNSUPPORTED", "MEDICAL_TAXI",
    "MEDICAL_MOTORBIKE", "HEARSE", "BOAT",
})

STATUS_ORDER: dict[AgentStatus, int] = {
    AgentStatus.ON_SHIFT: 0,
    AgentStatus.ONLINE: 1,
    AgentStatus.OFFLINE: 2,
    AgentStatus.UNTRACKED: 3,
    AgentStatus.UNKNOWN: 4,
}


@dataclass(frozen=True)
class RosterEntry:
    """One vehicle to simulate."""

    id: str
    name: str
    status: AgentStatus = AgentStatus.UNKNOWN
    position: LatLon | None = None


def is_medical(record: dict[str, Any]) -> bool:
    vtype = (record.get("vehicleTypeRef") or {}).get("value")
    return vtype in MEDICAL_TYPES


def classify_status(record: dict[str, Any]) -> AgentStatus:
    """Duty status of a dispatch-API vehicle record."""
    on_shift = bool(record.get("_currentShift"))
    online = bool(record.get("isOnline"))
    untracked = record.get("_trackingType") == "UNTRACKED"
    if on_shift:
        return AgentStatus.ON_SHIFT
    if online:
        return AgentStatus.ONLINE
    if untracked:
        return AgentStatus.UNTRACKED
    return AgentStatus.OFFLINE


def order_roster(entries: Iterable[RosterEntry]) -> list[RosterEntry]:
    """Stable sort by duty status; duplicate ids keep their first entry."""
    seen: set[str] = set()
    unique: list[RosterEntry] = []
    for entry in entries:
        if entry.id in seen:
            continue
        seen.add(entry.id)
        unique.append(entry)
    return sorted(unique, key=lambda e: STATUS_ORDER[e.status])


def parse_vehicle_records(records: Iterable[dict[str, Any]]) -> list[RosterEntry]:
    """Dispatch-API vehicle nodes -> ordered medical roster."""
    entries = [
        RosterEntry(
            id=str(r["id"]),
            name=str(r.get("callsign") or r["id"]),
            status=classify_status(r),
        )
        for r in records
        if "id" in r and is_medical(r)
    ]
    return order_roster(entries)


def parse_adapter_records(records: Iterable[dict[str, Any]]) -> list[RosterEntry]:
    """Adapter ``/vehicles`` payload -> ordered roster.

    Adapter positions are ``[lat, lon]``; unknown statuses map to UNKNOWN.
    """
    entries: list[RosterEntry] = []
    for r in records:
        if "id" not in r:
            continue
        try:
            status = AgentStatus(str(r.get("status", "UNKNOWN")).upper())
        except ValueError:
            status = AgentStatus.UNKNOWN
        pos = r.get("position")
        position = None
        if isinstance(pos, (list, tuple)) and len(pos) == 2:
            position = (float(pos[0]), float(pos[1]))
        entries.append(RosterEntry(
            id=str(r["id"]),
            name=str(r.get("name") or r["id"]),
            status=status,
            position=position,
        ))
    return order_roster(entries)
