"""
Great-circle helpers and the encoded polyline codec.

Coordinates are ``(lat, lon)`` tuples in degrees unless noted otherwise.
Distances are kilometres, bearings are degrees clockwise from true north
in ``[0, 360)``.
"""

from __future__ import annotations

import math
from typing import Iterable

EARTH_RADIUS_KM = 6371.0

LatLon = tuple[float, float]


def haversine_km(a: LatLon, b: LatLon) -> float:
    """Great-circle distance between two points in kilometres."""
    lat1, lon1 = math.radians(a[0]), math.radians(a[1])
    lat2, lon2 = math.radians(b[0]), math.radians(b[1])
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def initial_bearing(a: LatLon, b: LatLon) -> float:
    """Forward azimuth from ``a`` to ``b``."""
    lat1, lon1 = math.radians(a[0]), math.radians(a[1])
    lat2, lon2 = math.radians(b[0]), math.radians(b[1])
    y = math.sin(lon2 - lon1) * math.cos(lat2)
    x = (
        math.cos(lat1) * math.sin(lat2)
        - math.sin(lat1) * math.cos(lat2) * math.cos(lon2 - lon1)
    )
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def reverse_bearing(bearing: float) -> float:
    return (bearing + 180) % 360


def bearing_delta(a: float, b: float) -> float:
    """Smallest absolute angle between two bearings, in ``[0, 180]``."""
    diff = abs(a - b) % 360
    return 360 - diff if diff > 180 else diff


def interpolate(start: LatLon, end: LatLon, fraction: float) -> LatLon:
    """Planar linear interpolation on lat/lon.

    Good enough at street-segment scale; not a great-circle path.
    """
    return (
        start[0] + (end[0] - start[0]) * fraction,
        start[1] + (end[1] - start[1]) * fraction,
    )


def destination_point(origin: LatLon, distance_km: float, bearing: float) -> LatLon:
    """Project a point ``distance_km`` along ``bearing`` on a sphere."""
    lat1 = math.radians(origin[0])
    lon1 = math.radians(origin[1])
    theta = math.radians(bearing)
    delta = distance_km / EARTH_RADIUS_KM

    lat2 = math.asin(
        math.sin(lat1) * math.cos(delta)
        + math.cos(lat1) * math.sin(delta) * math.cos(theta)
    )
    lon2 = lon1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(lat1),
        math.cos(delta) - math.sin(lat1) * math.sin(lat2),
    )
    return (math.degrees(lat2), (math.degrees(lon2) + 540) % 360 - 180)


def project_to_segment(point: LatLon, start: LatLon, end: LatLon) -> tuple[LatLon, float]:
    """Closest point on segment ``start``-``end`` to ``point``.

    Works in a local equirectangular frame centred on ``point``.

    Returns:
        The projected point and its fraction along the segment in ``[0, 1]``.
    """
    kx = math.cos(math.radians(point[0]))
    ax, ay = (start[1] - point[1]) * kx, start[0] - point[0]
    bx, by = (end[1] - point[1]) * kx, end[0] - point[0]
    dx, dy = bx - ax, by - ay
    seg_sq = dx * dx + dy * dy
    if seg_sq == 0:
        return start, 0.0
    t = -(ax * dx + ay * dy) / seg_sq
    t = min(1.0, max(0.0, t))
    return interpolate(start, end, t), t


# ---------------------------------------------------------------------------
# Encoded polyline (5-bit chunks, ASCII offset 63, 1e-5 precision)
# ---------------------------------------------------------------------------

def _round_e5(value: float) -> int:
    # Half-up rounding; Python's round() is half-to-even.
    return math.floor(value * 1e5 + 0.5)


def _encode_value(current: float, previous: float) -> str:
    delta = _round_e5(current) - _round_e5(previous)
    value = (delta << 1) ^ (delta >> 31)
    chunks: list[str] = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1F)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return "".join(chunks)


def encode_polyline(points: Iterable[LatLon]) -> str:
    """Encode ``(lat, lon)`` points as a compact polyline string."""
    parts: list[str] = []
    prev_lat = 0.0
    prev_lon = 0.0
    for lat, lon in points:
        parts.append(_encode_value(lat, prev_lat))
        parts.append(_encode_value(lon, prev_lon))
        prev_lat, prev_lon = lat, lon
    return "".join(parts)


def decode_polyline(encoded: str) -> list[LatLon]:
    """Inverse of :func:`encode_polyline` (at 1e-5 precision)."""
    points: list[LatLon] = []
    index = 0
    lat = 0
    lon = 0
    length = len(encoded)
    while index < length:
        deltas = []
        for _ in range(2):
            shift = 0
            result = 0
            while True:
                b = ord(encoded[index]) - 63
                index += 1
                result |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lon += deltas[1]
        points.append((lat / 1e5, lon / 1e5))
    return points
