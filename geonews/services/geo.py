"""
geo.py — Coordinate helpers shared by trending, events and browse.

geo_bucket() turns a point into a coarse grid key used to partition the
trending cache by neighbourhood. At the default precision (2 decimals) a
cell is roughly 1.1 km × 1.1 km at the equator and narrower towards the
poles. Two points in the same cell always share a key; points either side
of a cell edge do not, which is acceptable for a cache locality heuristic.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

from geonews.core.errors import InvalidCoordinatesError

EARTH_RADIUS_M = 6_371_008.8   # IUGG mean radius


def validate_coordinates(lat: float, lon: float) -> None:
    """Raise InvalidCoordinatesError unless lat/lon are finite and in range."""
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        raise InvalidCoordinatesError(lat, lon) from None
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        raise InvalidCoordinatesError(lat, lon)
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0):
        raise InvalidCoordinatesError(lat, lon)


def _fixed(value: float, precision: int) -> str:
    # Decimal(float) is the exact binary value, so ties round away from zero
    # exactly where a decimal fixed-point formatter would.
    quantum = Decimal(1).scaleb(-precision)
    return str(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def geo_bucket(lat: float, lon: float, precision: int = 2) -> str:
    """
    Deterministic cache-partition key for a point.

    >>> geo_bucket(51.50735, -0.12776)
    '51.51:-0.13'
    """
    if precision < 0:
        raise ValueError("precision must be >= 0")
    return f"{_fixed(lat, precision)}:{_fixed(lon, precision)}"


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def to_geojson_point(lat: float, lon: float) -> dict:
    """MongoDB 2dsphere point — note GeoJSON order is [lon, lat]."""
    return {"type": "Point", "coordinates": [float(lon), float(lat)]}
