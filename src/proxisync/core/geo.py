from __future__ import annotations
import math
import random
import secrets
from dataclasses import dataclass
from math import atan2, cos, radians, sin, sqrt
from typing import Iterable

"""
Geospatial helpers.

We keep a tiny geometry layer here so the engine can do distance and jitter
calculations without pulling in heavier GIS dependencies. Everything is pure.
"""

EARTH_RADIUS_KM = 6371.0
METERS_PER_DEGREE_LAT = 111_320.0

_secure_random = secrets.SystemRandom()


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees (WGS84)."""

    lat: float
    lng: float


@dataclass(frozen=True)
class Bounds:
    """Min/max envelope used for map fitting."""

    north: float
    south: float
    east: float
    west: float


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute great-circle distance in kilometers between two points."""
    phi1 = radians(lat1)
    phi2 = radians(lat2)
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)

    h = sin(dlat / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlon / 2) ** 2
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_KM * 2 * atan2(sqrt(h), sqrt(1 - h))


def bounding_box(points: Iterable[GeoPoint]) -> Bounds:
    """Return the envelope of `points`; an all-zero box when there are none."""
    pts = list(points)
    if not pts:
        return Bounds(north=0.0, south=0.0, east=0.0, west=0.0)
    lats = [p.lat for p in pts]
    lngs = [p.lng for p in pts]
    return Bounds(north=max(lats), south=min(lats), east=max(lngs), west=min(lngs))


def offset_within_radius(
    lat: float,
    lng: float,
    radius_m: float,
    *,
    rng: random.Random | None = None,
) -> GeoPoint:
    """Return a random point uniformly distributed inside the disk of `radius_m` around (lat, lng).

    Notes:
    - Distance is drawn as `r * sqrt(u)` so points are uniform over the area, not clustered at the center.
    - A zero-length draw is resampled: the exact input point is never returned when `radius_m > 0`.
    - Longitude degrees shrink with `cos(lat)`; near the poles the scale is clamped to avoid division by zero.
    """
    if radius_m <= 0:
        return GeoPoint(lat=lat, lng=lng)

    r = rng or _secure_random
    lng_scale = max(1e-9, abs(math.cos(math.radians(lat))))
    while True:
        distance = radius_m * math.sqrt(r.random())
        angle = r.random() * 2 * math.pi
        d_lat = (distance * math.cos(angle)) / METERS_PER_DEGREE_LAT
        d_lng = (distance * math.sin(angle)) / (METERS_PER_DEGREE_LAT * lng_scale)
        out = GeoPoint(lat=lat + d_lat, lng=lng + d_lng)
        if out.lat != lat or out.lng != lng:
            return out


def format_distance(km: float) -> str:
    """Render a short human label, e.g. `350m away` or `4.2km away`."""
    if km < 1:
        return f"{round(km * 1000)}m away"
    return f"{km:.1f}km away"
