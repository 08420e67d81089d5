"""Search grid generation over a bounding box."""

import math
from typing import List, Tuple

from placesync.core.config import Settings
from placesync.models import BoundingBox, SearchPoint

KM_PER_DEGREE = 111.0
_EPSILON = 1e-9


def grid_steps(bounds: BoundingBox, spacing_km: float) -> Tuple[float, float]:
    """Return (latitude step, longitude step) in degrees for ``spacing_km``.

    The longitude step is widened by 1/cos(latitude) at the northern edge so
    neighbouring points are ``spacing_km`` apart on the ground, not in degrees.
    """
    if spacing_km <= 0:
        raise ValueError("spacing_km must be positive")
    lat_step = spacing_km / KM_PER_DEGREE
    lon_step = spacing_km / (KM_PER_DEGREE * math.cos(math.radians(bounds.north)))
    return lat_step, lon_step


def _count(span: float, step: float) -> int:
    # Closed interval: a point landing exactly on the far edge is kept.
    return int(math.floor(span / step + _EPSILON)) + 1


def generate_grid(bounds: BoundingBox, spacing_km: float) -> List[SearchPoint]:
    """Raster-scan ``bounds`` north to south, west to east.

    Deterministic for identical inputs, so an interrupted sweep can be
    resumed by regenerating the grid and skipping processed keys.
    """
    if bounds.north < bounds.south or bounds.east < bounds.west:
        raise ValueError("bounding box is inverted")

    lat_step, lon_step = grid_steps(bounds, spacing_km)
    rows = _count(bounds.north - bounds.south, lat_step)
    cols = _count(bounds.east - bounds.west, lon_step)
    radius = int(round(spacing_km * 1000))

    points: List[SearchPoint] = []
    for row in range(rows):
        lat = min(bounds.north, max(bounds.south, round(bounds.north - row * lat_step, 6)))
        for col in range(cols):
            lng = max(bounds.west, min(bounds.east, round(bounds.west + col * lon_step, 6)))
            points.append(SearchPoint(lat=lat, lng=lng, radius_meters=radius))
    return points


def grid_from_settings(settings: Settings) -> List[SearchPoint]:
    return generate_grid(settings.bounds, settings.spacing_km)
