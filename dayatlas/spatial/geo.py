"""Great-circle geometry helpers used by clustering, merging and repair."""

from __future__ import annotations

import math
from typing import Iterable, Sequence, Tuple

import numpy as np
from sklearn.metrics.pairwise import haversine_distances

from ..core.models import Coordinate, MediaItem, SENTINEL_COORDINATE


EARTH_RADIUS_M = 6_371_008.8
"""Mean Earth radius (IUGG), metres."""

METERS_PER_DEGREE_LAT = math.pi * EARTH_RADIUS_M / 180.0


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in metres."""
    lat1, lon1, lat2, lon2 = map(math.radians, (a.lat, a.lon, b.lat, b.lon))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def _to_radians(coords: Sequence[Coordinate]) -> np.ndarray:
    return np.radians(np.array([[c.lat, c.lon] for c in coords], dtype=float))


def pairwise_distances_m(coords: Sequence[Coordinate]) -> np.ndarray:
    """
    Full ``n x n`` matrix of great-circle distances in metres.

    Returns an empty ``(0, 0)`` array for empty input.
    """
    if len(coords) == 0:
        return np.zeros((0, 0), dtype=float)
    return haversine_distances(_to_radians(coords)) * EARTH_RADIUS_M


def distances_from_m(origin: Coordinate, coords: Sequence[Coordinate]) -> np.ndarray:
    """Distances in metres from ``origin`` to each of ``coords``."""
    if len(coords) == 0:
        return np.zeros(0, dtype=float)
    return haversine_distances(_to_radians([origin]), _to_radians(coords))[0] * EARTH_RADIUS_M


def centroid_of(items: Iterable[MediaItem]) -> Coordinate:
    """
    Arithmetic mean of latitude and longitude over geotagged items.

    Items without a coordinate are ignored; the sentinel (0, 0) is returned
    when none are geotagged.
    """
    coords = [item.coordinate for item in items if item.coordinate is not None]
    if not coords:
        return SENTINEL_COORDINATE
    arr = np.array([[c.lat, c.lon] for c in coords], dtype=float)
    lat, lon = arr.mean(axis=0)
    return Coordinate(float(lat), float(lon))


def bounding_box(center: Coordinate, radius_m: float) -> Tuple[float, float, float, float]:
    """
    Return ``(min_lat, max_lat, min_lon, max_lon)`` enclosing a circle.

    The longitude span widens with latitude; near the poles it covers the
    full range. Callers filter candidates by exact distance afterwards.
    """
    dlat = radius_m / METERS_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(center.lat))
    if cos_lat < 1e-6:
        dlon = 180.0
    else:
        dlon = min(180.0, dlat / cos_lat)
    return (center.lat - dlat, center.lat + dlat, center.lon - dlon, center.lon + dlon)
