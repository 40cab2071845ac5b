"""
Reverse-geocode providers and place-name formatting.

This module provides:
1. ``PlaceName``: the structured address a provider resolves a coordinate to
2. ``format_place_name``: specific-to-general display text for a PlaceName
3. ``ReverseGeocodeProvider``: the protocol the geocode cache calls on a miss
4. ``GazetteerProvider``: an offline provider backed by a local list of places
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import numpy as np
import yaml

from ..core.errors import GeocodeUnavailable
from ..core.models import Coordinate
from ..spatial.geo import distances_from_m


logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "Unknown Location"


# -----------------------------
# Data Models
# -----------------------------

@dataclass
class PlaceName:
    """Structured reverse-geocode result. Every field is optional."""
    name: Optional[str] = None
    street: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = None
    subregion: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    formatted_address: Optional[str] = None

    @property
    def locality(self) -> Optional[str]:
        """The city-level name used for day majority labels."""
        return self.city or self.district


def format_place_name(place: PlaceName) -> str:
    """
    Render a place as "name, district, city, region" from specific to general.

    Redundant parts are skipped: a name equal to the street, a district equal
    to the city, and a region already contained in (or containing) an earlier
    part. With nothing usable the street, then the formatted address, then the
    district is returned, and finally "Unknown Location".
    """
    parts: List[str] = []

    if place.name and place.name != place.street:
        parts.append(place.name)

    if place.district and place.district != place.city:
        parts.append(place.district)

    if place.city:
        parts.append(place.city)
    elif place.subregion:
        parts.append(place.subregion)

    region = place.region
    if region and region != place.city and region != place.subregion:
        lowered = region.lower()
        redundant = any(lowered in part.lower() or part.lower() in lowered for part in parts)
        if not redundant:
            parts.append(region)

    if not parts and place.street:
        parts.append(place.street)

    if not parts:
        if place.formatted_address:
            return place.formatted_address
        if place.district:
            return place.district

    return ", ".join(parts) if parts else UNKNOWN_LOCATION


# -----------------------------
# Provider Protocol
# -----------------------------

class ReverseGeocodeProvider(Protocol):
    """Resolves a coordinate to a place.

    Implementations return ``None`` when nothing is known about the location
    and raise ``GeocodeUnavailable`` when they cannot answer right now.
    """

    async def resolve(self, lat: float, lon: float) -> Optional[PlaceName]: ...


# -----------------------------
# Offline Gazetteer
# -----------------------------

DEFAULT_GAZETTEER_RADIUS_M = 25_000.0


class GazetteerProvider:
    """
    Nearest-named-place lookup over a local gazetteer.

    Each place is a mapping with ``lat``, ``lon`` and any ``PlaceName``
    fields. A coordinate resolves to the nearest place within
    ``max_distance_m``; farther coordinates resolve to ``None``.
    """

    def __init__(self, places: Sequence[Dict[str, Any]], max_distance_m: float = DEFAULT_GAZETTEER_RADIUS_M):
        self.max_distance_m = max_distance_m
        self._coords: List[Coordinate] = []
        self._places: List[PlaceName] = []
        fields = set(PlaceName.__dataclass_fields__)
        for entry in places:
            self._coords.append(Coordinate(float(entry["lat"]), float(entry["lon"])))
            self._places.append(PlaceName(**{k: v for k, v in entry.items() if k in fields}))
        self.available = True

    @classmethod
    def from_yaml(cls, path: Union[str, Path], max_distance_m: Optional[float] = None) -> "GazetteerProvider":
        """Load a gazetteer file with a top-level ``places`` list."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        places = data.get("places", [])
        radius = max_distance_m if max_distance_m is not None else data.get("max_distance_m", DEFAULT_GAZETTEER_RADIUS_M)
        logger.info("Loaded gazetteer with %d places from %s", len(places), path)
        return cls(places, max_distance_m=float(radius))

    def __len__(self) -> int:
        return len(self._places)

    async def resolve(self, lat: float, lon: float) -> Optional[PlaceName]:
        if not self.available:
            raise GeocodeUnavailable("Gazetteer is disabled")
        if not self._places:
            return None

        distances = distances_from_m(Coordinate(lat, lon), self._coords)
        nearest = int(np.argmin(distances))
        if distances[nearest] > self.max_distance_m:
            return None
        return self._places[nearest]
