"""
dayatlas/geocoding: Reverse geocoding behind a TTL cache.
"""

from .cache import (
    DEFAULT_PRECISION,
    DEFAULT_TTL_SECONDS,
    GeocodeCache,
    coordinate_key,
    fallback_label,
)
from .provider import (
    UNKNOWN_LOCATION,
    GazetteerProvider,
    PlaceName,
    ReverseGeocodeProvider,
    format_place_name,
)

__all__ = [
    # Cache
    "GeocodeCache",
    "coordinate_key",
    "fallback_label",
    "DEFAULT_PRECISION",
    "DEFAULT_TTL_SECONDS",

    # Providers
    "GazetteerProvider",
    "PlaceName",
    "ReverseGeocodeProvider",
    "format_place_name",
    "UNKNOWN_LOCATION",
]
