"""
dayatlas/core: Domain models and the error taxonomy shared by every stage.
"""

from .errors import (
    DayAtlasError,
    GeocodeUnavailable,
    InvalidClusteringParameters,
    ScanAlreadyInProgress,
    SourceUnavailable,
    StoreWriteFailure,
)
from .models import (
    NO_GPS_LABEL,
    SCATTERED_LABEL,
    SENTINEL_COORDINATE,
    SENTINEL_LABELS,
    Cluster,
    Coordinate,
    DayGroup,
    DeleteResult,
    GeocodeCacheEntry,
    MediaItem,
    MediaKind,
    day_key_for,
    new_cluster_id,
)

__all__ = [
    # Errors
    "DayAtlasError",
    "GeocodeUnavailable",
    "InvalidClusteringParameters",
    "ScanAlreadyInProgress",
    "SourceUnavailable",
    "StoreWriteFailure",

    # Models
    "Cluster",
    "Coordinate",
    "DayGroup",
    "DeleteResult",
    "GeocodeCacheEntry",
    "MediaItem",
    "MediaKind",

    # Constants and helpers
    "NO_GPS_LABEL",
    "SCATTERED_LABEL",
    "SENTINEL_COORDINATE",
    "SENTINEL_LABELS",
    "day_key_for",
    "new_cluster_id",
]
