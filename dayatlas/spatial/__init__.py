"""
dayatlas/spatial: Per-day density clustering, merging and radius estimation.

This module provides a deterministic DBSCAN pass over haversine distances
plus the heuristics that post-process its output.
"""

from .clustering import (
    DEFAULT_MIN_POINTS,
    DEFAULT_RADIUS_M,
    ClusteringConfig,
    ClusteringDiagnostics,
    cluster_day,
    cluster_items,
    diagnose_clusters,
)
from .geo import (
    EARTH_RADIUS_M,
    METERS_PER_DEGREE_LAT,
    bounding_box,
    centroid_of,
    distances_from_m,
    haversine_m,
    pairwise_distances_m,
)
from .merge import (
    DEFAULT_MERGE_DISTANCE_M,
    estimate_radius,
    merge_clusters,
)

__all__ = [
    # Clustering
    "ClusteringConfig",
    "ClusteringDiagnostics",
    "cluster_day",
    "cluster_items",
    "diagnose_clusters",
    "DEFAULT_MIN_POINTS",
    "DEFAULT_RADIUS_M",

    # Geometry
    "EARTH_RADIUS_M",
    "METERS_PER_DEGREE_LAT",
    "bounding_box",
    "centroid_of",
    "distances_from_m",
    "haversine_m",
    "pairwise_distances_m",

    # Post-processing
    "DEFAULT_MERGE_DISTANCE_M",
    "estimate_radius",
    "merge_clusters",
]
