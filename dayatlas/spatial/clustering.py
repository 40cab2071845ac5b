"""
Density-based clustering of one day's media items.

This module provides:
1. ``cluster_day``: a single-pass DBSCAN over haversine distances
2. A trailing "noise" bucket for unclustered and non-geotagged items
3. Centroid computation over geotagged members only
4. Diagnostics (cluster sizes, noise ratio, silhouette score) for logging

The pass is deterministic for a fixed input order. It is not invariant under
permutation of the input: a border point reachable from two clusters joins
whichever cluster reaches it first.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
from sklearn.metrics import silhouette_score

from ..core.errors import InvalidClusteringParameters
from ..core.models import (
    NO_GPS_LABEL,
    SCATTERED_LABEL,
    Cluster,
    MediaItem,
)
from .geo import centroid_of, pairwise_distances_m


DEFAULT_RADIUS_M = 300.0
DEFAULT_MIN_POINTS = 2


@dataclass
class ClusteringConfig:
    """Parameters for the per-day density pass."""

    radius_m: float = DEFAULT_RADIUS_M
    """Neighbourhood radius (epsilon) in metres."""

    min_points: int = DEFAULT_MIN_POINTS
    """Points (including the point itself) needed inside the radius for a core point."""

    def validate(self) -> None:
        _validate_parameters(self.radius_m, self.min_points)


@dataclass
class ClusteringDiagnostics:
    """Summary of a clustering run, for logs and the statistics endpoint."""

    num_items: int
    """Total number of items clustered."""

    num_geotagged: int
    """Items carrying a coordinate."""

    num_clusters: int
    """Density clusters (excluding the trailing bucket)."""

    num_noise: int
    """Items that ended up in the trailing bucket."""

    cluster_sizes: List[int] = field(default_factory=list)
    """Size of each density cluster, largest first."""

    silhouette_score: Optional[float] = None
    """Separation of density clusters (range [-1, 1]); None with fewer than 2 clusters."""

    @property
    def noise_ratio(self) -> float:
        if self.num_items == 0:
            return 0.0
        return self.num_noise / self.num_items


def _validate_parameters(radius_m: float, min_points: int) -> None:
    if min_points < 1:
        raise InvalidClusteringParameters(f"min_points must be >= 1, got {min_points}")
    if radius_m < 0:
        raise InvalidClusteringParameters(f"radius_m must be >= 0, got {radius_m}")


def _neighbours(distances: np.ndarray, index: int, radius_m: float) -> List[int]:
    """Indices of every other point within ``radius_m`` of ``index``, in input order."""
    row = distances[index]
    return [j for j in np.flatnonzero(row <= radius_m).tolist() if j != index]


def cluster_day(
    items: Sequence[MediaItem],
    radius_m: float = DEFAULT_RADIUS_M,
    min_points: int = DEFAULT_MIN_POINTS,
) -> List[Cluster]:
    """
    Cluster one day's items by location.

    Args:
        items: Items already filtered to a single day key
        radius_m: Neighbourhood radius in metres
        min_points: Other geotagged items a core point needs within ``radius_m``

    Returns:
        Clusters sorted by member count, largest first. Unclustered geotagged
        items and all non-geotagged items share one trailing cluster with
        radius 0, labeled "Scattered Locations" if it holds any geotagged
        member and "No GPS" otherwise.

    Raises:
        InvalidClusteringParameters: If ``min_points < 1`` or ``radius_m < 0``
    """
    _validate_parameters(radius_m, min_points)

    if not items:
        return []

    geotagged = [item for item in items if item.coordinate is not None]
    non_geotagged = [item for item in items if item.coordinate is None]
    day_key = items[0].day_key

    if not geotagged:
        return [Cluster(day_key=day_key, radius_m=0.0, label=NO_GPS_LABEL, members=list(non_geotagged))]

    distances = pairwise_distances_m([item.coordinate for item in geotagged])
    n = len(geotagged)
    visited = [False] * n
    assignment: List[Optional[int]] = [None] * n
    clusters: List[Cluster] = []

    for index in range(n):
        if visited[index]:
            continue
        visited[index] = True

        neighbours = _neighbours(distances, index, radius_m)
        if len(neighbours) < min_points:
            # Noise for now; a later expansion may still absorb it as a border point.
            continue

        cluster_index = len(clusters)
        cluster = Cluster(day_key=day_key, radius_m=radius_m, members=[geotagged[index]])
        assignment[index] = cluster_index

        queue = list(neighbours)
        queued = set(queue)
        position = 0
        while position < len(queue):
            current = queue[position]
            if not visited[current]:
                visited[current] = True
                expansion = _neighbours(distances, current, radius_m)
                if len(expansion) >= min_points:
                    for candidate in expansion:
                        if candidate not in queued:
                            queue.append(candidate)
                            queued.add(candidate)

            if assignment[current] is None:
                assignment[current] = cluster_index
                cluster.members.append(geotagged[current])
            position += 1

        clusters.append(cluster)

    noise = [geotagged[i] for i in range(n) if assignment[i] is None]
    trailing = noise + non_geotagged
    if trailing:
        clusters.append(Cluster(
            day_key=day_key,
            radius_m=0.0,
            label=SCATTERED_LABEL if noise else NO_GPS_LABEL,
            members=trailing,
        ))

    for cluster in clusters:
        cluster.centroid = centroid_of(cluster.members)

    return sorted(clusters, key=lambda c: len(c.members), reverse=True)


def cluster_items(items: Sequence[MediaItem], config: Optional[ClusteringConfig] = None) -> List[Cluster]:
    """Convenience wrapper around :func:`cluster_day` taking a config object."""
    if config is None:
        config = ClusteringConfig()
    return cluster_day(items, radius_m=config.radius_m, min_points=config.min_points)


def _compute_cluster_quality(clusters: Sequence[Cluster]) -> Optional[float]:
    """
    Silhouette score over the geotagged members of density clusters.

    Returns None if quality cannot be computed (e.g., < 2 clusters).
    """
    labels: List[int] = []
    coords = []
    for label, cluster in enumerate(clusters):
        for item in cluster.geotagged_members:
            labels.append(label)
            coords.append(item.coordinate)

    if len(set(labels)) < 2 or len(labels) <= len(set(labels)):
        return None

    distances = pairwise_distances_m(coords)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        score = silhouette_score(distances, np.array(labels), metric="precomputed")
    return float(score)


def diagnose_clusters(clusters: Sequence[Cluster]) -> ClusteringDiagnostics:
    """Build diagnostics for the output of :func:`cluster_day`."""
    density = [c for c in clusters if not c.is_sentinel]
    trailing = [c for c in clusters if c.is_sentinel]

    num_items = sum(len(c.members) for c in clusters)
    num_geotagged = sum(len(c.geotagged_members) for c in clusters)
    sizes = sorted((len(c.members) for c in density), reverse=True)

    return ClusteringDiagnostics(
        num_items=num_items,
        num_geotagged=num_geotagged,
        num_clusters=len(density),
        num_noise=sum(len(c.members) for c in trailing),
        cluster_sizes=sizes,
        silhouette_score=_compute_cluster_quality(density),
    )
