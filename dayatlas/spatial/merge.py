"""
Post-processing heuristics over already-computed clusters.

- ``merge_clusters`` folds clusters whose centroids sit close together
- ``estimate_radius`` picks a clustering radius from the data density
"""

from __future__ import annotations

import math
from typing import List, Sequence

import numpy as np

from ..core.models import Cluster, MediaItem
from .geo import centroid_of, haversine_m, pairwise_distances_m


DEFAULT_MERGE_DISTANCE_M = 500.0

DEFAULT_ESTIMATED_RADIUS_M = 300.0
MIN_ESTIMATED_RADIUS_M = 100.0
MAX_ESTIMATED_RADIUS_M = 1000.0


def _find_mergeable_pair(clusters: Sequence[Cluster], max_merge_distance_m: float):
    for i in range(len(clusters)):
        first = clusters[i]
        if first.centroid.is_sentinel:
            continue
        for j in range(i + 1, len(clusters)):
            second = clusters[j]
            if second.centroid.is_sentinel:
                continue
            if haversine_m(first.centroid, second.centroid) <= max_merge_distance_m:
                return i, j
    return None


def merge_clusters(
    clusters: Sequence[Cluster],
    max_merge_distance_m: float = DEFAULT_MERGE_DISTANCE_M,
) -> List[Cluster]:
    """
    Merge clusters whose centroids lie within ``max_merge_distance_m``.

    After each merge the pair scan restarts from scratch, so the worst case
    is cubic in the number of clusters; per-day cluster counts are small.
    The surviving cluster keeps the id, label and radius of the earlier one
    and its centroid is recomputed over the union's geotagged members.

    Args:
        clusters: Clusters of a single day
        max_merge_distance_m: Maximum centroid distance for a merge

    Returns:
        New list sorted by member count, largest first.
    """
    merged = list(clusters)

    while True:
        pair = _find_mergeable_pair(merged, max_merge_distance_m)
        if pair is None:
            break
        i, j = pair
        target = merged[i]
        absorbed = merged.pop(j)
        target.members.extend(absorbed.members)
        target.centroid = centroid_of(target.members)

    return sorted(merged, key=lambda c: len(c.members), reverse=True)


def estimate_radius(items: Sequence[MediaItem]) -> float:
    """
    Estimate a clustering radius from pairwise distances.

    Takes the ``floor(n/2)`` smallest pairwise distances among geotagged
    items and returns their median, clamped to [100, 1000] metres. This
    favours the typical tight spacing over a few far-apart outliers.

    Returns 300 when fewer than two items are geotagged. With exactly two
    the lower half is empty and their single distance is used.
    """
    coords = [item.coordinate for item in items if item.coordinate is not None]
    if len(coords) < 2:
        return DEFAULT_ESTIMATED_RADIUS_M

    matrix = pairwise_distances_m(coords)
    upper = np.triu_indices(len(coords), k=1)
    distances = np.sort(matrix[upper])

    lower_half = distances[: math.floor(len(distances) / 2)]
    if len(lower_half) == 0:
        lower_half = distances
    median = float(lower_half[math.floor(len(lower_half) / 2)])

    return max(MIN_ESTIMATED_RADIUS_M, min(MAX_ESTIMATED_RADIUS_M, median))
