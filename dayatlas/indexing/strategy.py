"""Per-day re-clustering strategies used by the index manager."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from ..core.models import Cluster, MediaItem
from ..spatial.clustering import DEFAULT_MIN_POINTS, DEFAULT_RADIUS_M, cluster_day
from ..spatial.merge import DEFAULT_MERGE_DISTANCE_M, estimate_radius, merge_clusters


class ReclusterStrategy(Protocol):
    """Turns the full visible membership of one day into that day's clusters."""

    def recluster(self, items: Sequence[MediaItem]) -> List[Cluster]: ...


@dataclass
class WholeDayRecluster:
    """
    Recompute a day from scratch on every change.

    Optionally estimates the radius from the day's own spacing, runs the
    density pass, then merges clusters whose centroids are close.
    """

    radius_m: float = DEFAULT_RADIUS_M
    min_points: int = DEFAULT_MIN_POINTS
    auto_radius: bool = False
    merge_distance_m: Optional[float] = DEFAULT_MERGE_DISTANCE_M

    def radius_for(self, items: Sequence[MediaItem]) -> float:
        return estimate_radius(items) if self.auto_radius else self.radius_m

    def recluster(self, items: Sequence[MediaItem]) -> List[Cluster]:
        clusters = cluster_day(items, self.radius_for(items), self.min_points)
        if self.merge_distance_m is not None:
            clusters = merge_clusters(clusters, self.merge_distance_m)
        return clusters
