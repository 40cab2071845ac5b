"""
Day bucketing and majority place labels.

A day's label is the most frequent resolved place among its geotagged items
(ties go to the place seen first). Density clusters get a display label from
their centroid; the trailing "No GPS" / "Scattered Locations" buckets keep
their sentinel labels.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.models import Cluster, MediaItem, day_key_for
from ..geocoding.cache import GeocodeCache


logger = logging.getLogger(__name__)


def group_by_day(items: Sequence[MediaItem]) -> Dict[str, List[MediaItem]]:
    """Bucket items by local calendar day, preserving input order within each day."""
    days: Dict[str, List[MediaItem]] = {}
    for item in items:
        days.setdefault(item.day_key, []).append(item)
    return days


def majority_label(labels: Sequence[Optional[str]]) -> Optional[str]:
    """Most frequent non-null label; the earliest one wins a tie."""
    counts = Counter(label for label in labels if label)
    if not counts:
        return None
    # Counter preserves insertion order and max() keeps the first maximum.
    return max(counts, key=lambda label: counts[label])


class DayLabeler:
    """Derives day keys, day majority labels and cluster labels."""

    def __init__(self, geocode_cache: Optional[GeocodeCache] = None, label_clusters: bool = True):
        self.geocode_cache = geocode_cache
        self.label_clusters = label_clusters

    @property
    def enabled(self) -> bool:
        return self.geocode_cache is not None

    async def label_day(self, items: Sequence[MediaItem]) -> Tuple[Optional[str], Optional[str]]:
        """
        Return ``(day_key, majority_label)`` for one day's items.

        ``day_key`` is None only for empty input. The label is None when
        geocoding is disabled, no item is geotagged, or nothing resolved.
        """
        if not items:
            return None, None
        day_key = items[0].day_key

        if self.geocode_cache is None:
            return day_key, None

        names: List[Optional[str]] = []
        for item in items:
            if item.coordinate is None:
                continue
            entry = await self.geocode_cache.lookup(item.coordinate.lat, item.coordinate.lon)
            if entry is not None:
                names.append(entry.place_name or entry.label)

        label = majority_label(names)
        logger.debug("Day %s labeled %r from %d resolved items", day_key, label, len(names))
        return day_key, label

    async def label_cluster(self, cluster: Cluster) -> Optional[str]:
        """Give a density cluster the display label of its centroid."""
        if cluster.is_sentinel or cluster.centroid.is_sentinel:
            return cluster.label
        if self.geocode_cache is None or not self.label_clusters:
            return cluster.label
        cluster.label = await self.geocode_cache.label_for(cluster.centroid.lat, cluster.centroid.lon)
        return cluster.label


__all__ = ["DayLabeler", "day_key_for", "group_by_day", "majority_label"]
