"""
Consistency operations over the persisted item/cluster/day-group graph.

This module provides:
1. ``verify``: compare recorded member counts with actual visible members
2. ``repair``: re-link orphaned items to nearby clusters of their day
3. ``prune_empty``: drop clusters without visible members and empty days
4. ``process_dirty``: recount clusters touched by hide/delete, then prune

None of these abort on a single bad cluster. Failures are collected into the
returned report and the pass moves on.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd

from ..core.errors import DayAtlasError
from ..core.models import Cluster, MediaItem
from ..spatial.geo import bounding_box, haversine_m
from ..storage.base import MediaStore


logger = logging.getLogger(__name__)

DEFAULT_REPAIR_MIN_RADIUS_M = 1000.0


# -----------------------------
# Reports
# -----------------------------

@dataclass
class CountMismatch:
    cluster_id: str
    day_key: str
    recorded: int
    actual: int


@dataclass
class VerificationReport:
    """Read-only comparison of recorded and actual cluster member counts."""

    clusters_checked: int = 0
    mismatches: List[CountMismatch] = field(default_factory=list)
    orphaned_items: int = 0
    """Visible items whose cluster reference is empty or dangling."""

    @property
    def ok(self) -> bool:
        return not self.mismatches

    def to_frame(self) -> pd.DataFrame:
        """Mismatches as a DataFrame with a ``delta`` column (actual - recorded)."""
        df = pd.DataFrame(
            [vars(m) for m in self.mismatches],
            columns=["cluster_id", "day_key", "recorded", "actual"],
        )
        df["delta"] = df["actual"] - df["recorded"]
        return df


@dataclass
class RepairReport:
    clusters_checked: int = 0
    relinked: Dict[str, List[str]] = field(default_factory=dict)
    """Cluster id -> ids of items linked to it by this pass."""

    counts_updated: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    """Cluster id -> error message for clusters that could not be repaired."""

    @property
    def relinked_count(self) -> int:
        return sum(len(ids) for ids in self.relinked.values())


@dataclass
class PruneReport:
    deleted_clusters: List[str] = field(default_factory=list)
    deleted_days: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.deleted_clusters or self.deleted_days)


@dataclass
class DirtyReport:
    recounted: int = 0
    prune: PruneReport = field(default_factory=PruneReport)


# -----------------------------
# Dirty Queue
# -----------------------------

class DirtyQueue:
    """Clusters whose stored counts went stale after a hide, unhide or delete."""

    def __init__(self):
        self._lock = threading.Lock()
        self._cluster_ids: Dict[str, None] = {}

    def mark(self, cluster_ids: Iterable[Optional[str]]) -> None:
        with self._lock:
            for cluster_id in cluster_ids:
                if cluster_id:
                    self._cluster_ids[cluster_id] = None

    def drain(self) -> List[str]:
        with self._lock:
            ids = list(self._cluster_ids)
            self._cluster_ids.clear()
        return ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._cluster_ids)


# -----------------------------
# Checker
# -----------------------------

class ConsistencyChecker:
    """Verify, repair and prune the persisted graph."""

    def __init__(self, store: MediaStore, repair_min_radius_m: float = DEFAULT_REPAIR_MIN_RADIUS_M):
        self.store = store
        self.repair_min_radius_m = repair_min_radius_m

    def fallback_radius(self, cluster: Cluster) -> float:
        return max(2 * cluster.radius_m, self.repair_min_radius_m)

    def verify(self) -> VerificationReport:
        counts = self.store.visible_counts()
        report = VerificationReport()
        for cluster in self.store.all_clusters():
            report.clusters_checked += 1
            recorded = cluster.member_count or 0
            actual = counts.get(cluster.id, 0)
            if recorded != actual:
                report.mismatches.append(CountMismatch(cluster.id, cluster.day_key, recorded, actual))
        report.orphaned_items = sum(1 for item in self.store.unlinked_items() if not item.hidden)

        if report.ok:
            logger.info("Verified %d clusters, no mismatches", report.clusters_checked)
        else:
            logger.info(
                "Verified %d clusters, %d mismatches", report.clusters_checked, len(report.mismatches)
            )
        return report

    def _claim_orphans(
        self,
        cluster: Cluster,
        orphans: Dict[str, MediaItem],
        claims: Dict[str, Tuple[float, str]],
    ) -> None:
        """Record ``cluster`` as owner of orphans inside its fallback radius, nearest wins."""
        radius = self.fallback_radius(cluster)
        for item in self.store.items_in_box(cluster.day_key, bounding_box(cluster.centroid, radius)):
            if item.id not in orphans or item.coordinate is None:
                continue
            distance = haversine_m(cluster.centroid, item.coordinate)
            if distance > radius:
                continue
            current = claims.get(item.id)
            if current is None or distance < current[0]:
                claims[item.id] = (distance, cluster.id)

    def repair(self) -> RepairReport:
        """
        Re-link orphaned items and rewrite every cluster's stored count.

        An orphan is an item (hidden or not) whose cluster reference is empty
        or points at a cluster that no longer exists. A geotagged orphan joins
        the nearest cluster of its day whose centroid lies within the fallback
        radius ``max(2 * radius, 1000 m)``. Orphans without a coordinate join
        their day's "No GPS" / "Scattered Locations" bucket if it exists.
        Items already linked to a live cluster are left alone, which keeps
        the pass idempotent.
        """
        report = RepairReport()
        clusters = self.store.all_clusters()
        orphans = {item.id: item for item in self.store.unlinked_items()}
        claims: Dict[str, Tuple[float, str]] = {}

        sentinel_by_day: Dict[str, str] = {}
        for cluster in clusters:
            report.clusters_checked += 1
            if cluster.is_sentinel:
                sentinel_by_day.setdefault(cluster.day_key, cluster.id)
            if cluster.centroid.is_sentinel or not orphans:
                continue
            try:
                self._claim_orphans(cluster, orphans, claims)
            except DayAtlasError as e:
                logger.warning("Repair skipped cluster %s: %s", cluster.id, e)
                report.failures[cluster.id] = str(e)

        assignments: Dict[str, List[str]] = {}
        for item_id, (_, cluster_id) in claims.items():
            assignments.setdefault(cluster_id, []).append(item_id)
        for item in orphans.values():
            if item.coordinate is None and item.day_key in sentinel_by_day:
                assignments.setdefault(sentinel_by_day[item.day_key], []).append(item.id)

        for cluster_id, item_ids in assignments.items():
            try:
                self.store.assign_cluster(cluster_id, item_ids)
                report.relinked[cluster_id] = item_ids
            except DayAtlasError as e:
                logger.warning("Repair could not relink items to cluster %s: %s", cluster_id, e)
                report.failures[cluster_id] = str(e)

        counts = self.store.visible_counts()
        for cluster in clusters:
            actual = counts.get(cluster.id, 0)
            if cluster.member_count == actual:
                continue
            try:
                self.store.set_cluster_count(cluster.id, actual)
                report.counts_updated += 1
            except DayAtlasError as e:
                logger.warning("Repair could not update count of cluster %s: %s", cluster.id, e)
                report.failures[cluster.id] = str(e)

        self.store.refresh_day_totals()
        logger.info(
            "Repair relinked %d items, updated %d counts, %d failures",
            report.relinked_count,
            report.counts_updated,
            len(report.failures),
        )
        return report

    def prune_empty(self) -> PruneReport:
        """
        Delete clusters with no visible members, then days with no clusters.

        Hidden members of a deleted cluster are detached (their reference is
        cleared), never deleted. Running it twice changes nothing the second
        time.
        """
        report = PruneReport()
        counts = self.store.visible_counts()
        empty = [c.id for c in self.store.all_clusters() if counts.get(c.id, 0) == 0]
        for cluster_id in empty:
            try:
                self.store.delete_clusters([cluster_id])
            except DayAtlasError as e:
                report.failures[cluster_id] = str(e)
                logger.warning("Prune could not delete cluster %s: %s", cluster_id, e)
                continue
            report.deleted_clusters.append(cluster_id)

        empty_days = [g.day_key for g in self.store.all_day_groups() if not g.cluster_ids]
        for day_key in empty_days:
            try:
                self.store.delete_day_groups([day_key])
            except DayAtlasError as e:
                report.failures[day_key] = str(e)
                logger.warning("Prune could not delete day group %s: %s", day_key, e)
                continue
            report.deleted_days.append(day_key)

        self.store.refresh_day_totals()
        if report.changed:
            logger.info(
                "Pruned %d clusters and %d day groups",
                len(report.deleted_clusters),
                len(report.deleted_days),
            )
        return report

    def process_dirty(self, queue: DirtyQueue) -> DirtyReport:
        """Recount every queued cluster that still exists, then prune."""
        report = DirtyReport()
        dirty: Set[str] = set(queue.drain())
        for cluster_id in sorted(dirty):
            if self.store.get_cluster(cluster_id) is None:
                continue
            self.store.set_cluster_count(cluster_id, self.store.visible_count_for_cluster(cluster_id))
            report.recounted += 1
        report.prune = self.prune_empty()
        logger.info("Processed %d dirty clusters", report.recounted)
        return report
