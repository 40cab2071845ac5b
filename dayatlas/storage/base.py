"""
Operations the indexing core requires of its persistent store.

The engine behind the store is not prescribed; ``SQLiteMediaStore`` is the
bundled implementation. Every mutation is keyed by stable ids so a crash in
the middle of a scan leaves previously committed batches intact.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..core.models import Cluster, DayGroup, GeocodeCacheEntry, MediaItem


BoundingBox = Tuple[float, float, float, float]
"""(min_lat, max_lat, min_lon, max_lon)"""


class MediaStore(Protocol):
    """Persistent item/cluster/day-group graph plus the geocode table."""

    # -- media items -----------------------------------------------------

    def upsert_items(self, items: Sequence[MediaItem]) -> None:
        """Insert or update items atomically; ``hidden`` and ``cluster_ref`` survive updates."""
        ...

    def get_item(self, item_id: str) -> Optional[MediaItem]: ...

    def get_items(self, item_ids: Iterable[str]) -> List[MediaItem]: ...

    def items_for_day(self, day_key: str, include_hidden: bool = False) -> List[MediaItem]: ...

    def items_in_day_range(self, start_day: str, end_day: str, include_hidden: bool = False) -> List[MediaItem]: ...

    def items_for_cluster(self, cluster_id: str, include_hidden: bool = False) -> List[MediaItem]: ...

    def items_in_box(self, day_key: str, box: BoundingBox) -> List[MediaItem]: ...

    def unlinked_items(self, day_key: Optional[str] = None) -> List[MediaItem]:
        """Items whose cluster reference is empty or points at a missing cluster."""
        ...

    def day_keys_of(self, item_ids: Iterable[str]) -> Dict[str, str]: ...

    def all_day_keys(self) -> List[str]: ...

    def count_items(self, include_hidden: bool = True) -> int: ...

    def set_hidden(self, item_ids: Iterable[str], hidden: bool) -> None: ...

    def delete_items(self, item_ids: Iterable[str]) -> None: ...

    def assign_cluster(self, cluster_id: Optional[str], item_ids: Iterable[str]) -> None: ...

    def clear_cluster_refs(self, item_ids: Iterable[str]) -> None: ...

    def clear_cluster_assignments(self) -> None:
        """Reset every ``cluster_ref`` and drop all clusters and day groups."""
        ...

    # -- clusters and day groups ------------------------------------------

    def replace_day(self, day_group: DayGroup, clusters: Sequence[Cluster]) -> None:
        """Atomically supersede a day's clusters and day group."""
        ...

    def remove_day(self, day_key: str) -> None: ...

    def get_cluster(self, cluster_id: str) -> Optional[Cluster]: ...

    def clusters_for_day(self, day_key: str) -> List[Cluster]: ...

    def all_clusters(self) -> List[Cluster]: ...

    def clusters_for_map(self) -> List[Cluster]: ...

    def visible_counts(self) -> Dict[str, int]: ...

    def visible_count_for_cluster(self, cluster_id: str) -> int: ...

    def set_cluster_count(self, cluster_id: str, count: int) -> None: ...

    def delete_clusters(self, cluster_ids: Iterable[str]) -> None: ...

    def get_day_group(self, day_key: str) -> Optional[DayGroup]: ...

    def all_day_groups(self) -> List[DayGroup]: ...

    def upsert_day_group(self, day_group: DayGroup) -> None: ...

    def delete_day_groups(self, day_keys: Iterable[str]) -> None: ...

    def refresh_day_totals(self) -> None: ...

    # -- geocode cache and metadata ---------------------------------------

    def get_geocode(self, key: str) -> Optional[GeocodeCacheEntry]: ...

    def set_geocode(self, entry: GeocodeCacheEntry) -> None: ...

    def purge_geocode_before(self, cutoff: float) -> int: ...

    def geocode_stats(self) -> Dict[str, float]: ...

    def get_meta(self, key: str) -> Optional[str]: ...

    def set_meta(self, key: str, value: str) -> None: ...
