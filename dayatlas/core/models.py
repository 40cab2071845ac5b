"""
Domain models for media items and the day/cluster hierarchy built on top of them.

MediaItems are owned by the persistent store; pipeline stages hold references
to them but never copy them under a new id. Clusters and DayGroups are
recomputed wholesale whenever their day is re-processed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional


NO_GPS_LABEL = "No GPS"
"""Label of a cluster whose members carry no coordinates."""

SCATTERED_LABEL = "Scattered Locations"
"""Label of the trailing noise cluster when it holds geotagged members."""

SENTINEL_LABELS = frozenset({NO_GPS_LABEL, SCATTERED_LABEL})


def day_key_for(captured_at_ms: int, tz_offset_minutes: Optional[int] = None) -> str:
    """
    Return the ``YYYY-MM-DD`` calendar day of an epoch-millisecond timestamp.

    When ``tz_offset_minutes`` is known (recorded at capture time) the day is
    computed in that fixed offset; otherwise the host's local time is used.
    """
    seconds = captured_at_ms / 1000.0
    if tz_offset_minutes is None:
        moment = datetime.fromtimestamp(seconds)
    else:
        tz = timezone(timedelta(minutes=tz_offset_minutes))
        moment = datetime.fromtimestamp(seconds, tz=tz)
    return moment.strftime("%Y-%m-%d")


def new_cluster_id() -> str:
    return uuid.uuid4().hex


class MediaKind(Enum):
    """Kinds of media the source can enumerate."""
    PHOTO = "photo"
    VIDEO = "video"


@dataclass(frozen=True)
class Coordinate:
    """WGS84 coordinate in decimal degrees."""

    lat: float
    lon: float

    @property
    def is_sentinel(self) -> bool:
        """True for the (0, 0) placeholder used by clusters without geotagged members."""
        return self.lat == 0 and self.lon == 0


SENTINEL_COORDINATE = Coordinate(0.0, 0.0)


@dataclass
class MediaItem:
    """A captured photo or video plus its mutable organizational overlay."""

    id: str
    kind: MediaKind
    captured_at: int
    """Capture time, epoch milliseconds."""

    coordinate: Optional[Coordinate] = None
    size_bytes: int = 0
    width: int = 0
    height: int = 0
    duration_seconds: Optional[float] = None

    cluster_ref: Optional[str] = None
    """Id of the owning cluster, if any."""

    hidden: bool = False
    """Soft-delete flag. Hidden items are never clustered or counted."""

    filename: Optional[str] = None
    uri: Optional[str] = None
    tz_offset_minutes: Optional[int] = None
    modified_at: Optional[int] = None
    """Last modification time in the media source, epoch milliseconds."""

    @property
    def is_geotagged(self) -> bool:
        return self.coordinate is not None

    @property
    def day_key(self) -> str:
        return day_key_for(self.captured_at, self.tz_offset_minutes)

    @property
    def dimensions(self) -> tuple:
        return (self.width, self.height)


@dataclass
class Cluster:
    """A spatial album: items from one day taken close together."""

    day_key: str
    centroid: Coordinate = SENTINEL_COORDINATE
    radius_m: float = 0.0
    """The neighbourhood radius that produced this cluster (0 for the trailing bucket)."""

    label: Optional[str] = None
    members: List[MediaItem] = field(default_factory=list)
    id: str = field(default_factory=new_cluster_id)

    member_count: Optional[int] = None
    """Count recorded in the store. ``None`` for clusters that were never persisted."""

    @property
    def member_ids(self) -> List[str]:
        return [item.id for item in self.members]

    @property
    def size(self) -> int:
        if self.members or self.member_count is None:
            return len(self.members)
        return self.member_count

    @property
    def geotagged_members(self) -> List[MediaItem]:
        return [item for item in self.members if item.coordinate is not None]

    @property
    def is_sentinel(self) -> bool:
        """True for "No GPS" / "Scattered Locations" buckets."""
        return self.label in SENTINEL_LABELS and self.radius_m == 0


@dataclass
class DayGroup:
    """All clusters of one calendar day plus the day's majority place label."""

    day_key: str
    majority_label: Optional[str] = None
    cluster_ids: List[str] = field(default_factory=list)
    total_visible_items: int = 0


@dataclass
class GeocodeCacheEntry:
    """Cached reverse-geocode result for a rounded coordinate."""

    key: str
    label: str
    place_name: Optional[str] = None
    cached_at: float = 0.0
    """Epoch seconds at which the entry was written."""

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.cached_at < ttl_seconds


@dataclass
class DeleteResult:
    """Outcome of a (possibly partial) delete against the media source.

    Attributes:
        deleted_ids: Ids removed from the source.
        failed_ids: Ids the source refused or failed to delete; retryable.
    """

    deleted_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed_ids

    def extend(self, other: "DeleteResult") -> None:
        self.deleted_ids.extend(other.deleted_ids)
        self.failed_ids.extend(other.failed_ids)
