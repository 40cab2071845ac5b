"""
Media source interface plus a local, in-memory implementation.

The media source is whatever enumerates the user's captures (a device photo
library, a folder scanner, a manifest). The indexer only needs to count,
page through, poll for modifications and delete.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union

from ..core.errors import SourceUnavailable
from ..core.models import Coordinate, DeleteResult, MediaItem, MediaKind


logger = logging.getLogger(__name__)

DEFAULT_DELETE_CHUNK_SIZE = 200


class MediaSource(Protocol):
    """Enumerates and deletes media. All failures surface as ``SourceUnavailable``."""

    async def count(self) -> int: ...

    async def fetch_batch(self, offset: int, limit: int) -> List[MediaItem]: ...

    async def fetch_modified_since(self, timestamp_ms: int) -> List[MediaItem]: ...

    async def delete_items(self, item_ids: Sequence[str]) -> DeleteResult: ...


async def delete_in_chunks(
    source: MediaSource,
    item_ids: Sequence[str],
    chunk_size: int = DEFAULT_DELETE_CHUNK_SIZE,
) -> DeleteResult:
    """
    Delete ``item_ids`` from the source at most ``chunk_size`` ids per call.

    A chunk that raises is reported as failed in full and the remaining
    chunks are still attempted; callers may retry ``failed_ids``.
    """
    result = DeleteResult()
    ids = list(item_ids)
    for start in range(0, len(ids), chunk_size):
        chunk = ids[start:start + chunk_size]
        try:
            result.extend(await source.delete_items(chunk))
        except SourceUnavailable as e:
            logger.warning("Failed to delete chunk of %d items: %s", len(chunk), e)
            result.failed_ids.extend(chunk)
    return result


def item_from_dict(data: Dict[str, Any]) -> MediaItem:
    """Build a MediaItem from a manifest record (camelCase or snake_case keys)."""
    def pick(*names: str, default: Any = None) -> Any:
        for name in names:
            if name in data and data[name] is not None:
                return data[name]
        return default

    lat = pick("lat", "latitude")
    lon = pick("lon", "lng", "longitude")
    coordinate = Coordinate(float(lat), float(lon)) if lat is not None and lon is not None else None

    return MediaItem(
        id=str(data["id"]),
        kind=MediaKind(pick("kind", "mediaType", default="photo")),
        captured_at=int(pick("capturedAt", "captured_at", "creationTime")),
        coordinate=coordinate,
        size_bytes=int(pick("sizeBytes", "size_bytes", default=0)),
        width=int(pick("width", default=0)),
        height=int(pick("height", default=0)),
        duration_seconds=pick("durationSeconds", "duration_seconds", "duration"),
        filename=pick("filename"),
        uri=pick("uri"),
        tz_offset_minutes=pick("tzOffsetMinutes", "tz_offset_minutes"),
        modified_at=pick("modifiedAt", "modified_at", "modificationTime"),
    )


class InMemoryMediaSource:
    """
    A media source over a list of items, ordered by capture time.

    ``fail_with`` makes every subsequent call raise the given exception,
    simulating revoked permissions or an unmounted volume.
    """

    def __init__(self, items: Iterable[MediaItem] = ()):
        self._items: Dict[str, MediaItem] = {}
        self._failure: Optional[BaseException] = None
        self.delete_calls: List[List[str]] = []
        self.refuse_delete: set = set()
        for item in items:
            self.add(item)

    @classmethod
    def from_manifest(cls, path: Union[str, Path]) -> "InMemoryMediaSource":
        """Load a JSON manifest: a list of records or ``{"items": [...]}``."""
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except OSError as e:
            raise SourceUnavailable(f"Cannot read manifest {path}: {e}") from e
        records = data["items"] if isinstance(data, dict) else data
        source = cls(item_from_dict(record) for record in records)
        logger.info("Loaded %d items from manifest %s", len(source), path)
        return source

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: MediaItem) -> None:
        if item.modified_at is None:
            item.modified_at = item.captured_at
        self._items[item.id] = item

    def fail_with(self, error: Optional[BaseException]) -> None:
        self._failure = error

    def _check(self) -> None:
        if self._failure is not None:
            raise self._failure

    def _ordered(self) -> List[MediaItem]:
        return sorted(self._items.values(), key=lambda i: (i.captured_at, i.id))

    async def count(self) -> int:
        self._check()
        return len(self._items)

    async def fetch_batch(self, offset: int, limit: int) -> List[MediaItem]:
        self._check()
        return self._ordered()[offset:offset + limit]

    async def fetch_modified_since(self, timestamp_ms: int) -> List[MediaItem]:
        self._check()
        return [item for item in self._ordered() if (item.modified_at or 0) > timestamp_ms]

    async def delete_items(self, item_ids: Sequence[str]) -> DeleteResult:
        self._check()
        self.delete_calls.append(list(item_ids))
        result = DeleteResult()
        for item_id in item_ids:
            if item_id in self.refuse_delete or item_id not in self._items:
                result.failed_ids.append(item_id)
            else:
                del self._items[item_id]
                result.deleted_ids.append(item_id)
        return result
