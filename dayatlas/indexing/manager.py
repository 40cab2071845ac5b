"""
Incremental index manager: orchestrates scans of the media source.

This module provides:
1. ``ScanStateMachine``: single-flight guard across full and incremental scans
2. ``IndexManager.full_scan``: batch 0 in the foreground, the rest in a background task
3. ``IndexManager.incremental_scan``: re-cluster only the days touched since the last scan
4. Hide/unhide/delete that mark clusters dirty instead of re-clustering
5. Progress reporting, status polling and library statistics

Every scan re-clusters affected days wholesale from the store's accumulated
contents. Scans cannot be cancelled once started; they run to completion or
failure.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..consistency.maintenance import ConsistencyChecker, DirtyQueue, DirtyReport
from ..core.errors import ScanAlreadyInProgress, SourceUnavailable
from ..core.models import Cluster, DayGroup, DeleteResult
from ..geocoding.cache import GeocodeCache
from ..labeling.days import DayLabeler
from ..spatial.clustering import diagnose_clusters
from ..storage.base import MediaStore
from ..tools.settings import IndexSettings
from .source import MediaSource, delete_in_chunks
from .statistics import library_summary
from .strategy import ReclusterStrategy, WholeDayRecluster


logger = logging.getLogger(__name__)

LAST_SCAN_TIME_KEY = "last_scan_time"

# Progress milestones (percent)
PROGRESS_COUNTED = 5.0
PROGRESS_BATCHES_DONE = 90.0
PROGRESS_FINALIZING = 95.0
PROGRESS_COMPLETE = 100.0


# -----------------------------
# Scan State
# -----------------------------

class ScanState(Enum):
    """Lifecycle of the single in-flight scan."""
    IDLE = "idle"
    SCANNING = "scanning"
    BACKGROUND_CONTINUING = "background_continuing"
    INCREMENTAL_SCANNING = "incremental_scanning"


class ScanStateMachine:
    """Scan state with atomic compare-and-set transitions."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state = ScanState.IDLE

    @property
    def state(self) -> ScanState:
        with self._lock:
            return self._state

    @property
    def busy(self) -> bool:
        return self.state is not ScanState.IDLE

    def compare_and_set(self, expected: ScanState, new: ScanState) -> bool:
        with self._lock:
            if self._state is not expected:
                return False
            self._state = new
            return True

    def begin(self, state: ScanState) -> None:
        """Leave IDLE for ``state`` or fail fast if another scan is running."""
        with self._lock:
            if self._state is not ScanState.IDLE:
                raise ScanAlreadyInProgress(self._state.value)
            self._state = state

    def reset(self) -> None:
        with self._lock:
            self._state = ScanState.IDLE


# -----------------------------
# Progress and Results
# -----------------------------

@dataclass
class ScanProgress:
    percent: float = 0.0
    """0-100, never decreases within one scan."""

    message: str = ""
    phase: str = "idle"


ProgressCallback = Callable[[ScanProgress], None]


class ProgressReporter:
    """Holds the latest progress and forwards updates to an optional callback."""

    def __init__(self):
        self.current = ScanProgress()
        self._callback: Optional[ProgressCallback] = None

    def start(self, callback: Optional[ProgressCallback] = None) -> None:
        self.current = ScanProgress()
        self._callback = callback

    def report(self, percent: float, message: str, phase: str) -> ScanProgress:
        percent = max(self.current.percent, min(PROGRESS_COMPLETE, percent))
        self.current = ScanProgress(percent=percent, message=message, phase=phase)
        if self._callback is not None:
            self._callback(self.current)
        return self.current


@dataclass
class ScanResult:
    """Outcome of a full or incremental scan."""

    kind: str
    started_at: int
    """Epoch milliseconds at which the scan started."""

    finished_at: Optional[int] = None
    total_items: int = 0
    items_processed: int = 0
    batches_processed: int = 0
    days_processed: int = 0
    clusters_created: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.finished_at is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success
        return data


class ScanHandle:
    """
    Returned by :meth:`IndexManager.full_scan` once the first batch is stored.

    ``first_batch`` reflects the state at that point; :meth:`wait` resolves
    when the background continuation finishes and re-raises its failure.
    """

    def __init__(self, first_batch: ScanResult, task: Optional["asyncio.Task[ScanResult]"] = None):
        self.first_batch = first_batch
        self._task = task

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    async def wait(self) -> ScanResult:
        if self._task is None:
            return self.first_batch
        return await self._task


# -----------------------------
# Index Manager
# -----------------------------

class IndexManager:
    """Drives scans of a media source into a media store."""

    def __init__(
        self,
        source: MediaSource,
        store: MediaStore,
        settings: Optional[IndexSettings] = None,
        geocoder: Optional[GeocodeCache] = None,
        strategy: Optional[ReclusterStrategy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.source = source
        self.store = store
        self.settings = settings or IndexSettings()
        self.geocoder = geocoder if self.settings.reverse_geocoding_enabled else None
        self.labeler = DayLabeler(self.geocoder, label_clusters=self.settings.label_clusters)
        self.strategy = strategy or WholeDayRecluster(
            radius_m=self.settings.cluster_radius_m,
            min_points=self.settings.min_points,
            auto_radius=self.settings.radius_mode == "auto",
            merge_distance_m=self.settings.merge_distance_m,
        )
        self.consistency = ConsistencyChecker(store, self.settings.repair_min_radius_m)
        self.dirty = DirtyQueue()
        self.scan_state = ScanStateMachine()
        self.progress = ProgressReporter()
        self.last_result: Optional[ScanResult] = None
        self._clock = clock
        self._background: Optional[asyncio.Task] = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def last_scan_time(self) -> Optional[int]:
        value = self.store.get_meta(LAST_SCAN_TIME_KEY)
        return int(value) if value is not None else None

    # -----------------------------
    # Day processing
    # -----------------------------

    async def process_day(self, day_key: str) -> List[Cluster]:
        """Re-cluster, label and persist one day from its visible items in the store."""
        items = self.store.items_for_day(day_key)
        if not items:
            self.store.remove_day(day_key)
            return []

        clusters = self.strategy.recluster(items)
        for cluster in clusters:
            await self.labeler.label_cluster(cluster)
        _, majority = await self.labeler.label_day(items)

        day_group = DayGroup(
            day_key=day_key,
            majority_label=majority,
            cluster_ids=[c.id for c in clusters],
            total_visible_items=len(items),
        )
        self.store.replace_day(day_group, clusters)

        if logger.isEnabledFor(logging.DEBUG):
            diagnostics = diagnose_clusters(clusters)
            logger.debug(
                "Day %s: %d items, %d clusters, noise ratio %.2f, silhouette %s",
                day_key,
                diagnostics.num_items,
                diagnostics.num_clusters,
                diagnostics.noise_ratio,
                diagnostics.silhouette_score,
            )

        await asyncio.sleep(0)
        return clusters

    async def _process_days(self, day_keys: Sequence[str]) -> int:
        created = 0
        for day_key in day_keys:
            created += len(await self.process_day(day_key))
        return created

    # -----------------------------
    # Full scan
    # -----------------------------

    async def full_scan(
        self,
        on_progress: Optional[ProgressCallback] = None,
        on_first_batch: Optional[Callable[[ScanResult], None]] = None,
        on_complete: Optional[Callable[[ScanResult], None]] = None,
    ) -> ScanHandle:
        """
        Re-index the whole library.

        Clears every cluster assignment, then fetches, stores and clusters the
        first batch before returning. The remaining batches and a final
        re-clustering pass over every day run in a background task; await
        ``ScanHandle.wait()`` for the final result.

        Raises:
            ScanAlreadyInProgress: If any scan is running
            SourceUnavailable: If the source fails before the first batch is stored
            StoreWriteFailure: If the first batch cannot be persisted
        """
        self.scan_state.begin(ScanState.SCANNING)
        self.progress.start(on_progress)
        result = ScanResult(kind="full", started_at=self._now_ms())
        batch_size = self.settings.batch_size
        logger.info("Full scan started")

        try:
            self.store.clear_cluster_assignments()
            total = await self.source.count()
            result.total_items = total
            batch_count = math.ceil(total / batch_size)
            self.progress.report(PROGRESS_COUNTED, f"Found {total} items", "counting")

            if batch_count == 0:
                self._finish_full_scan(result)
                self.scan_state.reset()
                self._notify_first_batch(on_first_batch, result)
                if on_complete is not None:
                    on_complete(result)
                return ScanHandle(result)

            await self._scan_batch(0, batch_count, result)
        except Exception as e:
            logger.error("Full scan aborted during first batch", exc_info=True)
            result.error = str(e)
            self.last_result = result
            self.scan_state.reset()
            if on_complete is not None:
                on_complete(result)
            raise

        first_batch = ScanResult(**asdict(result))
        self._notify_first_batch(on_first_batch, first_batch)

        self.scan_state.compare_and_set(ScanState.SCANNING, ScanState.BACKGROUND_CONTINUING)
        task = asyncio.get_running_loop().create_task(
            self._continue_full_scan(result, batch_count, on_complete)
        )
        task.add_done_callback(self._background_done)
        self._background = task
        return ScanHandle(first_batch, task)

    @staticmethod
    def _notify_first_batch(callback: Optional[Callable[[ScanResult], None]], result: ScanResult) -> None:
        """Run the first-batch callback; a failing callback never stops the scan."""
        if callback is None:
            return
        try:
            callback(result)
        except Exception:
            logger.warning("on_first_batch callback failed", exc_info=True)

    async def _scan_batch(self, index: int, batch_count: int, result: ScanResult) -> None:
        batch_size = self.settings.batch_size
        items = await self.source.fetch_batch(index * batch_size, batch_size)
        self.store.upsert_items(items)

        day_keys = sorted({item.day_key for item in items})
        result.clusters_created += await self._process_days(day_keys)
        result.items_processed += len(items)
        result.batches_processed += 1

        span = PROGRESS_BATCHES_DONE - PROGRESS_COUNTED
        percent = PROGRESS_COUNTED + span * (index + 1) / batch_count
        phase = "foreground" if index == 0 else "background"
        self.progress.report(
            percent,
            f"Processed batch {index + 1}/{batch_count} ({result.items_processed}/{result.total_items} items)",
            phase,
        )
        logger.info("Batch %d/%d stored: %d items, %d days", index + 1, batch_count, len(items), len(day_keys))

    async def _continue_full_scan(
        self,
        result: ScanResult,
        batch_count: int,
        on_complete: Optional[Callable[[ScanResult], None]],
    ) -> ScanResult:
        try:
            for index in range(1, batch_count):
                await self._scan_batch(index, batch_count, result)

            self.progress.report(PROGRESS_FINALIZING, "Re-clustering all days", "finalizing")
            day_keys = self.store.all_day_keys()
            result.clusters_created = await self._process_days(day_keys)
            result.days_processed = len(day_keys)
            self._finish_full_scan(result)
            return result
        except Exception as e:
            logger.error("Full scan aborted in background", exc_info=True)
            result.error = str(e)
            self.last_result = result
            raise
        finally:
            self.scan_state.reset()
            if on_complete is not None:
                on_complete(result)

    def _finish_full_scan(self, result: ScanResult) -> None:
        self.store.set_meta(LAST_SCAN_TIME_KEY, str(result.started_at))
        result.finished_at = self._now_ms()
        self.last_result = result
        self.progress.report(PROGRESS_COMPLETE, f"Indexed {result.items_processed} items", "complete")
        logger.info(
            "Full scan finished: %d items, %d days, %d clusters",
            result.items_processed,
            result.days_processed,
            result.clusters_created,
        )

    def _background_done(self, task: asyncio.Task) -> None:
        # ScanHandle.wait() re-raises; mark the exception as retrieved.
        if not task.cancelled():
            task.exception()

    # -----------------------------
    # Incremental scan
    # -----------------------------

    async def incremental_scan(self, on_progress: Optional[ProgressCallback] = None) -> ScanResult:
        """
        Index items modified since the last successful scan.

        Every day an item now belongs to, or belonged to before this scan, is
        re-clustered from its full membership. A source failure is logged and
        returned in the result without advancing ``last_scan_time``.

        Raises:
            ScanAlreadyInProgress: If any scan is running
            StoreWriteFailure: If persisting the new items or a day fails
        """
        self.scan_state.begin(ScanState.INCREMENTAL_SCANNING)
        self.progress.start(on_progress)
        result = ScanResult(kind="incremental", started_at=self._now_ms())
        since = self.last_scan_time or 0

        try:
            self.progress.report(0.0, "Checking for new items", "incremental")
            try:
                items = await self.source.fetch_modified_since(since)
            except SourceUnavailable as e:
                logger.warning("Incremental scan aborted, source unavailable: %s", e)
                result.error = str(e)
                return result

            result.total_items = len(items)
            previous_days = self.store.day_keys_of(item.id for item in items)
            self.store.upsert_items(items)
            day_keys = sorted({item.day_key for item in items} | set(previous_days.values()))

            for position, day_key in enumerate(day_keys, start=1):
                result.clusters_created += len(await self.process_day(day_key))
                self.progress.report(
                    PROGRESS_BATCHES_DONE * position / len(day_keys),
                    f"Re-clustered {position}/{len(day_keys)} days",
                    "incremental",
                )

            result.items_processed = len(items)
            result.days_processed = len(day_keys)
            self.store.set_meta(LAST_SCAN_TIME_KEY, str(result.started_at))
            result.finished_at = self._now_ms()
            self.progress.report(PROGRESS_COMPLETE, f"Indexed {len(items)} new items", "complete")
            logger.info("Incremental scan finished: %d items, %d days", len(items), len(day_keys))
            return result
        except Exception as e:
            result.error = str(e)
            raise
        finally:
            self.last_result = result
            self.scan_state.reset()

    # -----------------------------
    # Hide / unhide / delete
    # -----------------------------

    def _owning_clusters(self, item_ids: Sequence[str]) -> List[Optional[str]]:
        return [item.cluster_ref for item in self.store.get_items(item_ids)]

    def hide_items(self, item_ids: Sequence[str]) -> None:
        """Soft-delete items. Their clusters' counts go stale until ``process_dirty``."""
        item_ids = list(item_ids)
        self.store.set_hidden(item_ids, True)
        self.dirty.mark(self._owning_clusters(item_ids))

    def unhide_items(self, item_ids: Sequence[str]) -> None:
        item_ids = list(item_ids)
        self.store.set_hidden(item_ids, False)
        self.dirty.mark(self._owning_clusters(item_ids))

    async def delete_items(self, item_ids: Sequence[str]) -> DeleteResult:
        """
        Delete items from the source in chunks, then from the store.

        Only ids the source reports as deleted leave the store; failed ids
        are returned for the caller to retry.
        """
        item_ids = list(item_ids)
        owners = {item.id: item.cluster_ref for item in self.store.get_items(item_ids)}
        result = await delete_in_chunks(self.source, item_ids, self.settings.delete_chunk_size)
        if result.deleted_ids:
            self.store.delete_items(result.deleted_ids)
            self.dirty.mark(owners.get(item_id) for item_id in result.deleted_ids)
        if result.failed_ids:
            logger.warning("Failed to delete %d of %d items", len(result.failed_ids), len(item_ids))
        return result

    def process_dirty(self) -> DirtyReport:
        """Recount clusters touched by hide/unhide/delete and prune empties."""
        return self.consistency.process_dirty(self.dirty)

    # -----------------------------
    # Status and statistics
    # -----------------------------

    def status(self) -> Dict[str, Any]:
        progress = self.progress.current
        return {
            "state": self.scan_state.state.value,
            "is_processing": self.scan_state.busy,
            "percent": progress.percent,
            "message": progress.message,
            "phase": progress.phase,
            "last_scan_time": self.last_scan_time,
            "dirty_clusters": len(self.dirty),
            "last_error": self.last_result.error if self.last_result else None,
        }

    def statistics(self) -> Dict[str, Any]:
        summary = library_summary(self.store)
        return {
            "total_items": self.store.count_items(include_hidden=True),
            "visible_items": self.store.count_items(include_hidden=False),
            "geotagged_items": int(summary["geotagged"].sum()),
            "days": int(len(summary)),
            "clusters": int(summary["clusters"].sum()),
            "last_scan_time": self.last_scan_time,
        }
