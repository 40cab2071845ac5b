"""
dayatlas/indexing: Scan orchestration over a media source.

This module provides the index manager (full and incremental scans with a
foreground/background split), the media source interface and the per-day
re-clustering strategy.
"""

from .manager import (
    LAST_SCAN_TIME_KEY,
    IndexManager,
    ProgressReporter,
    ScanHandle,
    ScanProgress,
    ScanResult,
    ScanState,
    ScanStateMachine,
)
from .source import (
    DEFAULT_DELETE_CHUNK_SIZE,
    InMemoryMediaSource,
    MediaSource,
    delete_in_chunks,
    item_from_dict,
)
from .statistics import library_summary
from .strategy import ReclusterStrategy, WholeDayRecluster

__all__ = [
    # Manager
    "IndexManager",
    "ProgressReporter",
    "ScanHandle",
    "ScanProgress",
    "ScanResult",
    "ScanState",
    "ScanStateMachine",
    "LAST_SCAN_TIME_KEY",

    # Media source
    "MediaSource",
    "InMemoryMediaSource",
    "delete_in_chunks",
    "item_from_dict",
    "DEFAULT_DELETE_CHUNK_SIZE",

    # Strategies and reporting
    "ReclusterStrategy",
    "WholeDayRecluster",
    "library_summary",
]
