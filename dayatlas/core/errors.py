"""
Exception taxonomy shared by the indexing pipeline.

Only a few of these are fatal to a scan. ``GeocodeUnavailable`` is always
absorbed by the geocode cache, and ``SourceUnavailable`` is absorbed by the
incremental scan (which is best-effort) but aborts a full scan.
"""

from __future__ import annotations

from typing import Optional


class DayAtlasError(Exception):
    """Base class for all dayatlas errors."""


class SourceUnavailable(DayAtlasError):
    """The media source could not be read (permission or IO failure)."""


class StoreWriteFailure(DayAtlasError):
    """A write to the persistent store failed.

    The batch that triggered it is rolled back; previously committed batches
    stay intact.
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Store write failed during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ScanAlreadyInProgress(DayAtlasError):
    """A full or incremental scan was requested while another one is active."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"A scan is already running (state={state})")


class GeocodeUnavailable(DayAtlasError):
    """The reverse-geocode provider is unavailable or rate limited."""


class InvalidClusteringParameters(DayAtlasError, ValueError):
    """Clustering was called with a radius or minimum point count it cannot use."""
