"""
dayatlas/consistency: Verify, repair and prune the persisted cluster graph.
"""

from .maintenance import (
    DEFAULT_REPAIR_MIN_RADIUS_M,
    ConsistencyChecker,
    CountMismatch,
    DirtyQueue,
    DirtyReport,
    PruneReport,
    RepairReport,
    VerificationReport,
)

__all__ = [
    "ConsistencyChecker",
    "DirtyQueue",
    "DEFAULT_REPAIR_MIN_RADIUS_M",

    # Reports
    "CountMismatch",
    "DirtyReport",
    "PruneReport",
    "RepairReport",
    "VerificationReport",
]
