"""Pydantic models for the dayatlas HTTP API."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class LatLon(BaseModel):
    """Simple latitude/longitude container."""

    lat: float = Field(..., description="Latitude in decimal degrees")
    lon: float = Field(..., description="Longitude in decimal degrees")


class ClusterOut(BaseModel):
    id: str
    day_key: str = Field(..., alias="dayKey")
    centroid: Optional[LatLon] = None
    radius_m: float = Field(..., alias="radiusM")
    label: Optional[str] = None
    member_count: int = Field(0, alias="memberCount")

    model_config = {"populate_by_name": True}


class DayOut(BaseModel):
    day_key: str = Field(..., alias="dayKey")
    majority_label: Optional[str] = Field(default=None, alias="majorityLabel")
    cluster_ids: List[str] = Field(default_factory=list, alias="clusterIds")
    total_visible_items: int = Field(0, alias="totalVisibleItems")

    model_config = {"populate_by_name": True}


class ScanResultOut(BaseModel):
    kind: str
    started_at: int = Field(..., alias="startedAt")
    finished_at: Optional[int] = Field(default=None, alias="finishedAt")
    total_items: int = Field(0, alias="totalItems")
    items_processed: int = Field(0, alias="itemsProcessed")
    batches_processed: int = Field(0, alias="batchesProcessed")
    days_processed: int = Field(0, alias="daysProcessed")
    clusters_created: int = Field(0, alias="clustersCreated")
    error: Optional[str] = None
    success: bool = False

    model_config = {"populate_by_name": True}


class ScanStatusOut(BaseModel):
    state: str
    is_processing: bool = Field(..., alias="isProcessing")
    percent: float
    message: str
    phase: str
    last_scan_time: Optional[int] = Field(default=None, alias="lastScanTime")
    dirty_clusters: int = Field(0, alias="dirtyClusters")
    last_error: Optional[str] = Field(default=None, alias="lastError")

    model_config = {"populate_by_name": True}


class ItemIdsRequest(BaseModel):
    item_ids: List[str] = Field(..., alias="itemIds", min_length=1)

    model_config = {"populate_by_name": True}


class DeleteResponse(BaseModel):
    success: bool
    deleted_ids: List[str] = Field(default_factory=list, alias="deletedIds")
    failed_ids: List[str] = Field(default_factory=list, alias="failedIds")

    model_config = {"populate_by_name": True}


class MismatchOut(BaseModel):
    cluster_id: str = Field(..., alias="clusterId")
    day_key: str = Field(..., alias="dayKey")
    recorded: int
    actual: int

    model_config = {"populate_by_name": True}


class VerifyResponse(BaseModel):
    ok: bool
    clusters_checked: int = Field(0, alias="clustersChecked")
    orphaned_items: int = Field(0, alias="orphanedItems")
    mismatches: List[MismatchOut] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class RepairResponse(BaseModel):
    clusters_checked: int = Field(0, alias="clustersChecked")
    relinked_items: int = Field(0, alias="relinkedItems")
    counts_updated: int = Field(0, alias="countsUpdated")
    failures: Dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class PruneResponse(BaseModel):
    deleted_clusters: List[str] = Field(default_factory=list, alias="deletedClusters")
    deleted_days: List[str] = Field(default_factory=list, alias="deletedDays")
    failures: Dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class ProcessDirtyResponse(BaseModel):
    recounted: int = 0
    prune: PruneResponse

    model_config = {"populate_by_name": True}


class StatsResponse(BaseModel):
    total_items: int = Field(0, alias="totalItems")
    visible_items: int = Field(0, alias="visibleItems")
    geotagged_items: int = Field(0, alias="geotaggedItems")
    days: int = 0
    clusters: int = 0
    last_scan_time: Optional[int] = Field(default=None, alias="lastScanTime")
    geocode_cache: Optional[Dict[str, float]] = Field(default=None, alias="geocodeCache")

    model_config = {"populate_by_name": True}
