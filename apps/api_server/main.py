"""FastAPI server exposing the dayatlas index: scans, days, clusters and maintenance."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dayatlas.core.errors import (
    DayAtlasError,
    ScanAlreadyInProgress,
    SourceUnavailable,
    StoreWriteFailure,
)
from dayatlas.core.models import Cluster, DayGroup
from dayatlas.geocoding import GazetteerProvider, GeocodeCache
from dayatlas.indexing import IndexManager, InMemoryMediaSource
from dayatlas.storage import SQLiteMediaStore
from dayatlas.tools import ConfigLoader, IndexSettings

from .schemas.models import (
    ClusterOut,
    DayOut,
    DeleteResponse,
    ItemIdsRequest,
    LatLon,
    MismatchOut,
    ProcessDirtyResponse,
    PruneResponse,
    RepairResponse,
    ScanResultOut,
    ScanStatusOut,
    StatsResponse,
    VerifyResponse,
)

load_dotenv()

logging.basicConfig(
    level=os.getenv("DAYATLAS_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="dayatlas Index Server", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------
# Manager wiring
# -----------------------------

def build_manager() -> IndexManager:
    """Assemble an IndexManager from ``DAYATLAS_*`` environment variables."""
    settings = IndexSettings.from_profile(os.getenv("DAYATLAS_PROFILE"))
    store = SQLiteMediaStore(os.getenv("DAYATLAS_DB_PATH", "dayatlas.db"))

    manifest = os.getenv("DAYATLAS_MANIFEST")
    source = InMemoryMediaSource.from_manifest(manifest) if manifest else InMemoryMediaSource()

    geocoder = None
    if settings.reverse_geocoding_enabled:
        default_gazetteer = ConfigLoader.config_dir() / "gazetteers" / "sample.yaml"
        gazetteer_path = Path(os.getenv("DAYATLAS_GAZETTEER", str(default_gazetteer)))
        provider = GazetteerProvider.from_yaml(gazetteer_path) if gazetteer_path.exists() else None
        geocoder = GeocodeCache(
            store,
            provider,
            ttl_seconds=settings.geocode_ttl_seconds,
            precision=settings.coordinate_precision,
        )

    return IndexManager(source, store, settings=settings, geocoder=geocoder)


@lru_cache(maxsize=1)
def get_manager() -> IndexManager:
    return build_manager()


_STATUS_CODES = {
    ScanAlreadyInProgress: 409,
    SourceUnavailable: 503,
    StoreWriteFailure: 500,
}


@app.exception_handler(DayAtlasError)
async def dayatlas_error_handler(request: Request, exc: DayAtlasError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


# -----------------------------
# Converters
# -----------------------------

def _cluster_out(cluster: Cluster) -> ClusterOut:
    centroid = None
    if not cluster.centroid.is_sentinel:
        centroid = LatLon(lat=cluster.centroid.lat, lon=cluster.centroid.lon)
    return ClusterOut(
        id=cluster.id,
        day_key=cluster.day_key,
        centroid=centroid,
        radius_m=cluster.radius_m,
        label=cluster.label,
        member_count=cluster.size,
    )


def _day_out(group: DayGroup) -> DayOut:
    return DayOut(
        day_key=group.day_key,
        majority_label=group.majority_label,
        cluster_ids=group.cluster_ids,
        total_visible_items=group.total_visible_items,
    )


# -----------------------------
# Endpoints
# -----------------------------

@app.get("/health")
async def health_check() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/scan/full")
async def full_scan(manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    """Start a full scan; responds once the first batch is indexed."""
    handle = await manager.full_scan()
    result = ScanResultOut(**handle.first_batch.to_dict())
    return {"firstBatch": result.model_dump(by_alias=True), "backgroundDone": handle.done}


@app.post("/scan/incremental")
async def incremental_scan(manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    result = await manager.incremental_scan()
    return ScanResultOut(**result.to_dict()).model_dump(by_alias=True)


@app.get("/scan/status")
async def scan_status(manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    return ScanStatusOut(**manager.status()).model_dump(by_alias=True)


@app.get("/days")
async def list_days(manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    days: List[DayOut] = [_day_out(group) for group in manager.store.all_day_groups()]
    return {"days": [day.model_dump(by_alias=True) for day in days]}


@app.get("/days/{day_key}/clusters")
async def day_clusters(day_key: str, manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    group = manager.store.get_day_group(day_key)
    if group is None:
        raise HTTPException(status_code=404, detail=f"No clusters for day {day_key}")
    clusters = [_cluster_out(c) for c in manager.store.clusters_for_day(day_key)]
    return {
        "day": _day_out(group).model_dump(by_alias=True),
        "clusters": [c.model_dump(by_alias=True) for c in clusters],
    }


@app.get("/clusters/map")
async def map_clusters(manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    clusters = [_cluster_out(c) for c in manager.store.clusters_for_map()]
    return {"clusters": [c.model_dump(by_alias=True) for c in clusters]}


@app.post("/items/hide")
async def hide_items(request: ItemIdsRequest, manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    manager.hide_items(request.item_ids)
    return {"hidden": len(request.item_ids), "dirtyClusters": len(manager.dirty)}


@app.post("/items/unhide")
async def unhide_items(request: ItemIdsRequest, manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    manager.unhide_items(request.item_ids)
    return {"unhidden": len(request.item_ids), "dirtyClusters": len(manager.dirty)}


@app.post("/items/delete")
async def delete_items(request: ItemIdsRequest, manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    result = await manager.delete_items(request.item_ids)
    response = DeleteResponse(
        success=result.success,
        deleted_ids=result.deleted_ids,
        failed_ids=result.failed_ids,
    )
    return response.model_dump(by_alias=True)


@app.post("/maintenance/verify")
async def verify(manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    report = manager.consistency.verify()
    response = VerifyResponse(
        ok=report.ok,
        clusters_checked=report.clusters_checked,
        orphaned_items=report.orphaned_items,
        mismatches=[
            MismatchOut(cluster_id=m.cluster_id, day_key=m.day_key, recorded=m.recorded, actual=m.actual)
            for m in report.mismatches
        ],
    )
    return response.model_dump(by_alias=True)


@app.post("/maintenance/repair")
async def repair(manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    report = manager.consistency.repair()
    response = RepairResponse(
        clusters_checked=report.clusters_checked,
        relinked_items=report.relinked_count,
        counts_updated=report.counts_updated,
        failures=report.failures,
    )
    return response.model_dump(by_alias=True)


@app.post("/maintenance/prune")
async def prune(manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    report = manager.consistency.prune_empty()
    response = PruneResponse(
        deleted_clusters=report.deleted_clusters,
        deleted_days=report.deleted_days,
        failures=report.failures,
    )
    return response.model_dump(by_alias=True)


@app.post("/maintenance/process-dirty")
async def process_dirty(manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    report = manager.process_dirty()
    response = ProcessDirtyResponse(
        recounted=report.recounted,
        prune=PruneResponse(
            deleted_clusters=report.prune.deleted_clusters,
            deleted_days=report.prune.deleted_days,
            failures=report.prune.failures,
        ),
    )
    return response.model_dump(by_alias=True)


@app.get("/stats")
async def stats(manager: IndexManager = Depends(get_manager)) -> Dict[str, Any]:
    data = manager.statistics()
    geocode = manager.geocoder.stats()["persisted"] if manager.geocoder else None
    return StatsResponse(**data, geocode_cache=geocode).model_dump(by_alias=True)
