"""
SQLite-backed media store.

One connection is held for the lifetime of the store (which also keeps
``:memory:`` databases alive). Each public write runs in its own
transaction, so a batch is committed or rolled back as a unit.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from ..core.errors import StoreWriteFailure
from ..core.models import (
    Cluster,
    Coordinate,
    DayGroup,
    GeocodeCacheEntry,
    MediaItem,
    MediaKind,
)
from .base import BoundingBox


logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS media_items (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    captured_at INTEGER NOT NULL,
    day_key TEXT NOT NULL,
    lat REAL,
    lon REAL,
    size_bytes INTEGER NOT NULL DEFAULT 0,
    width INTEGER NOT NULL DEFAULT 0,
    height INTEGER NOT NULL DEFAULT 0,
    duration_seconds REAL,
    cluster_ref TEXT,
    hidden INTEGER NOT NULL DEFAULT 0,
    filename TEXT,
    uri TEXT,
    tz_offset_minutes INTEGER,
    modified_at INTEGER
);

CREATE TABLE IF NOT EXISTS clusters (
    id TEXT PRIMARY KEY,
    day_key TEXT NOT NULL,
    centroid_lat REAL NOT NULL,
    centroid_lon REAL NOT NULL,
    label TEXT,
    radius_m REAL NOT NULL,
    member_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS day_groups (
    day_key TEXT PRIMARY KEY,
    majority_label TEXT,
    total_visible_items INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS geocode_cache (
    key TEXT PRIMARY KEY,
    label TEXT NOT NULL,
    place_name TEXT,
    cached_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS index_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_media_day ON media_items(day_key);
CREATE INDEX IF NOT EXISTS idx_media_cluster ON media_items(cluster_ref);
CREATE INDEX IF NOT EXISTS idx_media_location ON media_items(lat, lon);
CREATE INDEX IF NOT EXISTS idx_clusters_day ON clusters(day_key);
"""

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on old builds.
_IN_CLAUSE_CHUNK = 500

_UPSERT_ITEM_SQL = """
INSERT INTO media_items (
    id, kind, captured_at, day_key, lat, lon, size_bytes, width, height,
    duration_seconds, filename, uri, tz_offset_minutes, modified_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    kind = excluded.kind,
    captured_at = excluded.captured_at,
    day_key = excluded.day_key,
    lat = excluded.lat,
    lon = excluded.lon,
    size_bytes = excluded.size_bytes,
    width = excluded.width,
    height = excluded.height,
    duration_seconds = excluded.duration_seconds,
    filename = excluded.filename,
    uri = excluded.uri,
    tz_offset_minutes = excluded.tz_offset_minutes,
    modified_at = excluded.modified_at
"""


def _chunks(values: Sequence[str], size: int = _IN_CLAUSE_CHUNK) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _placeholders(count: int) -> str:
    return ",".join("?" * count)


def _row_to_item(row: sqlite3.Row) -> MediaItem:
    coordinate = None
    if row["lat"] is not None and row["lon"] is not None:
        coordinate = Coordinate(row["lat"], row["lon"])
    return MediaItem(
        id=row["id"],
        kind=MediaKind(row["kind"]),
        captured_at=row["captured_at"],
        coordinate=coordinate,
        size_bytes=row["size_bytes"],
        width=row["width"],
        height=row["height"],
        duration_seconds=row["duration_seconds"],
        cluster_ref=row["cluster_ref"],
        hidden=bool(row["hidden"]),
        filename=row["filename"],
        uri=row["uri"],
        tz_offset_minutes=row["tz_offset_minutes"],
        modified_at=row["modified_at"],
    )


def _row_to_cluster(row: sqlite3.Row) -> Cluster:
    return Cluster(
        id=row["id"],
        day_key=row["day_key"],
        centroid=Coordinate(row["centroid_lat"], row["centroid_lon"]),
        radius_m=row["radius_m"],
        label=row["label"],
        member_count=row["member_count"],
    )


class SQLiteMediaStore:
    """SQLite implementation of :class:`~dayatlas.storage.base.MediaStore`."""

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()
        logger.info("Media store opened at %s", path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -----------------------------
    # Plumbing
    # -----------------------------

    @contextmanager
    def _write(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a write as one transaction; failures surface as StoreWriteFailure."""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                raise StoreWriteFailure(operation, exc) from exc

    def _query(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    def _query_in(self, sql_template: str, ids: Iterable[str], params: Sequence = ()) -> List[sqlite3.Row]:
        """Run ``sql_template`` (with one ``{ids}`` slot) over chunks of ``ids``."""
        rows: List[sqlite3.Row] = []
        id_list = list(ids)
        for chunk in _chunks(id_list):
            sql = sql_template.format(ids=_placeholders(len(chunk)))
            rows.extend(self._query(sql, [*params, *chunk]))
        return rows

    @staticmethod
    def _execute_in(conn: sqlite3.Connection, sql_template: str, ids: Sequence[str], params: Sequence = ()) -> None:
        for chunk in _chunks(list(ids)):
            conn.execute(sql_template.format(ids=_placeholders(len(chunk))), (*params, *chunk))

    # -----------------------------
    # Media items
    # -----------------------------

    def upsert_items(self, items: Sequence[MediaItem]) -> None:
        rows = [
            (
                item.id,
                item.kind.value,
                item.captured_at,
                item.day_key,
                item.coordinate.lat if item.coordinate else None,
                item.coordinate.lon if item.coordinate else None,
                item.size_bytes,
                item.width,
                item.height,
                item.duration_seconds,
                item.filename,
                item.uri,
                item.tz_offset_minutes,
                item.modified_at,
            )
            for item in items
        ]
        with self._write("upsert_items") as conn:
            conn.executemany(_UPSERT_ITEM_SQL, rows)

    def get_item(self, item_id: str) -> Optional[MediaItem]:
        rows = self._query("SELECT * FROM media_items WHERE id = ?", (item_id,))
        return _row_to_item(rows[0]) if rows else None

    def get_items(self, item_ids: Iterable[str]) -> List[MediaItem]:
        rows = self._query_in("SELECT * FROM media_items WHERE id IN ({ids}) ORDER BY captured_at, id", item_ids)
        return sorted((_row_to_item(r) for r in rows), key=lambda i: (i.captured_at, i.id))

    def items_for_day(self, day_key: str, include_hidden: bool = False) -> List[MediaItem]:
        sql = "SELECT * FROM media_items WHERE day_key = ?"
        if not include_hidden:
            sql += " AND hidden = 0"
        sql += " ORDER BY captured_at, id"
        return [_row_to_item(r) for r in self._query(sql, (day_key,))]

    def items_in_day_range(self, start_day: str, end_day: str, include_hidden: bool = False) -> List[MediaItem]:
        sql = "SELECT * FROM media_items WHERE day_key BETWEEN ? AND ?"
        if not include_hidden:
            sql += " AND hidden = 0"
        sql += " ORDER BY captured_at, id"
        return [_row_to_item(r) for r in self._query(sql, (start_day, end_day))]

    def items_for_cluster(self, cluster_id: str, include_hidden: bool = False) -> List[MediaItem]:
        sql = "SELECT * FROM media_items WHERE cluster_ref = ?"
        if not include_hidden:
            sql += " AND hidden = 0"
        sql += " ORDER BY captured_at, id"
        return [_row_to_item(r) for r in self._query(sql, (cluster_id,))]

    def items_in_box(self, day_key: str, box: BoundingBox) -> List[MediaItem]:
        min_lat, max_lat, min_lon, max_lon = box
        rows = self._query(
            """
            SELECT * FROM media_items
            WHERE day_key = ?
              AND lat IS NOT NULL AND lon IS NOT NULL
              AND lat BETWEEN ? AND ?
              AND lon BETWEEN ? AND ?
            ORDER BY captured_at, id
            """,
            (day_key, min_lat, max_lat, min_lon, max_lon),
        )
        return [_row_to_item(r) for r in rows]

    def unlinked_items(self, day_key: Optional[str] = None) -> List[MediaItem]:
        sql = """
            SELECT * FROM media_items
            WHERE (cluster_ref IS NULL OR cluster_ref NOT IN (SELECT id FROM clusters))
        """
        params: List[str] = []
        if day_key is not None:
            sql += " AND day_key = ?"
            params.append(day_key)
        sql += " ORDER BY captured_at, id"
        return [_row_to_item(r) for r in self._query(sql, params)]

    def day_keys_of(self, item_ids: Iterable[str]) -> Dict[str, str]:
        rows = self._query_in("SELECT id, day_key FROM media_items WHERE id IN ({ids})", item_ids)
        return {row["id"]: row["day_key"] for row in rows}

    def all_day_keys(self) -> List[str]:
        rows = self._query("SELECT DISTINCT day_key FROM media_items ORDER BY day_key")
        return [row["day_key"] for row in rows]

    def count_items(self, include_hidden: bool = True) -> int:
        sql = "SELECT COUNT(*) AS n FROM media_items"
        if not include_hidden:
            sql += " WHERE hidden = 0"
        return int(self._query(sql)[0]["n"])

    def set_hidden(self, item_ids: Iterable[str], hidden: bool) -> None:
        with self._write("set_hidden") as conn:
            self._execute_in(conn, "UPDATE media_items SET hidden = ? WHERE id IN ({ids})", list(item_ids), (int(hidden),))

    def delete_items(self, item_ids: Iterable[str]) -> None:
        with self._write("delete_items") as conn:
            self._execute_in(conn, "DELETE FROM media_items WHERE id IN ({ids})", list(item_ids))

    def assign_cluster(self, cluster_id: Optional[str], item_ids: Iterable[str]) -> None:
        with self._write("assign_cluster") as conn:
            self._execute_in(conn, "UPDATE media_items SET cluster_ref = ? WHERE id IN ({ids})", list(item_ids), (cluster_id,))

    def clear_cluster_refs(self, item_ids: Iterable[str]) -> None:
        self.assign_cluster(None, item_ids)

    def clear_cluster_assignments(self) -> None:
        with self._write("clear_cluster_assignments") as conn:
            conn.execute("UPDATE media_items SET cluster_ref = NULL")
            conn.execute("DELETE FROM clusters")
            conn.execute("DELETE FROM day_groups")
        logger.info("Cleared all cluster assignments")

    # -----------------------------
    # Clusters and day groups
    # -----------------------------

    def replace_day(self, day_group: DayGroup, clusters: Sequence[Cluster]) -> None:
        with self._write("replace_day") as conn:
            self._drop_day_clusters(conn, day_group.day_key)
            for cluster in clusters:
                visible = sum(1 for item in cluster.members if not item.hidden)
                conn.execute(
                    """
                    INSERT OR REPLACE INTO clusters
                    (id, day_key, centroid_lat, centroid_lon, label, radius_m, member_count)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        cluster.id,
                        cluster.day_key,
                        cluster.centroid.lat,
                        cluster.centroid.lon,
                        cluster.label,
                        cluster.radius_m,
                        visible,
                    ),
                )
                self._execute_in(
                    conn,
                    "UPDATE media_items SET cluster_ref = ? WHERE id IN ({ids})",
                    cluster.member_ids,
                    (cluster.id,),
                )
                cluster.member_count = visible
            conn.execute(
                """
                INSERT OR REPLACE INTO day_groups (day_key, majority_label, total_visible_items)
                VALUES (?, ?, ?)
                """,
                (day_group.day_key, day_group.majority_label, day_group.total_visible_items),
            )

    def remove_day(self, day_key: str) -> None:
        with self._write("remove_day") as conn:
            self._drop_day_clusters(conn, day_key)
            conn.execute("DELETE FROM day_groups WHERE day_key = ?", (day_key,))

    @staticmethod
    def _drop_day_clusters(conn: sqlite3.Connection, day_key: str) -> None:
        conn.execute(
            "UPDATE media_items SET cluster_ref = NULL "
            "WHERE cluster_ref IN (SELECT id FROM clusters WHERE day_key = ?)",
            (day_key,),
        )
        conn.execute("DELETE FROM clusters WHERE day_key = ?", (day_key,))

    def get_cluster(self, cluster_id: str) -> Optional[Cluster]:
        rows = self._query("SELECT * FROM clusters WHERE id = ?", (cluster_id,))
        return _row_to_cluster(rows[0]) if rows else None

    def clusters_for_day(self, day_key: str) -> List[Cluster]:
        rows = self._query(
            "SELECT * FROM clusters WHERE day_key = ? ORDER BY member_count DESC, id",
            (day_key,),
        )
        return [_row_to_cluster(r) for r in rows]

    def all_clusters(self) -> List[Cluster]:
        rows = self._query("SELECT * FROM clusters ORDER BY day_key, member_count DESC, id")
        return [_row_to_cluster(r) for r in rows]

    def clusters_for_map(self) -> List[Cluster]:
        rows = self._query(
            """
            SELECT * FROM clusters
            WHERE NOT (centroid_lat = 0 AND centroid_lon = 0) AND member_count > 0
            ORDER BY member_count DESC, id
            """
        )
        return [_row_to_cluster(r) for r in rows]

    def visible_counts(self) -> Dict[str, int]:
        rows = self._query(
            """
            SELECT cluster_ref, COUNT(*) AS n FROM media_items
            WHERE hidden = 0 AND cluster_ref IS NOT NULL
            GROUP BY cluster_ref
            """
        )
        return {row["cluster_ref"]: int(row["n"]) for row in rows}

    def visible_count_for_cluster(self, cluster_id: str) -> int:
        rows = self._query(
            "SELECT COUNT(*) AS n FROM media_items WHERE cluster_ref = ? AND hidden = 0",
            (cluster_id,),
        )
        return int(rows[0]["n"])

    def set_cluster_count(self, cluster_id: str, count: int) -> None:
        with self._write("set_cluster_count") as conn:
            conn.execute("UPDATE clusters SET member_count = ? WHERE id = ?", (count, cluster_id))

    def delete_clusters(self, cluster_ids: Iterable[str]) -> None:
        ids = list(cluster_ids)
        with self._write("delete_clusters") as conn:
            self._execute_in(conn, "UPDATE media_items SET cluster_ref = NULL WHERE cluster_ref IN ({ids})", ids)
            self._execute_in(conn, "DELETE FROM clusters WHERE id IN ({ids})", ids)

    def _cluster_ids_by_day(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for cluster in self.all_clusters():
            grouped.setdefault(cluster.day_key, []).append(cluster.id)
        return grouped

    def get_day_group(self, day_key: str) -> Optional[DayGroup]:
        rows = self._query("SELECT * FROM day_groups WHERE day_key = ?", (day_key,))
        if not rows:
            return None
        row = rows[0]
        return DayGroup(
            day_key=row["day_key"],
            majority_label=row["majority_label"],
            cluster_ids=[c.id for c in self.clusters_for_day(day_key)],
            total_visible_items=row["total_visible_items"],
        )

    def all_day_groups(self) -> List[DayGroup]:
        cluster_ids = self._cluster_ids_by_day()
        rows = self._query("SELECT * FROM day_groups ORDER BY day_key DESC")
        return [
            DayGroup(
                day_key=row["day_key"],
                majority_label=row["majority_label"],
                cluster_ids=cluster_ids.get(row["day_key"], []),
                total_visible_items=row["total_visible_items"],
            )
            for row in rows
        ]

    def upsert_day_group(self, day_group: DayGroup) -> None:
        with self._write("upsert_day_group") as conn:
            conn.execute(
                """
                INSERT INTO day_groups (day_key, majority_label, total_visible_items)
                VALUES (?, ?, ?)
                ON CONFLICT(day_key) DO UPDATE SET
                    majority_label = excluded.majority_label,
                    total_visible_items = excluded.total_visible_items
                """,
                (day_group.day_key, day_group.majority_label, day_group.total_visible_items),
            )

    def delete_day_groups(self, day_keys: Iterable[str]) -> None:
        with self._write("delete_day_groups") as conn:
            self._execute_in(conn, "DELETE FROM day_groups WHERE day_key IN ({ids})", list(day_keys))

    def refresh_day_totals(self) -> None:
        with self._write("refresh_day_totals") as conn:
            conn.execute(
                """
                UPDATE day_groups SET total_visible_items = (
                    SELECT COALESCE(SUM(member_count), 0) FROM clusters
                    WHERE clusters.day_key = day_groups.day_key
                )
                """
            )

    # -----------------------------
    # Geocode cache and metadata
    # -----------------------------

    def get_geocode(self, key: str) -> Optional[GeocodeCacheEntry]:
        rows = self._query("SELECT * FROM geocode_cache WHERE key = ?", (key,))
        if not rows:
            return None
        row = rows[0]
        return GeocodeCacheEntry(
            key=row["key"],
            label=row["label"],
            place_name=row["place_name"],
            cached_at=row["cached_at"],
        )

    def set_geocode(self, entry: GeocodeCacheEntry) -> None:
        with self._write("set_geocode") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO geocode_cache (key, label, place_name, cached_at) VALUES (?, ?, ?, ?)",
                (entry.key, entry.label, entry.place_name, entry.cached_at),
            )

    def purge_geocode_before(self, cutoff: float) -> int:
        with self._write("purge_geocode_before") as conn:
            cursor = conn.execute("DELETE FROM geocode_cache WHERE cached_at < ?", (cutoff,))
            return cursor.rowcount

    def geocode_stats(self) -> Dict[str, float]:
        row = self._query(
            "SELECT COUNT(*) AS n, MIN(cached_at) AS oldest, MAX(cached_at) AS newest FROM geocode_cache"
        )[0]
        return {
            "count": int(row["n"]),
            "oldest": float(row["oldest"] or 0.0),
            "newest": float(row["newest"] or 0.0),
        }

    def get_meta(self, key: str) -> Optional[str]:
        rows = self._query("SELECT value FROM index_meta WHERE key = ?", (key,))
        return rows[0]["value"] if rows else None

    def set_meta(self, key: str, value: str) -> None:
        with self._write("set_meta") as conn:
            conn.execute("INSERT OR REPLACE INTO index_meta (key, value) VALUES (?, ?)", (key, value))
