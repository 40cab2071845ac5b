"""Persistent storage for items, clusters, day groups and the geocode table."""

from .base import BoundingBox, MediaStore
from .sqlite import SCHEMA_SQL, SQLiteMediaStore

__all__ = [
    "BoundingBox",
    "MediaStore",
    "SCHEMA_SQL",
    "SQLiteMediaStore",
]
