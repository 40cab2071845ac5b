"""
TTL-bounded geocode cache in front of a reverse-geocode provider.

Lookups go through three layers:
- an in-process ``cachetools.TTLCache`` (cheap repeated hits within a scan)
- the persistent ``geocode_cache`` table (survives restarts)
- the provider, only on a miss or an expired entry

Keys are coordinates rounded to a fixed number of decimals (3 by default,
roughly 100 m), so nearby captures share one provider call.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from cachetools import TTLCache

from ..core.errors import GeocodeUnavailable
from ..core.models import GeocodeCacheEntry
from ..storage.base import MediaStore
from .provider import ReverseGeocodeProvider, format_place_name


logger = logging.getLogger(__name__)


# -----------------------------
# Constants
# -----------------------------

DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_PRECISION = 3
FALLBACK_PRECISION = 4
MEMORY_CACHE_SIZE = 4096


def coordinate_key(lat: float, lon: float, precision: int = DEFAULT_PRECISION) -> str:
    """Cache key for a coordinate, e.g. ``"48.858,2.294"``."""
    return f"{lat:.{precision}f},{lon:.{precision}f}"


def fallback_label(lat: float, lon: float) -> str:
    """Raw-coordinate label used when no place name can be resolved."""
    return f"{lat:.{FALLBACK_PRECISION}f}, {lon:.{FALLBACK_PRECISION}f}"


class GeocodeCache:
    """Reverse-geocode lookups with a 7-day TTL by default."""

    def __init__(
        self,
        store: MediaStore,
        provider: Optional[ReverseGeocodeProvider] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        precision: int = DEFAULT_PRECISION,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.provider = provider
        self.ttl_seconds = ttl_seconds
        self.precision = precision
        self._clock = clock
        self._memory: TTLCache = TTLCache(maxsize=MEMORY_CACHE_SIZE, ttl=ttl_seconds, timer=clock)
        self.hits = 0
        self.misses = 0

    def key_for(self, lat: float, lon: float) -> str:
        return coordinate_key(lat, lon, self.precision)

    async def lookup(self, lat: float, lon: float) -> Optional[GeocodeCacheEntry]:
        """
        Resolve a coordinate to a cached or freshly fetched entry.

        Returns ``None`` when the provider is missing, unavailable or knows
        nothing about the location. Such outcomes are not cached, so the next
        lookup asks the provider again.
        """
        key = self.key_for(lat, lon)
        now = self._clock()

        entry = self._memory.get(key)
        if entry is not None and entry.is_fresh(now, self.ttl_seconds):
            self.hits += 1
            return entry

        entry = self.store.get_geocode(key)
        if entry is not None and entry.is_fresh(now, self.ttl_seconds):
            logger.debug("Geocode cache hit for %s: %s", key, entry.label)
            self._memory[key] = entry
            self.hits += 1
            return entry

        self.misses += 1
        if self.provider is None:
            return None

        try:
            place = await self.provider.resolve(lat, lon)
        except (GeocodeUnavailable, asyncio.TimeoutError, OSError) as e:
            logger.warning("Reverse geocoding unavailable for %s: %s", key, e)
            return None

        if place is None:
            logger.debug("No place found for %s", key)
            return None

        entry = GeocodeCacheEntry(
            key=key,
            label=format_place_name(place),
            place_name=place.locality,
            cached_at=now,
        )
        self.store.set_geocode(entry)
        self._memory[key] = entry
        logger.debug("Geocoded %s as %s", key, entry.label)
        return entry

    async def label_for(self, lat: float, lon: float) -> str:
        """Display label for a coordinate, falling back to the raw coordinate."""
        entry = await self.lookup(lat, lon)
        if entry is None:
            return fallback_label(lat, lon)
        return entry.label

    def purge_expired(self) -> int:
        """Delete persisted entries older than the TTL. Returns the number removed."""
        cutoff = self._clock() - self.ttl_seconds
        removed = self.store.purge_geocode_before(cutoff)
        self._memory.expire()
        logger.info("Purged %d expired geocode entries", removed)
        return removed

    def clear_memory(self) -> None:
        self._memory.clear()

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        persisted = self.store.geocode_stats()
        return {
            "memory": {
                "size": len(self._memory),
                "maxsize": self._memory.maxsize,
                "ttl": self.ttl_seconds,
            },
            "persisted": persisted,
            "hits": self.hits,
            "misses": self.misses,
        }
