"""
Pytest configuration and shared fixtures for dayatlas tests.

This file provides:
- In-memory SQLite stores and media sources
- A scripted reverse-geocode provider
- Common test utilities
"""

import logging
from typing import List, Optional, Tuple

import pytest

from dayatlas.core.errors import GeocodeUnavailable
from dayatlas.geocoding import GeocodeCache, PlaceName
from dayatlas.indexing import IndexManager, InMemoryMediaSource
from dayatlas.storage import SQLiteMediaStore
from dayatlas.tools import IndexSettings

from .factories import BASE_LAT, BASE_LON, make_item


# ==============================================================================
# Storage and Sources
# ==============================================================================

@pytest.fixture
def store():
    """Fresh in-memory store."""
    s = SQLiteMediaStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def paris_day_items():
    """A tight group of four photos, one photo far away and one without GPS."""
    return [
        make_item("a", minute=0, meters=0),
        make_item("b", minute=1, meters=5),
        make_item("c", minute=2, meters=8),
        make_item("d", minute=3, meters=10),
        make_item("far", minute=4, meters=5000),
        make_item("nogps", minute=5),
    ]


@pytest.fixture
def source(paris_day_items):
    return InMemoryMediaSource(paris_day_items)


# ==============================================================================
# Mock Geocoder
# ==============================================================================

class FakeGeocoder:
    """Scripted provider: the first place whose box contains the coordinate wins."""

    def __init__(self, places: Optional[List[Tuple[Tuple[float, float, float, float], PlaceName]]] = None):
        self.places = places or []
        self.calls: List[Tuple[float, float]] = []
        self.unavailable = False

    async def resolve(self, lat: float, lon: float) -> Optional[PlaceName]:
        self.calls.append((lat, lon))
        if self.unavailable:
            raise GeocodeUnavailable("rate limited")
        for (min_lat, max_lat, min_lon, max_lon), place in self.places:
            if min_lat <= lat <= max_lat and min_lon <= lon <= max_lon:
                return place
        return None


@pytest.fixture
def fake_geocoder() -> FakeGeocoder:
    """Everything within ~0.02 degrees of the base point is Paris."""
    return FakeGeocoder([
        (
            (BASE_LAT - 0.02, BASE_LAT + 0.02, BASE_LON - 0.02, BASE_LON + 0.02),
            PlaceName(name="Hôtel de Ville", city="Paris", region="Île-de-France", country="France"),
        ),
    ])


class FakeClock:
    """Settable replacement for ``time.time``."""

    def __init__(self, now: float = 1_717_200_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def geocode_cache(store, fake_geocoder, clock) -> GeocodeCache:
    return GeocodeCache(store, fake_geocoder, clock=clock)


# ==============================================================================
# Manager
# ==============================================================================

@pytest.fixture
def settings() -> IndexSettings:
    return IndexSettings(batch_size=2, merge_distance_m=None)


@pytest.fixture
def manager(source, store, settings, geocode_cache, clock) -> IndexManager:
    return IndexManager(source, store, settings=settings, geocoder=geocode_cache, clock=clock)


# ==============================================================================
# Test Environment Setup
# ==============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Keep library logging visible at DEBUG so diagnostics paths run."""
    logging.getLogger("dayatlas").setLevel(logging.DEBUG)
    yield
