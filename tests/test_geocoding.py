"""
Unit Tests for Geocoding Module (dayatlas/geocoding)

Tests place-name formatting, the TTL cache layers and the offline gazetteer.
"""

import asyncio

from dayatlas.geocoding import (
    GazetteerProvider,
    GeocodeCache,
    PlaceName,
    coordinate_key,
    fallback_label,
    format_place_name,
)
from dayatlas.tools import ConfigLoader

from .factories import BASE_LAT, BASE_LON


EIGHT_DAYS = 8 * 24 * 60 * 60


# ==============================================================================
# Formatting Tests
# ==============================================================================

class TestFormatPlaceName:
    """Test specific-to-general place formatting."""

    def test_full_address(self):
        place = PlaceName(name="Louvre", district="1st Arrondissement", city="Paris", region="Île-de-France")
        assert format_place_name(place) == "Louvre, 1st Arrondissement, Paris, Île-de-France"

    def test_name_equal_to_street_is_skipped(self):
        place = PlaceName(name="Rue de Rivoli", street="Rue de Rivoli", city="Paris")
        assert format_place_name(place) == "Paris"

    def test_district_equal_to_city_is_skipped(self):
        place = PlaceName(district="Kyoto", city="Kyoto", region="Kyoto Prefecture")
        assert format_place_name(place) == "Kyoto"

    def test_subregion_when_no_city(self):
        place = PlaceName(subregion="Napa County", region="California")
        assert format_place_name(place) == "Napa County, California"

    def test_region_equal_to_city_is_skipped(self):
        place = PlaceName(city="Tokyo", region="Tokyo")
        assert format_place_name(place) == "Tokyo"

    def test_region_contained_in_part_is_skipped(self):
        place = PlaceName(city="New York City", region="New York")
        assert format_place_name(place) == "New York City"

    def test_street_fallback(self):
        assert format_place_name(PlaceName(street="Main Street")) == "Main Street"

    def test_formatted_address_fallback(self):
        place = PlaceName(formatted_address="1 Infinite Loop, Cupertino")
        assert format_place_name(place) == "1 Infinite Loop, Cupertino"

    def test_unknown_location(self):
        assert format_place_name(PlaceName()) == "Unknown Location"

    def test_locality_prefers_city(self):
        assert PlaceName(city="Paris", district="Marais").locality == "Paris"
        assert PlaceName(district="Marais").locality == "Marais"


class TestKeys:
    def test_coordinate_key_rounds_to_precision(self):
        assert coordinate_key(48.85661, 2.35222) == "48.857,2.352"
        assert coordinate_key(48.85661, 2.35222, precision=1) == "48.9,2.4"

    def test_fallback_label_uses_four_decimals(self):
        assert fallback_label(48.856612, -2.35) == "48.8566, -2.3500"


# ==============================================================================
# Cache Tests
# ==============================================================================

class TestGeocodeCache:
    """Test the memory -> store -> provider lookup chain."""

    def test_miss_calls_provider_and_persists(self, geocode_cache, fake_geocoder, store):
        entry = asyncio.run(geocode_cache.lookup(BASE_LAT, BASE_LON))

        assert entry is not None
        assert entry.label == "Hôtel de Ville, Paris, Île-de-France"
        assert entry.place_name == "Paris"
        assert len(fake_geocoder.calls) == 1
        assert store.get_geocode(coordinate_key(BASE_LAT, BASE_LON)) is not None

    def test_repeat_lookup_is_served_from_cache(self, geocode_cache, fake_geocoder):
        asyncio.run(geocode_cache.lookup(BASE_LAT, BASE_LON))
        asyncio.run(geocode_cache.lookup(BASE_LAT, BASE_LON))
        assert len(fake_geocoder.calls) == 1
        assert geocode_cache.hits == 1
        assert geocode_cache.misses == 1

    def test_nearby_coordinates_share_a_key(self, geocode_cache, fake_geocoder):
        asyncio.run(geocode_cache.lookup(BASE_LAT, BASE_LON))
        asyncio.run(geocode_cache.lookup(BASE_LAT + 0.0001, BASE_LON + 0.0001))
        assert len(fake_geocoder.calls) == 1

    def test_persisted_entry_survives_restart(self, store, fake_geocoder, clock):
        first = GeocodeCache(store, fake_geocoder, clock=clock)
        asyncio.run(first.lookup(BASE_LAT, BASE_LON))

        second = GeocodeCache(store, fake_geocoder, clock=clock)
        entry = asyncio.run(second.lookup(BASE_LAT, BASE_LON))

        assert entry.place_name == "Paris"
        assert len(fake_geocoder.calls) == 1

    def test_expired_entry_is_refreshed(self, geocode_cache, fake_geocoder, store, clock):
        asyncio.run(geocode_cache.lookup(BASE_LAT, BASE_LON))
        clock.advance(EIGHT_DAYS)

        entry = asyncio.run(geocode_cache.lookup(BASE_LAT, BASE_LON))

        assert len(fake_geocoder.calls) == 2
        assert entry.cached_at == clock.now
        assert store.get_geocode(entry.key).cached_at == clock.now

    def test_unavailable_provider_falls_back_uncached(self, geocode_cache, fake_geocoder, store):
        fake_geocoder.unavailable = True

        label = asyncio.run(geocode_cache.label_for(BASE_LAT, BASE_LON))

        assert label == fallback_label(BASE_LAT, BASE_LON)
        assert store.get_geocode(coordinate_key(BASE_LAT, BASE_LON)) is None

        fake_geocoder.unavailable = False
        label = asyncio.run(geocode_cache.label_for(BASE_LAT, BASE_LON))
        assert label.endswith("Paris, Île-de-France")

    def test_no_provider_falls_back(self, store, clock):
        cache = GeocodeCache(store, provider=None, clock=clock)
        assert asyncio.run(cache.lookup(1.0, 2.0)) is None
        assert asyncio.run(cache.label_for(1.0, 2.0)) == "1.0000, 2.0000"

    def test_unknown_place_is_not_cached(self, geocode_cache, store):
        assert asyncio.run(geocode_cache.lookup(-33.0, 151.0)) is None
        assert store.geocode_stats()["count"] == 0

    def test_purge_expired(self, geocode_cache, store, clock):
        asyncio.run(geocode_cache.lookup(BASE_LAT, BASE_LON))
        clock.advance(EIGHT_DAYS)
        asyncio.run(geocode_cache.lookup(BASE_LAT + 0.005, BASE_LON))

        removed = geocode_cache.purge_expired()

        assert removed == 1
        assert store.geocode_stats()["count"] == 1

    def test_stats(self, geocode_cache):
        asyncio.run(geocode_cache.lookup(BASE_LAT, BASE_LON))
        stats = geocode_cache.stats()
        assert stats["memory"]["size"] == 1
        assert stats["persisted"]["count"] == 1
        assert stats["misses"] == 1


# ==============================================================================
# Gazetteer Tests
# ==============================================================================

class TestGazetteerProvider:
    PLACES = [
        {"lat": 48.8566, "lon": 2.3522, "city": "Paris", "country": "France"},
        {"lat": 51.5074, "lon": -0.1278, "city": "London", "country": "United Kingdom"},
    ]

    def test_resolves_nearest_place(self):
        provider = GazetteerProvider(self.PLACES)
        place = asyncio.run(provider.resolve(48.86, 2.34))
        assert place.city == "Paris"

    def test_far_coordinate_resolves_to_none(self):
        provider = GazetteerProvider(self.PLACES, max_distance_m=10_000)
        assert asyncio.run(provider.resolve(40.0, -3.7)) is None

    def test_empty_gazetteer(self):
        assert asyncio.run(GazetteerProvider([]).resolve(0.0, 0.0)) is None

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "places.yaml"
        path.write_text(
            "max_distance_m: 5000\n"
            "places:\n"
            "  - {lat: 35.6762, lon: 139.6503, city: Tokyo, region: Tokyo}\n"
        )
        provider = GazetteerProvider.from_yaml(path)
        assert len(provider) == 1
        assert provider.max_distance_m == 5000
        place = asyncio.run(provider.resolve(35.68, 139.65))
        assert format_place_name(place) == "Tokyo"

    def test_bundled_sample_gazetteer(self):
        provider = GazetteerProvider.from_yaml(ConfigLoader.CONFIG_DIR / "gazetteers" / "sample.yaml")
        place = asyncio.run(provider.resolve(48.8580, 2.2950))
        assert place.name == "Eiffel Tower"

    def test_works_behind_cache(self, store, clock):
        cache = GeocodeCache(store, GazetteerProvider(self.PLACES), clock=clock)
        assert asyncio.run(cache.label_for(51.5, -0.12)) == "London"
