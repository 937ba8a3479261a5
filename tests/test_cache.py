"""Tests for the TTL cache store and registry."""

from fjordsync.cache import CacheStore, TTLCache
from fjordsync.models import Token

DAY = 24 * 3600


class TestTTLCache:
    def test_empty_cache_is_stale(self, clock) -> None:
        cache = TTLCache("x", DAY, clock)
        assert cache.is_stale()
        assert cache.read() is None
        assert cache.last_known() is None

    def test_freshness_boundary(self, clock) -> None:
        """Fresh just under the TTL, stale just past it."""
        cache = TTLCache("x", DAY, clock)
        cache.write({"a": 1})

        clock.advance(23 * 3600 + 59 * 60)
        assert not cache.is_stale()
        assert cache.read() == {"a": 1}

        clock.advance(60 + 1)
        assert cache.is_stale()
        assert cache.read() is None

    def test_stale_exactly_at_ttl(self, clock) -> None:
        cache = TTLCache("x", 10, clock)
        cache.write("v")
        clock.advance(10)
        assert cache.is_stale()

    def test_is_stale_has_no_side_effects(self, clock) -> None:
        cache = TTLCache("x", 10, clock)
        cache.write("v")
        clock.advance(11)
        cache.is_stale()
        cache.is_stale()
        assert cache.last_known() == "v"

    def test_write_resets_fetched_at(self, clock) -> None:
        cache = TTLCache("x", 10, clock)
        cache.write("old")
        clock.advance(9)
        cache.write("new")
        clock.advance(9)
        assert cache.read() == "new"

    def test_last_known_ignores_age(self, clock) -> None:
        cache = TTLCache("x", 10, clock)
        cache.write("v")
        clock.advance(1000)
        assert cache.read() is None
        assert cache.last_known() == "v"

    def test_key_mismatch_is_a_miss(self, clock) -> None:
        cache = TTLCache("x", 10, clock)
        cache.write("week 10", key=(2024, 10))
        assert cache.read((2024, 10)) == "week 10"
        assert cache.read((2024, 11)) is None
        assert cache.last_known((2024, 11)) is None

    def test_invalidate_clears_everything(self, clock) -> None:
        cache = TTLCache("x", 10, clock)
        cache.write("v")
        cache.invalidate()
        assert cache.is_stale()
        assert cache.last_known() is None
        assert cache.ttl == 10

    def test_status(self, clock) -> None:
        cache = TTLCache("x", 100, clock)
        assert cache.status()["cached"] is False
        cache.write("v")
        clock.advance(30)
        status = cache.status()
        assert status["cached"] is True
        assert status["age_seconds"] == 30
        assert status["expires_in_seconds"] == 70


class TestCacheStore:
    def test_registry_ttls(self, store: CacheStore) -> None:
        assert store.disease_zones.ttl == 24 * 3600
        assert store.protected_areas.ttl == 24 * 3600
        assert store.locality_polygons.ttl == 24 * 3600
        assert store.fish_health.ttl == 30 * 60
        assert store.registry_localities.ttl == 60 * 60

    def test_caches_are_independent(self, store: CacheStore) -> None:
        store.disease_zones.write("zones")
        assert store.protected_areas.read() is None

    def test_invalidate_zones_keeps_fish_health(self, store: CacheStore) -> None:
        store.disease_zones.write("zones")
        store.fish_health.write("fish")
        store.invalidate_zones()
        assert store.disease_zones.read() is None
        assert store.fish_health.read() == "fish"

    def test_invalidate_all_drops_token(self, store: CacheStore, clock) -> None:
        store.token = Token(access_token="t", expires_at=clock() + 3600)
        store.lice_data.write("lice")
        store.invalidate_all()
        assert store.token is None
        assert store.lice_data.read() is None

    def test_status_lists_every_cache(self, store: CacheStore) -> None:
        assert set(store.status()) == {
            "disease_zones",
            "protected_areas",
            "locality_polygons",
            "fish_health",
            "lice_data",
            "detailed_polygons",
            "registry_localities",
        }
