# tests/unit/cache/test_memory_store.py — v1
"""Tests for cache/memory_store.py — LRU, TTL, versioning, health, snapshots."""

from __future__ import annotations

import re
import threading
import time

import pytest

from fundmatch.cache.memory_store import MemoryCacheStore, estimate_size
from fundmatch.core.models import RelevanceMetadata


def _store(clock, **kwargs) -> MemoryCacheStore:
    kwargs.setdefault("cleanup_interval_seconds", 0)
    return MemoryCacheStore(clock=clock, **kwargs)


class TestBasicOperations:
    def test_set_and_get(self, cache):
        cache.set("a", {"x": 1})
        assert cache.get("a") == {"x": 1}
        assert cache.size() == 1

    def test_miss_returns_none(self, cache):
        assert cache.get("missing") is None
        assert cache.get_stats().misses == 1

    def test_overwrite_keeps_single_entry(self, cache):
        cache.set("a", 1)
        cache.set("a", 2)
        assert cache.get("a") == 2
        assert cache.size() == 1

    def test_delete(self, cache):
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.get_stats().invalidations == 1

    def test_clear(self, cache):
        for key in "abc":
            cache.set(key, key)
        cache.clear()
        assert cache.size() == 0
        assert cache.memory_usage_bytes == 0
        assert cache.get_stats().invalidations == 3

    def test_stores_models(self, cache):
        meta = RelevanceMetadata(relevance_level=1)
        cache.set("m", meta)
        assert cache.get("m") is meta

    def test_rejects_non_positive_ttl(self, cache):
        with pytest.raises(ValueError, match="ttl"):
            cache.set("a", 1, ttl_seconds=0)

    def test_rejects_bad_constructor_options(self):
        with pytest.raises(ValueError, match="max_size"):
            MemoryCacheStore(max_size=0, cleanup_interval_seconds=0)


class TestCapacityAndLru:
    def test_six_inserts_into_five_slots(self, clock):
        store = _store(clock, max_size=5)
        for i in range(6):
            store.set(f"k{i}", i)
        assert store.size() == 5
        assert not store.contains("k0")
        assert all(store.contains(f"k{i}") for i in range(1, 6))
        assert store.get_stats().evictions == 1

    def test_size_never_exceeds_max(self, clock):
        store = _store(clock, max_size=3)
        for i in range(50):
            store.set(f"k{i % 7}", i)
            assert store.size() <= 3

    def test_get_refreshes_recency(self, clock):
        store = _store(clock, max_size=3)
        for key in "abc":
            store.set(key, key)
        store.get("a")
        store.set("d", "d")
        assert store.contains("a")
        assert not store.contains("b")

    def test_contains_does_not_refresh_recency(self, clock):
        store = _store(clock, max_size=2)
        store.set("a", 1)
        store.set("b", 2)
        assert store.contains("a")
        store.set("c", 3)
        assert not store.contains("a")

    def test_inserted_key_never_evicted(self, clock):
        store = _store(clock, max_size=1)
        store.set("a", 1)
        store.set("b", 2)
        assert store.get("b") == 2

    def test_shrinking_max_size_trims_lru(self, clock):
        store = _store(clock, max_size=5)
        for i in range(5):
            store.set(f"k{i}", i)
        store.configure(max_size=2)
        assert store.size() == 2
        assert [e.key for e in store.entries()] == ["k3", "k4"]


class TestValidity:
    def test_ttl_expiry_is_a_miss(self, cache, clock):
        cache.set("a", 1, ttl_seconds=10)
        clock.advance(9)
        assert cache.get("a") == 1
        clock.advance(1)
        assert cache.get("a") is None
        assert cache.size() == 0
        assert cache.get_stats().expirations == 1

    def test_version_change_invalidates(self, cache):
        cache.set("a", 1)
        cache.configure(version="2.0.0")
        assert not cache.contains("a")
        assert cache.get("a") is None
        assert cache.size() == 0

    def test_entry_metadata(self, cache, clock):
        cache.set("a", "v", ttl_seconds=60)
        cache.get("a")
        cache.get("a")
        (entry,) = cache.entries()
        assert entry.access_count == 2
        assert entry.cache_version == "1.0.0"
        assert (entry.expires_at - entry.cached_at).total_seconds() == 60
        assert entry.estimated_size_bytes == estimate_size("v")


class TestInvalidation:
    def test_pattern_string(self, cache):
        for key in ["Bayern::states=BY", "Bayern Plus::states=BY", "Hessen::states=HE"]:
            cache.set(key, 1)
        assert cache.invalidate_by_pattern(r"^Bayern::") == 1
        assert cache.size() == 2

    def test_pattern_compiled(self, cache):
        cache.set("x1", 1)
        cache.set("y1", 1)
        assert cache.invalidate_by_pattern(re.compile("1$")) == 2

    def test_invalidate_where(self, cache):
        cache.set("a", RelevanceMetadata(relevance_level=1))
        cache.set("b", RelevanceMetadata(relevance_level=3))
        removed = cache.invalidate_where(lambda e: e.value.relevance_level == 1)
        assert removed == ["a"]
        assert cache.contains("b")


class TestMemory:
    def test_estimate_size(self):
        assert estimate_size("a" * 98) == 200

    def test_threshold_evicts_lru(self, clock):
        store = _store(clock, memory_threshold_bytes=500)
        store.set("a", "a" * 98)
        store.set("b", "b" * 98)
        store.set("c", "c" * 98)
        assert not store.contains("a")
        assert store.memory_usage_bytes <= 500
        assert store.get_stats().evictions == 1

    def test_cleanup_removes_expired_first(self, clock):
        store = _store(clock, memory_threshold_bytes=10_000)
        store.set("short", 1, ttl_seconds=1)
        store.set("long", 2, ttl_seconds=100)
        clock.advance(5)
        assert store.perform_memory_cleanup() == 1
        assert store.contains("long")
        assert store.get_stats().last_cleanup == clock.now

    def test_monitoring_disabled_skips_threshold(self, clock):
        store = _store(clock, memory_threshold_bytes=10, enable_memory_monitoring=False)
        store.set("a", "a" * 50)
        store.set("b", "b" * 50)
        assert store.size() == 2


class TestStatsAndHealth:
    def test_hit_rate(self, cache):
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("zzz")
        stats = cache.get_stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(66.67, abs=0.01)
        assert stats.total_access_count == 2

    def test_healthy_without_lookups(self, clock):
        store = _store(clock, max_size=10)
        store.set("a", 1)
        assert store.get_health_status().status == "healthy"

    def test_low_hit_rate_warns(self, clock):
        store = _store(clock, max_size=10)
        store.get("x")
        health = store.get_health_status()
        assert health.status == "warning"
        assert any("hit rate" in issue for issue in health.issues)

    def test_size_warning(self, clock):
        store = _store(clock, max_size=5)
        for i in range(4):
            store.set(f"k{i}", i)
        assert store.get_health_status().status == "warning"

    def test_size_critical(self, clock):
        store = _store(clock, max_size=5)
        for i in range(5):
            store.set(f"k{i}", i)
        assert store.get_health_status().status == "critical"

    def test_expired_entries_noted(self, cache, clock):
        cache.set("a", 1, ttl_seconds=1)
        clock.advance(2)
        health = cache.get_health_status()
        assert health.stats.expired_entries == 1
        assert any("expired" in issue for issue in health.issues)

    def test_reset_metrics(self, cache):
        cache.get("x")
        cache.reset_metrics()
        assert cache.get_stats().misses == 0


class TestConfigure:
    def test_unknown_option(self, cache):
        with pytest.raises(ValueError, match="Unknown cache option"):
            cache.configure(colour="blue")

    def test_invalid_value(self, cache):
        with pytest.raises(ValueError):
            cache.configure(default_ttl_seconds=-1)

    def test_default_ttl_applies_to_new_entries(self, cache, clock):
        cache.configure(default_ttl_seconds=5)
        cache.set("a", 1)
        clock.advance(6)
        assert cache.get("a") is None


class TestSnapshots:
    def test_export_import(self, cache, clock):
        cache.set("a", {"v": 1})
        cache.set("b", {"v": 2}, ttl_seconds=1)
        clock.advance(2)
        snapshot = cache.export_snapshot()
        assert [e.key for e in snapshot.entries] == ["a"]

        target = _store(clock)
        assert target.import_snapshot(snapshot) == 1
        assert target.get("a") == {"v": 1}

    def test_import_skips_version_mismatch(self, cache, clock):
        cache.set("a", 1)
        snapshot = cache.export_snapshot()
        target = _store(clock, version="9.9.9")
        assert target.import_snapshot(snapshot) == 0
        assert target.size() == 0

    def test_import_respects_capacity(self, cache, clock):
        for i in range(4):
            cache.set(f"k{i}", i)
        target = _store(clock, max_size=2)
        target.import_snapshot(cache.export_snapshot())
        assert target.size() == 2


class TestLifecycle:
    def test_background_sweep_removes_expired(self):
        store = MemoryCacheStore(cleanup_interval_seconds=0.02, default_ttl_seconds=0.01)
        try:
            store.set("a", 1)
            for _ in range(250):
                if store.size() == 0:
                    break
                time.sleep(0.02)
            assert store.size() == 0
        finally:
            store.destroy()

    def test_destroy_is_idempotent(self):
        store = MemoryCacheStore(cleanup_interval_seconds=60)
        store.set("a", 1)
        store.destroy()
        store.destroy()
        assert not store.auto_cleanup_running
        assert store.size() == 0

    def test_stop_auto_cleanup(self):
        store = MemoryCacheStore(cleanup_interval_seconds=60)
        store.stop_auto_cleanup()
        assert not store.auto_cleanup_running
        store.destroy()

    def test_concurrent_writers_respect_bound(self, clock):
        store = _store(clock, max_size=10)

        def worker(offset: int) -> None:
            for i in range(200):
                store.set(f"k{offset}-{i % 25}", i)
                store.get(f"k{offset}-{(i + 3) % 25}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.size() <= 10
