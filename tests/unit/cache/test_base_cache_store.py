# tests/unit/cache/test_base_cache_store.py — v2
"""Tests for cache/base_cache_store.py — BaseCacheStore ABC."""

from __future__ import annotations

import pytest

from fundmatch.cache.base_cache_store import BaseCacheStore
from fundmatch.cache.memory_store import MemoryCacheStore


class TestBaseCacheStore:
    def test_cannot_instantiate(self):
        with pytest.raises(TypeError):
            BaseCacheStore()  # type: ignore[abstract]

    def test_has_required_methods(self):
        for method in [
            "get", "set", "delete", "clear", "size", "contains",
            "invalidate_by_pattern", "invalidate_where", "entries",
            "get_stats", "get_health_status", "configure",
            "perform_memory_cleanup", "export_snapshot", "import_snapshot",
            "destroy",
        ]:
            assert hasattr(BaseCacheStore, method)

    def test_memory_store_implements_contract(self):
        store = MemoryCacheStore(cleanup_interval_seconds=0)
        try:
            assert isinstance(store, BaseCacheStore)
        finally:
            store.destroy()
