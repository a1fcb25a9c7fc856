# src/cache/base_cache_store.py — v2
"""Abstract cache store interface.

Every backend the engine can be given must implement this contract. All
methods are synchronous and must be safe to call from several threads.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from fundmatch.cache.models import CacheEntry, CacheHealthStatus, CacheSnapshot, CacheStats

EntryPredicate = Callable[[CacheEntry], bool]


class BaseCacheStore(ABC):
    """Unified interface for cache storage backends."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the cached value, or None on miss.

        A hit refreshes recency and access counters. An invalid (expired or
        version-mismatched) entry is deleted and reported as a miss.
        """

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store a value, evicting the least-recently-used entry at capacity."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove an entry. Returns True if it existed."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry."""

    @abstractmethod
    def size(self) -> int:
        """Number of stored entries (valid or not yet swept)."""

    @abstractmethod
    def contains(self, key: str) -> bool:
        """True if a valid entry exists. Does not touch recency."""

    @abstractmethod
    def invalidate_by_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Delete every key matching a regex. Returns the number removed."""

    @abstractmethod
    def invalidate_where(self, predicate: EntryPredicate) -> list[str]:
        """Delete every entry for which ``predicate`` is true. Returns the keys."""

    @abstractmethod
    def entries(self) -> list[CacheEntry]:
        """Snapshot copy of all entries, least recently used first."""

    @abstractmethod
    def is_entry_valid(self, entry: CacheEntry) -> bool:
        """Version + TTL validity rule."""

    @abstractmethod
    def get_stats(self) -> CacheStats:
        """Counters and usage figures."""

    @abstractmethod
    def get_health_status(self) -> CacheHealthStatus:
        """healthy / warning / critical classification."""

    @abstractmethod
    def configure(self, **changes: Any) -> None:
        """Update runtime options (max_size, default_ttl_seconds, ...)."""

    @abstractmethod
    def perform_memory_cleanup(self) -> int:
        """Sweep expired entries, then evict LRU until under the memory threshold."""

    @abstractmethod
    def export_snapshot(self) -> CacheSnapshot:
        """Dump all valid entries."""

    @abstractmethod
    def import_snapshot(self, snapshot: CacheSnapshot) -> int:
        """Load entries from a snapshot of the same version. Returns count loaded."""

    def stop_auto_cleanup(self) -> None:
        """Stop background maintenance, if the backend runs any."""

    def destroy(self) -> None:
        """Release all resources. Must be idempotent."""
        self.stop_auto_cleanup()
        self.clear()
