# src/cache/memory_store.py — v1
"""In-process cache store (CACHE_BACKEND=memory).

Entries live in an OrderedDict kept in LRU order (oldest first). One RLock
guards the key space, the LRU order and all counters; lookups take it too
because a hit mutates recency and access bookkeeping.

Validity rule: an entry is valid iff it was written under the live cache
version AND has not reached ``expires_at``. Invalid entries are removed
lazily on lookup and eagerly by the background sweep.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic_core import to_json

from fundmatch.cache.base_cache_store import BaseCacheStore, EntryPredicate
from fundmatch.cache.models import (
    CacheEntry,
    CacheHealthStatus,
    CacheSnapshot,
    CacheStats,
    utc_now,
)
from fundmatch.core.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

WARNING_USAGE_PERCENT = 75.0
CRITICAL_USAGE_PERCENT = 90.0
MIN_HIT_RATE_PERCENT = 50.0

_CONFIGURABLE = frozenset({
    "max_size",
    "default_ttl_seconds",
    "version",
    "memory_threshold_bytes",
    "cleanup_interval_seconds",
    "enable_metrics",
    "enable_memory_monitoring",
})


def estimate_size(value: Any) -> int:
    """Rough in-memory footprint: 2 bytes per character of the JSON form."""
    return len(to_json(value, serialize_unknown=True)) * 2


class MemoryCacheStore(BaseCacheStore):
    """Thread-safe LRU + TTL cache with versioning and memory accounting.

    Args:
        max_size: Hard upper bound on the number of entries.
        default_ttl_seconds: TTL applied when ``set`` gets none.
        version: Live cache version; entries stamped otherwise are invalid.
        memory_threshold_bytes: Soft memory ceiling for the size estimate.
        cleanup_interval_seconds: Background sweep period, 0 disables it.
        enable_metrics: Track hit/miss counters and access timings.
        enable_memory_monitoring: Enforce the memory threshold on ``set``.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl_seconds: float = 3600.0,
        version: str = "1.0.0",
        memory_threshold_bytes: int = 50 * 1024 * 1024,
        cleanup_interval_seconds: float = 300.0,
        enable_metrics: bool = True,
        enable_memory_monitoring: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        _check_options(
            max_size=max_size,
            default_ttl_seconds=default_ttl_seconds,
            memory_threshold_bytes=memory_threshold_bytes,
            cleanup_interval_seconds=cleanup_interval_seconds,
        )
        self._max_size = max_size
        self._default_ttl = float(default_ttl_seconds)
        self._version = version
        self._memory_threshold = memory_threshold_bytes
        self._cleanup_interval = float(cleanup_interval_seconds)
        self._enable_metrics = enable_metrics
        self._enable_memory_monitoring = enable_memory_monitoring
        self._now = clock or utc_now

        self._lock = threading.RLock()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._memory_usage = 0

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._invalidations = 0
        self._expirations = 0
        self._access_time_total = 0.0
        self._access_samples = 0
        self._last_cleanup: datetime | None = None

        self._cleanup_task: PeriodicTask | None = None
        self._destroyed = False
        self._start_auto_cleanup()

    # --- Properties ---

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def default_ttl_seconds(self) -> float:
        return self._default_ttl

    @property
    def version(self) -> str:
        return self._version

    @property
    def memory_usage_bytes(self) -> int:
        return self._memory_usage

    @property
    def auto_cleanup_running(self) -> bool:
        return self._cleanup_task is not None and self._cleanup_task.is_running

    # --- Core operations ---

    def get(self, key: str) -> Any | None:
        started = time.perf_counter()
        with self._lock:
            try:
                entry = self._entries.get(key)
                if entry is None:
                    self._record_miss()
                    return None

                if not self.is_entry_valid(entry):
                    self._remove_locked(key)
                    self._expirations += 1
                    self._record_miss()
                    logger.debug("Dropped stale cache entry %s", key)
                    return None

                entry.access_count += 1
                entry.last_accessed = self._now()
                self._entries.move_to_end(key)
                if self._enable_metrics:
                    self._hits += 1
                return entry.value
            finally:
                if self._enable_metrics:
                    self._access_time_total += time.perf_counter() - started
                    self._access_samples += 1

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else float(ttl_seconds)
        if ttl <= 0:
            raise ValueError("ttl_seconds must be > 0")
        size = estimate_size(value)

        with self._lock:
            now = self._now()
            if key in self._entries:
                self._remove_locked(key)
            else:
                if (
                    self._enable_memory_monitoring
                    and self._memory_usage + size > self._memory_threshold
                ):
                    self._cleanup_locked(reserve=size)
                while len(self._entries) >= self._max_size:
                    self._evict_lru_locked()

            self._insert_locked(
                CacheEntry(
                    key=key,
                    value=value,
                    cached_at=now,
                    expires_at=now + timedelta(seconds=ttl),
                    ttl_seconds=ttl,
                    cache_version=self._version,
                    access_count=0,
                    last_accessed=now,
                    estimated_size_bytes=size,
                )
            )

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove_locked(key)
            self._invalidations += 1
            return True

    def clear(self) -> None:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            self._memory_usage = 0
            self._invalidations += removed
        if removed:
            logger.info("Cleared cache (%d entries)", removed)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def contains(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self.is_entry_valid(entry)

    def invalidate_by_pattern(self, pattern: str | re.Pattern[str]) -> int:
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            victims = [key for key in self._entries if regex.search(key)]
            for key in victims:
                self._remove_locked(key)
            self._invalidations += len(victims)
        if victims:
            logger.debug("Invalidated %d entries matching %s", len(victims), regex.pattern)
        return len(victims)

    def invalidate_where(self, predicate: EntryPredicate) -> list[str]:
        with self._lock:
            victims = [key for key, entry in self._entries.items() if predicate(entry)]
            for key in victims:
                self._remove_locked(key)
            self._invalidations += len(victims)
        return victims

    def entries(self) -> list[CacheEntry]:
        with self._lock:
            return [entry.model_copy() for entry in self._entries.values()]

    def is_entry_valid(self, entry: CacheEntry) -> bool:
        return entry.cache_version == self._version and self._now() < entry.expires_at

    # --- Stats & health ---

    def get_stats(self) -> CacheStats:
        with self._lock:
            lookups = self._hits + self._misses
            entries = list(self._entries.values())
            cached_times = [e.cached_at for e in entries]
            return CacheStats(
                size=len(entries),
                max_size=self._max_size,
                cache_version=self._version,
                hits=self._hits,
                misses=self._misses,
                hit_rate=(self._hits / lookups * 100) if lookups else 0.0,
                evictions=self._evictions,
                invalidations=self._invalidations,
                expirations=self._expirations,
                total_access_count=sum(e.access_count for e in entries),
                average_access_time_ms=(
                    self._access_time_total / self._access_samples * 1000
                    if self._access_samples
                    else 0.0
                ),
                memory_usage_bytes=self._memory_usage,
                memory_threshold_bytes=self._memory_threshold,
                memory_usage_percent=self._memory_usage / self._memory_threshold * 100,
                size_usage_percent=len(entries) / self._max_size * 100,
                oldest_entry=min(cached_times) if cached_times else None,
                newest_entry=max(cached_times) if cached_times else None,
                expired_entries=sum(1 for e in entries if not self.is_entry_valid(e)),
                last_cleanup=self._last_cleanup,
            )

    def get_health_status(self) -> CacheHealthStatus:
        stats = self.get_stats()
        issues: list[str] = []
        status = "healthy"

        usage = [("Size", stats.size_usage_percent)]
        if self._enable_memory_monitoring:
            usage.append(("Memory", stats.memory_usage_percent))

        for label, percent in usage:
            if percent > CRITICAL_USAGE_PERCENT:
                status = "critical"
                issues.append(f"{label} usage critical: {percent:.1f}%")
            elif percent > WARNING_USAGE_PERCENT:
                if status != "critical":
                    status = "warning"
                issues.append(f"{label} usage high: {percent:.1f}%")

        if stats.lookups and stats.hit_rate < MIN_HIT_RATE_PERCENT:
            if status == "healthy":
                status = "warning"
            issues.append(f"Low hit rate: {stats.hit_rate:.1f}%")

        if stats.expired_entries:
            issues.append(f"{stats.expired_entries} expired entries awaiting cleanup")

        return CacheHealthStatus(status=status, issues=issues, stats=stats)

    # --- Configuration & maintenance ---

    def configure(self, **changes: Any) -> None:
        unknown = set(changes) - _CONFIGURABLE
        if unknown:
            raise ValueError(f"Unknown cache option(s): {', '.join(sorted(unknown))}")
        _check_options(**changes)

        restart_cleanup = False
        with self._lock:
            if "max_size" in changes:
                self._max_size = changes["max_size"]
                while len(self._entries) > self._max_size:
                    self._evict_lru_locked()
            if "default_ttl_seconds" in changes:
                self._default_ttl = float(changes["default_ttl_seconds"])
            if "version" in changes:
                self._version = changes["version"]
            if "memory_threshold_bytes" in changes:
                self._memory_threshold = changes["memory_threshold_bytes"]
            if "enable_metrics" in changes:
                self._enable_metrics = changes["enable_metrics"]
            if "enable_memory_monitoring" in changes:
                self._enable_memory_monitoring = changes["enable_memory_monitoring"]
            if "cleanup_interval_seconds" in changes:
                self._cleanup_interval = float(changes["cleanup_interval_seconds"])
                restart_cleanup = True

        if restart_cleanup and not self._destroyed:
            self.stop_auto_cleanup()
            self._start_auto_cleanup()
        logger.debug("Reconfigured cache: %s", sorted(changes))

    def perform_memory_cleanup(self) -> int:
        with self._lock:
            removed = self._cleanup_locked(reserve=0)
        if removed:
            logger.debug("Cache cleanup removed %d entries", removed)
        return removed

    def reset_metrics(self) -> None:
        with self._lock:
            self._hits = self._misses = 0
            self._evictions = self._invalidations = self._expirations = 0
            self._access_time_total = 0.0
            self._access_samples = 0

    def export_snapshot(self) -> CacheSnapshot:
        with self._lock:
            valid = [e.model_copy() for e in self._entries.values() if self.is_entry_valid(e)]
            return CacheSnapshot(version=self._version, exported_at=self._now(), entries=valid)

    def import_snapshot(self, snapshot: CacheSnapshot) -> int:
        if snapshot.version != self._version:
            logger.warning(
                "Skipping cache import: snapshot version %s != live version %s",
                snapshot.version,
                self._version,
            )
            return 0

        loaded = 0
        with self._lock:
            for entry in snapshot.entries:
                if not self.is_entry_valid(entry):
                    continue
                if entry.key in self._entries:
                    self._remove_locked(entry.key)
                while len(self._entries) >= self._max_size:
                    self._evict_lru_locked()
                self._insert_locked(entry.model_copy())
                loaded += 1
        logger.info("Imported %d cache entries", loaded)
        return loaded

    # --- Lifecycle ---

    def stop_auto_cleanup(self) -> None:
        task = self._cleanup_task
        self._cleanup_task = None
        if task is not None:
            task.stop()

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self.stop_auto_cleanup()
        with self._lock:
            self._entries.clear()
            self._memory_usage = 0
        logger.debug("Cache destroyed")

    # --- Internal (caller holds the lock) ---

    def _start_auto_cleanup(self) -> None:
        if self._cleanup_interval <= 0:
            return
        self._cleanup_task = PeriodicTask(
            name="fundmatch-cache-sweep",
            interval=self._cleanup_interval,
            func=self.perform_memory_cleanup,
        )
        self._cleanup_task.start()

    def _record_miss(self) -> None:
        if self._enable_metrics:
            self._misses += 1

    def _insert_locked(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry
        self._entries.move_to_end(entry.key)
        self._memory_usage += entry.estimated_size_bytes

    def _remove_locked(self, key: str) -> CacheEntry:
        entry = self._entries.pop(key)
        self._memory_usage = max(0, self._memory_usage - entry.estimated_size_bytes)
        return entry

    def _evict_lru_locked(self) -> None:
        key, entry = self._entries.popitem(last=False)
        self._memory_usage = max(0, self._memory_usage - entry.estimated_size_bytes)
        self._evictions += 1
        logger.debug("Evicted LRU cache entry %s", key)

    def _cleanup_locked(self, reserve: int) -> int:
        expired = [k for k, e in self._entries.items() if not self.is_entry_valid(e)]
        for key in expired:
            self._remove_locked(key)
        self._expirations += len(expired)

        evicted = 0
        if self._enable_memory_monitoring:
            while self._entries and self._memory_usage + reserve > self._memory_threshold:
                self._evict_lru_locked()
                evicted += 1

        self._last_cleanup = self._now()
        return len(expired) + evicted


def _check_options(**options: Any) -> None:
    if "max_size" in options and options["max_size"] <= 0:
        raise ValueError("max_size must be > 0")
    if "default_ttl_seconds" in options and options["default_ttl_seconds"] <= 0:
        raise ValueError("default_ttl_seconds must be > 0")
    if "memory_threshold_bytes" in options and options["memory_threshold_bytes"] <= 0:
        raise ValueError("memory_threshold_bytes must be > 0")
    if "cleanup_interval_seconds" in options and options["cleanup_interval_seconds"] < 0:
        raise ValueError("cleanup_interval_seconds must be >= 0")
