# src/cache/models.py — v2
"""Cache domain models: CacheEntry, CacheStats, CacheHealthStatus, CacheSnapshot."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

HealthState = Literal["healthy", "warning", "critical"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(BaseModel):
    """Single cached value with TTL, version stamp and access bookkeeping."""

    key: str
    value: Any
    cached_at: datetime
    expires_at: datetime
    ttl_seconds: float
    cache_version: str
    access_count: int = 0
    last_accessed: datetime
    estimated_size_bytes: int = 0

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expires_at


class CacheStats(BaseModel):
    """Point-in-time counters and usage figures of a cache store."""

    size: int
    max_size: int
    cache_version: str
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    evictions: int = 0
    invalidations: int = 0
    expirations: int = 0
    total_access_count: int = 0
    average_access_time_ms: float = 0.0
    memory_usage_bytes: int = 0
    memory_threshold_bytes: int = 0
    memory_usage_percent: float = 0.0
    size_usage_percent: float = 0.0
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None
    expired_entries: int = 0
    last_cleanup: datetime | None = None

    @property
    def lookups(self) -> int:
        return self.hits + self.misses


class CacheHealthStatus(BaseModel):
    """Derived health classification plus the issues that caused it."""

    status: HealthState = "healthy"
    issues: list[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=utc_now)
    stats: CacheStats


class CacheSnapshot(BaseModel):
    """Serializable dump of a cache's valid entries."""

    version: str
    exported_at: datetime = Field(default_factory=utc_now)
    entries: list[CacheEntry] = Field(default_factory=list)
