# src/cache/cache_factory.py — v3
"""Factory for cache store instantiation."""

from __future__ import annotations

from fundmatch.cache.base_cache_store import BaseCacheStore
from fundmatch.config.settings import Settings


def create_cache_store(settings: Settings | None = None) -> BaseCacheStore:
    """Instantiate the configured cache backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend
            with default sizing.

    Returns:
        Configured BaseCacheStore implementation.
    """
    settings = settings or Settings()
    backend = settings.cache_backend

    if backend == "memory":
        from fundmatch.cache.memory_store import MemoryCacheStore

        return MemoryCacheStore(
            max_size=settings.cache_max_size,
            default_ttl_seconds=settings.cache_default_ttl_seconds,
            version=settings.cache_version,
            memory_threshold_bytes=settings.cache_memory_threshold_bytes,
            cleanup_interval_seconds=settings.cache_cleanup_interval_seconds,
            enable_metrics=settings.cache_enable_metrics,
            enable_memory_monitoring=settings.cache_enable_memory_monitoring,
        )

    raise ValueError(f"Unsupported cache backend: {backend!r}")
