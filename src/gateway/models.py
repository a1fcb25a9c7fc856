# src/gateway/models.py — v1
"""Result models returned by the update gateway."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from fundmatch.engine.models import CacheHealthReport, InvalidationMetrics, InvalidationResult


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GatewayResult(BaseModel):
    """Outcome of one change notification or request."""

    success: bool
    message: str = ""
    timestamp: datetime = Field(default_factory=_utc_now)
    cache_invalidation: InvalidationResult | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class ScheduleResult(BaseModel):
    success: bool
    message: str = ""
    interval_seconds: float | None = None
    timestamp: datetime = Field(default_factory=_utc_now)
    error: str | None = None


class ServiceStatus(BaseModel):
    timestamp: datetime = Field(default_factory=_utc_now)
    engine_available: bool
    maintenance_scheduled: bool = False
    notifications_processed: int = 0
    notifications_failed: int = 0
    cache_health: CacheHealthReport | None = None
    invalidation_metrics: InvalidationMetrics | None = None
