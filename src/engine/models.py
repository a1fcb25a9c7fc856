# src/engine/models.py — v1
"""Engine request/result models: invalidation, maintenance, scheduling, stats.

Request models accept camelCase or snake_case keys so that free-form
contexts arriving from change events can be validated directly.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from fundmatch.cache.models import CacheStats, HealthState
from fundmatch.core.models import FundingProgram, RelevanceLevel

InvalidationStrategy = Literal["selective", "complete", "criteria-based"]
BulkKind = Literal["create", "update", "delete"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === Invalidation ===


class InvalidationOptions(_RequestModel):
    """Switches for a single invalidate() call."""

    auto_refresh: bool = False
    invalidate_related: bool = False
    invalidate_by_state: bool = True
    invalidate_by_type: bool = True
    invalidate_by_level: bool = False
    graceful_errors: bool = False
    attempt_recovery: bool = True


class InvalidationCriteria(_RequestModel):
    """Criteria-based invalidation. Matches from each criterion are unioned."""

    federal_state: str | None = None
    relevance_level: RelevanceLevel | None = None
    program_type: str | None = None
    older_than: datetime | None = None
    expired_only: bool = False

    @field_validator("older_than")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def is_empty(self) -> bool:
        return (
            self.federal_state is None
            and self.relevance_level is None
            and self.program_type is None
            and self.older_than is None
            and not self.expired_only
        )


class RecoveryInfo(BaseModel):
    attempted: bool = False
    success: bool = False
    action: str = ""
    error: str | None = None


class InvalidationResult(BaseModel):
    """Outcome of any invalidation. Returned, never raised."""

    success: bool = True
    invalidated_count: int = 0
    errors: list[str] = Field(default_factory=list)
    strategy: InvalidationStrategy
    timestamp: datetime = Field(default_factory=_utc_now)
    program_names: list[str] = Field(default_factory=list)
    refreshed_count: int = 0
    recovery: RecoveryInfo | None = None
    criteria: InvalidationCriteria | None = None


class InvalidationEvent(BaseModel):
    """Outbound notification published after every invalidation."""

    event_type: str
    timestamp: datetime = Field(default_factory=_utc_now)
    result: InvalidationResult
    details: dict[str, Any] = Field(default_factory=dict)


class InvalidationMetrics(BaseModel):
    total_invalidations: int = 0
    successful_invalidations: int = 0
    failed_invalidations: int = 0
    total_invalidated_entries: int = 0
    by_strategy: dict[str, int] = Field(default_factory=dict)
    recoveries_attempted: int = 0
    last_invalidation: datetime | None = None
    last_result: InvalidationResult | None = None


# === Hooks ===


class UpdateContext(_RequestModel):
    """Flags carried by a database change notification.

    Unknown keys are kept so that callers can pass through their own data.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    auto_refresh: bool = True
    invalidate_related: bool = True
    invalidate_by_state: bool = True
    invalidate_by_type: bool = True
    invalidate_by_level: bool = False
    update_internal_data: bool = True
    refresh_after_bulk: bool = True
    graceful_errors: bool = False
    attempt_recovery: bool = True

    def to_options(self, **overrides: bool) -> InvalidationOptions:
        values = {
            "auto_refresh": self.auto_refresh,
            "invalidate_related": self.invalidate_related,
            "invalidate_by_state": self.invalidate_by_state,
            "invalidate_by_type": self.invalidate_by_type,
            "invalidate_by_level": self.invalidate_by_level,
            "graceful_errors": self.graceful_errors,
            "attempt_recovery": self.attempt_recovery,
        }
        values.update(overrides)
        return InvalidationOptions(**values)


# === Maintenance & scheduling ===


class MaintenanceOptions(_RequestModel):
    clean_expired: bool = True
    optimize_memory: bool = True
    refresh_frequent: bool = False
    validate_consistency: bool = False


class MaintenanceResult(BaseModel):
    success: bool = True
    actions: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    inconsistencies: list[str] = Field(default_factory=list)
    expired_removed: int = 0
    memory_evicted: int = 0
    refreshed: int = 0
    orphans_removed: int = 0
    hot_recached: int = 0
    timestamp: datetime = Field(default_factory=_utc_now)


class InvalidationSchedule(_RequestModel):
    """Recurring criteria-based invalidation, optionally followed by maintenance."""

    interval_seconds: float = 24 * 60 * 60.0
    criteria: InvalidationCriteria = Field(
        default_factory=lambda: InvalidationCriteria(expired_only=True)
    )
    maintenance: bool = False
    maintenance_options: MaintenanceOptions = Field(default_factory=MaintenanceOptions)

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval_seconds must be > 0")
        return v


# === Queries ===


class MetadataFilter(_RequestModel):
    """Conjunctive filter over classified programs. None means "any"."""

    relevance_level: RelevanceLevel | None = None
    is_region_specific: bool | None = None
    domain_funding_history: bool | None = None
    origin: str | None = None
    implementation_level: str | None = None
    min_success_rate: float | None = None


class ClassificationStats(BaseModel):
    total: int = 0
    by_level: dict[int, int] = Field(default_factory=lambda: {level.value: 0 for level in RelevanceLevel})
    region_specific: int = 0
    domain_relevant: int = 0
    by_origin: dict[str, int] = Field(default_factory=dict)
    by_implementation_level: dict[str, int] = Field(default_factory=dict)
    average_success_rate: float = 0.0


class EnhancedStats(BaseModel):
    region: str | None = None
    classification: ClassificationStats
    state: dict[str, int] = Field(default_factory=dict)
    cache: CacheStats | None = None
    index_size: int = 0


class MetadataValidationReport(BaseModel):
    total: int = 0
    valid: int = 0
    invalid: int = 0
    issues: dict[str, list[str]] = Field(default_factory=dict)


class CacheHealthReport(BaseModel):
    status: HealthState | Literal["unavailable"] = "healthy"
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    cache_stats: CacheStats | None = None
    engine: dict[str, Any] = Field(default_factory=dict)
    checked_at: datetime = Field(default_factory=_utc_now)


# === Inbound events ===


class ChangeNotification(_RequestModel):
    """Payload of an inbound change or request event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    program: FundingProgram | None = None
    programs: list[FundingProgram] = Field(default_factory=list)
    program_name: str | None = Field(
        default=None, validation_alias=AliasChoices("program_name", "programName", "name")
    )
    program_names: list[str] | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)
    criteria: InvalidationCriteria | None = None

    def all_programs(self) -> list[FundingProgram]:
        if self.programs:
            return list(self.programs)
        return [self.program] if self.program is not None else []

    def all_names(self) -> list[str]:
        if self.program_names:
            return list(self.program_names)
        if self.program_name:
            return [self.program_name]
        return [p.name for p in self.all_programs()]
