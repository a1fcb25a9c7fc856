# src/engine/relevance_engine.py — v1
"""RelevanceEngine: cache-first classification, invalidation and change hooks.

Owns the authoritative in-memory program set and a classification index
(program name -> RelevanceMetadata). All mutation of either goes through
one RLock; the cache has its own lock and is always acquired second.
Outbound events are published after the engine lock has been released.

Cache failures never escape public methods: reads degrade to misses,
writes are skipped, and invalidation failures are reported in the
returned InvalidationResult.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from fundmatch.cache.base_cache_store import BaseCacheStore, EntryPredicate
from fundmatch.cache.cache_factory import create_cache_store
from fundmatch.cache.keys import (
    name_from_key,
    name_pattern,
    program_cache_key,
    region_pattern,
    type_pattern,
)
from fundmatch.cache.models import CacheEntry, CacheStats
from fundmatch.classification.classifier import DOMAIN_TAG
from fundmatch.classification.metadata import derive_metadata, validate_metadata
from fundmatch.classification.prioritizer import (
    matches_region,
    parse_funding_rate,
    sort_by_priority,
    state_statistics,
)
from fundmatch.config.settings import Settings
from fundmatch.core.models import (
    ALL_STATES,
    ClassifiedProgram,
    FundingProgram,
    RelevanceLevel,
    RelevanceMetadata,
    UserCriteria,
)
from fundmatch.core.scheduler import PeriodicTask
from fundmatch.engine import events
from fundmatch.engine.events import EventChannel, EventHandler
from fundmatch.engine.models import (
    CacheHealthReport,
    ChangeNotification,
    ClassificationStats,
    EnhancedStats,
    InvalidationCriteria,
    InvalidationEvent,
    InvalidationMetrics,
    InvalidationOptions,
    InvalidationResult,
    InvalidationSchedule,
    InvalidationStrategy,
    MaintenanceOptions,
    MaintenanceResult,
    MetadataFilter,
    MetadataValidationReport,
    RecoveryInfo,
    UpdateContext,
)
from fundmatch.logging.context import operation_context

logger = logging.getLogger(__name__)

CACHE_NOT_AVAILABLE = "Cache not available"

BASE_SCORE_BY_LEVEL: dict[RelevanceLevel, int] = {
    RelevanceLevel.CORE: 50,
    RelevanceLevel.SUPPLEMENTARY: 40,
    RelevanceLevel.NATIONAL: 30,
    RelevanceLevel.EXCLUDED: 0,
}
REGION_BONUS = 30
TYPE_BONUS = 25
DOMAIN_HISTORY_BONUS = 20
MEASURES_BONUS = 15
MAX_SCORE = 100

LOW_HIT_RATE_PERCENT = 50.0
HIGH_MEMORY_PERCENT = 80.0
EXPIRED_SHARE = 0.2

InvalidationListener = Callable[[InvalidationEvent], None]
ProgramInput = FundingProgram | Mapping[str, Any]


def _to_program(program: ProgramInput) -> FundingProgram:
    if isinstance(program, FundingProgram):
        return program
    return FundingProgram.model_validate(program)


def _entry_level(entry: CacheEntry) -> RelevanceLevel | None:
    value = entry.value
    if isinstance(value, RelevanceMetadata):
        return value.relevance_level
    if isinstance(value, Mapping):
        raw = value.get("relevance_level")
        try:
            return RelevanceLevel(raw)
        except (TypeError, ValueError):
            return None
    return None


class RelevanceEngine:
    """Classifies, scores and caches funding programs.

    Args:
        programs: Initial program set (models or raw mappings).
        cache: Injected cache backend. When None and caching is enabled in
            settings, one is built with create_cache_store().
        settings: Application settings (defaults loaded from .env).
        engine_id: Identifier attached to log records.
    """

    def __init__(
        self,
        programs: Iterable[ProgramInput] | None = None,
        cache: BaseCacheStore | None = None,
        settings: Settings | None = None,
        engine_id: str | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self.engine_id = engine_id or uuid.uuid4().hex[:8]
        self._programs: list[FundingProgram] = [_to_program(p) for p in programs or []]

        if cache is None and self._settings.cache_enabled:
            cache = create_cache_store(self._settings)
        self._cache = cache

        self._lock = threading.RLock()
        self._index: dict[str, RelevanceMetadata] = {}
        self._metrics = InvalidationMetrics()

        self._channel: EventChannel | None = None
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._listeners: list[InvalidationListener] = []

        self._schedule: InvalidationSchedule | None = None
        self._schedule_task: PeriodicTask | None = None
        self._destroyed = False

        logger.info(
            "Relevance engine %s ready (%d programs, cache %s)",
            self.engine_id,
            len(self._programs),
            "enabled" if self._cache is not None else "disabled",
        )

    # --- Properties ---

    @property
    def programs(self) -> list[FundingProgram]:
        with self._lock:
            return list(self._programs)

    @property
    def cache(self) -> BaseCacheStore | None:
        return self._cache

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def is_scheduled(self) -> bool:
        task = self._schedule_task
        return task is not None and task.is_running

    def classification_index_size(self) -> int:
        with self._lock:
            return len(self._index)

    # === Classification ===

    def classify_all(self, programs: Iterable[ProgramInput] | None = None) -> list[ClassifiedProgram]:
        """Classify programs cache-first, recording each result in the index."""
        with self._lock:
            source = list(self._programs) if programs is None else [_to_program(p) for p in programs]
            return [ClassifiedProgram.from_program(p, self._classify_locked(p)) for p in source]

    def relevance_metadata(self, program: ProgramInput | None) -> RelevanceMetadata:
        if program is None:
            return derive_metadata(None)
        program = _to_program(program)
        with self._lock:
            metadata = self._index.get(program.name)
            if metadata is None:
                metadata = self._classify_locked(program)
            return metadata.model_copy(deep=True)

    def relevance_level(self, program: ProgramInput | None) -> RelevanceLevel:
        return self.relevance_metadata(program).relevance_level

    def relevance_score(
        self, program: ProgramInput, criteria: UserCriteria | Mapping[str, Any] | None = None
    ) -> float:
        """Score a program against user criteria on a 0..100 scale."""
        program = _to_program(program)
        metadata = self.relevance_metadata(program)
        score = float(BASE_SCORE_BY_LEVEL[metadata.relevance_level])
        if criteria is None:
            return score
        if not isinstance(criteria, UserCriteria):
            criteria = UserCriteria.model_validate(criteria)

        region = criteria.federal_state
        if region and metadata.is_region_specific and region in program.federal_states:
            score += REGION_BONUS

        if criteria.project_type and criteria.project_type in program.type:
            score += TYPE_BONUS

        if criteria.project_type == DOMAIN_TAG and metadata.domain_funding_history:
            score += DOMAIN_HISTORY_BONUS

        wanted = set(criteria.measures)
        if wanted:
            matched = len(wanted & set(program.measures))
            score += matched / len(wanted) * MEASURES_BONUS

        return float(min(MAX_SCORE, score))

    # === Invalidation ===

    def invalidate(
        self,
        program_names: str | Sequence[str] | None = None,
        options: InvalidationOptions | Mapping[str, Any] | None = None,
    ) -> InvalidationResult:
        """Invalidate everything (no names) or the named programs.

        Invalidation and the optional auto-refresh run under one engine lock
        hold, so no other invalidation interleaves between the two.
        """
        names = self._coerce_names(program_names)
        try:
            opts = self._coerce_options(options)
        except ValidationError as exc:
            strategy: InvalidationStrategy = "complete" if names is None else "selective"
            return self._reject(exc, strategy, {"source": "invalidate"}, names)
        with operation_context("invalidate", engine_id=self.engine_id):
            with self._lock:
                result = self._invalidate_locked(names, opts)
            self._publish(result, {"source": "invalidate"})
        return result

    def invalidate_by_criteria(
        self, criteria: InvalidationCriteria | Mapping[str, Any] | None = None
    ) -> InvalidationResult:
        """Remove every cache entry matching any of the given criteria."""
        return self._invalidate_by_criteria(criteria, {"source": "criteria"})

    def refresh(
        self, program_names: str | Sequence[str] | None = None, refresh_all: bool = False
    ) -> int:
        """Re-classify and re-cache programs. No names means all programs."""
        names = self._coerce_names(program_names)
        with operation_context("refresh", engine_id=self.engine_id):
            with self._lock:
                count = self._refresh_locked(None if refresh_all else names)
        logger.info("Refreshed %d programs", count)
        return count

    def invalidation_metrics(self) -> InvalidationMetrics:
        with self._lock:
            return self._metrics.model_copy(deep=True)

    # === Database change hooks ===

    def on_created(
        self, program: ProgramInput, context: Mapping[str, Any] | None = None
    ) -> InvalidationResult:
        """A program was created: complete invalidation (plus refresh of all)."""
        try:
            ctx = self._coerce_context(context)
            program = _to_program(program)
        except ValidationError as exc:
            return self._reject(exc, "complete", {"hook": "created"})
        with operation_context("on_created", engine_id=self.engine_id, program=program.name):
            with self._lock:
                if ctx.update_internal_data:
                    self._upsert_locked([program])
                result = self._invalidate_locked(None, ctx.to_options())
            self._publish(result, {"hook": "created", "program_names": [program.name]})
        return result

    def on_updated(
        self,
        programs: ProgramInput | Sequence[ProgramInput],
        context: Mapping[str, Any] | None = None,
    ) -> InvalidationResult:
        """Programs changed: selective invalidation with related sweeps."""
        try:
            ctx = self._coerce_context(context)
            updated = self._coerce_programs(programs)
        except ValidationError as exc:
            return self._reject(exc, "selective", {"hook": "updated"})
        names = [p.name for p in updated]
        with operation_context("on_updated", engine_id=self.engine_id, program=",".join(names)):
            with self._lock:
                previous = self._upsert_locked(updated) if ctx.update_internal_data else []
                result = self._invalidate_locked(
                    names, ctx.to_options(), related_programs=previous + updated
                )
            self._publish(result, {"hook": "updated", "program_names": names})
        return result

    def on_deleted(
        self, program_names: str | Sequence[str], context: Mapping[str, Any] | None = None
    ) -> InvalidationResult:
        """Programs were deleted: selective invalidation of their entries."""
        names = self._coerce_names(program_names) or []
        try:
            ctx = self._coerce_context(context)
        except ValidationError as exc:
            return self._reject(exc, "selective", {"hook": "deleted"}, names)
        with operation_context("on_deleted", engine_id=self.engine_id, program=",".join(names)):
            with self._lock:
                removed = self._remove_locked(names) if ctx.update_internal_data else []
                result = self._invalidate_locked(
                    names, ctx.to_options(auto_refresh=False), related_programs=removed
                )
            self._publish(result, {"hook": "deleted", "program_names": names})
        return result

    def on_bulk(
        self,
        kind: str,
        programs: Sequence[ProgramInput | str],
        context: Mapping[str, Any] | None = None,
    ) -> InvalidationResult:
        """Batch change: one invalidation and one event for the whole batch.

        create -> complete invalidation; update -> selective invalidation
        followed by a single refresh pass; delete -> selective invalidation.
        """
        try:
            ctx = self._coerce_context(context)
        except ValidationError as exc:
            strategy: InvalidationStrategy = "complete" if kind == "create" else "selective"
            return self._reject(exc, strategy, {"hook": f"bulk_{kind}"})
        with operation_context(f"on_bulk_{kind}", engine_id=self.engine_id):
            with self._lock:
                if kind == "create":
                    created = self._coerce_programs(programs)
                    names = [p.name for p in created]
                    if ctx.update_internal_data:
                        self._upsert_locked(created)
                    result = self._invalidate_locked(None, ctx.to_options())
                elif kind == "update":
                    updated = self._coerce_programs(programs)
                    names = [p.name for p in updated]
                    previous = self._upsert_locked(updated) if ctx.update_internal_data else []
                    result = self._invalidate_locked(
                        names,
                        ctx.to_options(auto_refresh=False),
                        related_programs=previous + updated,
                    )
                    if ctx.refresh_after_bulk:
                        result.refreshed_count = self._refresh_locked(names)
                elif kind == "delete":
                    names = [p if isinstance(p, str) else _to_program(p).name for p in programs]
                    removed = self._remove_locked(names) if ctx.update_internal_data else []
                    result = self._invalidate_locked(
                        names, ctx.to_options(auto_refresh=False), related_programs=removed
                    )
                else:
                    names = []
                    result = InvalidationResult(
                        success=False,
                        strategy="selective",
                        errors=[f"Unknown bulk operation: {kind!r}"],
                    )
                    logger.warning("Unknown bulk operation %r", kind)
            self._publish(result, {"hook": f"bulk_{kind}", "program_names": names})
        return result

    # === Events ===

    def connect(self, channel: EventChannel) -> None:
        """Listen for inbound change events on ``channel`` and publish to it."""
        self.disconnect()
        handlers: dict[str, EventHandler] = {
            events.PROGRAM_CREATED: self._handle_program_created,
            events.PROGRAM_UPDATED: self._handle_program_updated,
            events.PROGRAM_DELETED: self._handle_program_deleted,
            events.PROGRAMS_BULK_CREATED: self._handle_bulk_created,
            events.PROGRAMS_BULK_UPDATED: self._handle_bulk_updated,
            events.PROGRAMS_BULK_DELETED: self._handle_bulk_deleted,
            events.CACHE_INVALIDATION_REQUESTED: self._handle_invalidation_requested,
            events.CACHE_REFRESH_REQUESTED: self._handle_refresh_requested,
        }
        for event_type, handler in handlers.items():
            channel.subscribe(event_type, handler)
            self._subscriptions.append((event_type, handler))
        self._channel = channel
        logger.info("Engine %s connected to event channel", self.engine_id)

    def disconnect(self) -> None:
        channel = self._channel
        subscriptions = self._subscriptions
        self._channel = None
        self._subscriptions = []
        if channel is None:
            return
        for event_type, handler in subscriptions:
            try:
                channel.unsubscribe(event_type, handler)
            except Exception:
                logger.warning("Failed to unsubscribe from %s", event_type, exc_info=True)

    def add_listener(self, listener: InvalidationListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: InvalidationListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # === Queries ===

    def programs_by_relevance(
        self, level: RelevanceLevel | int, region: str | None = None
    ) -> list[ClassifiedProgram]:
        selected = [p for p in self.classify_all() if p.relevance_level == level]
        if region:
            selected = sort_by_priority([p for p in selected if matches_region(p, region)], region)
        return selected

    def programs_by_metadata(
        self, metadata_filter: MetadataFilter | Mapping[str, Any]
    ) -> list[ClassifiedProgram]:
        if not isinstance(metadata_filter, MetadataFilter):
            metadata_filter = MetadataFilter.model_validate(metadata_filter)
        return [p for p in self.classify_all() if _matches_filter(p.metadata, metadata_filter)]

    def prioritize_by_region(
        self, region: str, programs: Iterable[ProgramInput] | None = None
    ) -> list[ClassifiedProgram]:
        """Programs available in ``region``, excluded tier removed, priority-sorted."""
        classified = self.classify_all(programs)
        available = [
            p for p in classified
            if p.relevance_level != RelevanceLevel.EXCLUDED and matches_region(p, region)
        ]
        return sort_by_priority(available, region)

    def recommend(
        self, criteria: UserCriteria | Mapping[str, Any], limit: int | None = None
    ) -> list[ClassifiedProgram]:
        """Recommended programs for an applicant, best first."""
        if not isinstance(criteria, UserCriteria):
            criteria = UserCriteria.model_validate(criteria)

        candidates = [
            p for p in self.classify_all() if p.relevance_level != RelevanceLevel.EXCLUDED
        ]
        if criteria.federal_state:
            region = criteria.federal_state
            ranked = sort_by_priority([p for p in candidates if matches_region(p, region)], region)
        else:
            ranked = sorted(
                candidates,
                key=lambda p: (int(p.relevance_level), -parse_funding_rate(p.funding_rate)),
            )
        return ranked[:limit] if limit is not None else ranked

    def classification_stats(self) -> ClassificationStats:
        classified = self.classify_all()
        stats = ClassificationStats(total=len(classified))
        for program in classified:
            meta = program.metadata
            stats.by_level[int(meta.relevance_level)] += 1
            stats.region_specific += meta.is_region_specific
            stats.domain_relevant += meta.domain_funding_history
            stats.by_origin[meta.origin] = stats.by_origin.get(meta.origin, 0) + 1
            stats.by_implementation_level[meta.implementation_level] = (
                stats.by_implementation_level.get(meta.implementation_level, 0) + 1
            )
        if classified:
            stats.average_success_rate = sum(p.metadata.success_rate for p in classified) / len(
                classified
            )
        return stats

    def enhanced_stats(self, region: str | None = None) -> EnhancedStats:
        classified = self.classify_all()
        return EnhancedStats(
            region=region,
            classification=self.classification_stats(),
            state=state_statistics(classified, region),
            cache=self._safe_cache_stats(),
            index_size=self.classification_index_size(),
        )

    def validate_all_metadata(self) -> MetadataValidationReport:
        """Validate cached metadata values (or the index when uncached)."""
        report = MetadataValidationReport()
        with self._lock:
            if self._cache is not None:
                try:
                    items = [(name_from_key(e.key) or e.key, e.value) for e in self._cache.entries()]
                except Exception:
                    logger.warning("Could not read cache entries for validation", exc_info=True)
                    items = list(self._index.items())
            else:
                items = list(self._index.items())

        for name, value in items:
            raw = value.model_dump() if isinstance(value, RelevanceMetadata) else value
            outcome = validate_metadata(raw)
            report.total += 1
            if outcome.is_valid:
                report.valid += 1
            else:
                report.invalid += 1
                report.issues[name] = outcome.errors
        return report

    def cache_health(self) -> CacheHealthReport:
        """Cache health plus engine figures and tuning recommendations."""
        engine_info = {
            "engine_id": self.engine_id,
            "programs": len(self.programs),
            "index_size": self.classification_index_size(),
            "total_invalidations": self.invalidation_metrics().total_invalidations,
            "scheduled_invalidation": self.is_scheduled,
        }
        if self._cache is None:
            return CacheHealthReport(
                status="unavailable", issues=[CACHE_NOT_AVAILABLE], engine=engine_info
            )

        try:
            health = self._cache.get_health_status()
        except Exception as exc:
            logger.warning("Cache health check failed", exc_info=True)
            return CacheHealthReport(
                status="critical",
                issues=[f"Health check failed: {exc}"],
                engine=engine_info,
            )

        stats = health.stats
        recommendations: list[str] = []
        if stats.lookups and stats.hit_rate < LOW_HIT_RATE_PERCENT:
            recommendations.append(
                "Low hit rate: consider a longer TTL or a larger cache"
            )
        if stats.memory_usage_percent > HIGH_MEMORY_PERCENT:
            recommendations.append(
                "High memory usage: lower the max size or run memory optimization"
            )
        if stats.size and stats.expired_entries > stats.size * EXPIRED_SHARE:
            recommendations.append("Many expired entries: run maintenance to clean them up")
        if stats.evictions > stats.hits:
            recommendations.append("High eviction rate: consider increasing the max size")

        return CacheHealthReport(
            status=health.status,
            issues=health.issues,
            recommendations=recommendations,
            cache_stats=stats,
            engine=engine_info,
        )

    # === Maintenance & scheduling ===

    def perform_maintenance(
        self, options: MaintenanceOptions | Mapping[str, Any] | None = None
    ) -> MaintenanceResult:
        """Run the selected maintenance steps. Each step fails independently."""
        if options is None:
            opts = MaintenanceOptions()
        elif isinstance(options, MaintenanceOptions):
            opts = options
        else:
            opts = MaintenanceOptions.model_validate(options)

        result = MaintenanceResult()
        cache = self._cache
        if cache is None:
            result.success = False
            result.errors.append(CACHE_NOT_AVAILABLE)
            return result

        with operation_context("maintenance", engine_id=self.engine_id):
            with self._lock:
                if opts.clean_expired:
                    self._maintenance_step(result, "clean_expired", self._clean_expired_locked)
                if opts.optimize_memory:
                    self._maintenance_step(result, "optimize_memory", self._optimize_memory_locked)
                if opts.refresh_frequent:
                    self._maintenance_step(result, "refresh_frequent", self._refresh_frequent_locked)
                if opts.validate_consistency:
                    self._maintenance_step(
                        result, "validate_consistency", self._validate_consistency_locked
                    )
        result.success = not result.errors
        logger.info("Maintenance finished: %s", "; ".join(result.actions) or "nothing to do")
        return result

    def schedule_invalidation(
        self, schedule: InvalidationSchedule | Mapping[str, Any] | None = None
    ) -> InvalidationSchedule:
        """Start (or replace) the recurring criteria-based invalidation."""
        if schedule is None:
            sched = InvalidationSchedule()
        elif isinstance(schedule, InvalidationSchedule):
            sched = schedule
        else:
            sched = InvalidationSchedule.model_validate(schedule)

        self.stop_scheduled_invalidation()
        self._schedule = sched
        task = PeriodicTask(
            name=f"fundmatch-invalidation-{self.engine_id}",
            interval=sched.interval_seconds,
            func=self.run_scheduled_invalidation,
        )
        self._schedule_task = task
        task.start()
        logger.info("Scheduled invalidation every %.0fs", sched.interval_seconds)
        return sched

    def stop_scheduled_invalidation(self) -> None:
        task = self._schedule_task
        self._schedule_task = None
        if task is not None:
            task.stop()
            logger.info("Stopped scheduled invalidation")

    def run_scheduled_invalidation(self) -> InvalidationResult | None:
        """Run the current schedule once (also called by the background task)."""
        sched = self._schedule
        if sched is None:
            return None
        result = self._invalidate_by_criteria(sched.criteria, {"source": "schedule"})
        if sched.maintenance:
            self.perform_maintenance(sched.maintenance_options)
        return result

    def destroy(self) -> None:
        """Release background tasks, the cache and all subscriptions. Never raises."""
        if self._destroyed:
            return
        self._destroyed = True
        steps: list[tuple[str, Callable[[], None]]] = [
            ("stop schedule", self.stop_scheduled_invalidation),
            ("disconnect", self.disconnect),
            ("destroy cache", self._destroy_cache),
            ("clear state", self._clear_state),
        ]
        for label, step in steps:
            try:
                step()
            except Exception:
                logger.warning("Engine destroy step %r failed", label, exc_info=True)
        logger.info("Relevance engine %s destroyed", self.engine_id)

    # === Internals (caller holds self._lock where suffixed _locked) ===

    def _classify_locked(self, program: FundingProgram) -> RelevanceMetadata:
        key = program_cache_key(program)
        metadata = self._metadata_from_cache(key, self._cache_get(key))
        if metadata is None:
            metadata = derive_metadata(program)
            self._cache_set(key, metadata)
        self._index[program.name] = metadata
        return metadata

    def _refresh_locked(self, names: Sequence[str] | None) -> int:
        if names is None:
            targets = list(self._programs)
        else:
            wanted = set(names)
            targets = [p for p in self._programs if p.name in wanted]
        for program in targets:
            metadata = derive_metadata(program)
            self._cache_set(program_cache_key(program), metadata)
            self._index[program.name] = metadata
        return len(targets)

    def _invalidate_locked(
        self,
        names: list[str] | None,
        opts: InvalidationOptions,
        related_programs: Sequence[FundingProgram] | None = None,
    ) -> InvalidationResult:
        strategy: InvalidationStrategy = "complete" if names is None else "selective"
        if self._cache is None:
            return InvalidationResult(
                success=False,
                strategy=strategy,
                program_names=names or [],
                errors=[CACHE_NOT_AVAILABLE],
            )

        if names is None:
            result = self._invalidate_complete_locked()
        else:
            result = self._invalidate_selective_locked(names, opts, related_programs)

        if not result.success and opts.attempt_recovery:
            result.recovery = self._recover_locked()

        if opts.auto_refresh:
            result.refreshed_count = self._refresh_locked(names)
        return result

    def _invalidate_complete_locked(self) -> InvalidationResult:
        cache = self._cache
        try:
            count = cache.size()
            cache.clear()
        except Exception as exc:
            logger.error("Complete invalidation failed: %s", exc)
            return InvalidationResult(
                success=False, strategy="complete", errors=[f"Complete invalidation failed: {exc}"]
            )
        self._index.clear()
        logger.info("Complete invalidation removed %d entries", count)
        return InvalidationResult(strategy="complete", invalidated_count=count)

    def _invalidate_selective_locked(
        self,
        names: list[str],
        opts: InvalidationOptions,
        related_programs: Sequence[FundingProgram] | None,
    ) -> InvalidationResult:
        cache = self._cache
        if related_programs is None:
            wanted = set(names)
            related_programs = [p for p in self._programs if p.name in wanted]
        levels = {self._index[n].relevance_level for n in names if n in self._index}

        errors: list[str] = []
        count = 0
        for name in names:
            try:
                count += cache.invalidate_by_pattern(name_pattern(name))
            except Exception as exc:
                errors.append(f"Failed to invalidate {name!r}: {exc}")
                logger.warning("Selective invalidation of %s failed: %s", name, exc)
                if not opts.graceful_errors:
                    break
                continue
            self._index.pop(name, None)

        if opts.invalidate_related and (not errors or opts.graceful_errors):
            count += self._invalidate_related_locked(related_programs, levels, opts, errors)

        result = InvalidationResult(
            success=not errors or opts.graceful_errors,
            strategy="selective",
            invalidated_count=count,
            errors=errors,
            program_names=names,
        )
        logger.info("Selective invalidation of %d programs removed %d entries", len(names), count)
        return result

    def _invalidate_related_locked(
        self,
        related: Sequence[FundingProgram],
        levels: set[RelevanceLevel],
        opts: InvalidationOptions,
        errors: list[str],
    ) -> int:
        cache = self._cache
        sweeps: list[tuple[str, re.Pattern[str] | EntryPredicate]] = []
        if opts.invalidate_by_state:
            states = sorted({s for p in related for s in p.federal_states if s != ALL_STATES})
            sweeps.extend((f"state {s}", region_pattern(s)) for s in states)
        if opts.invalidate_by_type:
            types = sorted({t for p in related for t in p.type})
            sweeps.extend((f"type {t}", type_pattern(t)) for t in types)
        if opts.invalidate_by_level and levels:
            sweeps.append(("level", lambda e: _entry_level(e) in levels))

        count = 0
        for label, target in sweeps:
            try:
                if isinstance(target, re.Pattern):
                    count += cache.invalidate_by_pattern(target)
                else:
                    count += len(cache.invalidate_where(target))
            except Exception as exc:
                errors.append(f"Related invalidation by {label} failed: {exc}")
                logger.warning("Related invalidation by %s failed: %s", label, exc)
                if not opts.graceful_errors:
                    break
        return count

    def _invalidate_by_criteria(
        self, criteria: InvalidationCriteria | Mapping[str, Any] | None, details: dict[str, Any]
    ) -> InvalidationResult:
        if criteria is None:
            crit = InvalidationCriteria()
        elif isinstance(criteria, InvalidationCriteria):
            crit = criteria
        else:
            try:
                crit = InvalidationCriteria.model_validate(criteria)
            except ValidationError as exc:
                return self._reject(exc, "criteria-based", details)

        with operation_context("invalidate_by_criteria", engine_id=self.engine_id):
            with self._lock:
                result = self._invalidate_by_criteria_locked(crit)
            self._publish(result, details)
        return result

    def _invalidate_by_criteria_locked(self, crit: InvalidationCriteria) -> InvalidationResult:
        cache = self._cache
        if cache is None:
            return InvalidationResult(
                success=False, strategy="criteria-based", criteria=crit, errors=[CACHE_NOT_AVAILABLE]
            )
        if crit.is_empty:
            return InvalidationResult(strategy="criteria-based", criteria=crit)

        state_re = region_pattern(crit.federal_state) if crit.federal_state else None
        type_re = type_pattern(crit.program_type) if crit.program_type else None

        def matches(entry: CacheEntry) -> bool:
            if state_re is not None and state_re.search(entry.key):
                return True
            if type_re is not None and type_re.search(entry.key):
                return True
            if crit.relevance_level is not None and _entry_level(entry) == crit.relevance_level:
                return True
            if crit.older_than is not None and entry.cached_at < crit.older_than:
                return True
            return crit.expired_only and not cache.is_entry_valid(entry)

        try:
            keys = cache.invalidate_where(matches)
        except Exception as exc:
            logger.error("Criteria invalidation failed: %s", exc)
            return InvalidationResult(
                success=False,
                strategy="criteria-based",
                criteria=crit,
                errors=[f"Criteria invalidation failed: {exc}"],
            )

        names = sorted({name_from_key(k) for k in keys} - {""})
        for name in names:
            self._index.pop(name, None)
        logger.info("Criteria invalidation removed %d entries", len(keys))
        return InvalidationResult(
            strategy="criteria-based",
            invalidated_count=len(keys),
            criteria=crit,
            program_names=names,
        )

    def _recover_locked(self) -> RecoveryInfo:
        info = RecoveryInfo(attempted=True, action="clear_and_reconfigure")
        try:
            self._cache.clear()
            self._cache.configure(
                max_size=self._settings.cache_max_size,
                default_ttl_seconds=self._settings.cache_default_ttl_seconds,
                memory_threshold_bytes=self._settings.cache_memory_threshold_bytes,
            )
        except Exception as exc:
            info.error = str(exc)
            logger.error("Cache recovery failed: %s", exc)
            return info
        self._index.clear()
        info.success = True
        logger.warning("Cache recovered by clearing and reconfiguring")
        return info

    def _reject(
        self,
        exc: ValidationError,
        strategy: InvalidationStrategy,
        details: dict[str, Any],
        names: list[str] | None = None,
    ) -> InvalidationResult:
        """Report rejected input as a failed invalidation instead of raising."""
        errors = [f"Invalid {exc.title}: {err['msg']}" for err in exc.errors()]
        logger.warning("Rejected invalidation input: %s", "; ".join(errors))
        result = InvalidationResult(
            success=False, strategy=strategy, program_names=names or [], errors=errors
        )
        self._publish(result, details)
        return result

    def _publish(self, result: InvalidationResult, details: dict[str, Any]) -> None:
        with self._lock:
            metrics = self._metrics
            metrics.total_invalidations += 1
            if result.success:
                metrics.successful_invalidations += 1
            else:
                metrics.failed_invalidations += 1
            metrics.total_invalidated_entries += result.invalidated_count
            metrics.by_strategy[result.strategy] = metrics.by_strategy.get(result.strategy, 0) + 1
            if result.recovery is not None:
                metrics.recoveries_attempted += 1
            metrics.last_invalidation = result.timestamp
            metrics.last_result = result
            listeners = list(self._listeners)
        channel = self._channel

        event = InvalidationEvent(
            event_type=events.RELEVANCE_CACHE_INVALIDATED,
            timestamp=result.timestamp,
            result=result,
            details=details,
        )
        if channel is not None:
            try:
                channel.publish(events.RELEVANCE_CACHE_INVALIDATED, event)
            except Exception:
                logger.exception("Publishing invalidation event failed")
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Invalidation listener failed")

    # --- Program set ---

    def _upsert_locked(self, programs: Sequence[FundingProgram]) -> list[FundingProgram]:
        """Replace programs by name (appending new ones). Returns replaced versions."""
        previous: list[FundingProgram] = []
        positions = {p.name: i for i, p in enumerate(self._programs)}
        for program in programs:
            position = positions.get(program.name)
            if position is None:
                positions[program.name] = len(self._programs)
                self._programs.append(program)
            else:
                previous.append(self._programs[position])
                self._programs[position] = program
        return previous

    def _remove_locked(self, names: Sequence[str]) -> list[FundingProgram]:
        doomed = set(names)
        removed = [p for p in self._programs if p.name in doomed]
        self._programs = [p for p in self._programs if p.name not in doomed]
        return removed

    # --- Maintenance steps ---

    def _maintenance_step(
        self, result: MaintenanceResult, label: str, step: Callable[[MaintenanceResult], None]
    ) -> None:
        try:
            step(result)
        except Exception as exc:
            result.errors.append(f"{label} failed: {exc}")
            logger.warning("Maintenance step %s failed", label, exc_info=True)

    def _clean_expired_locked(self, result: MaintenanceResult) -> None:
        cache = self._cache
        removed = cache.invalidate_where(lambda e: not cache.is_entry_valid(e))
        result.expired_removed = len(removed)
        result.actions.append(f"Removed {len(removed)} expired entries")

    def _optimize_memory_locked(self, result: MaintenanceResult) -> None:
        result.memory_evicted = self._cache.perform_memory_cleanup()
        result.actions.append(f"Memory cleanup removed {result.memory_evicted} entries")

    def _refresh_frequent_locked(self, result: MaintenanceResult) -> None:
        threshold = self._settings.frequent_access_threshold
        frequent = sorted(
            (e for e in self._cache.entries() if e.access_count > threshold),
            key=lambda e: e.access_count,
            reverse=True,
        )[: self._settings.frequent_access_limit]
        names = [name_from_key(e.key) for e in frequent]
        result.refreshed = self._refresh_locked([n for n in names if n])
        result.actions.append(f"Refreshed {result.refreshed} frequently accessed programs")

    def _validate_consistency_locked(self, result: MaintenanceResult) -> None:
        cache = self._cache
        current = {program_cache_key(p): p for p in self._programs}
        cached_keys: set[str] = set()
        for entry in cache.entries():
            if entry.key in current:
                cached_keys.add(entry.key)
                continue
            cache.delete(entry.key)
            result.orphans_removed += 1
            result.inconsistencies.append(f"Orphaned cache entry: {entry.key}")

        recached = 0
        limit = min(self._settings.hot_program_limit, self._settings.cache_max_size)
        for key, program in current.items():
            if recached >= limit:
                break
            if key in cached_keys:
                continue
            metadata = derive_metadata(program)
            is_hot = metadata.relevance_level <= RelevanceLevel.SUPPLEMENTARY and (
                metadata.domain_funding_history or metadata.is_region_specific
            )
            if not is_hot:
                continue
            self._cache_set(key, metadata)
            self._index[program.name] = metadata
            result.inconsistencies.append(f"Hot program not cached: {program.name}")
            recached += 1
        result.hot_recached = recached
        result.actions.append(
            f"Consistency check: {result.orphans_removed} orphans removed, {recached} hot programs re-cached"
        )

    # --- Cache access ---

    def _cache_get(self, key: str) -> Any | None:
        if self._cache is None:
            return None
        try:
            return self._cache.get(key)
        except Exception:
            logger.warning("Cache read failed for %s", key, exc_info=True)
            return None

    def _cache_set(self, key: str, metadata: RelevanceMetadata) -> bool:
        if self._cache is None:
            return False
        try:
            self._cache.set(key, metadata)
        except Exception:
            logger.warning("Cache write failed for %s", key, exc_info=True)
            return False
        return True

    def _metadata_from_cache(self, key: str, value: Any) -> RelevanceMetadata | None:
        if value is None:
            return None
        if isinstance(value, RelevanceMetadata):
            return value
        if isinstance(value, Mapping):
            outcome = validate_metadata(value)
            if not outcome.is_valid:
                logger.warning("Sanitized cached metadata for %s: %s", key, "; ".join(outcome.errors))
            return outcome.sanitized
        logger.warning("Ignoring cached value of type %s for %s", type(value).__name__, key)
        return None

    def _safe_cache_stats(self) -> CacheStats | None:
        if self._cache is None:
            return None
        try:
            return self._cache.get_stats()
        except Exception:
            logger.warning("Could not read cache stats", exc_info=True)
            return None

    def _destroy_cache(self) -> None:
        if self._cache is not None:
            self._cache.destroy()

    def _clear_state(self) -> None:
        with self._lock:
            self._listeners.clear()
            self._index.clear()

    # --- Input coercion ---

    @staticmethod
    def _coerce_options(options: InvalidationOptions | Mapping[str, Any] | None) -> InvalidationOptions:
        if options is None:
            return InvalidationOptions()
        if isinstance(options, InvalidationOptions):
            return options
        return InvalidationOptions.model_validate(options)

    @staticmethod
    def _coerce_context(context: UpdateContext | Mapping[str, Any] | None) -> UpdateContext:
        if context is None:
            return UpdateContext()
        if isinstance(context, UpdateContext):
            return context
        return UpdateContext.model_validate(context)

    @staticmethod
    def _coerce_names(names: str | Sequence[str] | None) -> list[str] | None:
        if names is None:
            return None
        if isinstance(names, str):
            return [names]
        return list(dict.fromkeys(names))

    @staticmethod
    def _coerce_programs(programs: ProgramInput | Sequence[ProgramInput]) -> list[FundingProgram]:
        if isinstance(programs, (FundingProgram, Mapping)):
            return [_to_program(programs)]
        return [_to_program(p) for p in programs]

    # --- Inbound event handlers ---

    def _parse_notification(self, event_type: str, payload: Any) -> ChangeNotification | None:
        if isinstance(payload, ChangeNotification):
            return payload
        if isinstance(payload, FundingProgram):
            return ChangeNotification(program=payload)
        try:
            return ChangeNotification.model_validate(payload or {})
        except ValidationError as exc:
            logger.warning("Ignoring malformed %s event: %s", event_type, exc)
            return None

    def _handle_program_created(self, payload: Any) -> None:
        note = self._parse_notification(events.PROGRAM_CREATED, payload)
        if note is not None and note.program is not None:
            self.on_created(note.program, note.context)

    def _handle_program_updated(self, payload: Any) -> None:
        note = self._parse_notification(events.PROGRAM_UPDATED, payload)
        if note is not None and note.all_programs():
            self.on_updated(note.all_programs(), note.context)

    def _handle_program_deleted(self, payload: Any) -> None:
        note = self._parse_notification(events.PROGRAM_DELETED, payload)
        if note is not None and note.all_names():
            self.on_deleted(note.all_names(), note.context)

    def _handle_bulk_created(self, payload: Any) -> None:
        note = self._parse_notification(events.PROGRAMS_BULK_CREATED, payload)
        if note is not None:
            self.on_bulk("create", note.all_programs(), note.context)

    def _handle_bulk_updated(self, payload: Any) -> None:
        note = self._parse_notification(events.PROGRAMS_BULK_UPDATED, payload)
        if note is not None:
            self.on_bulk("update", note.all_programs(), note.context)

    def _handle_bulk_deleted(self, payload: Any) -> None:
        note = self._parse_notification(events.PROGRAMS_BULK_DELETED, payload)
        if note is not None:
            self.on_bulk("delete", note.all_names(), note.context)

    def _handle_invalidation_requested(self, payload: Any) -> None:
        note = self._parse_notification(events.CACHE_INVALIDATION_REQUESTED, payload)
        if note is None:
            return
        if note.criteria is not None:
            self.invalidate_by_criteria(note.criteria)
        else:
            self.invalidate(note.program_names, note.options)

    def _handle_refresh_requested(self, payload: Any) -> None:
        note = self._parse_notification(events.CACHE_REFRESH_REQUESTED, payload)
        if note is None:
            return
        refresh_all = bool(note.options.get("refresh_all", note.options.get("refreshAll", False)))
        self.refresh(note.program_names, refresh_all=refresh_all)


def _matches_filter(metadata: RelevanceMetadata, flt: MetadataFilter) -> bool:
    if flt.relevance_level is not None and metadata.relevance_level != flt.relevance_level:
        return False
    if flt.is_region_specific is not None and metadata.is_region_specific != flt.is_region_specific:
        return False
    if (
        flt.domain_funding_history is not None
        and metadata.domain_funding_history != flt.domain_funding_history
    ):
        return False
    if flt.origin is not None and metadata.origin != flt.origin:
        return False
    if flt.implementation_level is not None and metadata.implementation_level != flt.implementation_level:
        return False
    return flt.min_success_rate is None or metadata.success_rate >= flt.min_success_rate
