# src/gateway/update_gateway.py — v1
"""Persistence-facing adapter that turns data changes into engine hooks.

The data layer calls the gateway after it has written a change; the
gateway forwards it to the engine hook and wraps the outcome in a
GatewayResult. Unexpected failures are logged and reported, not raised.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from fundmatch.core.models import FundingProgram
from fundmatch.engine.models import (
    CacheHealthReport,
    InvalidationCriteria,
    InvalidationResult,
    InvalidationSchedule,
    MaintenanceOptions,
    MaintenanceResult,
)
from fundmatch.engine.relevance_engine import RelevanceEngine
from fundmatch.gateway.models import GatewayResult, ScheduleResult, ServiceStatus
from fundmatch.logging.context import operation_context

logger = logging.getLogger(__name__)

ENGINE_NOT_AVAILABLE = "Relevance engine not available"

ProgramInput = FundingProgram | Mapping[str, Any]


def _program_name(program: ProgramInput) -> str:
    if isinstance(program, FundingProgram):
        return program.name
    return str(program.get("name", ""))


class UpdateGateway:
    """Forwards create/update/delete notifications to a RelevanceEngine.

    Args:
        engine: Engine to notify. None yields failed results for every call.
    """

    def __init__(self, engine: RelevanceEngine | None) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        self._processed = 0
        self._failed = 0
        self._maintenance_scheduled = False
        self._destroyed = False

    @property
    def engine(self) -> RelevanceEngine | None:
        return self._engine

    # --- Change notifications ---

    def program_created(
        self, program: ProgramInput, context: Mapping[str, Any] | None = None
    ) -> GatewayResult:
        name = _program_name(program)
        return self._notify(
            "program_created",
            lambda engine: engine.on_created(program, context),
            f"Program {name!r} created",
        )

    def program_updated(
        self, program: ProgramInput, context: Mapping[str, Any] | None = None
    ) -> GatewayResult:
        name = _program_name(program)
        return self._notify(
            "program_updated",
            lambda engine: engine.on_updated([program], context),
            f"Program {name!r} updated",
        )

    def programs_updated(
        self, programs: Sequence[ProgramInput], context: Mapping[str, Any] | None = None
    ) -> GatewayResult:
        return self._notify(
            "programs_updated",
            lambda engine: engine.on_bulk("update", programs, context),
            f"{len(programs)} programs updated",
        )

    def programs_created(
        self, programs: Sequence[ProgramInput], context: Mapping[str, Any] | None = None
    ) -> GatewayResult:
        return self._notify(
            "programs_created",
            lambda engine: engine.on_bulk("create", programs, context),
            f"{len(programs)} programs created",
        )

    def program_deleted(
        self, program_name: str, context: Mapping[str, Any] | None = None
    ) -> GatewayResult:
        return self._notify(
            "program_deleted",
            lambda engine: engine.on_deleted(program_name, context),
            f"Program {program_name!r} deleted",
        )

    def programs_deleted(
        self, program_names: Sequence[str], context: Mapping[str, Any] | None = None
    ) -> GatewayResult:
        return self._notify(
            "programs_deleted",
            lambda engine: engine.on_bulk("delete", list(program_names), context),
            f"{len(program_names)} programs deleted",
        )

    # --- Direct requests ---

    def request_invalidation(
        self,
        program_names: Sequence[str] | None = None,
        options: Mapping[str, Any] | None = None,
        criteria: InvalidationCriteria | Mapping[str, Any] | None = None,
    ) -> GatewayResult:
        """Invalidate by criteria when given, else by names (all when None)."""
        if criteria is not None:
            return self._notify(
                "request_invalidation",
                lambda engine: engine.invalidate_by_criteria(criteria),
                "Criteria-based invalidation completed",
            )
        return self._notify(
            "request_invalidation",
            lambda engine: engine.invalidate(program_names, options),
            "Cache invalidation completed",
        )

    def request_refresh(
        self, program_names: Sequence[str] | None = None, refresh_all: bool = False
    ) -> GatewayResult:
        engine = self._engine
        if engine is None:
            return self._unavailable()
        try:
            count = engine.refresh(program_names, refresh_all=refresh_all)
        except Exception as exc:
            logger.exception("Gateway refresh failed")
            self._count(success=False)
            return GatewayResult(success=False, message="Cache refresh failed", error=str(exc))
        self._count(success=True)
        return GatewayResult(
            success=True,
            message=f"Refreshed {count} programs",
            details={"refreshed_count": count},
        )

    def cache_health(self) -> CacheHealthReport:
        if self._engine is None:
            return CacheHealthReport(status="unavailable", issues=[ENGINE_NOT_AVAILABLE])
        return self._engine.cache_health()

    def perform_maintenance(
        self, options: MaintenanceOptions | Mapping[str, Any] | None = None
    ) -> MaintenanceResult:
        if self._engine is None:
            return MaintenanceResult(success=False, errors=[ENGINE_NOT_AVAILABLE])
        return self._engine.perform_maintenance(options)

    # --- Scheduled maintenance ---

    def schedule_maintenance(
        self,
        interval_seconds: float | None = None,
        criteria: InvalidationCriteria | Mapping[str, Any] | None = None,
        validate_consistency: bool | None = None,
        maintenance_options: Mapping[str, Any] | None = None,
    ) -> ScheduleResult:
        """Schedule recurring expired-entry invalidation plus maintenance.

        Defaults come from the engine's settings (maintenance interval and
        consistency validation).
        """
        engine = self._engine
        if engine is None:
            return ScheduleResult(success=False, error=ENGINE_NOT_AVAILABLE)

        settings = engine.settings
        interval = interval_seconds or settings.maintenance_interval_seconds
        if validate_consistency is None:
            validate_consistency = settings.maintenance_validate_consistency
        try:
            options = MaintenanceOptions.model_validate(
                {**dict(maintenance_options or {}), "validate_consistency": validate_consistency}
            )
            schedule = InvalidationSchedule(
                interval_seconds=interval,
                criteria=criteria if criteria is not None else InvalidationCriteria(expired_only=True),
                maintenance=True,
                maintenance_options=options,
            )
            engine.schedule_invalidation(schedule)
        except ValueError as exc:
            logger.error("Could not schedule maintenance: %s", exc)
            return ScheduleResult(success=False, message="Invalid maintenance schedule", error=str(exc))

        with self._lock:
            self._maintenance_scheduled = True
        return ScheduleResult(
            success=True,
            message=f"Maintenance scheduled every {interval:.0f}s",
            interval_seconds=interval,
        )

    def stop_maintenance(self) -> ScheduleResult:
        if self._engine is not None:
            self._engine.stop_scheduled_invalidation()
        with self._lock:
            was_scheduled = self._maintenance_scheduled
            self._maintenance_scheduled = False
        message = "Maintenance stopped" if was_scheduled else "No maintenance was scheduled"
        return ScheduleResult(success=True, message=message)

    # --- Status & lifecycle ---

    def service_status(self) -> ServiceStatus:
        engine = self._engine
        with self._lock:
            status = ServiceStatus(
                engine_available=engine is not None,
                maintenance_scheduled=self._maintenance_scheduled,
                notifications_processed=self._processed,
                notifications_failed=self._failed,
            )
        if engine is not None:
            status.cache_health = engine.cache_health()
            status.invalidation_metrics = engine.invalidation_metrics()
        return status

    def destroy(self) -> None:
        """Stop maintenance and destroy the engine. Safe to call repeatedly."""
        if self._destroyed:
            return
        self._destroyed = True
        engine = self._engine
        with self._lock:
            self._maintenance_scheduled = False
        if engine is not None:
            engine.destroy()
        logger.info("Update gateway destroyed")

    # --- Internal ---

    def _notify(
        self,
        operation: str,
        call: Callable[[RelevanceEngine], InvalidationResult],
        message: str,
    ) -> GatewayResult:
        engine = self._engine
        if engine is None:
            return self._unavailable()

        with operation_context(f"gateway.{operation}"):
            try:
                result = call(engine)
            except Exception as exc:
                logger.exception("Gateway %s failed", operation)
                self._count(success=False)
                return GatewayResult(success=False, message=f"{operation} failed", error=str(exc))

        self._count(success=result.success)
        if not result.success:
            logger.warning("%s: cache invalidation reported errors: %s", operation, result.errors)
        return GatewayResult(
            success=result.success,
            message=message if result.success else f"{message}, cache invalidation failed",
            cache_invalidation=result,
            error="; ".join(result.errors) or None,
        )

    def _unavailable(self) -> GatewayResult:
        self._count(success=False)
        return GatewayResult(success=False, message=ENGINE_NOT_AVAILABLE, error=ENGINE_NOT_AVAILABLE)

    def _count(self, success: bool) -> None:
        with self._lock:
            self._processed += 1
            if not success:
                self._failed += 1
