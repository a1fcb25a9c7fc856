# src/api/facade.py — v1
"""Public API facade: single entry point for building the relevance service.

Usage:
    from fundmatch.api.facade import create_service
    gateway = create_service(programs)
    gateway.program_updated(changed_program)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from fundmatch.config.settings import Settings
from fundmatch.core.models import FundingProgram
from fundmatch.engine.relevance_engine import RelevanceEngine
from fundmatch.gateway.update_gateway import UpdateGateway
from fundmatch.logging.context import set_engine_context
from fundmatch.logging.logger import setup_logging_from_settings

if TYPE_CHECKING:
    from fundmatch.cache.base_cache_store import BaseCacheStore
    from fundmatch.engine.events import EventChannel

logger = logging.getLogger(__name__)


def create_service(
    programs: Iterable[FundingProgram | Mapping[str, Any]] | None = None,
    settings: Settings | None = None,
    cache: BaseCacheStore | None = None,
    channel: EventChannel | None = None,
    engine_id: str | None = None,
    configure_logging: bool = True,
    schedule_maintenance: bool = False,
) -> UpdateGateway:
    """Build an engine and wrap it in an UpdateGateway.

    Args:
        programs: Initial program set.
        settings: Application settings (defaults loaded from .env).
        cache: Cache backend override. Built from settings when None.
        channel: Event channel to connect the engine to.
        engine_id: Identifier attached to log records.
        configure_logging: Apply the LOG_* settings to the package logger.
        schedule_maintenance: Start recurring maintenance with the
            settings' interval.

    Returns:
        The gateway; its engine is reachable through ``gateway.engine``.
        Call ``gateway.destroy()`` to release background tasks.
    """
    settings = settings or Settings()
    if configure_logging:
        setup_logging_from_settings(settings)

    engine = RelevanceEngine(programs, cache=cache, settings=settings, engine_id=engine_id)
    set_engine_context(engine.engine_id)
    if channel is not None:
        engine.connect(channel)

    gateway = UpdateGateway(engine)
    if schedule_maintenance:
        scheduled = gateway.schedule_maintenance()
        if not scheduled.success:
            logger.warning("Maintenance not scheduled: %s", scheduled.error)

    logger.info(
        "Relevance service ready: engine=%s programs=%d channel=%s",
        engine.engine_id,
        len(engine.programs),
        "connected" if channel is not None else "none",
    )
    return gateway
