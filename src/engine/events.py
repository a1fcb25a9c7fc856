# src/engine/events.py — v1
"""Event channel seam between the engine and outside collaborators.

The engine only needs something with subscribe / unsubscribe / publish;
InMemoryEventBus is the in-process implementation used by default and in
tests.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]

# Inbound
PROGRAM_CREATED = "program_created"
PROGRAM_UPDATED = "program_updated"
PROGRAM_DELETED = "program_deleted"
PROGRAMS_BULK_CREATED = "programs_bulk_created"
PROGRAMS_BULK_UPDATED = "programs_bulk_updated"
PROGRAMS_BULK_DELETED = "programs_bulk_deleted"
CACHE_INVALIDATION_REQUESTED = "cache_invalidation_requested"
CACHE_REFRESH_REQUESTED = "cache_refresh_requested"

INBOUND_EVENTS = (
    PROGRAM_CREATED,
    PROGRAM_UPDATED,
    PROGRAM_DELETED,
    PROGRAMS_BULK_CREATED,
    PROGRAMS_BULK_UPDATED,
    PROGRAMS_BULK_DELETED,
    CACHE_INVALIDATION_REQUESTED,
    CACHE_REFRESH_REQUESTED,
)

# Outbound
RELEVANCE_CACHE_INVALIDATED = "relevance_cache_invalidated"


@runtime_checkable
class EventChannel(Protocol):
    """Minimal pub/sub surface the engine talks to."""

    def subscribe(self, event_type: str, handler: EventHandler) -> None: ...

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None: ...

    def publish(self, event_type: str, payload: Any) -> None: ...


class InMemoryEventBus:
    """Synchronous in-process event bus.

    Handlers run on the publishing thread, in subscription order. A handler
    that raises is logged and the remaining handlers still run.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event_type: str, payload: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event_type, []))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %s failed", event_type)

    def handler_count(self, event_type: str | None = None) -> int:
        with self._lock:
            if event_type is not None:
                return len(self._handlers.get(event_type, []))
            return sum(len(h) for h in self._handlers.values())
