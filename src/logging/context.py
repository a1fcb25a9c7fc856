# src/logging/context.py — v2
"""Contextual logging support — attach engine_id, operation, program to log records."""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

# Context variables for structured logging — set per engine operation.
_engine_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "engine_id", default=None
)
_operation: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "operation", default=None
)
_program: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "program", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    engine_id: str | None = None
    operation: str | None = None
    program: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        engine_id=_engine_id.get(),
        operation=_operation.get(),
        program=_program.get(),
    )


def set_engine_context(engine_id: str) -> None:
    """Set engine-level context (called once per engine thread of work)."""
    _engine_id.set(engine_id)


@contextmanager
def operation_context(
    operation: str,
    engine_id: str | None = None,
    program: str | None = None,
) -> Iterator[None]:
    """Scope operation (and optionally engine/program) context to a block.

    Previous values are restored on exit, so nested operations such as a
    hook that triggers an invalidation log with the innermost operation.
    """
    tokens = [_operation.set(operation)]
    if engine_id is not None:
        tokens.append(_engine_id.set(engine_id))
    if program is not None:
        tokens.append(_program.set(program))
    try:
        yield
    finally:
        for token in reversed(tokens):
            token.var.reset(token)


def clear_context() -> None:
    """Reset all context variables."""
    _engine_id.set(None)
    _operation.set(None)
    _program.set(None)
