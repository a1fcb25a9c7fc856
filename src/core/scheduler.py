# src/core/scheduler.py — v1
"""Stoppable periodic background task.

Runs a callable every ``interval`` seconds on a daemon thread until stopped.
Used by the cache sweep and the engine's scheduled invalidation.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

_JOIN_TIMEOUT_SECONDS = 5.0


class PeriodicTask:
    """Daemon thread calling ``func`` at a fixed interval.

    The wait between runs uses a ``threading.Event`` so ``stop()`` returns
    promptly instead of sleeping out the interval. A failing run is logged
    and the schedule continues.

    Args:
        name: Thread name (shows up in logs and debuggers).
        interval: Seconds between runs. Must be > 0.
        func: Zero-argument callable.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], object]) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.name = name
        self.interval = interval
        self._func = func
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.run_count = 0

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        """Start the thread. No-op when already running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(self._stop,), name=self.name, daemon=True
            )
            self._thread.start()
        logger.debug("Started periodic task %s (every %.3fs)", self.name, self.interval)

    def stop(self) -> None:
        """Signal the thread to stop and wait for it. Safe to call repeatedly."""
        with self._lock:
            thread = self._thread
            self._stop.set()
            self._thread = None
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout=_JOIN_TIMEOUT_SECONDS)
        logger.debug("Stopped periodic task %s", self.name)

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            try:
                self._func()
                self.run_count += 1
            except Exception:
                logger.exception("Periodic task %s failed", self.name)
