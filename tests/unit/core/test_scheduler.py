# tests/unit/core/test_scheduler.py — v1
"""Tests for core/scheduler.py — PeriodicTask background thread."""

from __future__ import annotations

import threading

import pytest

from fundmatch.core.scheduler import PeriodicTask


class TestPeriodicTask:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError, match="interval"):
            PeriodicTask("t", 0, lambda: None)

    def test_runs_repeatedly(self):
        calls = threading.Event()
        counter = {"n": 0}

        def tick():
            counter["n"] += 1
            if counter["n"] >= 2:
                calls.set()

        task = PeriodicTask("tick", 0.01, tick)
        task.start()
        try:
            assert calls.wait(timeout=5)
        finally:
            task.stop()
        assert task.run_count >= 2
        assert not task.is_running

    def test_start_is_idempotent(self):
        task = PeriodicTask("idle", 60, lambda: None)
        task.start()
        first = task._thread
        task.start()
        try:
            assert task._thread is first
        finally:
            task.stop()

    def test_stop_twice(self):
        task = PeriodicTask("idle", 60, lambda: None)
        task.start()
        task.stop()
        task.stop()
        assert not task.is_running

    def test_stop_without_start(self):
        PeriodicTask("never", 60, lambda: None).stop()

    def test_failure_does_not_kill_loop(self):
        done = threading.Event()
        counter = {"n": 0}

        def flaky():
            counter["n"] += 1
            if counter["n"] == 1:
                raise RuntimeError("first run fails")
            done.set()

        task = PeriodicTask("flaky", 0.01, flaky)
        task.start()
        try:
            assert done.wait(timeout=5)
        finally:
            task.stop()

    def test_restart_after_stop(self):
        task = PeriodicTask("again", 60, lambda: None)
        task.start()
        task.stop()
        task.start()
        try:
            assert task.is_running
        finally:
            task.stop()
