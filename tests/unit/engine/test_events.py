# tests/unit/engine/test_events.py — v1
"""Tests for engine/events.py."""

from __future__ import annotations

from fundmatch.engine import events
from fundmatch.engine.events import EventChannel, InMemoryEventBus


class TestInMemoryEventBus:
    def test_publish_reaches_subscribers_in_order(self):
        bus = InMemoryEventBus()
        seen: list[tuple[str, object]] = []
        bus.subscribe("x", lambda p: seen.append(("first", p)))
        bus.subscribe("x", lambda p: seen.append(("second", p)))
        bus.publish("x", 42)
        assert seen == [("first", 42), ("second", 42)]

    def test_publish_without_subscribers(self):
        InMemoryEventBus().publish("nobody", {})

    def test_unsubscribe(self):
        bus = InMemoryEventBus()
        seen: list[object] = []
        handler = seen.append
        bus.subscribe("x", handler)
        bus.unsubscribe("x", handler)
        bus.unsubscribe("x", handler)
        bus.publish("x", 1)
        assert seen == []
        assert bus.handler_count("x") == 0

    def test_failing_handler_does_not_stop_others(self):
        bus = InMemoryEventBus()
        seen: list[object] = []

        def broken(_payload):
            raise RuntimeError("boom")

        bus.subscribe("x", broken)
        bus.subscribe("x", seen.append)
        bus.publish("x", "payload")
        assert seen == ["payload"]

    def test_handler_may_publish(self):
        bus = InMemoryEventBus()
        seen: list[object] = []
        bus.subscribe("outer", lambda p: bus.publish("inner", p))
        bus.subscribe("inner", seen.append)
        bus.publish("outer", 1)
        assert seen == [1]

    def test_handler_count(self):
        bus = InMemoryEventBus()
        bus.subscribe("a", print)
        bus.subscribe("b", print)
        assert bus.handler_count() == 2
        assert bus.handler_count("a") == 1

    def test_satisfies_channel_protocol(self):
        assert isinstance(InMemoryEventBus(), EventChannel)


class TestEventNames:
    def test_inbound_events_are_distinct(self):
        assert len(set(events.INBOUND_EVENTS)) == 8
        assert events.RELEVANCE_CACHE_INVALIDATED not in events.INBOUND_EVENTS
