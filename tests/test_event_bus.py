"""Tests for the in-process EventBus."""

from __future__ import annotations

from unittest.mock import AsyncMock

from src.crmsync.core.context import SyncContext
from src.crmsync.events.bus import EventBus


class TestEventBus:
    async def test_listeners_run_in_priority_then_subscription_order(self):
        bus = EventBus()
        order: list[str] = []

        def make(name):
            async def listener(payload, ctx):
                order.append(name)

            return listener

        bus.subscribe("t", make("late"), priority=20)
        bus.subscribe("t", make("first-10"))
        bus.subscribe("t", make("early"), priority=1)
        bus.subscribe("t", make("second-10"))

        delivered = await bus.publish("t", {}, SyncContext())

        assert order == ["early", "first-10", "second-10", "late"]
        assert delivered == 4

    def test_subscribe_is_idempotent(self):
        bus = EventBus()
        listener = AsyncMock()

        assert bus.subscribe("t", listener) is True
        assert bus.subscribe("t", listener, priority=1) is False
        assert bus.listeners("t") == [listener]

    def test_unsubscribe(self):
        bus = EventBus()
        listener = AsyncMock()
        bus.subscribe("t", listener)

        assert bus.unsubscribe("t", listener) is True
        assert bus.unsubscribe("t", listener) is False
        assert bus.listeners("t") == []

    async def test_failing_listener_does_not_stop_others(self):
        bus = EventBus()
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        bus.subscribe("t", broken, priority=1)
        bus.subscribe("t", healthy, priority=2)
        ctx = SyncContext()

        delivered = await bus.publish("t", {"x": 1}, ctx)

        assert delivered == 1
        healthy.assert_awaited_once_with({"x": 1}, ctx)

    async def test_publish_to_empty_topic(self):
        assert await EventBus().publish("nobody", {}, SyncContext()) == 0
