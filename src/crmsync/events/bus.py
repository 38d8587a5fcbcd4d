"""In-process event bus with explicit, ordered listener registration.

Listeners subscribe to a topic with a priority (lower runs first, ties keep
subscription order). Publishing awaits each listener in turn within the
current request: there is no queue and no background delivery.

A listener that raises is logged and skipped; the remaining listeners still
run, so one broken consumer cannot starve the others mid-chain.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from src.crmsync.core.context import SyncContext

logger = structlog.get_logger(__name__)

Listener = Callable[[Any, SyncContext], Awaitable[None]]


@dataclass
class _Subscription:
    listener: Listener
    priority: int
    order: int


class EventBus:
    """Publish and subscribe to named topics within one process.

    Subscribing the same listener to the same topic twice is a no-op, so
    repeated module initialization cannot double-subscribe.
    """

    def __init__(self) -> None:
        self._topics: dict[str, list[_Subscription]] = {}
        self._counter = 0

    def subscribe(self, topic: str, listener: Listener, priority: int = 10) -> bool:
        """Subscribe a listener to a topic.

        Args:
            topic: Topic name.
            listener: Async callable taking ``(payload, ctx)``.
            priority: Lower values run first.

        Returns:
            True if subscribed, False if it was already subscribed.
        """
        subscriptions = self._topics.setdefault(topic, [])
        if any(s.listener == listener for s in subscriptions):
            return False
        self._counter += 1
        subscriptions.append(_Subscription(listener, priority, self._counter))
        subscriptions.sort(key=lambda s: (s.priority, s.order))
        return True

    def unsubscribe(self, topic: str, listener: Listener) -> bool:
        """Remove a listener from a topic. Returns False if it was not subscribed."""
        subscriptions = self._topics.get(topic, [])
        for subscription in subscriptions:
            if subscription.listener == listener:
                subscriptions.remove(subscription)
                return True
        return False

    def listeners(self, topic: str) -> list[Listener]:
        """Listeners for a topic, in the order they will run."""
        return [s.listener for s in self._topics.get(topic, [])]

    async def publish(self, topic: str, payload: Any, ctx: SyncContext) -> int:
        """Deliver a payload to every listener of a topic, in order.

        Returns:
            Number of listeners that completed without raising.
        """
        delivered = 0
        for listener in list(self.listeners(topic)):
            try:
                await listener(payload, ctx)
                delivered += 1
            except Exception as exc:
                logger.error(
                    "event_bus.listener_failed",
                    topic=topic,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    request_id=ctx.request_id,
                    error=str(exc),
                    exc_info=True,
                )
        logger.debug("event_bus.published", topic=topic, delivered=delivered)
        return delivered
