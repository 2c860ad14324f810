"""
Change Notifier

Broadcasts committed changes to whoever currently observes the affected
scope. Two kinds of scope exist: the full cycle list (``"cycles"``) and
everything that belongs to one cycle (``"cycle:<id>"``).

Delivery rules:
- Every subscriber of a scope receives every event published to it
- Events arrive in the order they were published (commit order)
- A new subscriber first receives one synthetic SNAPSHOT event, then
  only events published after it registered
- Queues are unbounded; nothing is dropped

``publish`` never awaits, so the store can call it while holding its
write lock without giving observers a chance to interleave.
"""

import asyncio
from typing import Callable, Optional, Union

import structlog

from cycle_ledger.models.events import ChangeEvent, ChangeEventBuilder


logger = structlog.get_logger(__name__)


class _Closed:
    """Queue marker that ends a subscription."""


_CLOSED = _Closed()


class Subscription:
    """
    One observer's registration for one scope.

    Iterate it to receive events; close it (or leave its ``async with``
    block) to unregister.
    """

    def __init__(self, notifier: "ChangeNotifier", scope: str):
        self.scope = scope
        self._notifier = notifier
        self._queue: asyncio.Queue[Union[ChangeEvent, _Closed]] = asyncio.Queue()
        self._closed = False
        self._queue.put_nowait(ChangeEventBuilder.snapshot(scope))

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Events queued but not yet consumed."""
        return self._queue.qsize()

    def deliver(self, event: ChangeEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._notifier._unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if isinstance(item, _Closed):
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class ChangeNotifier:
    """
    Publish/subscribe hub keyed by scope.

    Listeners are plain callables invoked synchronously with every event,
    whatever its scope (used for audit logging). A failing listener is
    logged and does not stop delivery.
    """

    def __init__(self):
        self._subscribers: dict[str, list[Subscription]] = {}
        self._listeners: list[Callable[[ChangeEvent], None]] = []

    def add_listener(self, listener: Callable[[ChangeEvent], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[ChangeEvent], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe(self, scope: str) -> Subscription:
        subscription = Subscription(self, scope)
        self._subscribers.setdefault(scope, []).append(subscription)
        logger.debug("subscriber_added", scope=scope)
        return subscription

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver an event to every subscriber of every scope it touches.

        Returns:
            Number of deliveries made
        """
        delivered = 0
        for scope in event.scopes():
            for subscription in list(self._subscribers.get(scope, ())):
                subscription.deliver(event)
                delivered += 1
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("change_listener_failed", error=str(e), kind=event.kind.value)
        logger.debug(
            "change_published",
            kind=event.kind.value,
            record_id=event.record_id,
            deliveries=delivered,
        )
        return delivered

    def subscriber_count(self, scope: Optional[str] = None) -> int:
        """Number of live subscriptions, for one scope or overall."""
        if scope is not None:
            return len(self._subscribers.get(scope, ()))
        return sum(len(subs) for subs in self._subscribers.values())

    def _unsubscribe(self, subscription: Subscription) -> None:
        subscriptions = self._subscribers.get(subscription.scope)
        if not subscriptions:
            return
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            del self._subscribers[subscription.scope]
        logger.debug("subscriber_removed", scope=subscription.scope)
