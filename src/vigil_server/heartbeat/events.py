"""Outbound change/stats notifications for subscribers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

logger = logging.getLogger("vigil.heartbeat.events")

EventKind = Literal["change", "stats"]
Subscriber = Callable[[Any], Awaitable[None] | None]


class _Delivery:
    """One subscriber's private queue and delivery task."""

    def __init__(self, kind: EventKind, callback: Subscriber) -> None:
        self.kind = kind
        self.callback = callback
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.task: asyncio.Task[None] | None = None

    def push(self, event: Any) -> None:
        self.queue.put_nowait(event)
        if self.task is None or self.task.done():
            self.task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                result = self.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s subscriber %r failed", self.kind, self.callback)
            finally:
                self.queue.task_done()

    def cancel(self) -> None:
        if self.task is not None:
            self.task.cancel()
            self.task = None


class HeartbeatEvents:
    """Callback registry with non-blocking delivery.

    Every subscriber gets its own unbounded queue and delivery task, so
    ``emit`` never waits and a slow subscriber only delays itself.
    Subscriber exceptions are logged, never propagated to the emitter.
    """

    def __init__(self) -> None:
        self._deliveries: dict[EventKind, list[_Delivery]] = {
            "change": [],
            "stats": [],
        }

    def subscribe(self, kind: EventKind, callback: Subscriber) -> Callable[[], None]:
        """Register a sync or async callback. Returns an unsubscribe function."""
        delivery = _Delivery(kind, callback)
        self._deliveries[kind].append(delivery)

        def unsubscribe() -> None:
            if delivery in self._deliveries[kind]:
                self._deliveries[kind].remove(delivery)
            delivery.cancel()

        return unsubscribe

    def emit(self, kind: EventKind, event: Any) -> None:
        """Queue an event for every current subscriber of ``kind``."""
        for delivery in list(self._deliveries[kind]):
            delivery.push(event)

    def subscriber_count(self, kind: EventKind) -> int:
        return len(self._deliveries[kind])

    async def drain(self) -> None:
        """Wait until every queued event has been handed to its subscriber."""
        for deliveries in self._deliveries.values():
            for delivery in list(deliveries):
                await delivery.queue.join()

    async def close(self) -> None:
        """Stop all delivery tasks. Undelivered events are dropped."""
        for deliveries in self._deliveries.values():
            for delivery in deliveries:
                delivery.cancel()
            deliveries.clear()
