"""Scheduled heartbeat downgrades over the shared delayed queue."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import timedelta

from vigil_server.heartbeat.states import HeartbeatState, ScheduledTransition
from vigil_server.plugins.contracts.delayed_queue import DelayedQueue
from vigil_server.utils.time import Clock, Time

logger = logging.getLogger("vigil.heartbeat.queue")

_KEY_PREFIX = "device-heartbeat:"
_RETRY_PREFIX = "device-heartbeat-retry:"


class DelayedTransitionQueue:
    """Schedules online→timeout and timeout→offline per device.

    At most one downgrade is pending per device: scheduling supersedes the
    previous one. Delivery is at-least-once and cancellation is advisory,
    so a fired transition is only a hint to re-evaluate.
    """

    def __init__(
        self,
        delayed_queue: DelayedQueue,
        *,
        clock: Clock = Time.now,
        idle_sleep_ms: int = 500,
    ) -> None:
        self._queue = delayed_queue
        self._clock = clock
        self._idle_sleep = idle_sleep_ms / 1000

    @staticmethod
    def key(device_id: str) -> str:
        return f"{_KEY_PREFIX}{device_id}"

    async def schedule_after(
        self,
        device_id: str,
        target_state: HeartbeatState,
        delay_ms: int,
        generation: str,
    ) -> ScheduledTransition:
        """Enqueue a downgrade to fire after ``delay_ms``."""
        transition = ScheduledTransition(
            device_id=device_id,
            from_generation=generation,
            target_state=target_state,
            fire_at=self._clock() + timedelta(milliseconds=delay_ms),
        )
        await self._queue.enqueue_after(self.key(device_id), transition.to_json(), delay_ms)
        return transition

    async def cancel(self, device_id: str, generation: str) -> None:
        """Best-effort removal of the device's pending downgrade."""
        logger.debug("cancelling pending transition of %s (generation %s)", device_id, generation)
        await self._queue.cancel(self.key(device_id))

    async def retry_after(self, transition: ScheduledTransition, delay_ms: int) -> None:
        """Re-deliver a transition whose handling failed.

        Retries use their own key so they never supersede a newer schedule;
        generation checks sort out which one still matters.
        """
        await self._queue.enqueue_after(
            f"{_RETRY_PREFIX}{transition.device_id}", transition.to_json(), delay_ms,
        )

    async def consume(self) -> ScheduledTransition | None:
        """Claim one due transition, skipping unreadable payloads."""
        while True:
            raw = await self._queue.consume()
            if raw is None:
                return None
            try:
                return ScheduledTransition.from_json(raw)
            except (ValueError, KeyError, TypeError):
                logger.warning("dropping unreadable queued transition: %r", raw)

    async def drain(self) -> AsyncIterator[ScheduledTransition]:
        """Yield fired transitions forever, sleeping while nothing is due."""
        while True:
            transition = await self.consume()
            if transition is None:
                await asyncio.sleep(self._idle_sleep)
                continue
            yield transition
