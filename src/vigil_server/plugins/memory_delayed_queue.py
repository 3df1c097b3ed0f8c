"""In-process delayed queue — for a single instance and for tests."""

from __future__ import annotations

import heapq
import itertools
from datetime import timedelta

from vigil_server.plugins.contracts.delayed_queue import DelayedQueue
from vigil_server.utils.time import Clock, Time


class MemoryDelayedQueue(DelayedQueue):
    """Min-heap ordered by due time.

    Superseded and cancelled messages stay in the heap and are skipped when
    they surface; only the latest message per key is live.
    """

    def __init__(self, clock: Clock = Time.now) -> None:
        self._clock = clock
        self._heap: list[tuple[int, int, str, str]] = []
        self._live: dict[str, int] = {}
        self._seq = itertools.count()

    async def enqueue_after(self, key: str, payload: str, delay_ms: int) -> None:
        due = Time.to_ms(self._clock() + timedelta(milliseconds=max(0, delay_ms)))
        seq = next(self._seq)
        self._live[key] = seq
        heapq.heappush(self._heap, (due, seq, key, payload))

    async def consume(self) -> str | None:
        now = Time.to_ms(self._clock())
        while self._heap and self._heap[0][0] <= now:
            _, seq, key, payload = heapq.heappop(self._heap)
            if self._live.get(key) != seq:
                continue
            del self._live[key]
            return payload
        return None

    async def cancel(self, key: str) -> None:
        self._live.pop(key, None)

    def pending(self) -> int:
        """Number of live (not superseded or cancelled) messages."""
        return len(self._live)
