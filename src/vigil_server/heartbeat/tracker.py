"""Heartbeat state machine — the single entry point for signals and timers.

Inbound heartbeats and fired downgrade timers both land here. Every
decision reads one config snapshot, and every durable write is bound to
its cache update and timer re-arm in one unit of work.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import AbstractAsyncContextManager
from dataclasses import replace
from datetime import datetime

from vigil_server.heartbeat.errors import (
    HeartbeatError,
    HeartbeatUnavailableError,
    bounded,
)
from vigil_server.heartbeat.events import HeartbeatEvents
from vigil_server.heartbeat.persister import StatePersister
from vigil_server.heartbeat.poll_interval import PollIntervalResolver
from vigil_server.heartbeat.states import (
    CacheEntry,
    ChangeEvent,
    HeartbeatConfig,
    HeartbeatState,
    PersistResult,
    ScheduledTransition,
    StatsEvent,
)
from vigil_server.heartbeat.transition_queue import DelayedTransitionQueue
from vigil_server.heartbeat.write_cache import WriteThroughCache
from vigil_server.utils.time import Clock, Time

logger = logging.getLogger("vigil.heartbeat")

_RETRY_DELAY_MS = 5000
_COUNTERS = ("scheduled", "fired", "skipped", "persisted")


class HeartbeatTracker:
    """Decides and applies heartbeat state transitions for every device.

    Built once at startup with its collaborators pre-wired. Holds no
    per-device state: all of it lives in the shared cache, the delayed
    queue and the durable store, so any number of instances can run side
    by side.

    Generations are ``<epoch ms>-<random>`` strings that sort by creation
    time. A fired transition older than the cached generation was
    superseded by a later heartbeat and is discarded.
    """

    def __init__(
        self,
        *,
        resolver: PollIntervalResolver,
        cache: WriteThroughCache,
        queue: DelayedTransitionQueue,
        persister: StatePersister,
        events: HeartbeatEvents,
        config: HeartbeatConfig,
        clock: Clock = Time.now,
        operation_timeout_seconds: float = 5.0,
        stats_interval_seconds: float = 60.0,
    ) -> None:
        self._resolver = resolver
        self._cache = cache
        self._queue = queue
        self._persister = persister
        self._events = events
        self._config = config
        self._clock = clock
        self._operation_timeout = operation_timeout_seconds
        self._stats_interval = stats_interval_seconds
        self._counters = dict.fromkeys(_COUNTERS, 0)
        self._window_started = clock()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def config(self) -> HeartbeatConfig:
        return self._config

    @property
    def events(self) -> HeartbeatEvents:
        return self._events

    @property
    def running(self) -> bool:
        """True while the background loops are active."""
        return any(not task.done() for task in self._tasks)

    def update_config(self, config: HeartbeatConfig) -> None:
        """Swap the config snapshot. In-flight decisions keep the old one."""
        self._config = config
        logger.info("heartbeat config updated: %s", config)

    async def get_effective_poll_interval(self, device_id: str) -> int:
        """How often the device should check in, in ms."""
        config = self._config
        async with self._bounded("poll interval lookup", device_id):
            return await self._resolver.resolve(device_id, config)

    # --- Heartbeats ---

    async def capture_heartbeat(self, device_id: str) -> None:
        """Record that the device is alive.

        Raises:
            HeartbeatUnavailableError: If a backend failed or timed out.
                Nothing was recorded.
            DeviceNotFoundError: If the device does not exist.
        """
        config = self._config
        now = self._clock()
        generation = self._next_generation(now)
        result: PersistResult | None = None

        async with self._bounded("heartbeat", device_id):
            interval_ms = await self._resolver.resolve(device_id, config)
            entry = await self._cache.get(device_id)

            if self._trusts_cached_online(entry, now, config):
                assert entry is not None
                await self._queue.schedule_after(
                    device_id, HeartbeatState.TIMEOUT, interval_ms, generation,
                )
                await self._cache.set(
                    replace(entry, generation=generation),
                    self._online_ttl(interval_ms, config),
                )
                self._count("scheduled")
                self._count("skipped")
                return

            touched = False
            try:
                async with self._persister.applying(
                    device_id, HeartbeatState.ONLINE, now,
                ) as result:
                    if result.applied:
                        touched = True
                        await self._queue.schedule_after(
                            device_id, HeartbeatState.TIMEOUT, interval_ms, generation,
                        )
                        await self._cache.set(
                            CacheEntry(device_id, HeartbeatState.ONLINE, now, generation),
                            self._online_ttl(interval_ms, config),
                        )
            except BaseException:
                if touched:
                    await self._forget(device_id, generation)
                raise

        self._record_write(device_id, result, scheduled=True)

    # --- Fired downgrades ---

    async def handle_transition(self, transition: ScheduledTransition) -> None:
        """Re-evaluate a device whose downgrade timer fired.

        The transition is a hint, not a command: it is discarded when a
        newer heartbeat superseded it, and the downgrade of the newer
        generation is re-armed in its place. With no cache entry to compare
        against, it is applied; ``offline`` always clears the cache, so the
        next heartbeat re-confirms ``online`` through the durable store.

        Raises:
            HeartbeatUnavailableError: If a backend failed or timed out.
        """
        config = self._config
        now = self._clock()
        device_id = transition.device_id
        target = transition.target_state
        self._count("fired")

        if target not in (HeartbeatState.TIMEOUT, HeartbeatState.OFFLINE):
            logger.warning("ignoring transition of %s to %s", device_id, target.value)
            return

        result: PersistResult | None = None
        async with self._bounded("transition", device_id):
            entry = await self._cache.get(device_id)
            if entry is not None and transition.from_generation < entry.generation:
                logger.debug(
                    "discarding stale %s transition of %s (generation %s < %s)",
                    target.value, device_id, transition.from_generation, entry.generation,
                )
                self._count("skipped")
                await self._rearm(entry, config)
                return

            if target is HeartbeatState.TIMEOUT:
                grace_ms = config.timeout_grace_ms
                async with self._persister.applying(device_id, target, now) as result:
                    if result.applied:
                        await self._queue.schedule_after(
                            device_id, HeartbeatState.OFFLINE, grace_ms,
                            transition.from_generation,
                        )
                        await self._cache.set(
                            CacheEntry(device_id, target, now, transition.from_generation),
                            grace_ms + config.default_poll_interval_ms,
                        )
            else:
                async with self._persister.applying(device_id, target, now) as result:
                    if result.applied:
                        await self._cache.delete(device_id)

        self._record_write(device_id, result, scheduled=target is HeartbeatState.TIMEOUT)

    async def process_due_transitions(self, limit: int = 100) -> int:
        """Handle every transition that is due right now, up to ``limit``.

        Returns:
            How many transitions were consumed.
        """
        processed = 0
        while processed < limit:
            transition = await self._queue.consume()
            if transition is None:
                break
            processed += 1
            await self._handle_safely(transition)
        return processed

    async def run_transition_consumer(self) -> None:
        """Drain the delayed queue forever. Survives backend outages."""
        while True:
            try:
                async for transition in self._queue.drain():
                    await self._handle_safely(transition)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("transition consumer failed, restarting")
                await asyncio.sleep(1)

    # --- Stats ---

    def emit_stats(self) -> StatsEvent:
        """Publish and reset the counters of the current window."""
        now = self._clock()
        event = StatsEvent(
            window_ms=max(0, Time.elapsed_ms(self._window_started, now)),
            **self._counters,
        )
        self._counters = dict.fromkeys(_COUNTERS, 0)
        self._window_started = now
        self._events.emit("stats", event)
        logger.debug("heartbeat stats: %s", event)
        return event

    async def run_stats_emitter(self) -> None:
        """Emit stats on a fixed cadence forever."""
        while True:
            await asyncio.sleep(self._stats_interval)
            self.emit_stats()

    # --- Lifecycle ---

    def start(self) -> None:
        """Launch the consumer and stats loops on the running event loop."""
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self.run_transition_consumer(), name="heartbeat-transitions"),
            loop.create_task(self.run_stats_emitter(), name="heartbeat-stats"),
        ]
        logger.info("heartbeat tracker started")

    async def stop(self) -> None:
        """Cancel background loops and stop event delivery."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self._events.close()
        logger.info("heartbeat tracker stopped")

    # --- Internals ---

    def _bounded(self, what: str, device_id: str) -> AbstractAsyncContextManager[None]:
        return bounded(what, device_id, self._operation_timeout)

    async def _rearm(self, entry: CacheEntry, config: HeartbeatConfig) -> None:
        """Keep a downgrade pending for the generation that superseded a fired one.

        Overlapping heartbeats can leave the queue holding an older
        generation than the cache. Discarding that timer alone would leave
        the device with nothing pending, so the cached generation gets its
        own.
        """
        if entry.current_state is HeartbeatState.ONLINE:
            target = HeartbeatState.TIMEOUT
            delay_ms = await self._resolver.resolve(entry.device_id, config)
        elif entry.current_state is HeartbeatState.TIMEOUT:
            target = HeartbeatState.OFFLINE
            delay_ms = config.timeout_grace_ms
        else:
            return
        await self._queue.schedule_after(entry.device_id, target, delay_ms, entry.generation)
        self._count("scheduled")

    async def _handle_safely(self, transition: ScheduledTransition) -> None:
        """Handle one fired transition without letting it hurt the others."""
        try:
            await self.handle_transition(transition)
        except HeartbeatUnavailableError as error:
            logger.warning("transition of %s failed, retrying: %s", transition.device_id, error)
            await self._retry(transition)
        except HeartbeatError as error:
            logger.warning("dropping transition of %s: %s", transition.device_id, error)
        except Exception:
            logger.exception("unexpected failure handling transition of %s", transition.device_id)

    async def _retry(self, transition: ScheduledTransition) -> None:
        try:
            await self._queue.retry_after(transition, _RETRY_DELAY_MS)
        except Exception:
            logger.exception("could not re-queue transition of %s", transition.device_id)

    async def _forget(self, device_id: str, generation: str) -> None:
        """Undo the timer and cache writes of a durable write that did not commit."""
        try:
            await self._queue.cancel(device_id, generation)
            await self._cache.delete(device_id)
        except Exception:
            logger.exception("could not roll back heartbeat of %s", device_id)

    def _record_write(
        self, device_id: str, result: PersistResult | None, *, scheduled: bool,
    ) -> None:
        if result is None:
            return
        if not result.applied:
            self._count("skipped")
            return
        self._count("persisted")
        if scheduled:
            self._count("scheduled")
        if result.changed and result.old_state is not None and result.changed_at is not None:
            logger.info(
                "device %s heartbeat %s -> %s",
                device_id, result.old_state.value, result.new_state.value,
            )
            self._events.emit("change", ChangeEvent(
                device_id=device_id,
                old_state=result.old_state,
                new_state=result.new_state,
                changed_at=result.changed_at,
            ))

    def _count(self, name: str) -> None:
        self._counters[name] += 1

    @staticmethod
    def _trusts_cached_online(
        entry: CacheEntry | None, now: datetime, config: HeartbeatConfig,
    ) -> bool:
        if entry is None or entry.current_state is not HeartbeatState.ONLINE:
            return False
        window = config.online_update_cache_timeout_ms
        if window is None:
            return True
        return Time.elapsed_ms(entry.written_at, now) < window

    @staticmethod
    def _online_ttl(interval_ms: int, config: HeartbeatConfig) -> int:
        return max(
            interval_ms + config.timeout_grace_ms,
            config.online_update_cache_timeout_ms or 0,
        )

    @staticmethod
    def _next_generation(now: datetime) -> str:
        return f"{Time.to_ms(now):013d}-{uuid.uuid4().hex[:12]}"
