"""Fleet-wide rate limit on telemetry-only durable writes."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from vigil_server.heartbeat.errors import bounded
from vigil_server.plugins.contracts.shared_cache import SharedCache
from vigil_server.utils.time import Clock, Time

logger = logging.getLogger("vigil.throttle")

_KEY_PREFIX = "report-throttle:"


class ReportThrottle:
    """At most one persisted report per device and kind per window.

    A local memo answers repeat callers on this instance without a round
    trip; the shared cache entry makes other instances honour the same
    window. Claiming uses set-if-absent so two instances racing for the
    same window cannot both win.

    The memo holds at most ``max_local_entries`` windows. Expired windows
    are swept on every claim.
    """

    def __init__(
        self,
        shared_cache: SharedCache,
        *,
        window_seconds: int,
        clock: Clock = Time.now,
        operation_timeout_seconds: float = 5.0,
        max_local_entries: int = 10_000,
    ) -> None:
        self._cache = shared_cache
        self._window_ms = max(1, window_seconds * 1000)
        self._clock = clock
        self._operation_timeout = operation_timeout_seconds
        self._max_local = max(1, max_local_entries)
        self._local: dict[str, datetime] = {}

    @staticmethod
    def key(device_id: str, kind: str) -> str:
        return f"{_KEY_PREFIX}{kind}:{device_id}"

    async def should_persist(self, device_id: str, kind: str) -> bool:
        """True if this report may be written; claims the window when it is.

        Raises:
            HeartbeatUnavailableError: If the shared cache failed or timed out.
        """
        key = self.key(device_id, kind)
        now = self._clock()

        local_until = self._local.get(key)
        if local_until is not None:
            if now < local_until:
                return False
            del self._local[key]

        async with bounded("report throttle", device_id, self._operation_timeout):
            claimed_at = await self._cache.get(key)
            if claimed_at is not None:
                # Another instance holds the window; mirror it locally.
                self._remember(key, self._window_end(claimed_at, now), now)
                logger.debug("throttled %s report of %s (shared)", kind, device_id)
                return False

            claimed = await self._cache.set(
                key, str(Time.to_ms(now)), self._window_ms, only_if_absent=True,
            )
        self._remember(key, now + timedelta(milliseconds=self._window_ms), now)
        if not claimed:
            logger.debug("throttled %s report of %s (lost claim)", kind, device_id)
        return claimed

    async def release(self, device_id: str, kind: str) -> None:
        """Give back a window whose report could not be written."""
        key = self.key(device_id, kind)
        self._local.pop(key, None)
        try:
            async with bounded("report throttle", device_id, self._operation_timeout):
                await self._cache.delete(key)
        except Exception:
            logger.exception("could not release %s window of %s", kind, device_id)

    def _remember(self, key: str, until: datetime, now: datetime) -> None:
        self._local.pop(key, None)
        self._local[key] = until
        # Insertion order tracks window end closely; the cap bounds the rest.
        while self._local:
            oldest = next(iter(self._local))
            if len(self._local) <= self._max_local and now < self._local[oldest]:
                break
            del self._local[oldest]

    def _window_end(self, claimed_at: str, now: datetime) -> datetime:
        """End of a window claimed elsewhere; the value is the claim time in ms."""
        try:
            start = Time.from_ms(int(claimed_at))
        except ValueError:
            start = now
        return min(start, now) + timedelta(milliseconds=self._window_ms)

    def forget_local(self) -> None:
        """Drop the local memo; the shared window still applies."""
        self._local.clear()
