"""In-process shared cache — for a single instance and for tests."""

from __future__ import annotations

from datetime import datetime, timedelta

from vigil_server.plugins.contracts.shared_cache import SharedCache
from vigil_server.utils.time import Clock, Time


class MemorySharedCache(SharedCache):
    """Dict-backed cache with clock-driven expiry.

    Only "shared" within one process. Expired keys are purged lazily on
    access.
    """

    def __init__(self, clock: Clock = Time.now) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, datetime]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._values[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def set(
        self, key: str, value: str, ttl_ms: int, *, only_if_absent: bool = False,
    ) -> bool:
        if only_if_absent and self._live(key) is not None:
            return False
        expires_at = self._clock() + timedelta(milliseconds=max(1, ttl_ms))
        self._values[key] = (value, expires_at)
        return True

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def ttl_ms(self, key: str) -> int | None:
        """Remaining lifetime of a live key, or None."""
        if self._live(key) is None:
            return None
        _, expires_at = self._values[key]
        return Time.elapsed_ms(self._clock(), expires_at)
