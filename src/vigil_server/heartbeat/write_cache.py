"""Write-through cache of the last known heartbeat state per device."""

from __future__ import annotations

import logging

from vigil_server.heartbeat.states import CacheEntry
from vigil_server.plugins.contracts.shared_cache import SharedCache

logger = logging.getLogger("vigil.heartbeat")

_KEY_PREFIX = "device-online-state:"


class WriteThroughCache:
    """Typed view over the shared cache.

    A fresh entry here is taken as proof that some instance already
    persisted the state, even if the durable store has since been edited
    by hand. That entry wins until it expires.
    """

    def __init__(self, shared_cache: SharedCache) -> None:
        self._cache = shared_cache

    @staticmethod
    def key(device_id: str) -> str:
        return f"{_KEY_PREFIX}{device_id}"

    async def get(self, device_id: str) -> CacheEntry | None:
        """The cached entry, or None if absent, expired or unreadable."""
        raw = await self._cache.get(self.key(device_id))
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("discarding unreadable cache entry for device %s", device_id)
            return None

    async def set(self, entry: CacheEntry, ttl_ms: int) -> None:
        await self._cache.set(self.key(entry.device_id), entry.to_json(), ttl_ms)

    async def delete(self, device_id: str) -> None:
        await self._cache.delete(self.key(device_id))
