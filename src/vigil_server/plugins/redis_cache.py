"""Redis-backed shared cache."""

from __future__ import annotations

from redis.asyncio import Redis

from vigil_server.plugins.contracts.shared_cache import SharedCache


class RedisSharedCache(SharedCache):
    """Plain string keys with ``PX`` expiry. ``NX`` for set-if-absent."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    async def get(self, key: str) -> str | None:
        value = await self._client.get(key)
        if value is None:
            return None
        return value if isinstance(value, str) else value.decode()

    async def set(
        self, key: str, value: str, ttl_ms: int, *, only_if_absent: bool = False,
    ) -> bool:
        written = await self._client.set(
            key, value, px=max(1, ttl_ms), nx=only_if_absent,
        )
        return bool(written)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)
