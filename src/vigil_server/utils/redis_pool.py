"""Shared Redis connection, created once per process."""

from __future__ import annotations

from typing import ClassVar

from redis.asyncio import Redis


class RedisPool:
    """Holds one ``redis.asyncio.Redis`` client as class-level state.

    Mirrors ``Database``: call RedisPool.init() at startup, close() on
    shutdown. The client itself pools connections internally.
    """

    _client: ClassVar[Redis | None] = None

    @staticmethod
    def init(redis_url: str, *, timeout_seconds: float = 5.0) -> Redis:
        """Create the client. Returns it for injection into backends."""
        RedisPool._client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return RedisPool._client

    @staticmethod
    def get_client() -> Redis:
        """Return the client. Call RedisPool.init() first."""
        assert RedisPool._client is not None, "call RedisPool.init() first"
        return RedisPool._client

    @staticmethod
    async def close() -> None:
        """Close the client and its connection pool."""
        if RedisPool._client is not None:
            await RedisPool._client.aclose()
            RedisPool._client = None
