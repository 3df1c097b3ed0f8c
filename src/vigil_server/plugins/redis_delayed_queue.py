"""Redis-backed delayed queue over a sorted set."""

from __future__ import annotations

import json
import uuid
from datetime import timedelta

from redis.asyncio import Redis

from vigil_server.plugins.contracts.delayed_queue import DelayedQueue
from vigil_server.utils.time import Clock, Time

_CLAIM_BATCH = 10


class RedisDelayedQueue(DelayedQueue):
    """Members of ``<name>:due`` are scored by due time in epoch ms.

    A member is ``json([nonce, key, payload])`` so identical payloads never
    collide. ``<name>:keys`` maps each key to its pending member, which is
    what makes supersede and cancel possible. A consumer owns a message
    only if its ``ZREM`` removed it; at most one instance wins.
    """

    def __init__(
        self, client: Redis, *, clock: Clock = Time.now, name: str = "vigil:transitions",
    ) -> None:
        self._client = client
        self._clock = clock
        self._due_key = f"{name}:due"
        self._index_key = f"{name}:keys"

    async def enqueue_after(self, key: str, payload: str, delay_ms: int) -> None:
        due = Time.to_ms(self._clock() + timedelta(milliseconds=max(0, delay_ms)))
        member = json.dumps([uuid.uuid4().hex, key, payload])
        previous = await self._client.hget(self._index_key, key)
        async with self._client.pipeline(transaction=True) as pipe:
            if previous is not None:
                pipe.zrem(self._due_key, previous)
            pipe.zadd(self._due_key, {member: due})
            pipe.hset(self._index_key, key, member)
            await pipe.execute()

    async def consume(self) -> str | None:
        now = Time.to_ms(self._clock())
        members = await self._client.zrangebyscore(
            self._due_key, "-inf", now, start=0, num=_CLAIM_BATCH,
        )
        for member in members:
            if not await self._client.zrem(self._due_key, member):
                continue  # claimed by another consumer
            _, key, payload = json.loads(member)
            if await self._client.hget(self._index_key, key) == member:
                await self._client.hdel(self._index_key, key)
            return str(payload)
        return None

    async def cancel(self, key: str) -> None:
        member = await self._client.hget(self._index_key, key)
        if member is None:
            return
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zrem(self._due_key, member)
            pipe.hdel(self._index_key, key)
            await pipe.execute()
