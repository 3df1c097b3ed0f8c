"""Tests for the Redis shared primitives against a mocked client."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from vigil_server.plugins.redis_cache import RedisSharedCache
from vigil_server.plugins.redis_delayed_queue import RedisDelayedQueue
from vigil_server.utils.time import Time
from tests.conftest import FakeClock


def _pipeline_client() -> tuple[AsyncMock, MagicMock]:
    """A mocked Redis client whose pipeline() works as an async context manager."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[])
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=None)
    client = AsyncMock()
    client.pipeline = MagicMock(return_value=pipe)
    return client, pipe


# --- RedisSharedCache ---


async def test_cache_get_decodes_bytes() -> None:
    client = AsyncMock()
    client.get.return_value = b"value"
    assert await RedisSharedCache(client).get("k") == "value"
    client.get.return_value = None
    assert await RedisSharedCache(client).get("k") is None


async def test_cache_set_uses_px_and_nx() -> None:
    client = AsyncMock()
    client.set.return_value = None
    cache = RedisSharedCache(client)

    assert not await cache.set("k", "v", 250, only_if_absent=True)

    client.set.assert_awaited_once_with("k", "v", px=250, nx=True)


async def test_cache_set_clamps_ttl() -> None:
    client = AsyncMock()
    client.set.return_value = True
    assert await RedisSharedCache(client).set("k", "v", 0)
    client.set.assert_awaited_once_with("k", "v", px=1, nx=False)


async def test_cache_delete() -> None:
    client = AsyncMock()
    await RedisSharedCache(client).delete("k")
    client.delete.assert_awaited_once_with("k")


# --- RedisDelayedQueue ---


async def test_enqueue_scores_by_due_time(clock: FakeClock) -> None:
    client, pipe = _pipeline_client()
    client.hget.return_value = None
    queue = RedisDelayedQueue(client, clock=clock, name="q")

    await queue.enqueue_after("dev-1", "payload", 1500)

    pipe.zrem.assert_not_called()
    (due_key, mapping), _ = pipe.zadd.call_args
    assert due_key == "q:due"
    (member, score), = mapping.items()
    assert score == Time.to_ms(clock()) + 1500
    _, key, payload = json.loads(member)
    assert (key, payload) == ("dev-1", "payload")
    pipe.hset.assert_called_once_with("q:keys", "dev-1", member)
    pipe.execute.assert_awaited_once()


async def test_enqueue_supersedes_previous_member(clock: FakeClock) -> None:
    client, pipe = _pipeline_client()
    client.hget.return_value = "old-member"
    queue = RedisDelayedQueue(client, clock=clock, name="q")

    await queue.enqueue_after("dev-1", "payload", 0)

    pipe.zrem.assert_called_once_with("q:due", "old-member")


async def test_consume_claims_with_zrem(clock: FakeClock) -> None:
    client, _ = _pipeline_client()
    lost = json.dumps(["n1", "dev-1", "taken elsewhere"])
    won = json.dumps(["n2", "dev-2", "mine"])
    client.zrangebyscore.return_value = [lost, won]
    client.zrem.side_effect = [0, 1]
    client.hget.return_value = won
    queue = RedisDelayedQueue(client, clock=clock, name="q")

    assert await queue.consume() == "mine"

    client.zrangebyscore.assert_awaited_once_with(
        "q:due", "-inf", Time.to_ms(clock()), start=0, num=10,
    )
    client.hdel.assert_awaited_once_with("q:keys", "dev-2")


async def test_consume_keeps_newer_index_entry(clock: FakeClock) -> None:
    client, _ = _pipeline_client()
    member = json.dumps(["n1", "dev-1", "old"])
    client.zrangebyscore.return_value = [member]
    client.zrem.return_value = 1
    client.hget.return_value = json.dumps(["n2", "dev-1", "new"])
    queue = RedisDelayedQueue(client, clock=clock)

    assert await queue.consume() == "old"
    client.hdel.assert_not_awaited()


async def test_consume_nothing_due(clock: FakeClock) -> None:
    client, _ = _pipeline_client()
    client.zrangebyscore.return_value = []
    assert await RedisDelayedQueue(client, clock=clock).consume() is None


@pytest.mark.parametrize("pending", [None, "member"])
async def test_cancel(clock: FakeClock, pending: str | None) -> None:
    client, pipe = _pipeline_client()
    client.hget.return_value = pending
    queue = RedisDelayedQueue(client, clock=clock, name="q")

    await queue.cancel("dev-1")

    if pending is None:
        client.pipeline.assert_not_called()
    else:
        pipe.zrem.assert_called_once_with("q:due", "member")
        pipe.hdel.assert_called_once_with("q:keys", "dev-1")
