"""Heartbeat engine exceptions."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError


class HeartbeatError(Exception):
    """Base class for heartbeat engine failures."""


class HeartbeatUnavailableError(HeartbeatError):
    """The shared cache, queue or durable store is unreachable or too slow.

    The heartbeat was not recorded and nothing was mutated. The device's
    next heartbeat retries naturally.
    """


class DeviceNotFoundError(HeartbeatError):
    """The durable store has no such device."""


@asynccontextmanager
async def bounded(what: str, device_id: str, timeout_seconds: float) -> AsyncIterator[None]:
    """Bound backend round trips and turn their failures into HeartbeatUnavailableError."""
    try:
        async with asyncio.timeout(timeout_seconds):
            yield
    except TimeoutError as error:
        raise HeartbeatUnavailableError(
            f"{what} for device {device_id} timed out",
        ) from error
    except (RedisError, SQLAlchemyError, OSError) as error:
        raise HeartbeatUnavailableError(
            f"{what} for device {device_id} failed: {error}",
        ) from error
