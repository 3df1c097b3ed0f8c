"""Shared fixtures for vigil_server tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest
from litestar.testing import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vigil_server.app import create_app
from vigil_server.config import Settings
from vigil_server.dao.config_dao import ConfigDAO
from vigil_server.dao.device_dao import DeviceDAO
from vigil_server.heartbeat.events import HeartbeatEvents
from vigil_server.heartbeat.persister import StatePersister
from vigil_server.heartbeat.poll_interval import PollIntervalResolver
from vigil_server.heartbeat.states import ChangeEvent, HeartbeatConfig
from vigil_server.heartbeat.tracker import HeartbeatTracker
from vigil_server.heartbeat.transition_queue import DelayedTransitionQueue
from vigil_server.heartbeat.write_cache import WriteThroughCache
from vigil_server.plugins.memory_cache import MemorySharedCache
from vigil_server.plugins.memory_delayed_queue import MemoryDelayedQueue
from vigil_server.utils.db import Database

ADMIN_KEY = "test-admin-key"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: int = 0, *, seconds: float = 0) -> datetime:
        self.now += timedelta(milliseconds=ms, seconds=seconds)
        return self.now


@dataclass
class Engine:
    """A tracker wired to in-process backends, plus handles on its parts."""

    tracker: HeartbeatTracker
    shared_cache: MemorySharedCache
    delayed_queue: MemoryDelayedQueue
    cache: WriteThroughCache
    queue: DelayedTransitionQueue
    persister: StatePersister
    resolver: PollIntervalResolver
    events: HeartbeatEvents
    clock: FakeClock
    changes: list[ChangeEvent]


@pytest.fixture()
def settings() -> Settings:
    """Test settings with in-memory SQLite and in-process backends."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        cache_backend="memory",
        admin_api_key=ADMIN_KEY,
        default_poll_interval_ms=600_000,
        timeout_grace_seconds=3600,
        poll_interval_cache_ttl_ms=0,
        stats_interval_seconds=3600,
        transition_poll_interval_ms=50,
        log_level="WARNING",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def heartbeat_config() -> HeartbeatConfig:
    """1 s default interval, 1.5x jitter, 10 s grace."""
    return HeartbeatConfig(
        default_poll_interval_ms=1000,
        poll_jitter_factor=1.5,
        timeout_grace_ms=10_000,
    )


@pytest.fixture()
async def pool() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Fresh in-memory database with all tables."""
    pool = Database.init("sqlite+aiosqlite://")
    await Database.create_tables()
    yield pool
    await Database.close()


@pytest.fixture()
def device_dao(pool: async_sessionmaker[AsyncSession]) -> DeviceDAO:
    return DeviceDAO(pool)


@pytest.fixture()
def config_dao(pool: async_sessionmaker[AsyncSession]) -> ConfigDAO:
    return ConfigDAO(pool)


@pytest.fixture()
async def engine(
    device_dao: DeviceDAO,
    config_dao: ConfigDAO,
    clock: FakeClock,
    heartbeat_config: HeartbeatConfig,
) -> AsyncIterator[Engine]:
    """Tracker on a fake clock. Background loops are not started."""
    shared_cache = MemorySharedCache(clock)
    delayed_queue = MemoryDelayedQueue(clock)
    cache = WriteThroughCache(shared_cache)
    queue = DelayedTransitionQueue(delayed_queue, clock=clock, idle_sleep_ms=10)
    persister = StatePersister(device_dao, clock=clock)
    resolver = PollIntervalResolver(config_dao, cache_ttl_ms=0, clock=clock)
    events = HeartbeatEvents()
    tracker = HeartbeatTracker(
        resolver=resolver,
        cache=cache,
        queue=queue,
        persister=persister,
        events=events,
        config=heartbeat_config,
        clock=clock,
        operation_timeout_seconds=5.0,
    )
    changes: list[ChangeEvent] = []
    events.subscribe("change", changes.append)
    yield Engine(
        tracker=tracker,
        shared_cache=shared_cache,
        delayed_queue=delayed_queue,
        cache=cache,
        queue=queue,
        persister=persister,
        resolver=resolver,
        events=events,
        clock=clock,
        changes=changes,
    )
    await tracker.stop()


async def create_test_device(
    device_dao: DeviceDAO,
    *,
    group_name: str = "fleet",
    device_uuid: str = "a1b2c3d4e5f6",
) -> tuple[str, str]:
    """Create a group and a device directly in the database.

    Returns:
        (device id, group id)
    """
    async with device_dao.transaction():
        group = await device_dao.find_group_by_name(group_name)
        if group is None:
            group = await device_dao.create_group(name=group_name)
        device = await device_dao.create_device(
            uuid=device_uuid, name=f"device-{device_uuid[:7]}", group_id=group.id,
        )
        await device_dao.commit()
    return device.id, group.id


@pytest.fixture()
def client(settings: Settings) -> Iterator[TestClient]:  # type: ignore[type-arg]
    """Synchronous test client with lifespan managed."""
    app = create_app(settings)
    with TestClient(app=app) as test_client:
        yield test_client


def admin_headers() -> dict[str, str]:
    return {"X-Admin-Key": ADMIN_KEY}


def provision_device(
    client: TestClient,  # type: ignore[type-arg]
    *,
    group_name: str = "fleet",
    device_uuid: str | None = None,
) -> dict[str, str]:
    """Create a group and provision a device through the admin API."""
    group = client.post(
        "/api/admin/groups", json={"name": group_name}, headers=admin_headers(),
    )
    assert group.status_code == 201
    body: dict[str, str] = {"group_id": group.json()["id"]}
    if device_uuid is not None:
        body["uuid"] = device_uuid
    device = client.post("/api/admin/devices", json=body, headers=admin_headers())
    assert device.status_code == 201
    result: dict[str, str] = device.json()
    result["group_id"] = body["group_id"]
    return result


def device_headers(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"}
