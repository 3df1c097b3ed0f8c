"""Tests for effective poll interval resolution."""

from __future__ import annotations

import logging

import pytest

from vigil_server.dao.config_dao import ConfigDAO
from vigil_server.dao.device_dao import DeviceDAO
from vigil_server.heartbeat.poll_interval import POLL_INTERVAL_CONFIG_NAME, PollIntervalResolver
from vigil_server.heartbeat.states import HeartbeatConfig, PollIntervalConfig
from tests.conftest import FakeClock, create_test_device


async def _set_device(config_dao: ConfigDAO, device_id: str, value: str) -> None:
    async with config_dao.transaction():
        await config_dao.set_device_value(device_id, POLL_INTERVAL_CONFIG_NAME, value)
        await config_dao.commit()


async def _set_group(config_dao: ConfigDAO, group_id: str, value: str) -> None:
    async with config_dao.transaction():
        await config_dao.set_group_value(group_id, POLL_INTERVAL_CONFIG_NAME, value)
        await config_dao.commit()


@pytest.mark.parametrize(
    ("device_ms", "group_ms", "expected"),
    [
        (None, None, 1500),
        (3000, None, 4500),
        (None, 5000, 7500),
        (3000, 5000, 4500),
        (500, None, 1500),
        (None, 200, 1500),
    ],
)
def test_effective_interval(device_ms: int | None, group_ms: int | None, expected: int) -> None:
    """Device beats group beats default; nothing goes below the default."""
    layered = PollIntervalConfig(
        default_ms=1000,
        jitter_factor=1.5,
        device_override_ms=device_ms,
        group_override_ms=group_ms,
    )
    assert layered.effective_ms == expected


async def test_resolve_reads_layered_overrides(
    device_dao: DeviceDAO,
    config_dao: ConfigDAO,
    clock: FakeClock,
    heartbeat_config: HeartbeatConfig,
) -> None:
    device_id, group_id = await create_test_device(device_dao)
    resolver = PollIntervalResolver(config_dao, cache_ttl_ms=0, clock=clock)
    assert await resolver.resolve(device_id, heartbeat_config) == 1500

    await _set_group(config_dao, group_id, "4000")
    assert await resolver.resolve(device_id, heartbeat_config) == 6000

    await _set_device(config_dao, device_id, "2000")
    assert await resolver.resolve(device_id, heartbeat_config) == 3000


async def test_override_below_default_falls_back(
    device_dao: DeviceDAO,
    config_dao: ConfigDAO,
    clock: FakeClock,
    heartbeat_config: HeartbeatConfig,
) -> None:
    device_id, _ = await create_test_device(device_dao)
    await _set_device(config_dao, device_id, "10")
    resolver = PollIntervalResolver(config_dao, cache_ttl_ms=0, clock=clock)
    assert await resolver.resolve(device_id, heartbeat_config) == 1500


async def test_garbage_override_is_ignored(
    device_dao: DeviceDAO,
    config_dao: ConfigDAO,
    clock: FakeClock,
    heartbeat_config: HeartbeatConfig,
    caplog: pytest.LogCaptureFixture,
) -> None:
    device_id, group_id = await create_test_device(device_dao)
    await _set_device(config_dao, device_id, "soon")
    await _set_group(config_dao, group_id, "-5")
    resolver = PollIntervalResolver(config_dao, cache_ttl_ms=0, clock=clock)

    with caplog.at_level(logging.WARNING, logger="vigil.heartbeat"):
        assert await resolver.resolve(device_id, heartbeat_config) == 1500
    assert "non-integer" in caplog.text
    assert "non-positive" in caplog.text


async def test_overrides_are_memoised_until_ttl(
    device_dao: DeviceDAO,
    config_dao: ConfigDAO,
    clock: FakeClock,
    heartbeat_config: HeartbeatConfig,
) -> None:
    device_id, _ = await create_test_device(device_dao)
    resolver = PollIntervalResolver(config_dao, cache_ttl_ms=5000, clock=clock)
    assert await resolver.resolve(device_id, heartbeat_config) == 1500

    await _set_device(config_dao, device_id, "2000")
    assert await resolver.resolve(device_id, heartbeat_config) == 1500

    clock.advance(5000)
    assert await resolver.resolve(device_id, heartbeat_config) == 3000


async def test_invalidate_drops_memo(
    device_dao: DeviceDAO,
    config_dao: ConfigDAO,
    clock: FakeClock,
    heartbeat_config: HeartbeatConfig,
) -> None:
    device_id, _ = await create_test_device(device_dao)
    resolver = PollIntervalResolver(config_dao, cache_ttl_ms=60_000, clock=clock)
    await resolver.resolve(device_id, heartbeat_config)
    await _set_device(config_dao, device_id, "2000")

    resolver.invalidate(device_id)

    assert await resolver.resolve(device_id, heartbeat_config) == 3000


async def test_default_change_bypasses_memo(
    device_dao: DeviceDAO,
    config_dao: ConfigDAO,
    clock: FakeClock,
    heartbeat_config: HeartbeatConfig,
) -> None:
    """The system default comes from the snapshot on every call."""
    device_id, _ = await create_test_device(device_dao)
    resolver = PollIntervalResolver(config_dao, cache_ttl_ms=60_000, clock=clock)
    await resolver.resolve(device_id, heartbeat_config)

    bigger = HeartbeatConfig(
        default_poll_interval_ms=2000, poll_jitter_factor=2.0, timeout_grace_ms=10_000,
    )
    assert await resolver.resolve(device_id, bigger) == 4000


async def test_expired_memo_entries_are_swept(
    device_dao: DeviceDAO,
    config_dao: ConfigDAO,
    clock: FakeClock,
    heartbeat_config: HeartbeatConfig,
) -> None:
    first_id, _ = await create_test_device(device_dao, device_uuid="aaaaaaaaaaaa")
    second_id, _ = await create_test_device(device_dao, device_uuid="bbbbbbbbbbbb")
    resolver = PollIntervalResolver(config_dao, cache_ttl_ms=1000, clock=clock)
    await resolver.resolve(first_id, heartbeat_config)

    clock.advance(1000)
    await resolver.resolve(second_id, heartbeat_config)

    assert list(resolver._memo) == [second_id]


async def test_memo_is_capped(
    device_dao: DeviceDAO,
    config_dao: ConfigDAO,
    clock: FakeClock,
    heartbeat_config: HeartbeatConfig,
) -> None:
    """Past the cap the oldest live entry goes first."""
    ids = [
        (await create_test_device(device_dao, device_uuid=f"{n}" * 12))[0]
        for n in range(3)
    ]
    resolver = PollIntervalResolver(
        config_dao, cache_ttl_ms=60_000, clock=clock, max_entries=2,
    )
    for device_id in ids:
        await resolver.resolve(device_id, heartbeat_config)
        clock.advance(1)

    assert list(resolver._memo) == ids[1:]
