"""Effective poll interval from device, group and system configuration."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from vigil_server.dao.config_dao import ConfigDAO
from vigil_server.heartbeat.states import HeartbeatConfig, PollIntervalConfig
from vigil_server.utils.time import Clock, Time

logger = logging.getLogger("vigil.heartbeat")

POLL_INTERVAL_CONFIG_NAME = "AGENT_POLL_INTERVAL"


class PollIntervalResolver:
    """Resolves how often a device is expected to check in.

    Device and group overrides are read from the config tables and memoised
    per device for ``cache_ttl_ms``; the system default and jitter come from
    the caller's config snapshot on every call, so global changes apply
    immediately. At most ``max_entries`` devices are memoised; expired
    entries are swept whenever a new one is stored.
    """

    def __init__(
        self,
        config_dao: ConfigDAO,
        *,
        cache_ttl_ms: int = 5000,
        clock: Clock = Time.now,
        max_entries: int = 10_000,
    ) -> None:
        self._dao = config_dao
        self._cache_ttl_ms = cache_ttl_ms
        self._clock = clock
        self._max_entries = max(1, max_entries)
        self._memo: dict[str, tuple[int | None, int | None, datetime]] = {}

    async def resolve(self, device_id: str, config: HeartbeatConfig) -> int:
        """Effective interval in ms, jitter included."""
        layered = await self.layered(device_id, config)
        return layered.effective_ms

    async def layered(self, device_id: str, config: HeartbeatConfig) -> PollIntervalConfig:
        """The raw inputs of the interval computation for one device."""
        device_ms, group_ms = await self._overrides(device_id)
        return PollIntervalConfig(
            default_ms=config.default_poll_interval_ms,
            jitter_factor=config.poll_jitter_factor,
            device_override_ms=device_ms,
            group_override_ms=group_ms,
        )

    def invalidate(self, device_id: str | None = None) -> None:
        """Forget memoised overrides for one device, or for all."""
        if device_id is None:
            self._memo.clear()
        else:
            self._memo.pop(device_id, None)

    async def _overrides(self, device_id: str) -> tuple[int | None, int | None]:
        now = self._clock()
        memo = self._memo.get(device_id)
        if memo is not None and now < memo[2]:
            return memo[0], memo[1]

        async with self._dao.transaction():
            device_raw, group_raw = await self._dao.get_layered_values(
                device_id, POLL_INTERVAL_CONFIG_NAME,
            )
        device_ms = self._parse(device_raw, "device", device_id)
        group_ms = self._parse(group_raw, "group", device_id)
        if self._cache_ttl_ms > 0:
            expires_at = now + timedelta(milliseconds=self._cache_ttl_ms)
            self._remember(device_id, (device_ms, group_ms, expires_at), now)
        return device_ms, group_ms

    def _remember(
        self, device_id: str, memo: tuple[int | None, int | None, datetime], now: datetime,
    ) -> None:
        # Re-inserting keeps the dict in expiry order.
        self._memo.pop(device_id, None)
        self._memo[device_id] = memo
        while self._memo:
            oldest = next(iter(self._memo))
            if len(self._memo) <= self._max_entries and now < self._memo[oldest][2]:
                break
            del self._memo[oldest]

    @staticmethod
    def _parse(raw: str | None, scope: str, device_id: str) -> int | None:
        if raw is None:
            return None
        try:
            value = int(raw.strip())
        except ValueError:
            logger.warning(
                "ignoring non-integer %s %s for device %s: %r",
                scope, POLL_INTERVAL_CONFIG_NAME, device_id, raw,
            )
            return None
        if value <= 0:
            logger.warning(
                "ignoring non-positive %s %s for device %s: %d",
                scope, POLL_INTERVAL_CONFIG_NAME, device_id, value,
            )
            return None
        return value
