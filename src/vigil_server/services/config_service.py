"""Business logic for layered config variables."""

from __future__ import annotations

from vigil_server.dao.config_dao import ConfigDAO
from vigil_server.heartbeat.poll_interval import PollIntervalResolver


class ConfigService:
    """Writes group and device config variables.

    Changes invalidate this instance's poll interval memo immediately;
    other instances pick them up when their memo expires.
    """

    def __init__(self, config_dao: ConfigDAO, resolver: PollIntervalResolver) -> None:
        self._dao = config_dao
        self._resolver = resolver

    async def set_device_value(self, device_id: str, name: str, value: str) -> None:
        async with self._dao.transaction():
            await self._dao.set_device_value(device_id, name, value)
            await self._dao.commit()
        self._resolver.invalidate(device_id)

    async def set_group_value(self, group_id: str, name: str, value: str) -> None:
        async with self._dao.transaction():
            await self._dao.set_group_value(group_id, name, value)
            await self._dao.commit()
        self._resolver.invalidate()

    async def delete_device_value(self, device_id: str, name: str) -> None:
        """Remove a device variable.

        Raises:
            ValueError: If no such variable exists.
        """
        async with self._dao.transaction():
            if await self._dao.delete_device_value(device_id, name) == 0:
                raise ValueError("Config variable not found")
            await self._dao.commit()
        self._resolver.invalidate(device_id)

    async def delete_group_value(self, group_id: str, name: str) -> None:
        """Remove a group variable.

        Raises:
            ValueError: If no such variable exists.
        """
        async with self._dao.transaction():
            if await self._dao.delete_group_value(group_id, name) == 0:
                raise ValueError("Config variable not found")
            await self._dao.commit()
        self._resolver.invalidate()
