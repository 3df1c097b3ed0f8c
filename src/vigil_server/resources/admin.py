"""Admin resource — fleet management operations behind the admin key."""

from __future__ import annotations

from datetime import datetime

from vigil_server.heartbeat.states import HeartbeatState
from vigil_server.services.config_service import ConfigService
from vigil_server.services.device_service import DeviceService
from vigil_server.utils.crypto import Crypto


class AdminAuthError(Exception):
    """Raised when the admin key is missing or wrong."""


class NotFoundError(Exception):
    """Raised when a group, device or config variable does not exist."""


class ConflictError(Exception):
    """Raised when a resource with the same identity already exists."""


class AdminResource:
    """Groups, devices, config variables and manual overrides.

    Built once at startup with all dependencies pre-wired.
    """

    def __init__(
        self,
        *,
        device_service: DeviceService,
        config_service: ConfigService,
        admin_api_key: str,
    ) -> None:
        self._devices = device_service
        self._config = config_service
        self._admin_api_key = admin_api_key

    def check_admin_key(self, presented: str | None) -> None:
        """Raises AdminAuthError unless ``presented`` is the admin key."""
        if not presented or not Crypto.matches(presented, self._admin_api_key):
            raise AdminAuthError("Invalid admin key")

    async def create_group(self, name: str) -> dict[str, str]:
        """Raises ConflictError if the name is taken."""
        try:
            return await self._devices.create_group(name)
        except ValueError as error:
            raise ConflictError(str(error)) from error

    async def provision_device(
        self, group_id: str, name: str | None, device_uuid: str | None,
    ) -> dict[str, str]:
        """Register a device and return its API key (shown once).

        Raises:
            NotFoundError: If the group does not exist.
            ConflictError: If the uuid is already in use.
        """
        try:
            return await self._devices.provision_device(
                group_id, name=name, device_uuid=device_uuid,
            )
        except ValueError as error:
            message = str(error)
            if "not found" in message.lower():
                raise NotFoundError(message) from error
            raise ConflictError(message) from error

    async def get_device(self, device_id: str) -> dict[str, object]:
        """Raises NotFoundError if the device does not exist."""
        device = await self._devices.get_device(device_id)
        if device is None:
            raise NotFoundError("Device not found")
        return device

    async def set_device_config(self, device_id: str, name: str, value: str) -> dict[str, str]:
        await self.get_device(device_id)
        await self._config.set_device_value(device_id, name, value)
        return {"device_id": device_id, "name": name, "value": value}

    async def delete_device_config(self, device_id: str, name: str) -> None:
        try:
            await self._config.delete_device_value(device_id, name)
        except ValueError as error:
            raise NotFoundError(str(error)) from error

    async def set_group_config(self, group_id: str, name: str, value: str) -> dict[str, str]:
        if await self._devices.get_group(group_id) is None:
            raise NotFoundError("Group not found")
        await self._config.set_group_value(group_id, name, value)
        return {"group_id": group_id, "name": name, "value": value}

    async def delete_group_config(self, group_id: str, name: str) -> None:
        try:
            await self._config.delete_group_value(group_id, name)
        except ValueError as error:
            raise NotFoundError(str(error)) from error

    async def override_heartbeat_state(
        self, device_id: str, state: HeartbeatState,
    ) -> dict[str, str]:
        """Write the durable state directly. The engine's cache is left alone.

        Raises:
            NotFoundError: If the device does not exist.
        """
        try:
            return await self._devices.override_heartbeat_state(device_id, state)
        except ValueError as error:
            raise NotFoundError(str(error)) from error

    async def set_api_key_expiry(
        self, device_id: str, expiry_date: datetime | None,
    ) -> dict[str, int]:
        """Raises NotFoundError if the device has no API keys."""
        try:
            return await self._devices.set_api_key_expiry(device_id, expiry_date)
        except ValueError as error:
            raise NotFoundError(str(error)) from error
