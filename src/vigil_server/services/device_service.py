"""Business logic for device provisioning, authentication and state reports."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from vigil_server.dao.device_dao import DeviceDAO
from vigil_server.heartbeat.states import HeartbeatState
from vigil_server.heartbeat.throttle import ReportThrottle
from vigil_server.models.device import Device
from vigil_server.utils.crypto import Crypto
from vigil_server.utils.time import Clock, Time

METRIC_FIELDS = frozenset({
    "cpu_usage",
    "cpu_temp",
    "memory_usage",
    "memory_total",
    "storage_usage",
    "storage_total",
    "storage_block_device",
    "is_undervolted",
})
REPORT_FIELDS = frozenset({
    "status",
    "os_version",
    "supervisor_version",
    "ip_address",
    "mac_address",
})
_ADDRESS_FIELDS = ("ip_address", "mac_address")
_MAX_ADDRESS_LENGTH = 255


class DeviceService:
    """Built once at startup with its DAO and throttle pre-wired.

    Each method wraps its DAO calls in a transaction, one unit of work
    per service call.
    """

    def __init__(
        self,
        device_dao: DeviceDAO,
        throttle: ReportThrottle,
        *,
        clock: Clock = Time.now,
    ) -> None:
        self._dao = device_dao
        self._throttle = throttle
        self._clock = clock

    async def create_group(self, name: str) -> dict[str, str]:
        """Create a device group.

        Raises:
            ValueError: If a group with that name exists.
        """
        async with self._dao.transaction():
            if await self._dao.find_group_by_name(name) is not None:
                raise ValueError("Group already exists")
            group = await self._dao.create_group(name=name)
            await self._dao.commit()
        return {"id": group.id, "name": group.name}

    async def provision_device(
        self,
        group_id: str,
        *,
        name: str | None = None,
        device_uuid: str | None = None,
    ) -> dict[str, str]:
        """Register a device and issue its API key.

        Returns:
            Dict with id, uuid, name and the plaintext api_key (shown once).

        Raises:
            ValueError: If the group is unknown or the uuid is taken.
        """
        device_uuid = device_uuid or Crypto.generate_device_uuid()
        plaintext = Crypto.generate_api_key()
        async with self._dao.transaction():
            if await self._dao.find_group_by_id(group_id) is None:
                raise ValueError("Group not found")
            if await self._dao.find_device_by_uuid(device_uuid) is not None:
                raise ValueError("Device uuid already in use")
            device = await self._dao.create_device(
                uuid=device_uuid,
                name=name or f"device-{device_uuid[:7]}",
                group_id=group_id,
            )
            await self._dao.create_api_key(
                key_hash=Crypto.hash_key(plaintext), device_id=device.id,
            )
            await self._dao.commit()
        return {
            "id": device.id,
            "uuid": device.uuid,
            "name": device.name,
            "api_key": plaintext,
        }

    async def resolve_api_key(self, api_key: str, device_uuid: str) -> Device:
        """Resolve a plaintext API key to the device it belongs to.

        Raises:
            ValueError: If the key is unknown, revoked or expired, or
                belongs to a different device.
        """
        async with self._dao.transaction():
            row = await self._dao.find_api_key_by_hash(Crypto.hash_key(api_key))
            if row is None:
                raise ValueError("Invalid API key")
            if row.expiry_date is not None and self._clock() >= Time.ensure_utc(row.expiry_date):
                raise ValueError("API key has expired")
            device = await self._dao.find_device_by_id(row.device_id)
        if device is None:
            raise ValueError("Device not found for API key")
        if device.uuid != device_uuid:
            raise ValueError("API key does not belong to this device")
        return device

    async def get_group(self, group_id: str) -> dict[str, str] | None:
        """Return a group as a dict, or None."""
        async with self._dao.transaction():
            group = await self._dao.find_group_by_id(group_id)
        if group is None:
            return None
        return {"id": group.id, "name": group.name}

    async def get_device(self, device_id: str) -> dict[str, object] | None:
        """Return a device as a JSON-safe dict, or None."""
        async with self._dao.transaction():
            device = await self._dao.find_device_by_id(device_id)
        if device is None:
            return None
        return self._device_to_dict(device)

    async def report_state(
        self, device_id: str, report: dict[str, Any],
    ) -> dict[str, list[str]]:
        """Apply a device's self-reported state.

        Metric fields are rate limited fleet-wide and dropped while the
        throttle window is open; every other field always applies.

        Returns:
            Dict with the ``applied`` and ``throttled`` field names.

        Raises:
            HeartbeatUnavailableError: If the throttle could not be consulted.
                Nothing was written.
        """
        values = {k: v for k, v in report.items() if k in REPORT_FIELDS}
        for field in _ADDRESS_FIELDS:
            if isinstance(values.get(field), str):
                values[field] = self.truncate_addresses(values[field])

        metrics = {k: v for k, v in report.items() if k in METRIC_FIELDS}
        throttled: list[str] = []
        claimed = False
        if metrics:
            claimed = await self._throttle.should_persist(device_id, "metrics")
            if claimed:
                values.update(metrics)
                values["metrics_updated_at"] = self._clock()
            else:
                throttled = sorted(metrics)

        try:
            async with self._dao.transaction():
                await self._dao.update_device_fields(device_id, values)
                await self._dao.commit()
        except BaseException:
            if claimed:
                await self._throttle.release(device_id, "metrics")
            raise

        applied = sorted(k for k in values if k != "metrics_updated_at")
        return {"applied": applied, "throttled": throttled}

    async def set_api_key_expiry(
        self, device_id: str, expiry_date: datetime | None,
    ) -> dict[str, int]:
        """Set or clear the expiry of a device's keys.

        Raises:
            ValueError: If the device has no keys.
        """
        async with self._dao.transaction():
            count = await self._dao.set_api_key_expiry(device_id, expiry_date)
            if count == 0:
                raise ValueError("Device not found")
            await self._dao.commit()
        return {"updated": count}

    async def override_heartbeat_state(
        self, device_id: str, state: HeartbeatState,
    ) -> dict[str, str]:
        """Write the heartbeat state directly, bypassing the engine and its cache.

        Raises:
            ValueError: If the device does not exist.
        """
        async with self._dao.transaction():
            count = await self._dao.force_heartbeat_state(
                device_id, state=state.value, at=self._clock(),
            )
            if count == 0:
                raise ValueError("Device not found")
            await self._dao.commit()
        return {"id": device_id, "api_heartbeat_state": state.value}

    @staticmethod
    def truncate_addresses(value: str) -> str:
        """Cut a space-separated address list at the last delimiter that fits."""
        if len(value) <= _MAX_ADDRESS_LENGTH:
            return value
        head = value[: _MAX_ADDRESS_LENGTH + 1]
        cut = head.rfind(" ")
        if cut <= 0:
            return value[:_MAX_ADDRESS_LENGTH]
        return head[:cut].rstrip()

    @staticmethod
    def _device_to_dict(device: Device) -> dict[str, object]:
        """Serialize a Device to a JSON-safe dict."""

        def iso(value: datetime | None) -> str | None:
            return Time.ensure_utc(value).isoformat() if value else None

        return {
            "id": device.id,
            "uuid": device.uuid,
            "name": device.name,
            "group_id": device.group_id,
            "api_heartbeat_state": device.api_heartbeat_state,
            "last_changed_api_heartbeat_state_on": iso(
                device.last_changed_api_heartbeat_state_on,
            ),
            "api_heartbeat_state_written_on": iso(device.api_heartbeat_state_written_on),
            "status": device.status,
            "os_version": device.os_version,
            "supervisor_version": device.supervisor_version,
            "ip_address": device.ip_address,
            "mac_address": device.mac_address,
            "cpu_usage": device.cpu_usage,
            "cpu_temp": device.cpu_temp,
            "memory_usage": device.memory_usage,
            "memory_total": device.memory_total,
            "storage_usage": device.storage_usage,
            "storage_total": device.storage_total,
            "storage_block_device": device.storage_block_device,
            "is_undervolted": device.is_undervolted,
            "metrics_updated_at": iso(device.metrics_updated_at),
        }
