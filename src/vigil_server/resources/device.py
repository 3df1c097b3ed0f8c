"""Device resource — protocol-agnostic device API operations."""

from __future__ import annotations

from typing import Any

from vigil_server.heartbeat.tracker import HeartbeatTracker
from vigil_server.models.device import Device
from vigil_server.services.device_service import DeviceService


class InvalidCredentialsError(Exception):
    """Raised when an API key is unknown, revoked, expired or not the device's."""


class DeviceResource:
    """Endpoints called by devices themselves.

    Built once at startup with all dependencies pre-wired.
    """

    def __init__(
        self, *, device_service: DeviceService, tracker: HeartbeatTracker,
    ) -> None:
        self._service = device_service
        self._tracker = tracker

    async def authenticate(self, api_key: str, device_uuid: str) -> Device:
        """Resolve a device API key for the device addressed by the request.

        Raises:
            InvalidCredentialsError: If the key is not valid for this device.
        """
        try:
            return await self._service.resolve_api_key(api_key, device_uuid)
        except ValueError as error:
            raise InvalidCredentialsError(str(error)) from error

    async def get_state(self, device: Device) -> dict[str, object]:
        """Record a heartbeat and return what the device should converge to.

        Raises:
            HeartbeatUnavailableError: If the heartbeat could not be recorded.
            DeviceNotFoundError: If the device vanished after authentication.
        """
        await self._tracker.capture_heartbeat(device.id)
        poll_interval_ms = await self._tracker.get_effective_poll_interval(device.id)
        current = await self._service.get_device(device.id)
        return {
            "uuid": device.uuid,
            "name": device.name,
            "poll_interval_ms": poll_interval_ms,
            "api_heartbeat_state": (
                current["api_heartbeat_state"] if current else device.api_heartbeat_state
            ),
        }

    async def report_state(
        self, device: Device, report: dict[str, Any],
    ) -> dict[str, list[str]]:
        """Store self-reported state. Not a heartbeat.

        Raises:
            HeartbeatUnavailableError: If the report throttle was unreachable.
        """
        return await self._service.report_state(device.id, report)

    async def poll_interval(self, device: Device) -> dict[str, int]:
        """Return the device's effective poll interval.

        Raises:
            HeartbeatUnavailableError: If the config lookup failed.
        """
        return {
            "poll_interval_ms": await self._tracker.get_effective_poll_interval(device.id),
        }
