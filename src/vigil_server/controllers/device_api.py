"""Device API controller — API-key-authed endpoints for devices."""

from __future__ import annotations

from litestar import Controller, Request, get, patch
from litestar.datastructures import State
from litestar.di import Provide
from litestar.exceptions import HTTPException, NotAuthorizedException, NotFoundException
from litestar.types import Dependencies

from vigil_server.heartbeat.errors import DeviceNotFoundError, HeartbeatUnavailableError
from vigil_server.models.device import Device
from vigil_server.resources.device import DeviceResource, InvalidCredentialsError
from vigil_server.schemas.device import DeviceStateReport


async def _provide_device_from_api_key(
    request: Request[object, object, State],
    device_resource: DeviceResource,
    device_uuid: str,
) -> Device:
    """Extract the Bearer API key and resolve it for the device in the path.

    Raises:
        NotAuthorizedException: If the header is missing or malformed, or
            the key is not valid for this device.
    """
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        raise NotAuthorizedException(
            detail="Missing or invalid Authorization header",
        )
    api_key = header[len("Bearer "):]
    try:
        return await device_resource.authenticate(api_key, device_uuid)
    except InvalidCredentialsError as error:
        raise NotAuthorizedException(detail=str(error)) from error


class DeviceApiController(Controller):
    """API-key-authed endpoints called by devices."""

    path = "/device/v3/{device_uuid:str}"
    # Litestar declares dependencies as an instance var, so ClassVar
    # would fail mypy.  Suppress RUF012 (mutable class attribute).
    dependencies: Dependencies = {  # noqa: RUF012
        "device": Provide(_provide_device_from_api_key),
    }

    @get("/state", status_code=200)
    async def get_state(
        self,
        device: Device,
        device_resource: DeviceResource,
    ) -> dict[str, object]:
        """Device polls for its target state. Counts as a heartbeat."""
        try:
            return await device_resource.get_state(device)
        except HeartbeatUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error
        except DeviceNotFoundError as error:
            raise NotFoundException(detail=str(error)) from error

    @patch("/state", status_code=200)
    async def report_state(
        self,
        data: DeviceStateReport,
        device: Device,
        device_resource: DeviceResource,
    ) -> dict[str, list[str]]:
        """Device reports its current state and telemetry."""
        try:
            return await device_resource.report_state(
                device, data.model_dump(exclude_unset=True),
            )
        except HeartbeatUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error

    @get("/poll-interval", status_code=200)
    async def poll_interval(
        self,
        device: Device,
        device_resource: DeviceResource,
    ) -> dict[str, int]:
        """Device reads how often it should check in."""
        try:
            return await device_resource.poll_interval(device)
        except HeartbeatUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error
