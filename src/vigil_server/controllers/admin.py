"""Admin controller — thin HTTP adapter for AdminResource."""

from __future__ import annotations

from typing import Any

from litestar import Controller, delete, get, patch, post, put
from litestar.connection import ASGIConnection
from litestar.exceptions import HTTPException, NotAuthorizedException, NotFoundException
from litestar.handlers.base import BaseRouteHandler

from vigil_server.resources.admin import (
    AdminAuthError,
    AdminResource,
    ConflictError,
    NotFoundError,
)
from vigil_server.schemas.device import (
    ApiKeyExpiry,
    ConfigValue,
    DeviceProvision,
    GroupCreate,
    HeartbeatOverride,
)


async def _require_admin(
    connection: ASGIConnection[Any, Any, Any, Any], _: BaseRouteHandler,
) -> None:
    """Guard: reject requests without the admin key.

    Raises:
        NotAuthorizedException: If X-Admin-Key is missing or wrong.
    """
    try:
        admin_resource: AdminResource = connection.app.state.admin
        admin_resource.check_admin_key(connection.headers.get("X-Admin-Key"))
    except AdminAuthError as error:
        raise NotAuthorizedException(detail=str(error)) from error


class AdminController(Controller):
    """Fleet management endpoints for operators."""

    path = "/api/admin"
    guards = [_require_admin]  # noqa: RUF012

    @post("/groups", status_code=201)
    async def create_group(
        self, data: GroupCreate, admin_resource: AdminResource,
    ) -> dict[str, str]:
        try:
            return await admin_resource.create_group(data.name)
        except ConflictError as error:
            raise HTTPException(status_code=409, detail=str(error)) from error

    @post("/devices", status_code=201)
    async def provision_device(
        self, data: DeviceProvision, admin_resource: AdminResource,
    ) -> dict[str, str]:
        """Register a device. The response carries its API key, shown once."""
        try:
            return await admin_resource.provision_device(
                data.group_id, data.name, data.uuid,
            )
        except NotFoundError as error:
            raise NotFoundException(detail=str(error)) from error
        except ConflictError as error:
            raise HTTPException(status_code=409, detail=str(error)) from error

    @get("/devices/{device_id:str}")
    async def get_device(
        self, device_id: str, admin_resource: AdminResource,
    ) -> dict[str, object]:
        try:
            return await admin_resource.get_device(device_id)
        except NotFoundError as error:
            raise NotFoundException(detail=str(error)) from error

    @put("/devices/{device_id:str}/config/{name:str}")
    async def set_device_config(
        self,
        device_id: str,
        name: str,
        data: ConfigValue,
        admin_resource: AdminResource,
    ) -> dict[str, str]:
        try:
            return await admin_resource.set_device_config(device_id, name, data.value)
        except NotFoundError as error:
            raise NotFoundException(detail=str(error)) from error

    @delete("/devices/{device_id:str}/config/{name:str}", status_code=204)
    async def delete_device_config(
        self, device_id: str, name: str, admin_resource: AdminResource,
    ) -> None:
        try:
            await admin_resource.delete_device_config(device_id, name)
        except NotFoundError as error:
            raise NotFoundException(detail=str(error)) from error

    @put("/groups/{group_id:str}/config/{name:str}")
    async def set_group_config(
        self,
        group_id: str,
        name: str,
        data: ConfigValue,
        admin_resource: AdminResource,
    ) -> dict[str, str]:
        try:
            return await admin_resource.set_group_config(group_id, name, data.value)
        except NotFoundError as error:
            raise NotFoundException(detail=str(error)) from error

    @delete("/groups/{group_id:str}/config/{name:str}", status_code=204)
    async def delete_group_config(
        self, group_id: str, name: str, admin_resource: AdminResource,
    ) -> None:
        try:
            await admin_resource.delete_group_config(group_id, name)
        except NotFoundError as error:
            raise NotFoundException(detail=str(error)) from error

    @patch("/devices/{device_id:str}/heartbeat-state")
    async def override_heartbeat_state(
        self,
        device_id: str,
        data: HeartbeatOverride,
        admin_resource: AdminResource,
    ) -> dict[str, str]:
        """Write the durable heartbeat state, bypassing the engine."""
        try:
            return await admin_resource.override_heartbeat_state(device_id, data.state)
        except NotFoundError as error:
            raise NotFoundException(detail=str(error)) from error

    @patch("/api-keys/{device_id:str}")
    async def set_api_key_expiry(
        self,
        device_id: str,
        data: ApiKeyExpiry,
        admin_resource: AdminResource,
    ) -> dict[str, int]:
        try:
            return await admin_resource.set_api_key_expiry(device_id, data.expiry_date)
        except NotFoundError as error:
            raise NotFoundException(detail=str(error)) from error
