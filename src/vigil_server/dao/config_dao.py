"""Data access for group and device config variables."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, cast

from sqlalchemy import CursorResult, delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vigil_server.models.config_var import DeviceConfigVariable, GroupConfigVariable
from vigil_server.models.device import Device

_active_conn: ContextVar[AsyncSession] = ContextVar("_config_dao_conn")


class ConfigDAO:
    """Key/value lookups over the layered config tables.

    Use transaction() to wrap a group of operations in one unit of work.
    """

    def __init__(self, pool: async_sessionmaker[AsyncSession]) -> None:
        self._pool = pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Open a unit of work. All DAO calls inside share one connection."""
        async with self._pool() as connection:
            context_token = _active_conn.set(connection)
            try:
                yield
            finally:
                _active_conn.reset(context_token)

    def _conn(self) -> AsyncSession:
        """Return the current unit-of-work connection."""
        return _active_conn.get()

    async def get_device_value(self, device_id: str, name: str) -> str | None:
        """Value of a device-level variable, or None."""
        result = await self._conn().execute(
            select(DeviceConfigVariable.value).where(
                DeviceConfigVariable.device_id == device_id,
                DeviceConfigVariable.name == name,
            )
        )
        return result.scalar_one_or_none()

    async def get_group_value(self, group_id: str, name: str) -> str | None:
        """Value of a group-level variable, or None."""
        result = await self._conn().execute(
            select(GroupConfigVariable.value).where(
                GroupConfigVariable.group_id == group_id,
                GroupConfigVariable.name == name,
            )
        )
        return result.scalar_one_or_none()

    async def get_layered_values(
        self, device_id: str, name: str,
    ) -> tuple[str | None, str | None]:
        """Return (device value, value of the device's group) in one round trip."""
        result = await self._conn().execute(
            select(DeviceConfigVariable.value, GroupConfigVariable.value)
            .select_from(Device)
            .outerjoin(
                DeviceConfigVariable,
                (DeviceConfigVariable.device_id == Device.id)
                & (DeviceConfigVariable.name == name),
            )
            .outerjoin(
                GroupConfigVariable,
                (GroupConfigVariable.group_id == Device.group_id)
                & (GroupConfigVariable.name == name),
            )
            .where(Device.id == device_id)
        )
        row = result.one_or_none()
        if row is None:
            return None, None
        return row[0], row[1]

    async def set_device_value(self, device_id: str, name: str, value: str) -> None:
        """Insert or update a device-level variable."""
        result = await self._conn().execute(
            select(DeviceConfigVariable).where(
                DeviceConfigVariable.device_id == device_id,
                DeviceConfigVariable.name == name,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            self._conn().add(
                DeviceConfigVariable(device_id=device_id, name=name, value=value)
            )
        else:
            row.value = value
        await self._conn().flush()

    async def set_group_value(self, group_id: str, name: str, value: str) -> None:
        """Insert or update a group-level variable."""
        result = await self._conn().execute(
            select(GroupConfigVariable).where(
                GroupConfigVariable.group_id == group_id,
                GroupConfigVariable.name == name,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            self._conn().add(
                GroupConfigVariable(group_id=group_id, name=name, value=value)
            )
        else:
            row.value = value
        await self._conn().flush()

    async def delete_device_value(self, device_id: str, name: str) -> int:
        """Remove a device-level variable. Returns rows deleted."""
        result = await self._conn().execute(
            delete(DeviceConfigVariable).where(
                DeviceConfigVariable.device_id == device_id,
                DeviceConfigVariable.name == name,
            )
        )
        return cast(CursorResult[Any], result).rowcount

    async def delete_group_value(self, group_id: str, name: str) -> int:
        """Remove a group-level variable. Returns rows deleted."""
        result = await self._conn().execute(
            delete(GroupConfigVariable).where(
                GroupConfigVariable.group_id == group_id,
                GroupConfigVariable.name == name,
            )
        )
        return cast(CursorResult[Any], result).rowcount

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self._conn().commit()
