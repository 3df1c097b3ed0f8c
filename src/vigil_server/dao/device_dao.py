"""Data access for DeviceGroup, Device and DeviceApiKey models."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, cast

from sqlalchemy import CursorResult, Row, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vigil_server.models.device import Device, DeviceApiKey, DeviceGroup

_active_conn: ContextVar[AsyncSession] = ContextVar("_device_dao_conn")


class DeviceDAO:
    """Data access built once at startup with the connection pool.

    Use transaction() to wrap a group of operations in one unit of work.
    Leaving the block without commit() rolls the work back.
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

    # --- DeviceGroup ---

    async def create_group(self, *, name: str) -> DeviceGroup:
        """Insert a new group and flush to populate its id."""
        group = DeviceGroup(name=name)
        self._conn().add(group)
        await self._conn().flush()
        return group

    async def find_group_by_id(self, group_id: str) -> DeviceGroup | None:
        """Find a group by primary key."""
        result = await self._conn().execute(
            select(DeviceGroup).where(DeviceGroup.id == group_id)
        )
        return result.scalar_one_or_none()

    async def find_group_by_name(self, name: str) -> DeviceGroup | None:
        """Find a group by unique name."""
        result = await self._conn().execute(
            select(DeviceGroup).where(DeviceGroup.name == name)
        )
        return result.scalar_one_or_none()

    # --- Device ---

    async def create_device(
        self, *, uuid: str, name: str, group_id: str,
    ) -> Device:
        """Insert a new device in the ``unknown`` heartbeat state."""
        device = Device(uuid=uuid, name=name, group_id=group_id)
        self._conn().add(device)
        await self._conn().flush()
        return device

    async def find_device_by_id(self, device_id: str) -> Device | None:
        """Find a device by primary key."""
        result = await self._conn().execute(
            select(Device).where(Device.id == device_id)
        )
        return result.scalar_one_or_none()

    async def find_device_by_uuid(self, device_uuid: str) -> Device | None:
        """Find a device by its public uuid."""
        result = await self._conn().execute(
            select(Device).where(Device.uuid == device_uuid)
        )
        return result.scalar_one_or_none()

    async def find_device_group_id(self, device_id: str) -> str | None:
        """Return only the group id of a device."""
        result = await self._conn().execute(
            select(Device.group_id).where(Device.id == device_id)
        )
        return result.scalar_one_or_none()

    async def update_device_fields(
        self, device_id: str, values: dict[str, Any],
    ) -> None:
        """Patch arbitrary reported columns on a device."""
        if not values:
            return
        await self._conn().execute(
            update(Device).where(Device.id == device_id).values(**values)
        )

    # --- Heartbeat state ---

    async def read_heartbeat_state(
        self, device_id: str,
    ) -> Row[tuple[str, datetime | None, datetime | None]] | None:
        """Return (state, last_changed_on, written_on) or None if no such device."""
        result = await self._conn().execute(
            select(
                Device.api_heartbeat_state,
                Device.last_changed_api_heartbeat_state_on,
                Device.api_heartbeat_state_written_on,
            ).where(Device.id == device_id)
        )
        return result.one_or_none()

    async def write_heartbeat_state(
        self,
        device_id: str,
        *,
        state: str,
        at: datetime,
        changed: bool,
    ) -> bool:
        """Compare-and-set the heartbeat state.

        Only succeeds if no write newer than ``at`` has been applied.
        ``last_changed_api_heartbeat_state_on`` moves only when ``changed``.

        Returns:
            True if the row was updated.
        """
        values: dict[str, Any] = {
            "api_heartbeat_state": state,
            "api_heartbeat_state_written_on": at,
        }
        if changed:
            values["last_changed_api_heartbeat_state_on"] = at
        result = await self._conn().execute(
            update(Device)
            .where(
                Device.id == device_id,
                or_(
                    Device.api_heartbeat_state_written_on.is_(None),
                    Device.api_heartbeat_state_written_on <= at,
                ),
            )
            .values(**values)
        )
        return cast(CursorResult[Any], result).rowcount == 1

    async def force_heartbeat_state(
        self, device_id: str, *, state: str, at: datetime,
    ) -> int:
        """Overwrite the state outside the engine. Returns rows updated."""
        result = await self._conn().execute(
            update(Device)
            .where(Device.id == device_id)
            .values(
                api_heartbeat_state=state,
                last_changed_api_heartbeat_state_on=at,
            )
        )
        return cast(CursorResult[Any], result).rowcount

    # --- DeviceApiKey ---

    async def create_api_key(
        self,
        *,
        key_hash: str,
        device_id: str,
        expiry_date: datetime | None = None,
    ) -> DeviceApiKey:
        """Insert a new API key (hashed)."""
        api_key = DeviceApiKey(
            key_hash=key_hash,
            device_id=device_id,
            expiry_date=expiry_date,
        )
        self._conn().add(api_key)
        return api_key

    async def find_api_key_by_hash(self, key_hash: str) -> DeviceApiKey | None:
        """Find a non-revoked API key by its SHA-256 hash."""
        result = await self._conn().execute(
            select(DeviceApiKey).where(
                DeviceApiKey.key_hash == key_hash,
                DeviceApiKey.revoked == False,  # noqa: E712
            )
        )
        return result.scalar_one_or_none()

    async def set_api_key_expiry(
        self, device_id: str, expiry_date: datetime | None,
    ) -> int:
        """Set or clear the expiry of every key of a device. Returns count."""
        result = await self._conn().execute(
            update(DeviceApiKey)
            .where(DeviceApiKey.device_id == device_id)
            .values(expiry_date=expiry_date)
        )
        return cast(CursorResult[Any], result).rowcount

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self._conn().commit()
