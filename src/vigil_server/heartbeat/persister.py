"""Durable heartbeat state writes guarded by a monotonic write timestamp."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from vigil_server.dao.device_dao import DeviceDAO
from vigil_server.heartbeat.errors import DeviceNotFoundError
from vigil_server.heartbeat.states import HeartbeatState, PersistResult
from vigil_server.utils.time import Clock, Time

logger = logging.getLogger("vigil.heartbeat")


class StatePersister:
    """Applies decided states to the devices table.

    A write stamped ``at`` is rejected when the row already carries a newer
    ``api_heartbeat_state_written_on``; that is a benign race between
    instances, reported through ``PersistResult.applied`` rather than
    raised. Writing the stored value again is idempotent and leaves
    ``last_changed_api_heartbeat_state_on`` untouched.
    """

    def __init__(self, device_dao: DeviceDAO, *, clock: Clock = Time.now) -> None:
        self._dao = device_dao
        self._clock = clock

    @asynccontextmanager
    async def applying(
        self, device_id: str, state: HeartbeatState, at: datetime,
    ) -> AsyncIterator[PersistResult]:
        """Write inside a unit of work that commits when the block exits cleanly.

        Work done in the block (cache and queue updates) is thereby bound
        to the durable write: an exception in the block rolls it back.

        Raises:
            DeviceNotFoundError: If the device does not exist.
        """
        async with self._dao.transaction():
            row = await self._dao.read_heartbeat_state(device_id)
            if row is None:
                raise DeviceNotFoundError(f"Device {device_id} not found")
            stored_state, last_changed, written_on = row
            old_state = HeartbeatState(stored_state)
            last_changed = Time.ensure_utc(last_changed) if last_changed else None

            if written_on is not None and Time.ensure_utc(written_on) > at:
                logger.debug(
                    "rejecting out-of-order %s write for %s (stored write is newer)",
                    state.value, device_id,
                )
                yield self._rejected(old_state, state, last_changed, at)
                return

            changed = old_state != state
            applied = await self._dao.write_heartbeat_state(
                device_id, state=state.value, at=at, changed=changed,
            )
            if not applied:
                yield self._rejected(old_state, state, last_changed, at)
                return

            yield PersistResult(
                applied=True,
                changed=changed,
                old_state=old_state,
                new_state=state,
                changed_at=at if changed else last_changed,
                written_at=at,
            )
            await self._dao.commit()

    async def apply(
        self, device_id: str, state: HeartbeatState, at: datetime | None = None,
    ) -> PersistResult:
        """Write and commit immediately. Returns the write result."""
        async with self.applying(device_id, state, at or self._clock()) as result:
            return result

    async def read_state(
        self, device_id: str,
    ) -> tuple[HeartbeatState, datetime | None]:
        """Return (stored state, last change timestamp).

        Raises:
            DeviceNotFoundError: If the device does not exist.
        """
        async with self._dao.transaction():
            row = await self._dao.read_heartbeat_state(device_id)
        if row is None:
            raise DeviceNotFoundError(f"Device {device_id} not found")
        last_changed = row[1]
        return (
            HeartbeatState(row[0]),
            Time.ensure_utc(last_changed) if last_changed else None,
        )

    @staticmethod
    def _rejected(
        old_state: HeartbeatState,
        state: HeartbeatState,
        last_changed: datetime | None,
        at: datetime,
    ) -> PersistResult:
        return PersistResult(
            applied=False,
            changed=False,
            old_state=old_state,
            new_state=state,
            changed_at=last_changed,
            written_at=at,
        )
