"""Device group, device and device API key models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from vigil_server.utils.db import Base


def _utcnow() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def _uuid() -> str:
    """Generate a new UUID hex string."""
    return uuid.uuid4().hex


class DeviceGroup(Base):
    """A fleet of devices sharing configuration."""

    __tablename__ = "device_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Device(Base):
    """A remote agent. Provisioned by the registry, heartbeat state owned here."""

    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    uuid: Mapped[str] = mapped_column(String(62), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    group_id: Mapped[str] = mapped_column(String(36), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    api_heartbeat_state: Mapped[str] = mapped_column(String(16), default="unknown")
    last_changed_api_heartbeat_state_on: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    # Advanced on every applied write, changed or not. Orders concurrent writers.
    api_heartbeat_state_written_on: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    os_version: Mapped[str | None] = mapped_column(String(255), nullable=True)
    supervisor_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mac_address: Mapped[str | None] = mapped_column(String(255), nullable=True)

    cpu_usage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cpu_temp: Mapped[float | None] = mapped_column(Float, nullable=True)
    memory_usage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    memory_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    storage_usage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    storage_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    storage_block_device: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_undervolted: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    metrics_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )


class DeviceApiKey(Base):
    """API key a device authenticates with. Only the SHA-256 hash is stored."""

    __tablename__ = "device_api_keys"

    key_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    device_id: Mapped[str] = mapped_column(String(36), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False)
