"""Device request schemas."""

from datetime import datetime

from pydantic import BaseModel, Field

from vigil_server.heartbeat.states import HeartbeatState


class DeviceStateReport(BaseModel):
    """State and telemetry a device reports about itself. Every field is optional."""

    status: str | None = None
    os_version: str | None = None
    supervisor_version: str | None = None
    ip_address: str | None = None
    mac_address: str | None = None
    cpu_usage: int | None = Field(default=None, ge=0, le=100)
    cpu_temp: int | None = None
    memory_usage: int | None = Field(default=None, ge=0)
    memory_total: int | None = Field(default=None, ge=0)
    storage_usage: int | None = Field(default=None, ge=0)
    storage_total: int | None = Field(default=None, ge=0)
    storage_block_device: str | None = None
    is_undervolted: bool | None = None


class GroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class DeviceProvision(BaseModel):
    """Register a device in a group."""

    group_id: str
    name: str | None = None
    uuid: str | None = Field(default=None, min_length=7, max_length=64)


class ConfigValue(BaseModel):
    value: str


class HeartbeatOverride(BaseModel):
    """Manual write of the durable heartbeat state."""

    state: HeartbeatState


class ApiKeyExpiry(BaseModel):
    expiry_date: datetime | None = None
