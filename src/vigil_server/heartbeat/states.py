"""Heartbeat state and the value types exchanged by the engine."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from vigil_server.utils.time import Time


class HeartbeatState(str, Enum):
    """Coarse reachability of a device.

    ``unknown`` is only ever the initial state of a never-seen device.
    """

    UNKNOWN = "unknown"
    ONLINE = "online"
    TIMEOUT = "timeout"
    OFFLINE = "offline"


@dataclass(frozen=True)
class HeartbeatConfig:
    """Immutable snapshot of the engine's global knobs.

    ``online_update_cache_timeout_ms``: None trusts a cached ``online``
    entry until it expires, 0 re-persists on every heartbeat, N trusts it
    for N ms after the last durable write.
    """

    default_poll_interval_ms: int
    poll_jitter_factor: float
    timeout_grace_ms: int
    online_update_cache_timeout_ms: int | None = None


@dataclass(frozen=True)
class PollIntervalConfig:
    """Layered poll interval inputs for one device."""

    default_ms: int
    jitter_factor: float
    device_override_ms: int | None = None
    group_override_ms: int | None = None

    @property
    def effective_ms(self) -> int:
        """Overrides can lengthen the interval, never shorten it below default."""
        override = self.device_override_ms
        if override is None:
            override = self.group_override_ms
        if override is None:
            override = self.default_ms
        return int(max(self.default_ms, override) * self.jitter_factor)


@dataclass(frozen=True)
class CacheEntry:
    """Last known state of a device as seen by the write-through cache."""

    device_id: str
    current_state: HeartbeatState
    written_at: datetime
    generation: str

    def to_json(self) -> str:
        return json.dumps({
            "device_id": self.device_id,
            "current_state": self.current_state.value,
            "written_at": Time.to_ms(self.written_at),
            "generation": self.generation,
        })

    @classmethod
    def from_json(cls, raw: str) -> CacheEntry:
        """Parse a cached value. Raises ValueError/KeyError on garbage."""
        data = json.loads(raw)
        return cls(
            device_id=str(data["device_id"]),
            current_state=HeartbeatState(data["current_state"]),
            written_at=Time.from_ms(int(data["written_at"])),
            generation=str(data["generation"]),
        )


@dataclass(frozen=True)
class ScheduledTransition:
    """A future downgrade, valid only while ``from_generation`` is current."""

    device_id: str
    from_generation: str
    target_state: HeartbeatState
    fire_at: datetime

    def to_json(self) -> str:
        return json.dumps({
            "device_id": self.device_id,
            "from_generation": self.from_generation,
            "target_state": self.target_state.value,
            "fire_at": Time.to_ms(self.fire_at),
        })

    @classmethod
    def from_json(cls, raw: str) -> ScheduledTransition:
        """Parse a queued payload. Raises ValueError/KeyError on garbage."""
        data = json.loads(raw)
        return cls(
            device_id=str(data["device_id"]),
            from_generation=str(data["from_generation"]),
            target_state=HeartbeatState(data["target_state"]),
            fire_at=Time.from_ms(int(data["fire_at"])),
        )


@dataclass(frozen=True)
class PersistResult:
    """Outcome of one durable write.

    ``applied`` is False when a newer write already landed. ``changed`` is
    True only if the stored state value actually changed.
    """

    applied: bool
    changed: bool
    old_state: HeartbeatState | None
    new_state: HeartbeatState
    changed_at: datetime | None
    written_at: datetime


@dataclass(frozen=True)
class ChangeEvent:
    """Emitted once per durable write that altered the stored state."""

    device_id: str
    old_state: HeartbeatState
    new_state: HeartbeatState
    changed_at: datetime


@dataclass(frozen=True)
class StatsEvent:
    """Aggregate counters for one reporting window."""

    scheduled: int
    fired: int
    skipped: int
    persisted: int
    window_ms: int
