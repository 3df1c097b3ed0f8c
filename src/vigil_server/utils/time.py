"""Timezone and clock helpers."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

Clock = Callable[[], datetime]
"""Zero-argument callable returning timezone-aware UTC now."""


class Time:
    """Static helpers for datetime normalization and millisecond math."""

    @staticmethod
    def now() -> datetime:
        """Return timezone-aware UTC now. The default ``Clock``."""
        return datetime.now(timezone.utc)

    @staticmethod
    def ensure_utc(dt: datetime) -> datetime:
        """Ensure a datetime is UTC-aware. SQLite strips timezone info."""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt

    @staticmethod
    def to_ms(dt: datetime) -> int:
        """Milliseconds since the epoch."""
        return int(Time.ensure_utc(dt).timestamp() * 1000)

    @staticmethod
    def from_ms(ms: int) -> datetime:
        """Inverse of ``to_ms``."""
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)

    @staticmethod
    def elapsed_ms(since: datetime, now: datetime) -> int:
        """Whole milliseconds between two instants (negative if reversed)."""
        delta: timedelta = Time.ensure_utc(now) - Time.ensure_utc(since)
        return int(delta.total_seconds() * 1000)
