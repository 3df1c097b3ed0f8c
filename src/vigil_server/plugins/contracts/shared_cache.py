"""Shared cache contract — TTL key/value store visible to every instance."""

from __future__ import annotations

from abc import ABC, abstractmethod


class SharedCache(ABC):
    """Low-latency key/value store with per-key expiry.

    Implementations must be safe for concurrent use from many service
    instances. Values are opaque strings.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value, or None if absent or expired."""

    @abstractmethod
    async def set(
        self, key: str, value: str, ttl_ms: int, *, only_if_absent: bool = False,
    ) -> bool:
        """Store a value that expires after ``ttl_ms``.

        Args:
            key: Cache key.
            value: Opaque payload.
            ttl_ms: Lifetime in milliseconds, at least 1.
            only_if_absent: Do nothing if a live value already exists.

        Returns:
            True if the value was written.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are not an error."""

    async def close(self) -> None:
        """Release resources held by the backend."""
