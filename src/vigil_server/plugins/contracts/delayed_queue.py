"""Delayed-delivery contract — messages that become visible after a delay."""

from __future__ import annotations

from abc import ABC, abstractmethod


class DelayedQueue(ABC):
    """At-least-once delayed delivery shared by every instance.

    Each message is enqueued under a key. Enqueueing again under the same
    key supersedes the pending message and ``cancel`` removes it, both on a
    best-effort basis: consumers must tolerate a superseded message being
    delivered anyway.
    """

    @abstractmethod
    async def enqueue_after(self, key: str, payload: str, delay_ms: int) -> None:
        """Make ``payload`` consumable once ``delay_ms`` has elapsed."""

    @abstractmethod
    async def consume(self) -> str | None:
        """Claim one due message. Returns None when nothing is due.

        A claimed message is never handed to another consumer.
        """

    @abstractmethod
    async def cancel(self, key: str) -> None:
        """Drop the pending message for ``key``, if any. Best effort."""

    async def close(self) -> None:
        """Release resources held by the backend."""
