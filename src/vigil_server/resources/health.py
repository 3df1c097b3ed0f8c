"""Health resource — protocol-agnostic health check logic."""

from __future__ import annotations

from vigil_server.heartbeat.tracker import HeartbeatTracker


class HealthResource:
    """Health check operations."""

    def __init__(self, *, tracker: HeartbeatTracker) -> None:
        self._tracker = tracker

    def check(self) -> dict[str, str]:
        """Server status; ``degraded`` while the heartbeat loops are down.

        Without the transition consumer no device is ever downgraded, so a
        stopped tracker makes the instance unhealthy.
        """
        running = self._tracker.running
        return {
            "status": "ok" if running else "degraded",
            "heartbeat": "running" if running else "stopped",
        }
