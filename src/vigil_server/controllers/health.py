"""Health check controller — 200 when healthy, 503 when degraded."""

from __future__ import annotations

from litestar import Controller, Response, get

from vigil_server.resources.health import HealthResource


class HealthController(Controller):
    """HTTP adapter for health checks. Unauthenticated."""

    path = "/api"

    @get("/health")
    async def health(self, health_resource: HealthResource) -> Response[dict[str, str]]:
        """Report server and heartbeat loop status for load balancers."""
        report = health_resource.check()
        status_code = 200 if report["status"] == "ok" else 503
        return Response(content=report, status_code=status_code)
