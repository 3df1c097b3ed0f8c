"""Litestar application factory and CLI entry point."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from litestar import Litestar
from litestar.datastructures import State
from litestar.di import Provide

from vigil_server.config import ConfigLoader, Settings
from vigil_server.controllers.admin import AdminController
from vigil_server.controllers.device_api import DeviceApiController
from vigil_server.controllers.health import HealthController
from vigil_server.dao.config_dao import ConfigDAO
from vigil_server.dao.device_dao import DeviceDAO
from vigil_server.heartbeat.events import HeartbeatEvents
from vigil_server.heartbeat.persister import StatePersister
from vigil_server.heartbeat.poll_interval import PollIntervalResolver
from vigil_server.heartbeat.states import HeartbeatConfig
from vigil_server.heartbeat.throttle import ReportThrottle
from vigil_server.heartbeat.tracker import HeartbeatTracker
from vigil_server.heartbeat.transition_queue import DelayedTransitionQueue
from vigil_server.heartbeat.write_cache import WriteThroughCache
from vigil_server.plugins.contracts.delayed_queue import DelayedQueue
from vigil_server.plugins.contracts.shared_cache import SharedCache
from vigil_server.plugins.memory_cache import MemorySharedCache
from vigil_server.plugins.memory_delayed_queue import MemoryDelayedQueue
from vigil_server.plugins.redis_cache import RedisSharedCache
from vigil_server.plugins.redis_delayed_queue import RedisDelayedQueue
from vigil_server.resources.admin import AdminResource
from vigil_server.resources.device import DeviceResource
from vigil_server.resources.health import HealthResource
from vigil_server.services.config_service import ConfigService
from vigil_server.services.device_service import DeviceService
from vigil_server.utils.db import Database
from vigil_server.utils.log import Log
from vigil_server.utils.redis_pool import RedisPool
from vigil_server.utils.time import Time

logger = logging.getLogger("vigil.app")


class AppFactory:
    """Builds and configures the Litestar application. All methods are static."""

    @staticmethod
    def heartbeat_config(settings: Settings) -> HeartbeatConfig:
        """Snapshot the engine-facing settings."""
        return HeartbeatConfig(
            default_poll_interval_ms=settings.default_poll_interval_ms,
            poll_jitter_factor=settings.poll_jitter_factor,
            timeout_grace_ms=settings.timeout_grace_seconds * 1000,
            online_update_cache_timeout_ms=settings.online_update_cache_timeout_ms,
        )

    @staticmethod
    def _shared_primitives(settings: Settings) -> tuple[SharedCache, DelayedQueue]:
        """Redis-backed primitives for fleets, in-process ones for a single instance."""
        if settings.cache_backend == "redis":
            client = RedisPool.init(
                settings.redis_url, timeout_seconds=settings.operation_timeout_seconds,
            )
            return RedisSharedCache(client), RedisDelayedQueue(client, clock=Time.now)
        return MemorySharedCache(Time.now), MemoryDelayedQueue(Time.now)

    @staticmethod
    def _build(settings: Settings) -> State:
        """Construct the full object graph once.

        pool → device_dao ─┬→ device_service ─┬→ DeviceResource
                           │  throttle ───────┘   AdminResource
                           └→ persister ─┐
        pool → config_dao → resolver ────┼→ HeartbeatTracker
        shared cache → write cache ──────┤
        delayed queue → transitions ─────┘
        """
        pool = Database.init(settings.database_url)
        shared_cache, delayed_queue = AppFactory._shared_primitives(settings)
        device_dao = DeviceDAO(pool)
        config_dao = ConfigDAO(pool)

        resolver = PollIntervalResolver(
            config_dao, cache_ttl_ms=settings.poll_interval_cache_ttl_ms,
        )
        tracker = HeartbeatTracker(
            resolver=resolver,
            cache=WriteThroughCache(shared_cache),
            queue=DelayedTransitionQueue(
                delayed_queue, idle_sleep_ms=settings.transition_poll_interval_ms,
            ),
            persister=StatePersister(device_dao),
            events=HeartbeatEvents(),
            config=AppFactory.heartbeat_config(settings),
            operation_timeout_seconds=settings.operation_timeout_seconds,
            stats_interval_seconds=settings.stats_interval_seconds,
        )
        throttle = ReportThrottle(
            shared_cache,
            window_seconds=settings.metrics_max_report_interval_seconds,
            operation_timeout_seconds=settings.operation_timeout_seconds,
        )
        device_service = DeviceService(device_dao, throttle)
        config_service = ConfigService(config_dao, resolver)

        return State({
            "health": HealthResource(tracker=tracker),
            "device": DeviceResource(device_service=device_service, tracker=tracker),
            "admin": AdminResource(
                device_service=device_service,
                config_service=config_service,
                admin_api_key=settings.admin_api_key,
            ),
            "tracker": tracker,
            "shared_primitives": (shared_cache, delayed_queue),
        })

    @staticmethod
    @asynccontextmanager
    async def _lifespan(app: Litestar) -> AsyncIterator[None]:
        """Create tables and start the engine on startup; tear down on shutdown."""
        await Database.create_tables()
        tracker: HeartbeatTracker = app.state.tracker
        tracker.start()
        try:
            yield
        finally:
            await tracker.stop()
            for primitive in app.state.shared_primitives:
                await primitive.close()
            await RedisPool.close()
            await Database.close()

    @staticmethod
    def provide_health(state: State) -> HealthResource:
        """Provide the pre-built HealthResource from app state."""
        health_resource: HealthResource = state.health
        return health_resource

    @staticmethod
    def provide_device(state: State) -> DeviceResource:
        """Provide the pre-built DeviceResource from app state."""
        device_resource: DeviceResource = state.device
        return device_resource

    @staticmethod
    def provide_admin(state: State) -> AdminResource:
        """Provide the pre-built AdminResource from app state."""
        admin_resource: AdminResource = state.admin
        return admin_resource

    @staticmethod
    def create_app(settings: Settings | None = None) -> Litestar:
        """Create and configure the Litestar application."""
        if settings is None:
            settings = ConfigLoader.load_settings()
        Log.configure(level=settings.log_level, log_format=settings.log_format)
        logger.info(
            "building app (cache backend: %s, default poll interval: %d ms)",
            settings.cache_backend, settings.default_poll_interval_ms,
        )
        return Litestar(
            route_handlers=[HealthController, DeviceApiController, AdminController],
            state=AppFactory._build(settings),
            lifespan=[AppFactory._lifespan],
            dependencies={
                "health_resource": Provide(AppFactory.provide_health, sync_to_thread=False),
                "device_resource": Provide(AppFactory.provide_device, sync_to_thread=False),
                "admin_resource": Provide(AppFactory.provide_admin, sync_to_thread=False),
            },
        )


# Public alias so conftest / uvicorn can call create_app() without knowing AppFactory.
create_app = AppFactory.create_app


class CLI:
    """Command-line interface for vigil-server."""

    @staticmethod
    def _build_parser() -> argparse.ArgumentParser:
        """Build the CLI argument parser."""
        parser = argparse.ArgumentParser(
            prog="vigil-server", description="Vigil device heartbeat server",
        )
        subparsers = parser.add_subparsers(dest="command")

        run_parser = subparsers.add_parser("run", help="Start the server")
        run_parser.add_argument("--host", default="0.0.0.0")
        run_parser.add_argument("--port", type=int, default=8000)
        run_parser.add_argument("--reload", action="store_true", help="Auto-reload on file changes")

        return parser

    @staticmethod
    def main(argv: list[str] | None = None) -> None:
        """CLI entry point. Catches all exceptions and exits cleanly."""
        parser = CLI._build_parser()
        args = parser.parse_args(argv)

        if args.command is None:
            parser.print_help()
            sys.exit(1)

        try:
            if args.command == "run":
                import uvicorn

                uvicorn.run(
                    "vigil_server.app:create_app",
                    factory=True,
                    host=args.host,
                    port=args.port,
                    reload=args.reload,
                )
        except KeyboardInterrupt:
            pass
        except Exception as error:
            print(f"Error: {error}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    CLI.main()
