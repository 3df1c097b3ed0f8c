"""Settings model — pydantic-settings with env var support."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings

ENV_PREFIX = "VIGIL_"


class Settings(BaseSettings):
    """Server settings.

    Use ``ConfigLoader.load_settings()`` to build with YAML + env var layering.
    Direct construction (e.g. in tests) skips YAML loading.
    """

    database_url: str = "sqlite+aiosqlite:///vigil.db"
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    admin_api_key: str = "change-me-in-production"

    # Heartbeat engine
    default_poll_interval_ms: int = 600_000
    poll_jitter_factor: float = 1.5
    timeout_grace_seconds: int = 3600
    online_update_cache_timeout_ms: int | None = None
    poll_interval_cache_ttl_ms: int = 5000
    transition_poll_interval_ms: int = 500
    stats_interval_seconds: float = 60.0
    operation_timeout_seconds: float = 5.0

    # Telemetry throttling
    metrics_max_report_interval_seconds: int = 10

    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"

    model_config = {"env_prefix": ENV_PREFIX}
