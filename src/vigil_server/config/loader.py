"""ConfigLoader — per-environment YAML under a config root, env vars on top."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from vigil_server.config.settings import ENV_PREFIX, Settings

logger = logging.getLogger("vigil.config")

_PACKAGE_CONFIG_ROOT = Path(__file__).resolve().parent


class ConfigLoader:
    """Build Settings from ``<root>/<env>/settings.yaml`` and the environment.

    ``VIGIL_ENV`` picks the environment (default ``dev``). ``VIGIL_CONFIG_DIR``
    points at a deployment's own config root; otherwise the YAML shipped in
    this package is used.
    """

    @staticmethod
    def config_root() -> Path:
        override = os.environ.get(f"{ENV_PREFIX}CONFIG_DIR")
        return Path(override) if override else _PACKAGE_CONFIG_ROOT

    @staticmethod
    def _load_yaml(env: str) -> dict[str, Any]:
        path = ConfigLoader.config_root() / env / "settings.yaml"
        if not path.is_file():
            logger.debug("no settings file at %s", path)
            return {}
        with path.open() as config_file:
            data = yaml.safe_load(config_file)
        if not isinstance(data, dict):
            logger.warning("ignoring %s: top level is not a mapping", path)
            return {}
        return data

    @staticmethod
    def load_settings(**overrides: Any) -> Settings:
        """Build Settings with priority overrides > env vars > YAML > defaults.

        YAML keys Settings does not know are dropped with a warning, so a
        file written for a newer release still loads.
        """
        env = os.environ.get(f"{ENV_PREFIX}ENV", "dev")
        known = Settings.model_fields
        filtered: dict[str, Any] = {}
        for key, value in ConfigLoader._load_yaml(env).items():
            if key not in known:
                logger.warning("unknown setting %r in %s config", key, env)
                continue
            # Init kwargs outrank env vars in pydantic-settings.
            if f"{ENV_PREFIX}{key.upper()}" not in os.environ:
                filtered[key] = value
        return Settings(**{**filtered, **overrides})
