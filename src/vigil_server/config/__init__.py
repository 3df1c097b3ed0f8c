"""Server configuration: the Settings model and its YAML/env loader."""

from vigil_server.config.loader import ConfigLoader
from vigil_server.config.settings import ENV_PREFIX, Settings

__all__ = ["ENV_PREFIX", "ConfigLoader", "Settings"]
