"""Logging setup — text or JSON lines on stderr."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Structured values passed as ``extra={"fields": {...}}`` are attached
    under ``fields``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload["fields"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class Log:
    """Static helpers for process-wide logging configuration."""

    @staticmethod
    def configure(*, level: str | int = "INFO", log_format: str = "text") -> None:
        """Replace root handlers with a single stream handler.

        Safe to call more than once; handlers are replaced, not stacked.
        """
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                level = logging.INFO
        root = logging.getLogger()
        root.setLevel(level)
        root.handlers.clear()

        handler = logging.StreamHandler()
        if log_format.strip().lower() == "json":
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
        root.addHandler(handler)
