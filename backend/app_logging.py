from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict

# top-level packages whose module loggers share the app handler
APP_LOGGERS = ("apis", "app", "db", "importer", "services")

_LOGGING_CONFIGURED = False


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class _JsonFormatter(logging.Formatter):
    """One JSON object per line; import events carry their details in the message."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging() -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    level_name = (os.environ.get("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    use_json = _env_bool("LOG_JSON", default=False)

    formatter: logging.Formatter
    if use_json:
        formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    for name in APP_LOGGERS:
        app_logger = logging.getLogger(name)
        app_logger.handlers.clear()
        app_logger.addHandler(handler)
        app_logger.setLevel(level)
        app_logger.propagate = False

    logging.getLogger("app").info("logging configured level=%s json=%s", level_name, str(use_json).lower())
    _LOGGING_CONFIGURED = True
