"""Structured JSON logging for the DealDesk package."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from dealdesk.core.config import get_config

# Extra attributes copied from ``logger.x(..., extra={...})`` into the JSON line.
_EXTRA_FIELDS = (
    "event",
    "opportunity_id",
    "stage",
    "target_stage",
    "method",
    "path",
    "status_code",
    "attempt",
    "attempts_total",
    "error",
)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, stamped with the app name and environment."""

    def __init__(self, app_name: str = "DealDesk", env: str = "development") -> None:
        super().__init__()
        self.app_name = app_name
        self.env = env

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "app": self.app_name,
            "env": self.env,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({name: getattr(record, name) for name in _EXTRA_FIELDS if hasattr(record, name)})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach JSON handlers to the ``dealdesk`` logger. Safe to call repeatedly."""
    config = get_config()
    logger = logging.getLogger("dealdesk")
    logger.setLevel(level or config.LOG_LEVEL)
    if logger.handlers:
        return logger

    formatter = JsonFormatter(app_name=config.APP_NAME, env=config.ENV)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.LOG_FILE:
        handlers.append(logging.FileHandler(config.LOG_FILE))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # urllib3 connection-pool lines only in debug mode.
    if not config.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
    return logger
