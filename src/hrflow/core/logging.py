"""Logging configuration.

- console: human-readable lines for local development
- json: one JSON object per line for log aggregation
"""

import json
import logging
import sys
from datetime import datetime, timezone

from hrflow.core.config import Settings

# Extra attributes promoted into JSON output when present on a record
_EXTRA_FIELDS = (
    "request_id",
    "step_id",
    "actor_id",
    "event_type",
    "task_id",
    "task_name",
    "audit_entry_id",
    "resource_id",
    "count",
    "request_ids",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Plain formatter for development terminals."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )


def configure_logging(settings: Settings) -> None:
    """Install a single stream handler on the root logger.

    Safe to call more than once; previously installed handlers are replaced.

    @param settings - Application settings (log_level, log_format)
    """
    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    # Uvicorn access logs are noisy at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
