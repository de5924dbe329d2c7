"""Structured logging configuration for Estima."""
import logging
import json
import sys
from datetime import datetime, timezone
from typing import IO, Optional

# Extra attributes callers attach via ``logger.info(..., extra={...})``
STORE_FIELDS = ("project_id", "store", "operation", "duration_ms")

NOISY_LOGGERS = ("httpcore", "httpx", "aiosqlite", "sqlalchemy.engine")


def _store_context(record: logging.LogRecord) -> dict:
    return {field: getattr(record, field) for field in STORE_FIELDS if hasattr(record, field)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; store context flattened into the top level."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_entry.update(_store_context(record))
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class StoreTextFormatter(logging.Formatter):
    """Human-readable lines for local runs, with store context as ``key=value``."""
    def __init__(self):
        super().__init__("%(asctime)s [%(name)s] %(levelname)s: %(message)s")

    def format(self, record):
        line = super().format(record)
        context = _store_context(record)
        if context:
            line += " | " + " ".join(f"{key}={value}" for key, value in context.items())
        return line


def setup_logging(level: str = "INFO", json_output: bool = True, stream: Optional[IO] = None) -> logging.Handler:
    """Install a single root handler and quiet driver/transport loggers."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else StoreTextFormatter())
    root.handlers = [handler]

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
