"""
Structured logging for the orchestrator.
Job lifecycle audit events, handler and sweep timings, request-scoped errors.
"""
import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Loggers that share the configured handlers
_MANAGED_LOGGERS = {
    "aftermeet": None,
    "uvicorn": "INFO",
    "sqlalchemy.engine": "WARNING",
}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; structured fields are merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        entry.update(getattr(record, "extra_data", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """Logger whose keyword arguments travel as ``extra_data``; None values are dropped."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, **fields: Any) -> None:
        exc_info = fields.pop("exc_info", None)
        extra_data = {k: v for k, v in fields.items() if v is not None}
        self.logger.log(level, message, exc_info=exc_info, extra={"extra_data": extra_data})

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, **fields)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None, enable_console: bool = True) -> None:
    """Configure console (plain text) and optional rotating file (JSON) output."""
    handlers: Dict[str, Dict[str, Any]] = {}
    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "standard",
            "level": log_level,
        }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "json",
            "level": log_level,
        }

    names = list(handlers)
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": {
            name: {"level": level or log_level, "handlers": names, "propagate": False}
            for name, level in _MANAGED_LOGGERS.items()
        },
        "root": {"level": log_level, "handlers": names},
    })


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(f"aftermeet.{name}")


def log_business_event(event_type: str, details: Dict[str, Any], request_id: Optional[str] = None) -> None:
    """Audit trail entry, e.g. ``job_enqueued``, ``job_failed`` or ``sweep_completed``."""
    get_logger("audit").info(
        f"Business event: {event_type}",
        event_type=event_type,
        request_id=request_id,
        **details,
    )


def log_performance(operation: str, duration_ms: float, additional_data: Optional[Dict[str, Any]] = None) -> None:
    """Timing of a handler run or sweep."""
    get_logger("performance").info(
        f"Performance: {operation}",
        operation=operation,
        duration_ms=duration_ms,
        **(additional_data or {}),
    )
