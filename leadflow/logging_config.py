"""Structured logging for LeadFlow.

Every record is written to stdout as one JSON object. Structured fields go
under ``context``; pass them with ``extra={"context": {...}}`` or bind them
once with :func:`bind_logger` for a whole campaign sweep.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

LOGGER_PREFIX = "leadflow"

# Client libraries that log every request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # card payloads carry datetimes and Decimals
        return json.dumps(log_data, ensure_ascii=False, default=str)


def resolve_level(level: str) -> int:
    """Numeric level for a name such as "debug"; unknown names fall back to INFO."""
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: str = "INFO") -> None:
    """Route all logging through a single JSON stdout handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(resolve_level(level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter whose bound fields are merged into the ``context`` of each record.

    A call may add fields with ``context=``; on a key clash the call wins.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        extra = dict(kwargs.get("extra") or {})
        combined_context = {**self.extra, **extra.pop("context", {}), **(context or {})}
        if combined_context:
            extra["context"] = combined_context
        kwargs["extra"] = extra
        return msg, kwargs


def bind_logger(logger: logging.Logger, **context: Any) -> LoggerAdapter:
    """Logger that stamps ``context`` onto every record it emits."""
    return LoggerAdapter(logger, context)
