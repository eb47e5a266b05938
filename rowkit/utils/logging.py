"""
Structured logging utilities for rowkit.

Centralizes logging configuration for the library, the CLI, and tests. It
favors standard library logging with a human-readable formatter by default and
an optional JSON formatter for structured logs (useful for pipelines/CI).

Usage:
    from rowkit.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    log = get_logger(__name__)
    log.info("database opened", extra={"db": "default", "dialect": "postgres"})

SQL statements are traced at DEBUG through `log_sql`; failures are reported at
ERROR through `log_sql_error`.
"""

from __future__ import annotations

import json
import logging
import logging.config
import re
from typing import Any, Dict, Optional, Sequence

# Attributes every LogRecord carries; anything else was passed through `extra=`.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "extra", "taskName"}

_WHITESPACE = re.compile(r"\s+")


def _json_formatter(record: logging.LogRecord) -> str:
    """Render a log record as JSON string."""
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    for key, value in vars(record).items():
        if key not in _STANDARD_ATTRS and not key.startswith("_"):
            payload[key] = value
    if hasattr(record, "extra") and isinstance(record.extra, dict):
        payload.update(record.extra)
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter for structured logs."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    force: bool = True,
) -> None:
    """
    Configure root logging.

    Parameters
    ----------
    level : str
        Logging level name (e.g., "DEBUG", "INFO", "WARNING").
    json_logs : bool
        Whether to emit logs as JSON. If False, uses a concise human formatter.
    force : bool
        Whether to override existing logging configuration. When False and the
        root logger already has handlers, the call is a no-op.
    """
    if not force and logging.getLogger().handlers:
        return

    formatter_name = "json" if json_logs else "console"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {
                    "()": JsonFormatter,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": formatter_name,
                    "level": level,
                }
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger with the given name. If name is None, returns the root logger.
    """
    return logging.getLogger(name)


def clean_sql(sql: str) -> str:
    """Collapse runs of whitespace so multi-line statements log on one line."""
    return _WHITESPACE.sub(" ", sql).strip()


def log_sql(
    logger: logging.Logger,
    db: str,
    sql: str,
    args: Sequence[Any],
    duration_seconds: float,
) -> None:
    """Trace an executed statement at DEBUG level."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    logger.debug(
        "SQL executed",
        extra={
            "db": db,
            "sql": clean_sql(sql),
            "sql_args": list(args),
            "duration_ms": round(duration_seconds * 1000, 3),
        },
    )


def log_sql_error(
    logger: logging.Logger,
    db: str,
    sql: str,
    args: Sequence[Any],
    error: BaseException,
) -> None:
    """Report a failed statement at ERROR level."""
    logger.error(
        "SQL failed",
        extra={
            "db": db,
            "sql": clean_sql(sql),
            "sql_args": list(args),
            "error": str(error),
        },
    )


__all__ = [
    "configure_logging",
    "get_logger",
    "JsonFormatter",
    "clean_sql",
    "log_sql",
    "log_sql_error",
]
