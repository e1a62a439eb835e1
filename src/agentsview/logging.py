"""
Logging setup for agentsview.

Log records go to stderr so that stdout stays reserved for the human-readable
progress lines printed by the update command. Two output styles are
supported:
- JSON-formatted records (one object per line) for machine consumption
- Plain text records for interactive use (default)
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agentsview.config import LoggingConfig

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes present on every LogRecord; anything else came in via `extra`.
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each record carries timestamp (ISO 8601, UTC), level, logger and message,
    plus any fields passed through the ``extra`` argument.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted string representation of the log record.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in set(record.__dict__.keys()) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "WARNING",
    json_format: bool = False,
    log_to_stderr: bool = True,
) -> logging.Logger:
    """
    Configure the ``agentsview`` logger.

    Args:
        config: Optional LoggingConfig. If provided, overrides other parameters.
        level: Log level if no config is provided.
        json_format: Whether to emit JSON records.
        log_to_stderr: Whether to attach a stderr handler at all.

    Returns:
        The package root logger.

    Example:
        >>> from agentsview.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Update check started", extra={"repository": "wesm/agentsview"})
    """
    if config is not None:
        log_level = config.level.upper()
        json_format = config.json_format
        log_to_stderr = config.log_to_stderr
    else:
        log_level = level.upper()

    logger = logging.getLogger("agentsview")
    logger.setLevel(getattr(logging, log_level, logging.WARNING))

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    if log_to_stderr:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(getattr(logging, log_level, logging.WARNING))

        if json_format:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))

        logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger of the ``agentsview`` logger.

    Args:
        name: Typically ``__name__`` of the calling module. The
            "agentsview." prefix is added if not present.

    Returns:
        A logger instance.
    """
    if not name.startswith("agentsview"):
        name = f"agentsview.{name}"

    return logging.getLogger(name)
