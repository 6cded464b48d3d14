"""
Structured logging for the daemux updater.

Components log through child loggers of ``daemux_updater`` and pass structured
data via ``extra``. The package logger carries a NullHandler, so a host
application that never calls ``setup_logging`` sees no output and no behavior
change. The updater's own entry point calls ``setup_logging`` to emit one JSON
object per line.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from daemux_updater.config import LoggingConfig

ROOT_LOGGER_NAME = "daemux_updater"

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra`.
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

    Each record becomes an object with ``timestamp`` (ISO 8601, UTC),
    ``level``, ``logger``, ``message``, ``exception`` when present, and every
    non-None field passed via ``extra``.
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
    level: str = "INFO",
    json_format: bool = True,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Configure the ``daemux_updater`` logger.

    Args:
        config: Optional LoggingConfig. If provided, overrides the keyword
            arguments.
        level: Log level if no config is provided.
        json_format: Whether to use JSON formatting.
        stream: Output stream. Defaults to stderr so ``--status`` output on
            stdout stays clean.

    Returns:
        The configured package logger.

    Example:
        >>> from daemux_updater.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Update check started", extra={"url": "https://daemux.ai"})
    """
    if config is not None:
        log_level = config.level.upper()
        json_format = config.json_format
    else:
        log_level = level.upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Drop handlers from earlier calls, keep the NullHandler.
    logger.handlers = [h for h in logger.handlers if isinstance(h, logging.NullHandler)]

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(getattr(logging, log_level, logging.INFO))
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a named child logger of the package logger.

    Args:
        name: Logger name, typically ``__name__``. The ``daemux_updater.``
            prefix is added if missing.

    Returns:
        A logger instance.

    Example:
        >>> logger = get_logger("installer")
        >>> logger.name
        'daemux_updater.installer'
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
