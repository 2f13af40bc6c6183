"""
Log formatters for resilient_graphql.

Both formatters report the sub-package a record comes from (``auth``,
``graphql``, ``websocket``...) so connection and credential activity can
be told apart at a glance.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import PACKAGE_LOGGER

# Attributes every LogRecord has; anything else was passed through ``extra``
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "component"}


def component_of(logger_name: str) -> str:
    """Get the sub-package part of a package logger name."""
    prefix = f"{PACKAGE_LOGGER}."
    if not logger_name.startswith(prefix):
        return logger_name
    return logger_name[len(prefix):].split(".", 1)[0]


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "component": component_of(record.name),
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES:
                log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ColoredFormatter(logging.Formatter):
    """
    Console formatter with colored level names.

    Records get a ``component`` attribute, usable in the format string as
    ``%(component)s``.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: Optional[bool] = None,
    ):
        """
        Initialize colored formatter.

        Args:
            fmt: Log format string
            datefmt: Date format string
            use_colors: Whether to use colors (auto-detect if None)
        """
        super().__init__(fmt, datefmt)

        if use_colors is None:
            use_colors = sys.stdout.isatty() and sys.platform != "win32"
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        record.component = component_of(record.name)
        formatted = super().format(record)
        if not self.use_colors:
            return formatted

        color = self.COLORS.get(record.levelname)
        if color:
            formatted = formatted.replace(
                record.levelname, f"{color}{record.levelname}{self.RESET}", 1
            )
        return formatted
