"""
Logging manager for resilient_graphql.

Handlers are installed on the package logger, never on the root logger, so
applications embedding the client keep control of their own logging.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .config import PACKAGE_LOGGER, LoggingConfig, LogLevel
from .filters import SensitiveDataFilter
from .formatters import ColoredFormatter, StructuredFormatter


class LoggingManager:
    """
    Installs and removes the client's log handlers.

    Example:
        ```python
        manager = LoggingManager()
        manager.setup_logging(LoggingConfig(
            level=LogLevel.DEBUG,
            component_levels={"websocket": LogLevel.WARNING},
        ))
        ...
        manager.cleanup()
        ```
    """

    def __init__(self, logger_name: str = PACKAGE_LOGGER) -> None:
        self.logger_name = logger_name
        self._configured = False
        self._handlers: Dict[str, logging.Handler] = {}
        self._component_loggers: List[logging.Logger] = []
        self._previous_propagate = True

    @property
    def logger(self) -> logging.Logger:
        """Get the package logger."""
        return logging.getLogger(self.logger_name)

    def setup_logging(self, config: LoggingConfig) -> None:
        """
        Configure the package logger.

        Calling it again replaces the previous configuration.

        Args:
            config: Logging configuration
        """
        if self._configured:
            self.cleanup()

        logger = self.logger
        self._previous_propagate = logger.propagate
        logger.setLevel(getattr(logging, config.level.value))
        logger.propagate = config.propagate

        if config.enable_console:
            self.add_handler("console", self._console_handler(config))
        if config.file_path:
            self.add_handler("file", self._file_handler(config))

        for component, level in config.component_levels.items():
            self.set_level(level, component)

        self._configured = True
        logger.debug(f"Logging configured with handlers: {', '.join(self._handlers) or 'none'}")

    def _prepare(self, handler: logging.Handler, config: LoggingConfig, colored: bool) -> logging.Handler:
        if config.enable_structured:
            handler.setFormatter(StructuredFormatter())
        elif colored:
            handler.setFormatter(ColoredFormatter(config.format))
        else:
            handler.setFormatter(logging.Formatter(config.format))
        if config.mask_sensitive_data:
            handler.addFilter(SensitiveDataFilter())
        return handler

    def _console_handler(self, config: LoggingConfig) -> logging.Handler:
        return self._prepare(logging.StreamHandler(sys.stdout), config, colored=True)

    def _file_handler(self, config: LoggingConfig) -> logging.Handler:
        log_path = Path(str(config.file_path))
        log_path.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path),
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        return self._prepare(handler, config, colored=False)

    def get_logger(self, component: Optional[str] = None) -> logging.Logger:
        """
        Get the package logger or the logger of one sub-package.

        Args:
            component: Sub-package name such as ``websocket``
        """
        if component is None:
            return self.logger
        return logging.getLogger(f"{self.logger_name}.{component}")

    def set_level(self, level: LogLevel, component: Optional[str] = None) -> None:
        """
        Set the level of the package logger or of one sub-package.

        Args:
            level: New logging level
            component: Sub-package name (None for the whole package)
        """
        logger = self.get_logger(component)
        logger.setLevel(getattr(logging, level.value))
        if component is not None and logger not in self._component_loggers:
            self._component_loggers.append(logger)

    def add_handler(self, name: str, handler: logging.Handler) -> None:
        """
        Attach a handler to the package logger.

        Args:
            name: Handler name, replacing any handler with the same name
            handler: Logging handler
        """
        self.remove_handler(name)
        self.logger.addHandler(handler)
        self._handlers[name] = handler

    def remove_handler(self, name: str) -> None:
        """Detach and close a handler."""
        handler = self._handlers.pop(name, None)
        if handler is not None:
            self.logger.removeHandler(handler)
            handler.close()

    def get_handler(self, name: str) -> Optional[logging.Handler]:
        """Get an installed handler by name."""
        return self._handlers.get(name)

    def cleanup(self) -> None:
        """Remove the handlers and levels installed by this manager."""
        for name in list(self._handlers):
            self.remove_handler(name)
        for logger in self._component_loggers:
            logger.setLevel(logging.NOTSET)
        self._component_loggers.clear()

        if self._configured:
            self.logger.setLevel(logging.NOTSET)
            self.logger.propagate = self._previous_propagate
        self._configured = False

    def is_configured(self) -> bool:
        """Check if logging is configured."""
        return self._configured


_logging_manager = LoggingManager()


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Configure client logging.

    Args:
        config: Logging configuration, defaults to console logging at INFO
    """
    _logging_manager.setup_logging(config or LoggingConfig())


def get_logger(component: Optional[str] = None) -> logging.Logger:
    """Get the package logger or the logger of one sub-package."""
    return _logging_manager.get_logger(component)


def cleanup_logging() -> None:
    """Remove the handlers installed by ``setup_logging``."""
    _logging_manager.cleanup()
