from __future__ import annotations

import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from jpikit.utils.exceptions import ConfigurationError


class LoggingManager:
    """Configures logging for a packaging run.

    The Logging Manager wires Python's logging module and structlog together so
    that every component obtains a structured logger through :func:`get_logger`.
    Records are rendered either as JSON (through python-json-logger) or as plain
    text on the console.
    """

    # Mapping from string log levels to logging module constants
    LOG_LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    LOG_FORMATS = ("json", "text")

    def __init__(self, logging_config: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the Logging Manager.

        Args:
            logging_config: Logging settings with ``level`` and ``format`` keys.
        """
        self._config = dict(logging_config or {})
        self._root_logger: Optional[logging.Logger] = None
        self._handlers: List[logging.Handler] = []
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Set up the console handler and structlog.

        Raises:
            ConfigurationError: If the level or format is not recognised.
        """
        level_name = str(self._config.get("level", "INFO")).lower()
        if level_name not in self.LOG_LEVELS:
            raise ConfigurationError(
                f"Unknown log level: {level_name}", config_key="logging.level"
            )
        log_format = str(self._config.get("format", "text")).lower()
        if log_format not in self.LOG_FORMATS:
            raise ConfigurationError(
                f"Unknown log format: {log_format}", config_key="logging.format"
            )
        log_level = self.LOG_LEVELS[level_name]

        self._root_logger = logging.getLogger()
        self._root_logger.setLevel(log_level)

        # Remove any existing handlers
        for handler in list(self._root_logger.handlers):
            self._root_logger.removeHandler(handler)

        if log_format == "json":
            formatter = self._create_json_formatter()
        else:
            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        self._root_logger.addHandler(console_handler)
        self._handlers.append(console_handler)

        self._configure_structlog()
        self._initialized = True

        get_logger("logging_manager").debug(
            "Logging Manager initialized", log_level=level_name, log_format=log_format
        )

    def _create_json_formatter(self) -> logging.Formatter:
        """Create a JSON formatter for log records.

        Returns:
            logging.Formatter: A formatter that outputs logs in JSON format.
        """
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
            json_ensure_ascii=False,
        )

    def _configure_structlog(self) -> None:
        """Configure structlog to hand key/value pairs to the stdlib handlers."""
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.stdlib.render_to_log_kwargs,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def shutdown(self) -> None:
        """Flush and detach the handlers installed by :meth:`initialize`."""
        if not self._initialized:
            return

        for handler in self._handlers:
            if self._root_logger:
                self._root_logger.removeHandler(handler)
            try:
                handler.flush()
            except (ValueError, OSError):
                # The stream was closed underneath the handler; nothing to flush
                pass
            handler.close()
        self._handlers = []
        structlog.reset_defaults()
        self._initialized = False


def get_logger(name: str) -> Any:
    """Get a structured logger for a specific component.

    Args:
        name: The name of the component requesting a logger.

    Returns:
        A structlog bound logger.
    """
    return structlog.get_logger(name)
