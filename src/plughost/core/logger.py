"""Structured logging with console and file output targets."""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional
from datetime import datetime

import structlog
from rich.console import Console
from rich.logging import RichHandler


DEFAULT_LOGGER_NAME = "plughost"

_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SimpleConsoleRenderer:
    """Simple console renderer with minimal formatting."""

    def __call__(self, logger, name, event_dict):
        """Render log event to a simple string."""
        timestamp = datetime.now().strftime("%H:%M:%S")
        level = event_dict.get("level", "info").upper()
        event = event_dict.get("event", "")

        # Format: [HH:MM:SS] LEVEL  message | key=value ...
        output = f"[{timestamp}] {level:<7} {event}"

        skip_keys = {"event", "level", "timestamp", "logger"}
        extras = {k: v for k, v in event_dict.items() if k not in skip_keys}
        if extras:
            extras_str = " ".join(f"{k}={v}" for k, v in extras.items())
            output += f" | {extras_str}"

        return output


_loggers: Dict[str, "Logger"] = {}
_configured = False


def _configure_structlog() -> None:
    """Install the shared structlog processor chain once per process."""
    global _configured
    if _configured:
        return

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


class Logger:
    """Structured logger bound to a stdlib logger hierarchy root."""

    def __init__(
        self,
        name: str,
        level: str = "INFO",
        log_file: Optional[str] = None,
        rich: bool = False,
    ):
        self.name = name
        self.level = level
        self.log_file = log_file
        self.rich = rich
        self._logger: Optional[structlog.stdlib.BoundLogger] = None

    def setup(self) -> structlog.stdlib.BoundLogger:
        """Attach handlers to the stdlib logger and return a bound logger."""
        if self.log_file:
            Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)

        _configure_structlog()

        level = getattr(logging, self.level.upper())
        stdlib_logger = logging.getLogger(self.name)
        stdlib_logger.setLevel(level)
        stdlib_logger.handlers.clear()

        if self.rich:
            console_handler: logging.Handler = RichHandler(
                console=Console(stderr=True),
                show_path=False,
                rich_tracebacks=True,
            )
        else:
            console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(processor=SimpleConsoleRenderer())
        )
        stdlib_logger.addHandler(console_handler)

        # File handler records ERROR and above as JSON lines
        if self.log_file:
            file_handler = logging.FileHandler(self.log_file, encoding="utf-8")
            file_handler.setLevel(logging.ERROR)
            file_handler.setFormatter(
                structlog.stdlib.ProcessorFormatter(
                    processor=structlog.processors.JSONRenderer(),
                )
            )
            stdlib_logger.addHandler(file_handler)

        self._logger = structlog.get_logger(self.name)
        return self._logger

    def get(self) -> structlog.stdlib.BoundLogger:
        """Get the logger instance."""
        if self._logger is None:
            _configure_structlog()
            self._logger = structlog.get_logger(self.name)
        return self._logger

    def bind(self, **kwargs: Any) -> structlog.stdlib.BoundLogger:
        """Bind context to logger."""
        return self.get().bind(**kwargs)


def setup_logger(
    name: str = DEFAULT_LOGGER_NAME,
    level: str = "INFO",
    log_file: Optional[str] = None,
    rich: bool = False,
) -> structlog.stdlib.BoundLogger:
    """Setup and register a logger with console (and optional file) output."""
    logger = Logger(name, level, log_file, rich)
    _loggers[name] = logger
    return logger.setup()


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> structlog.stdlib.BoundLogger:
    """Get a logger by name.

    Module loggers (``plughost.plugins.registry`` and so on) propagate to the
    ``plughost`` stdlib logger, so handlers only need to be attached once via
    :func:`setup_logger`.
    """
    if name not in _loggers:
        _loggers[name] = Logger(name)
    return _loggers[name].get()


def bind_logger(name: str = DEFAULT_LOGGER_NAME, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger with bound context."""
    return get_logger(name).bind(**kwargs)


def update_log_level(level: str) -> None:
    """Update log level for all loggers set up through :func:`setup_logger`."""
    level_upper = level.upper()
    if level_upper not in _VALID_LEVELS:
        raise ValueError(f"Invalid log level: {level}")

    numeric = getattr(logging, level_upper)
    for logger_instance in _loggers.values():
        logger_instance.level = level_upper
        stdlib_logger = logging.getLogger(logger_instance.name)
        if stdlib_logger.handlers:
            stdlib_logger.setLevel(numeric)
            for handler in stdlib_logger.handlers:
                # Keep the file handler pinned at ERROR
                if not isinstance(handler, logging.FileHandler):
                    handler.setLevel(numeric)
