"""Structured logging with JSON file output and rich terminal formatting."""

import logging
import threading
from typing import Any, Dict, Optional, Union, Protocol
from pathlib import Path

from .log_formatters import StructuredFormatter, CommandRunnerRichHandler, _log_context

NAMESPACE = "commandrunner"


class Logger(Protocol):
    """Protocol for logger instances to enable dependency injection."""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log debug message."""

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log info message."""

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log warning message."""

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log error message."""


class LogManager:
    """Central logging configuration and management.

    Loggers handed out by the manager live under the ``commandrunner``
    namespace and never propagate to the root logger, so configuring them
    does not interfere with the host application's logging setup.
    """

    def __init__(self, namespace: str = NAMESPACE) -> None:
        self._namespace = namespace
        self._configured = False
        self._handlers: Dict[str, logging.Handler] = {}
        self._loggers: Dict[str, logging.Logger] = {}
        self._lock = threading.RLock()

    @property
    def configured(self) -> bool:
        """Whether configure() has installed handlers."""
        return self._configured

    def configure(
        self,
        level: Union[int, str] = logging.INFO,
        log_file: Optional[Path] = None,
        enable_json: bool = True,
        enable_console: bool = True,
        console_level: Optional[Union[int, str]] = None,
    ) -> None:
        """Configure logging handlers.

        Reconfiguring replaces the handlers installed by a previous call.
        """
        with self._lock:
            if self._configured:
                self._clear_handlers()

            if enable_json and log_file:
                log_file = Path(log_file)
                log_file.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(log_file)
                json_handler.setFormatter(StructuredFormatter(include_context=True))
                json_handler.setLevel(level)
                self._handlers["json"] = json_handler

            if enable_console:
                console_handler = CommandRunnerRichHandler(
                    show_time=True, show_path=False, markup=False
                )
                console_handler.setLevel(console_level or level)
                self._handlers["console"] = console_handler

            for logger in self._loggers.values():
                self._attach(logger)
            self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        """Get a namespaced logger instance."""
        with self._lock:
            if name == self._namespace or name.startswith(self._namespace + "."):
                full_name = name
            else:
                full_name = f"{self._namespace}.{name}"

            if full_name in self._loggers:
                return self._loggers[full_name]

            logger = logging.getLogger(full_name)
            logger.propagate = False
            logger.setLevel(logging.DEBUG)
            self._attach(logger)
            self._loggers[full_name] = logger
            return logger

    def shutdown(self) -> None:
        """Remove and close all handlers installed by this manager."""
        with self._lock:
            self._clear_handlers()

    def _attach(self, logger: logging.Logger) -> None:
        for handler in self._handlers.values():
            if handler not in logger.handlers:
                logger.addHandler(handler)

    def _clear_handlers(self) -> None:
        for logger in self._loggers.values():
            for handler in self._handlers.values():
                logger.removeHandler(handler)
        for handler in self._handlers.values():
            try:
                handler.close()
            except (OSError, RuntimeError):
                pass  # Ignore handler close errors
        self._handlers.clear()
        self._configured = False


_log_manager = LogManager()


def configure_logging(**kwargs: Any) -> None:
    """Configure the global logging system."""
    _log_manager.configure(**kwargs)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return _log_manager.get_logger(name)


def shutdown_logging() -> None:
    """Shutdown the logging system."""
    _log_manager.shutdown()


def log_event(
    logger: Logger, event_type: str, message: str, **kwargs: Any
) -> None:
    """Log a structured event with context."""
    logger.info(message, extra={"event_type": event_type, **kwargs})


def log_process_event(
    logger: Logger, event: str, pid: Optional[int] = None, **kwargs: Any
) -> None:
    """Log a process-related event."""
    extra: Dict[str, Any] = {"event_type": "process", "process_event": event}
    if pid is not None:
        extra["pid"] = pid
    extra.update(kwargs)
    logger.info("Process %s %s", pid, event, extra=extra)


# Context management shortcuts
def clear_log_context() -> None:
    """Clear current logging context."""
    _log_context.clear_context()


def log_context(**kwargs: Any) -> Any:
    """Context manager for temporary logging context."""
    return _log_context.context(**kwargs)
