"""Caller-facing debug sinks.

A debug sink receives single lines of text describing what a run did: one
line at spawn, one per fired action and one at exit. Any of the following
can be passed wherever a ``debug_log`` is accepted:

* a text stream (anything with ``write``), e.g. ``sys.stderr`` or an open file
* a ``logging.Logger``, which receives the lines at DEBUG level
* a callable taking one string
* ``None`` for the process-wide default (see below)

The process-wide default is explicit state. ``set_default_debug_log`` installs
it, ``reset_default_debug_log`` tears it down, and ``default_debug_log`` does
both around a ``with`` block. Without a default, lines go nowhere.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Protocol, TextIO, Union


class DebugSink(Protocol):
    """Anything accepting single lines of debug text."""

    def line(self, text: str) -> None:
        """Emit one line (without trailing newline)."""


class NullDebugSink:
    """Discards every line."""

    def line(self, text: str) -> None:
        pass


class StreamDebugSink:
    """Writes newline-terminated lines to a text stream."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def line(self, text: str) -> None:
        with self._lock:
            self._stream.write(text + "\n")
            flush = getattr(self._stream, "flush", None)
            if flush is not None:
                flush()


class LoggerDebugSink:
    """Forwards lines to a logger at DEBUG level."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def line(self, text: str) -> None:
        self._logger.debug(text)


class CallableDebugSink:
    """Forwards lines to a plain function."""

    def __init__(self, fn: Callable[[str], Any]) -> None:
        self._fn = fn

    def line(self, text: str) -> None:
        self._fn(text)


DebugLogTarget = Union[DebugSink, TextIO, logging.Logger, Callable[[str], Any], None]


def as_debug_sink(target: DebugLogTarget) -> Optional[DebugSink]:
    """Wrap a debug log target in a sink. Returns None for None."""
    if target is None:
        return None
    if isinstance(target, (NullDebugSink, StreamDebugSink, LoggerDebugSink,
                           CallableDebugSink)):
        return target
    if isinstance(target, logging.Logger):
        return LoggerDebugSink(target)
    if hasattr(target, "write"):
        return StreamDebugSink(target)
    if callable(getattr(target, "line", None)):
        return target
    if callable(target):
        return CallableDebugSink(target)
    raise TypeError(
        f"Unsupported debug log target '{type(target).__name__}'. "
        "Must be a text stream, logger, callable or None"
    )


class DebugLogManager:
    """Holds the process-wide default debug sink."""

    def __init__(self) -> None:
        self._default: Optional[DebugSink] = None
        self._lock = threading.Lock()

    def set_default(self, target: DebugLogTarget) -> None:
        sink = as_debug_sink(target)
        with self._lock:
            self._default = sink

    def get_default(self) -> Optional[DebugSink]:
        with self._lock:
            return self._default

    def reset(self) -> None:
        with self._lock:
            self._default = None

    def resolve(self, target: DebugLogTarget) -> DebugSink:
        """Sink for one run: the explicit target, else the default, else null."""
        sink = as_debug_sink(target)
        if sink is None:
            sink = self.get_default()
        return sink if sink is not None else NullDebugSink()


_debug_log_manager = DebugLogManager()


def set_default_debug_log(target: DebugLogTarget) -> None:
    """Install the process-wide default debug sink."""
    _debug_log_manager.set_default(target)


def get_default_debug_log() -> Optional[DebugSink]:
    """Current process-wide default debug sink, if any."""
    return _debug_log_manager.get_default()


def reset_default_debug_log() -> None:
    """Remove the process-wide default debug sink."""
    _debug_log_manager.reset()


@contextmanager
def default_debug_log(target: DebugLogTarget) -> Iterator[Optional[DebugSink]]:
    """Install a default debug sink for the duration of a ``with`` block."""
    previous = _debug_log_manager.get_default()
    _debug_log_manager.set_default(target)
    try:
        yield _debug_log_manager.get_default()
    finally:
        _debug_log_manager.set_default(previous)


def resolve_debug_log(target: DebugLogTarget) -> DebugSink:
    """Sink to use for one run."""
    return _debug_log_manager.resolve(target)
