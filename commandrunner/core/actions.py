"""Escalation actions fired when a deadline passes.

An action is one of three variants:

* ``Signal``   - deliver a named or numbered signal to the child
* ``Terminal`` - the implicit action of a bare numeric timeout (a ``Signal``
                 fixed to the kill signal)
* ``Callback`` - call user code with the child's pid

Values are validated when the action is built, so a deadline sequence can
only ever hold one of these.
"""

import signal
from dataclasses import dataclass
from typing import Any, Callable, Union

from .errors import InvalidTimeoutSpecError

SignalLike = Union[int, str, signal.Signals]


def resolve_signal(value: SignalLike) -> int:
    """Resolve a signal name or number to a signal number.

    Names are case-insensitive and may omit the ``SIG`` prefix ("kill",
    "TERM", "SIGHUP"). Signal 0 is accepted: it probes for the process
    without affecting it.

    Raises:
        InvalidTimeoutSpecError: if the value names no signal on this platform
    """
    if isinstance(value, bool):
        raise InvalidTimeoutSpecError(
            f"Unsupported signal value {value!r}", value=value
        )
    if isinstance(value, signal.Signals):
        return int(value)
    if isinstance(value, int):
        if value == 0 or value in signal.valid_signals():
            return value
        raise InvalidTimeoutSpecError(f"Unknown signal number {value}", value=value)
    if isinstance(value, str):
        name = value.strip().upper()
        if name.isdigit():
            return resolve_signal(int(name))
        if not name.startswith("SIG"):
            name = "SIG" + name
        try:
            return int(signal.Signals[name])
        except KeyError:
            raise InvalidTimeoutSpecError(
                f"Unknown signal name {value!r}", value=value
            ) from None
    raise InvalidTimeoutSpecError(
        f"Unsupported signal type '{type(value).__name__}'. Must be int or str",
        value=value,
    )


def signal_name(signum: int) -> str:
    """Human-readable name for a signal number."""
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


@dataclass(frozen=True)
class Signal:
    """Deliver a signal to the child."""

    signum: SignalLike

    def __post_init__(self) -> None:
        object.__setattr__(self, "signum", resolve_signal(self.signum))

    @property
    def name(self) -> str:
        return signal_name(self.signum)

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.name})"


@dataclass(frozen=True)
class Terminal(Signal):
    """Default action for a bare numeric timeout."""

    signum: SignalLike = signal.SIGKILL


@dataclass(frozen=True)
class Callback:
    """Call user code with the child's pid.

    The callable runs synchronously inside the supervision loop. If it raises,
    the child is killed and reaped and the exception is re-raised to the
    caller of ``run``.
    """

    fn: Callable[[int], Any]

    def __post_init__(self) -> None:
        if not callable(self.fn):
            raise InvalidTimeoutSpecError(
                f"Callback action must be callable, got '{type(self.fn).__name__}'",
                value=self.fn,
            )

    def __call__(self, pid: int) -> Any:
        return self.fn(pid)

    def __str__(self) -> str:
        name = getattr(self.fn, "__qualname__", None) or repr(self.fn)
        return f"Callback({name})"


Action = Union[Signal, Callback]


def coerce_action(value: Any) -> Action:
    """Turn an action-like value into an Action.

    Accepts an Action, a signal name or number, or a callable taking the pid.
    """
    if isinstance(value, (Signal, Callback)):
        return value
    if isinstance(value, (int, str)) and not isinstance(value, bool):
        return Signal(value)
    if callable(value):
        return Callback(value)
    raise InvalidTimeoutSpecError(
        f"Unsupported action type '{type(value).__name__}'. "
        "Must be a signal name, signal number, callable or Action",
        value=value,
    )
