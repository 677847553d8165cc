"""Turn a caller's timeout specification into an ordered deadline sequence."""

import math
import numbers
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, List, Tuple, Union

from .actions import Action, Signal, Terminal, coerce_action
from .errors import InvalidTimeoutSpecError

Duration = Union[numbers.Real, Decimal, timedelta]

_NUMBERS = (numbers.Real, Decimal)


@dataclass(frozen=True)
class TimeoutEntry:
    """A validated (relative duration, action) pair."""

    duration: float
    action: Action


@dataclass(frozen=True)
class DeadlinePoint:
    """An action to fire at an absolute ``time.monotonic()`` timestamp."""

    fire_at: float
    action: Action


# Stands in for "wait forever": never reached, and signal 0 is a no-op.
UNBOUNDED_ACTION = Signal(0)


def to_seconds(value: Any) -> float:
    """Validate a duration and convert it to float seconds."""
    if isinstance(value, bool):
        raise InvalidTimeoutSpecError(
            f"Unsupported timeout value {value!r}. Must be a number of seconds",
            value=value,
        )
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, _NUMBERS):
        try:
            seconds = float(value)
        except OverflowError:
            # Too large for a float: a positive value never fires.
            seconds = math.inf if value > 0 else -math.inf
        except ValueError as e:
            raise InvalidTimeoutSpecError(
                f"Timeout value {value!r} is not a number of seconds", value=value
            ) from e
    else:
        raise InvalidTimeoutSpecError(
            f"Unsupported timeout value '{value}' ({type(value).__name__}). "
            "Must be a number of seconds",
            value=value,
        )
    if math.isnan(seconds) or seconds < 0:
        raise InvalidTimeoutSpecError(
            f"Timeout value must be a non-negative number of seconds, got {value!r}",
            value=value,
        )
    return seconds


def parse_timeout(spec: Any, terminal: Action = Terminal()) -> Tuple[TimeoutEntry, ...]:
    """Validate a timeout specification.

    Accepted forms:

    * ``None`` - no deadline (empty result)
    * a duration - fire ``terminal`` after that many seconds
    * a mapping of duration to action-like value
    * an iterable of ``(duration, action)`` pairs, which unlike a mapping may
      repeat a duration

    Entries keep the caller's order; sorting happens when the sequence is
    anchored to a start time.

    Raises:
        InvalidTimeoutSpecError: on any malformed duration or action
    """
    if spec is None:
        return ()
    if isinstance(spec, _NUMBERS + (timedelta,)) and not isinstance(spec, bool):
        return (TimeoutEntry(to_seconds(spec), terminal),)
    if isinstance(spec, Mapping):
        pairs: Iterable[Any] = spec.items()
    elif isinstance(spec, Iterable) and not isinstance(spec, (str, bytes)):
        pairs = spec
    else:
        raise InvalidTimeoutSpecError(
            f"Unsupported type for timeout parameter: {type(spec).__name__}",
            value=spec,
        )

    entries = []
    for pair in pairs:
        try:
            duration, action = pair
        except (TypeError, ValueError):
            raise InvalidTimeoutSpecError(
                f"Timeout entries must be (duration, action) pairs, got {pair!r}",
                value=pair,
            ) from None
        entries.append(TimeoutEntry(to_seconds(duration), coerce_action(action)))
    return tuple(entries)


def build_deadline_sequence(
    entries: Tuple[TimeoutEntry, ...], start: float
) -> List[DeadlinePoint]:
    """Anchor entries to ``start`` and order them by deadline.

    The sort is stable, so entries with equal deadlines fire in the order
    they were given. An empty input yields a single unbounded point.
    """
    if not entries:
        return [DeadlinePoint(math.inf, UNBOUNDED_ACTION)]
    points = [DeadlinePoint(start + entry.duration, entry.action) for entry in entries]
    points.sort(key=lambda point: point.fire_at)
    return points
