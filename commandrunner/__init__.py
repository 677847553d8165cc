"""
commandrunner: run a child process to completion under escalating timeouts.

Spawns one command, drains its output without blocking, fires timeout actions
(signals or callbacks) in deadline order, and always reaps the child and
closes its pipes before returning.
"""

__version__ = "1.0.0"

from .core.actions import Action, Callback, Signal, Terminal
from .core.debug_log import (
    default_debug_log,
    reset_default_debug_log,
    set_default_debug_log,
)
from .core.enums import StreamTarget
from .core.errors import (
    CommandRunnerError,
    ConfigurationError,
    InvalidTimeoutSpecError,
    ProcessStartupError,
    SubCommandNotAllowedError,
    UsageError,
)
from .core.process import ProcessSupervisor, run
from .core.template import CommandTemplate, create
from .core.types import ExitStatus, RunResult, RunnerConfig, SpawnOptions

__all__ = [
    "__version__",
    "run",
    "create",
    "CommandTemplate",
    "ProcessSupervisor",
    "Action",
    "Callback",
    "Signal",
    "Terminal",
    "StreamTarget",
    "SpawnOptions",
    "RunnerConfig",
    "RunResult",
    "ExitStatus",
    "CommandRunnerError",
    "ConfigurationError",
    "UsageError",
    "InvalidTimeoutSpecError",
    "SubCommandNotAllowedError",
    "ProcessStartupError",
    "set_default_debug_log",
    "reset_default_debug_log",
    "default_debug_log",
]
