"""Core supervision components."""

from .actions import Action, Callback, Signal, Terminal
from .types import ExitStatus, RunResult, RunnerConfig, SpawnOptions

__all__ = [
    "Action",
    "Callback",
    "Signal",
    "Terminal",
    "ExitStatus",
    "RunResult",
    "RunnerConfig",
    "SpawnOptions",
]
