"""Error hierarchy for the commandrunner package."""

from typing import Optional, Dict, Any, Sequence


class CommandRunnerError(Exception):
    """Base exception for all commandrunner errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Configuration Errors
class ConfigurationError(CommandRunnerError):
    """Error in runner configuration."""


# Usage Errors (raised before any process is spawned)
class UsageError(CommandRunnerError):
    """Malformed command, argument vector or sub-argument boxing."""


class InvalidTimeoutSpecError(UsageError):
    """Timeout specification has a bad duration or action."""

    def __init__(self, message: str, value: Any = None,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.value = value


class SubCommandNotAllowedError(UsageError):
    """Sub-command is not in the template's allow-list."""

    def __init__(self, message: str, sub_command: Any, allowed: Sequence[Any],
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.sub_command = sub_command
        self.allowed = tuple(allowed)


# Process Errors
class ProcessError(CommandRunnerError):
    """Base class for process-related errors."""


class ProcessStartupError(ProcessError):
    """The child process could not be spawned."""
