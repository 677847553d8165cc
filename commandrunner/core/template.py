"""Reusable command templates.

A template binds a fixed command prefix and defaults once, then runs
sub-commands through the process supervisor::

    git = create(["sudo", "git"], timeout=10, allowed_sub_commands=["pull", "push"])
    git.run("pull", "origin", "main")
    git.run("pull", "origin", "main", timeout=2)  # override the default timeout
    git.run("status")  # raises SubCommandNotAllowedError
"""

import os
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .deadlines import parse_timeout
from .debug_log import DebugLogTarget
from .errors import SubCommandNotAllowedError, UsageError
from .process import Environment, ProcessSupervisor
from .types import RunResult, SpawnOptions


def stringify_argument(value: Any) -> str:
    """Render one sub-argument for the argument vector."""
    if isinstance(value, str):
        return value
    if isinstance(value, Enum):
        return value.value if isinstance(value.value, str) else value.name
    if isinstance(value, (bytes, os.PathLike)):
        return os.fsdecode(value)
    return str(value)


def _strict_member(value: Any, allowed: Iterable[Any]) -> bool:
    """Membership by type and value: "test" and an enum member TEST differ."""
    return any(type(entry) is type(value) and entry == value for entry in allowed)


class CommandTemplate:
    """A command prefix with default timeout, environment and allow-list.

    Configuration is read-only after construction; every ``run`` spawns an
    independent child.
    """

    def __init__(
        self,
        fixed_argv: Sequence[Any],
        timeout: Any = None,
        environment: Optional[Mapping[str, Optional[str]]] = None,
        allowed_sub_commands: Optional[Iterable[Any]] = None,
        debug_log: DebugLogTarget = None,
        split_stderr: bool = False,
        options: Optional[SpawnOptions] = None,
        supervisor: Optional[ProcessSupervisor] = None,
    ) -> None:
        if not isinstance(fixed_argv, (list, tuple)):
            raise UsageError(
                "First argument must be a list of command line args. "
                f"Found {fixed_argv!r}"
            )
        if not fixed_argv:
            raise UsageError("Command template needs at least the program name")
        for arg in fixed_argv:
            if not isinstance(arg, (str, bytes, os.PathLike)):
                raise UsageError(
                    f"Command template arguments must be strings or paths, got {arg!r}"
                )

        parse_timeout(timeout)  # fail at construction, not on first run
        self._fixed_argv: Tuple[str, ...] = tuple(os.fsdecode(arg) for arg in fixed_argv)
        self._timeout = timeout
        self._environment: Mapping[str, Optional[str]] = MappingProxyType(
            dict(environment or {})
        )
        self._allowed_sub_commands: Tuple[Any, ...] = tuple(allowed_sub_commands or ())
        self._debug_log = debug_log
        self._split_stderr = split_stderr
        self._options = options if options is not None else SpawnOptions()
        self._supervisor = supervisor if supervisor is not None else ProcessSupervisor()

    @property
    def fixed_argv(self) -> Tuple[str, ...]:
        return self._fixed_argv

    @property
    def timeout(self) -> Any:
        return self._timeout

    @property
    def environment(self) -> Mapping[str, Optional[str]]:
        return self._environment

    @property
    def allowed_sub_commands(self) -> Tuple[Any, ...]:
        return self._allowed_sub_commands

    @property
    def options(self) -> SpawnOptions:
        return self._options

    def run(
        self,
        *sub_args: Any,
        timeout: Any = None,
        environment: Optional[Environment] = None,
    ) -> RunResult:
        """Run the template with extra sub-arguments.

        Sub-arguments may be given loose (``run("pull", "origin")``) or as a
        single list (``run(["pull", "origin"])``), never both.

        Args:
            sub_args: Arguments appended to the fixed prefix
            timeout: Overrides the template's default timeout when not None
            environment: Merged over the template's default environment

        Raises:
            UsageError: if the sub-arguments mix boxed and loose forms
            SubCommandNotAllowedError: if the first sub-argument is not allowed
        """
        args = self._unbox(sub_args)
        if args and self._allowed_sub_commands and not _strict_member(
            args[0], self._allowed_sub_commands
        ):
            raise SubCommandNotAllowedError(
                f"Illegal sub command {args[0]!r}. "
                f"Expected one of {list(self._allowed_sub_commands)!r}",
                sub_command=args[0],
                allowed=self._allowed_sub_commands,
            )

        argv = list(self._fixed_argv) + [stringify_argument(arg) for arg in args]
        merged_env: Dict[str, Optional[str]] = dict(self._environment)
        merged_env.update(environment or {})
        return self._supervisor.run(
            argv,
            timeout=timeout if timeout is not None else self._timeout,
            environment=merged_env,
            options=self._options,
            split_stderr=self._split_stderr,
            debug_log=self._debug_log,
        )

    @staticmethod
    def _unbox(sub_args: Tuple[Any, ...]) -> List[Any]:
        if sub_args and isinstance(sub_args[0], (list, tuple)):
            if len(sub_args) > 1:
                raise UsageError(
                    f"Unsupported args list length: {len(sub_args)}. "
                    "Pass either one list or loose arguments"
                )
            args = list(sub_args[0])
        else:
            args = list(sub_args)
        if any(isinstance(arg, (list, tuple)) for arg in args):
            raise UsageError("Sub-arguments cannot contain nested lists")
        return args

    def __repr__(self) -> str:
        return (
            f"CommandTemplate({list(self._fixed_argv)!r}, timeout={self._timeout!r}, "
            f"allowed_sub_commands={list(self._allowed_sub_commands)!r})"
        )


def create(
    fixed_argv: Sequence[Any],
    timeout: Any = None,
    environment: Optional[Mapping[str, Optional[str]]] = None,
    allowed_sub_commands: Optional[Iterable[Any]] = None,
    debug_log: DebugLogTarget = None,
    split_stderr: bool = False,
    options: Optional[SpawnOptions] = None,
) -> CommandTemplate:
    """Create a command template. See CommandTemplate."""
    return CommandTemplate(
        fixed_argv,
        timeout=timeout,
        environment=environment,
        allowed_sub_commands=allowed_sub_commands,
        debug_log=debug_log,
        split_stderr=split_stderr,
        options=options,
    )
