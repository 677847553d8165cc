"""Core type definitions for commandrunner."""

import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .actions import Action, resolve_signal, signal_name
from .enums import StreamTarget
from .errors import ConfigurationError, InvalidTimeoutSpecError, UsageError


class SpawnOptions(BaseModel):
    """How the child's standard streams and process attributes are set up."""

    model_config = ConfigDict(frozen=True)

    stdout: StreamTarget = StreamTarget.CAPTURE
    stderr: StreamTarget = StreamTarget.MERGE
    stdin: StreamTarget = StreamTarget.INHERIT
    cwd: Optional[Path] = None
    process_group: bool = False  # new session; signals go to the whole group
    umask: Optional[int] = None

    @model_validator(mode="after")
    def validate_streams(self) -> "SpawnOptions":
        """Reject stream targets that make no sense for the stream."""
        if self.stdout == StreamTarget.MERGE:
            raise UsageError("stdout cannot be merged into itself")
        if self.stdin not in (StreamTarget.INHERIT, StreamTarget.DISCARD):
            raise UsageError(f"stdin must be INHERIT or DISCARD, got {self.stdin.name}")
        return self

    @property
    def split_stderr(self) -> bool:
        return self.stderr == StreamTarget.CAPTURE

    def with_split_stderr(self) -> "SpawnOptions":
        """Copy of these options capturing stderr into its own buffer."""
        return self.model_copy(update={"stderr": StreamTarget.CAPTURE})

    def __str__(self) -> str:
        parts = [f"stdout={self.stdout.value}", f"stderr={self.stderr.value}"]
        if self.stdin != StreamTarget.INHERIT:
            parts.append(f"stdin={self.stdin.value}")
        if self.cwd is not None:
            parts.append(f"cwd={self.cwd}")
        if self.process_group:
            parts.append("process_group=True")
        if self.umask is not None:
            parts.append(f"umask={self.umask:#o}")
        return "{" + ", ".join(parts) + "}"


class RunnerConfig(BaseModel):
    """Tunables for the supervision loop."""

    poll_interval: float = 0.1
    read_chunk_size: int = 4096
    kill_signal: str = "KILL"
    log_level: str = "WARNING"

    @field_validator("kill_signal", mode="before")
    @classmethod
    def normalize_kill_signal(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def validate_config(self) -> "RunnerConfig":
        """Validate configuration values."""
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if self.read_chunk_size <= 0:
            raise ConfigurationError("read_chunk_size must be positive")
        try:
            resolve_signal(self.kill_signal)
        except InvalidTimeoutSpecError as e:
            raise ConfigurationError(f"Invalid kill_signal: {e}") from e
        return self

    @property
    def kill_signum(self) -> int:
        return resolve_signal(self.kill_signal)


@dataclass(frozen=True)
class ExitStatus:
    """How the child ended: an exit code or a terminating signal, never both."""

    exit_code: Optional[int] = None
    term_signal: Optional[int] = None

    @classmethod
    def from_returncode(cls, returncode: int) -> "ExitStatus":
        """Decode ``Popen.returncode`` (negative means killed by a signal)."""
        if returncode < 0:
            return cls(term_signal=-returncode)
        return cls(exit_code=returncode)

    @property
    def signaled(self) -> bool:
        return self.term_signal is not None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def returncode(self) -> int:
        """Back to ``Popen.returncode`` convention."""
        if self.term_signal is not None:
            return -self.term_signal
        return self.exit_code if self.exit_code is not None else 0

    def __str__(self) -> str:
        if self.term_signal is not None:
            return f"terminated by {signal_name(self.term_signal)}"
        return f"exited with code {self.exit_code}"


@dataclass(frozen=True)
class RunResult:
    """Everything a finished run produced."""

    output: bytes
    status: ExitStatus
    pid: int
    stderr: Optional[bytes] = None
    duration: float = 0.0
    fired_actions: Tuple[Action, ...] = field(default_factory=tuple)

    @property
    def exit_code(self) -> Optional[int]:
        return self.status.exit_code

    @property
    def term_signal(self) -> Optional[int]:
        return self.status.term_signal

    @property
    def success(self) -> bool:
        return self.status.success

    @property
    def killed(self) -> bool:
        return self.status.term_signal == signal.SIGKILL

    def text(self, encoding: str = "utf-8", errors: str = "replace") -> str:
        """Decoded primary output."""
        return self.output.decode(encoding, errors)

    def stderr_text(self, encoding: str = "utf-8", errors: str = "replace") -> Optional[str]:
        """Decoded split stderr, or None when stderr was not split."""
        if self.stderr is None:
            return None
        return self.stderr.decode(encoding, errors)
