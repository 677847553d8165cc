"""Process supervision with escalating deadlines and guaranteed cleanup.

One ``run`` call owns exactly one child process. The call:

1. turns the timeout specification into an ordered deadline sequence,
2. spawns the child with its output on non-blocking pipes,
3. polls for exit while draining output, firing each deadline's action once
   its time passes,
4. reaps the child and closes every pipe before returning or raising.

Output is drained on every tick, so a chatty child never blocks on a full
pipe while the supervisor waits for it to exit.
"""

import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .actions import Action, Callback, Terminal
from .config import get_config
from .deadlines import DeadlinePoint, build_deadline_sequence, parse_timeout
from .debug_log import DebugLogTarget, DebugSink, resolve_debug_log
from .drainer import StreamDrainer
from .enums import StreamTarget
from .errors import ProcessStartupError, UsageError
from .log import get_logger, log_context, log_process_event
from .types import ExitStatus, RunResult, RunnerConfig, SpawnOptions

logger = get_logger(__name__)

Command = Union[str, List[str]]
Environment = Mapping[str, Optional[str]]

_STREAM_TARGETS = {
    StreamTarget.CAPTURE: subprocess.PIPE,
    StreamTarget.DISCARD: subprocess.DEVNULL,
    StreamTarget.INHERIT: None,
}


def _argv_item(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, os.PathLike)):
        return os.fsdecode(value)
    raise UsageError(
        f"Command arguments must be strings or paths, got {type(value).__name__}: {value!r}"
    )


def normalize_command(args: Sequence[Any]) -> Command:
    """Resolve the accepted command forms.

    * ``("echo hello",)`` - one string, run through the shell
    * ``(["echo", "hello"],)`` - an argument vector, no shell
    * ``("echo", "hello")`` - loose strings, boxed into an argument vector
    """
    if not args:
        raise UsageError("No command given")
    if len(args) == 1:
        only = args[0]
        if isinstance(only, str):
            if not only.strip():
                raise UsageError("Empty command string")
            return only
        if isinstance(only, (list, tuple)):
            if not only:
                raise UsageError("Empty argument vector")
            return [_argv_item(item) for item in only]
        return [_argv_item(only)]
    if any(isinstance(arg, (list, tuple)) for arg in args):
        raise UsageError("Cannot mix an argument list with loose arguments")
    return [_argv_item(arg) for arg in args]


def build_environment(environment: Optional[Environment]) -> Optional[Dict[str, str]]:
    """Overlay ``environment`` on the current process environment.

    A value of None removes the variable. Returns None (inherit unchanged)
    when there is nothing to overlay.
    """
    if not environment:
        return None
    env = dict(os.environ)
    for key, value in environment.items():
        if not isinstance(key, str):
            raise UsageError(f"Environment keys must be strings, got {key!r}")
        if value is None:
            env.pop(key, None)
        elif isinstance(value, str):
            env[key] = value
        else:
            raise UsageError(
                f"Environment value for {key} must be a string or None, got {value!r}"
            )
    return env


@dataclass
class SupervisedProcess:
    """The child and the pipes of one run."""

    popen: subprocess.Popen
    drainer: StreamDrainer
    options: SpawnOptions
    started_at: float
    fired: List[Action] = field(default_factory=list)

    @property
    def pid(self) -> int:
        return self.popen.pid

    def send_signal(self, signum: int) -> None:
        """Deliver a signal, ignoring a child that is already gone."""
        if self.popen.returncode is not None:
            return
        try:
            if self.options.process_group:
                os.killpg(self.pid, signum)
            else:
                self.popen.send_signal(signum)
        except ProcessLookupError:
            logger.debug("Process %s already exited before signal %s", self.pid, signum)


@dataclass(frozen=True)
class CallbackFailure:
    """A callback action raised; the child has been killed and reaped."""

    action: Callback
    error: Exception


class ProcessSupervisor:
    """Runs commands to completion under a deadline sequence.

    The supervisor itself holds only configuration, so one instance can be
    shared by any number of sequential or concurrent calls.
    """

    def __init__(self, config: Optional[RunnerConfig] = None) -> None:
        self._config = config

    @property
    def config(self) -> RunnerConfig:
        return self._config if self._config is not None else get_config()

    def run(
        self,
        *command: Any,
        timeout: Any = None,
        environment: Optional[Environment] = None,
        options: Optional[SpawnOptions] = None,
        split_stderr: bool = False,
        debug_log: DebugLogTarget = None,
    ) -> RunResult:
        """Run a command and block until it is done.

        Args:
            command: A shell string, an argument list, or loose argument strings
            timeout: None, seconds until the terminal action, or a mapping
                (or pairs) of seconds to actions
            environment: Variables overlaid on the current environment
            options: Stream and process options (default: stderr merged into stdout)
            split_stderr: Capture stderr into its own buffer
            debug_log: Sink for spawn/action/exit lines (default: process-wide sink)

        Returns:
            RunResult with the captured output and exit status

        Raises:
            InvalidTimeoutSpecError: if the timeout is malformed (nothing spawned)
            UsageError: if the command or environment is malformed (nothing spawned)
            ProcessStartupError: if the child could not be spawned
            Exception: whatever a callback action raised, after the child was
                killed and reaped
        """
        config = self.config
        argv = normalize_command(command)
        entries = parse_timeout(timeout, Terminal(config.kill_signum))
        options = options if options is not None else SpawnOptions()
        if split_stderr:
            options = options.with_split_stderr()
        env = build_environment(environment)
        sink = resolve_debug_log(debug_log)

        started_at = time.monotonic()
        sequence = build_deadline_sequence(entries, started_at)
        popen = self._spawn(argv, env, options)
        drainer: Optional[StreamDrainer] = None
        try:
            drainer = StreamDrainer(
                {"stdout": popen.stdout, "stderr": popen.stderr},
                chunk_size=config.read_chunk_size,
            )
            proc = SupervisedProcess(popen, drainer, options, started_at)
            sink.line(
                f"commandrunner spawn: args={argv!r}, timeout={timeout!r}, "
                f"options={options}, PID: {popen.pid}"
            )
            with log_context(run_pid=popen.pid):
                log_process_event(
                    logger, "run.spawn", pid=popen.pid, argv=argv, timeout=repr(timeout)
                )
                outcome = self._supervise(proc, sequence, sink, config)
        finally:
            self._release(popen, drainer)

        if isinstance(outcome, CallbackFailure):
            raise outcome.error
        return outcome

    def _spawn(
        self, argv: Command, env: Optional[Dict[str, str]], options: SpawnOptions
    ) -> subprocess.Popen:
        stderr = (
            subprocess.STDOUT
            if options.stderr == StreamTarget.MERGE
            else _STREAM_TARGETS[options.stderr]
        )
        kwargs: Dict[str, Any] = {
            "stdin": _STREAM_TARGETS[options.stdin],
            "stdout": _STREAM_TARGETS[options.stdout],
            "stderr": stderr,
            "env": env,
            "cwd": options.cwd,
            "shell": isinstance(argv, str),
            "start_new_session": options.process_group,
        }
        if options.umask is not None:
            kwargs["umask"] = options.umask
        try:
            return subprocess.Popen(argv, **kwargs)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            log_process_event(logger, "run.spawn_failed", argv=argv, error=str(e))
            raise ProcessStartupError(
                f"Failed to start command {argv!r}: {e}", details={"command": argv}
            ) from e

    def _supervise(
        self,
        proc: SupervisedProcess,
        sequence: List[DeadlinePoint],
        sink: DebugSink,
        config: RunnerConfig,
    ) -> Union[RunResult, CallbackFailure]:
        tick = config.poll_interval
        for point in sequence:
            while True:
                if proc.popen.poll() is not None:
                    return self._finish(proc, sink, tick)
                remaining = point.fire_at - time.monotonic()
                if remaining <= 0:
                    break
                self._wait(proc, min(tick, remaining))
            failure = self._fire(proc, point.action, sink)
            if failure is not None:
                return failure

        # Every deadline has fired. Keep draining until the pipes close, and
        # only then block on the child.
        while proc.popen.poll() is None:
            if proc.drainer.exhausted:
                proc.popen.wait()
            else:
                proc.drainer.drain(tick)
        return self._finish(proc, sink, tick)

    def _wait(self, proc: SupervisedProcess, timeout: float) -> None:
        """Spend up to ``timeout`` draining output, or waiting on the child once
        there is no open pipe left to drain."""
        if proc.drainer.exhausted:
            try:
                proc.popen.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                pass
        else:
            proc.drainer.drain(timeout)

    def _fire(
        self, proc: SupervisedProcess, action: Action, sink: DebugSink
    ) -> Optional[CallbackFailure]:
        proc.fired.append(action)
        sink.line(f"commandrunner action: PID: {proc.pid}, action={action}")
        log_process_event(logger, "run.action", pid=proc.pid, action=str(action))
        if isinstance(action, Callback):
            try:
                action(proc.pid)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_process_event(
                    logger, "run.callback_failed", pid=proc.pid, error=repr(e)
                )
                proc.send_signal(signal.SIGKILL)
                proc.popen.wait()
                return CallbackFailure(action, e)
            return None
        proc.send_signal(action.signum)
        return None

    def _finish(self, proc: SupervisedProcess, sink: DebugSink, tick: float) -> RunResult:
        returncode = proc.popen.wait()
        proc.drainer.flush(tick)
        sink.line(f"commandrunner exit: PID: {proc.pid}, code: {returncode}")
        duration = time.monotonic() - proc.started_at
        log_process_event(
            logger, "run.exit", pid=proc.pid, returncode=returncode, duration=duration
        )
        split = proc.options.split_stderr
        return RunResult(
            output=proc.drainer.output("stdout"),
            stderr=proc.drainer.output("stderr") if split else None,
            status=ExitStatus.from_returncode(returncode),
            pid=proc.pid,
            duration=duration,
            fired_actions=tuple(proc.fired),
        )

    def _release(self, popen: subprocess.Popen, drainer: Optional[StreamDrainer]) -> None:
        """Kill and reap a child that is somehow still running, close pipes."""
        try:
            if popen.poll() is None:
                log_process_event(logger, "run.abandoned", pid=popen.pid)
                try:
                    popen.kill()
                except ProcessLookupError:
                    pass
                popen.wait()
        finally:
            if drainer is not None:
                drainer.close()
            else:
                for stream in (popen.stdout, popen.stderr):
                    if stream is not None:
                        stream.close()


_process_supervisor = ProcessSupervisor()


def run(
    *command: Any,
    timeout: Any = None,
    environment: Optional[Environment] = None,
    options: Optional[SpawnOptions] = None,
    split_stderr: bool = False,
    debug_log: DebugLogTarget = None,
) -> RunResult:
    """Run a command under the global configuration. See ProcessSupervisor.run."""
    return _process_supervisor.run(
        *command,
        timeout=timeout,
        environment=environment,
        options=options,
        split_stderr=split_stderr,
        debug_log=debug_log,
    )
