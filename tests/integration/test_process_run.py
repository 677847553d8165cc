"""
Integration tests for ProcessSupervisor.run against real child processes.

Children are short python or sh programs. Timing assertions use generous
upper bounds so that loaded machines do not cause spurious failures.
"""

import io
import json
import os
import signal
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import psutil
import pytest

from commandrunner import (
    Callback,
    ProcessStartupError,
    ProcessSupervisor,
    RunnerConfig,
    Signal,
    SpawnOptions,
    StreamTarget,
    default_debug_log,
    run,
)
from commandrunner.core.log import configure_logging, shutdown_logging
from commandrunner.core.log_formatters import _log_context

pytestmark = pytest.mark.integration


def _open_fds() -> int:
    return psutil.Process().num_fds()


class TestBasicRuns:
    """Test runs that finish on their own."""

    def test_argument_vector(self, python_cmd) -> None:
        """Test output and exit code of an argument vector command."""
        result = run(python_cmd("print('hello')"))

        assert result.output == b"hello\n"
        assert result.exit_code == 0
        assert result.term_signal is None
        assert result.success
        assert result.fired_actions == ()

    def test_shell_string(self) -> None:
        """Test a single string runs through the shell."""
        result = run("echo hello && echo world")

        assert result.output == b"hello\nworld\n"
        assert result.exit_code == 0

    def test_loose_arguments(self) -> None:
        """Test loose strings are run without a shell."""
        result = run("echo", "a && b")

        assert result.output == b"a && b\n"

    def test_exit_code(self, python_cmd) -> None:
        """Test a non-zero exit code is reported."""
        result = run(python_cmd("import sys; sys.exit(3)"))

        assert result.exit_code == 3
        assert not result.success

    def test_fast_command_without_timeout(self) -> None:
        """Test a quick command with no deadline returns promptly."""
        start = time.monotonic()
        result = run(["true"])

        assert result.output == b""
        assert result.exit_code == 0
        assert time.monotonic() - start < 5

    def test_stderr_merged_by_default(self, python_cmd) -> None:
        """Test stderr lands in the primary output unless split."""
        code = (
            "import sys; sys.stdout.write('out\\n'); sys.stdout.flush(); "
            "sys.stderr.write('err\\n')"
        )
        result = run(python_cmd(code))

        assert result.output == b"out\nerr\n"
        assert result.stderr is None

    def test_split_stderr(self, python_cmd) -> None:
        """Test stderr is captured separately when split."""
        code = "import sys; sys.stdout.write('out'); sys.stderr.write('err')"
        result = run(python_cmd(code), split_stderr=True)

        assert result.output == b"out"
        assert result.stderr == b"err"
        assert result.stderr_text() == "err"

    def test_discarded_stdout(self, python_cmd) -> None:
        """Test discarded output is not captured."""
        options = SpawnOptions(stdout=StreamTarget.DISCARD)

        result = run(python_cmd("print('x' * 1000)"), options=options)

        assert result.output == b""
        assert result.exit_code == 0

    def test_working_directory(self, python_cmd, tmp_path) -> None:
        """Test the child runs in the requested directory."""
        result = run(
            python_cmd("import os; print(os.getcwd())"),
            options=SpawnOptions(cwd=tmp_path),
        )

        assert os.path.realpath(result.text().strip()) == os.path.realpath(tmp_path)

    def test_large_output_does_not_deadlock(self, python_cmd) -> None:
        """Test output far beyond the pipe buffer is drained while waiting."""
        size = 1024 * 1024
        code = f"import sys; sys.stdout.buffer.write(b'x' * {size})"

        result = run(python_cmd(code), timeout=30)

        assert len(result.output) == size
        assert result.exit_code == 0
        assert result.fired_actions == ()

    def test_binary_output_preserved(self, python_cmd) -> None:
        """Test output bytes are returned unchanged."""
        code = "import sys; sys.stdout.buffer.write(bytes(range(256)))"

        result = run(python_cmd(code))

        assert result.output == bytes(range(256))


class TestEnvironment:
    """Test environment overlays."""

    def test_variables_added(self, python_cmd) -> None:
        """Test overlay variables reach the child next to inherited ones."""
        code = "import os; print(os.environ['CR_TEST_VAR'], 'PATH' in os.environ)"

        result = run(python_cmd(code), environment={"CR_TEST_VAR": "value"})

        assert result.output == b"value True\n"

    def test_variables_removed(self, python_cmd, monkeypatch) -> None:
        """Test a None value unsets an inherited variable."""
        monkeypatch.setenv("CR_UNSET_ME", "present")
        code = "import os; print(os.environ.get('CR_UNSET_ME', 'missing'))"

        inherited = run(python_cmd(code))
        removed = run(python_cmd(code), environment={"CR_UNSET_ME": None})

        assert inherited.output == b"present\n"
        assert removed.output == b"missing\n"
        assert os.environ["CR_UNSET_ME"] == "present"


class TestTimeouts:
    """Test deadline handling."""

    def test_numeric_timeout_kills(self) -> None:
        """Test output before the deadline is kept and the child is killed."""
        start = time.monotonic()

        result = run(
            "echo hello && sleep 5",
            timeout=2,
            options=SpawnOptions(process_group=True),
        )

        elapsed = time.monotonic() - start
        assert result.output == b"hello\n"
        assert result.term_signal == signal.SIGKILL
        assert result.exit_code is None
        assert result.killed
        assert 1.8 <= elapsed < 4.5

    def test_timedelta_timeout(self, python_cmd) -> None:
        """Test a timedelta is accepted as a timeout."""
        result = run(python_cmd("import time; time.sleep(30)"), timeout=timedelta(seconds=0.5))

        assert result.killed
        assert result.duration < 10

    def test_zero_timeout_fires_immediately(self, python_cmd) -> None:
        """Test a zero deadline kills the child straight away."""
        result = run(python_cmd("import time; time.sleep(30)"), timeout=0)

        assert result.killed
        assert result.duration < 10

    def test_child_finishing_first_fires_nothing(self, python_cmd) -> None:
        """Test no action fires when the child exits before its deadline."""
        result = run(python_cmd("print('quick')"), timeout={10: "TERM", 20: "KILL"})

        assert result.output == b"quick\n"
        assert result.exit_code == 0
        assert result.fired_actions == ()

    def test_signal_mapping(self, python_cmd) -> None:
        """Test a TERM deadline ends a child that honours it."""
        result = run(python_cmd("import time; time.sleep(30)"), timeout={1: "TERM", 10: "KILL"})

        assert result.term_signal == signal.SIGTERM
        assert result.fired_actions == (Signal("TERM"),)

    def test_escalation_to_kill(self, python_cmd) -> None:
        """Test KILL follows when the child ignores TERM."""
        code = (
            "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
            "print('ready', flush=True); time.sleep(30)"
        )

        result = run(python_cmd(code), timeout={2: "KILL", 1: "TERM"})

        assert result.output == b"ready\n"
        assert result.term_signal == signal.SIGKILL
        assert result.fired_actions == (Signal("TERM"), Signal("KILL"))

    def test_callbacks_fire_in_order(self, python_cmd) -> None:
        """Test callbacks run in deadline order with the child's pid."""
        calls = []

        result = run(
            python_cmd("import time; time.sleep(1.5)"),
            timeout={
                0.6: lambda pid: calls.append(("second", pid)),
                0.3: lambda pid: calls.append(("first", pid)),
                30: "KILL",
            },
        )

        assert result.exit_code == 0
        assert calls == [("first", result.pid), ("second", result.pid)]
        assert len(result.fired_actions) == 2
        assert all(isinstance(action, Callback) for action in result.fired_actions)

    def test_callback_may_signal_child(self, python_cmd) -> None:
        """Test a callback can act on the pid it is given."""
        result = run(
            python_cmd("import time; time.sleep(30)"),
            timeout={0.5: lambda pid: os.kill(pid, signal.SIGINT), 10: "KILL"},
        )

        # KeyboardInterrupt exits 1, or re-raises SIGINT on newer interpreters.
        assert result.exit_code == 1 or result.term_signal == signal.SIGINT
        assert not result.killed
        assert len(result.fired_actions) == 1

    def test_failing_callback_reaps_child(self, python_cmd) -> None:
        """Test a raising callback surfaces its error after cleanup."""
        seen = []
        fds_before = _open_fds()

        def explode(pid):
            seen.append(pid)
            raise RuntimeError("callback exploded")

        with pytest.raises(RuntimeError, match="callback exploded"):
            run(python_cmd("import time; time.sleep(30)"), timeout={0.3: explode, 10: "KILL"})

        assert len(seen) == 1
        assert not psutil.pid_exists(seen[0])
        assert _open_fds() == fds_before

    def test_descriptors_released(self, python_cmd) -> None:
        """Test normal and killed runs leave no descriptors behind."""
        fds_before = _open_fds()

        run(python_cmd("print('x')"), split_stderr=True)
        run(python_cmd("import time; time.sleep(30)"), timeout=0.2)

        assert _open_fds() == fds_before

    def test_pipe_held_by_grandchild(self) -> None:
        """Test a background process holding the pipe does not block the run."""
        start = time.monotonic()

        result = run("sleep 3 & echo started", timeout=10)

        assert result.output == b"started\n"
        assert result.exit_code == 0
        assert time.monotonic() - start < 10


class TestDebugLog:
    """Test spawn, action and exit lines."""

    def test_lines_for_plain_run(self, python_cmd) -> None:
        """Test a spawn line followed by an exit line."""
        buffer = io.StringIO()

        result = run(python_cmd("pass"), debug_log=buffer)

        lines = buffer.getvalue().splitlines()
        assert len(lines) == 2
        assert lines[0].startswith("commandrunner spawn: args=")
        assert "timeout=None" in lines[0]
        assert lines[0].endswith(f"PID: {result.pid}")
        assert lines[1] == f"commandrunner exit: PID: {result.pid}, code: 0"

    def test_action_lines(self, python_cmd) -> None:
        """Test fired actions are reported between spawn and exit."""
        lines = []

        result = run(
            python_cmd("import time; time.sleep(30)"),
            timeout={0.3: "TERM"},
            debug_log=lines.append,
        )

        assert lines[1] == f"commandrunner action: PID: {result.pid}, action=Signal(SIGTERM)"
        assert lines[2] == f"commandrunner exit: PID: {result.pid}, code: -{int(signal.SIGTERM)}"

    def test_default_debug_log(self, python_cmd) -> None:
        """Test the process-wide default receives lines when none is given."""
        lines = []

        with default_debug_log(lines.append):
            run(python_cmd("pass"))
        run(python_cmd("pass"))

        assert len(lines) == 2


class TestStructuredLogging:
    """Test process events in the JSON log."""

    def test_run_events_carry_pid_context(self, python_cmd, tmp_path) -> None:
        """Test spawn and exit entries are tagged with the run's pid."""
        log_file = tmp_path / "run.jsonl"
        configure_logging(
            level="INFO", log_file=log_file, enable_json=True, enable_console=False
        )

        result = run(python_cmd("pass"))
        shutdown_logging()

        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        by_event = {entry["fields"]["process_event"]: entry for entry in entries}
        assert by_event["run.spawn"]["context"] == {"run_pid": result.pid}
        assert by_event["run.exit"]["context"] == {"run_pid": result.pid}
        assert by_event["run.exit"]["fields"]["returncode"] == 0

    def test_context_is_dropped_after_run(self, python_cmd) -> None:
        """Test the pid context does not leak past the run."""
        result = run(python_cmd("pass"))

        assert result.success
        assert _log_context.get_context() == {}


class TestSpawnFailure:
    """Test children that cannot be started."""

    def test_missing_program(self) -> None:
        """Test an unknown program raises ProcessStartupError."""
        fds_before = _open_fds()

        with pytest.raises(ProcessStartupError) as exc_info:
            run(["/nonexistent/commandrunner-test-binary"])

        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert _open_fds() == fds_before

    def test_missing_working_directory(self, tmp_path) -> None:
        """Test an unusable working directory raises ProcessStartupError."""
        options = SpawnOptions(cwd=tmp_path / "absent")

        with pytest.raises(ProcessStartupError):
            run(["true"], options=options)


class TestSupervisorInstances:
    """Test supervisors with explicit configuration."""

    def test_custom_kill_signal(self, python_cmd) -> None:
        """Test the configured kill signal replaces SIGKILL for bare timeouts."""
        supervisor = ProcessSupervisor(RunnerConfig(kill_signal="TERM"))

        result = supervisor.run(python_cmd("import time; time.sleep(30)"), timeout=0.5)

        assert result.term_signal == signal.SIGTERM

    def test_concurrent_runs(self, python_cmd) -> None:
        """Test one supervisor can serve concurrent runs independently."""
        supervisor = ProcessSupervisor(RunnerConfig(poll_interval=0.05))

        def job(index):
            return supervisor.run(python_cmd(f"print({index})"), timeout=30)

        with ThreadPoolExecutor(max_workers=4) as executor:
            results = list(executor.map(job, range(8)))

        assert [result.output for result in results] == [
            f"{index}\n".encode() for index in range(8)
        ]
