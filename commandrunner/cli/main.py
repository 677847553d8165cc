"""Main CLI entry point for commandrunner."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
from pydantic import BaseModel, Field
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..core.actions import Terminal, coerce_action
from ..core.config import get_config, load_config
from ..core.deadlines import to_seconds
from ..core.errors import CommandRunnerError, ProcessStartupError
from ..core.log import configure_logging, get_logger
from ..core.process import ProcessSupervisor
from ..core.types import SpawnOptions
from ..utils.output import write_stderr, write_stdout


class GlobalCliOptions(BaseModel):
    """Global CLI options that can be used across all commands."""

    verbose: int = Field(0, description="Increase verbosity level")
    config_file: Optional[Path] = Field(None, description="Configuration file path")
    log_level: str = Field(
        "WARNING", description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )


app = typer.Typer(
    name="commandrunner",
    help="Run a command to completion under escalating timeouts",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)
console = Console(stderr=True)
logger = get_logger(__name__)

EXIT_USAGE = 2
EXIT_SPAWN_FAILED = 127


@app.callback()
def main(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Increase verbosity level"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR) - explicit level",
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file path (YAML)"
    ),
) -> None:
    """commandrunner: supervise one command with deadlines."""
    if verbose > 0 and log_level is not None:
        console.print("[red]Error: Cannot specify both --verbose and --log-level[/red]")
        raise typer.Exit(EXIT_USAGE)

    if log_level is None:
        resolved_log_level = (
            "DEBUG" if verbose >= 2 else "INFO" if verbose == 1 else None
        )
    else:
        resolved_log_level = log_level.upper()

    try:
        config = load_config(config_file=config_file)
    except CommandRunnerError as e:
        console.print(f"[red]Error: {escape(e.message)}[/red]")
        raise typer.Exit(EXIT_USAGE) from e

    cli_options = GlobalCliOptions(
        verbose=verbose,
        config_file=config_file,
        log_level=resolved_log_level or config.log_level,
    )
    ctx.ensure_object(dict)
    ctx.obj["cli_options"] = cli_options

    configure_logging(
        level=cli_options.log_level, enable_console=True, enable_json=False
    )


def _parse_assignment(value: str, option: str) -> Tuple[str, str]:
    key, sep, rest = value.partition("=")
    if not sep or not key:
        raise typer.BadParameter(f"expected KEY=VALUE, got {value!r}", param_hint=option)
    return key, rest


def build_timeout_spec(
    timeout: Optional[float], actions: List[str]
) -> Optional[Any]:
    """Combine --timeout and --action values into a timeout specification."""
    if not actions:
        return timeout
    pairs = []
    if timeout is not None:
        pairs.append((timeout, Terminal(get_config().kill_signum)))
    for spec in actions:
        seconds, signal_spec = _parse_assignment(spec, "--action")
        try:
            pairs.append((to_seconds(float(seconds)), coerce_action(signal_spec)))
        except ValueError as e:
            raise typer.BadParameter(
                f"invalid seconds in {spec!r}", param_hint="--action"
            ) from e
    return pairs


def build_environment_overlay(assignments: List[str]) -> Dict[str, str]:
    """Turn repeated --env KEY=VALUE options into a mapping."""
    return dict(_parse_assignment(item, "--env") for item in assignments)


@app.command()
def run(
    command: List[str] = typer.Argument(
        ..., help="Command and its arguments. Put -- before the command's own options."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Kill the command after this many seconds"
    ),
    action: List[str] = typer.Option(
        [], "--action", "-a", help="Escalation step SECONDS=SIGNAL, repeatable"
    ),
    env: List[str] = typer.Option(
        [], "--env", "-e", help="Environment variable KEY=VALUE, repeatable"
    ),
    split_stderr: bool = typer.Option(
        False, "--split-stderr", help="Capture stderr separately instead of merging"
    ),
    cwd: Optional[Path] = typer.Option(None, "--cwd", help="Working directory"),
    process_group: bool = typer.Option(
        False, "--process-group", help="Signal the command's whole process group"
    ),
    shell: bool = typer.Option(
        False, "--shell", help="Join the arguments and run them through the shell"
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Write spawn/action/exit lines to stderr"
    ),
) -> None:
    """Run COMMAND and forward its output; exit with its exit status."""
    environment = build_environment_overlay(env)
    supervisor = ProcessSupervisor(get_config())
    target: Any = " ".join(command) if shell else list(command)

    try:
        timeout_spec = build_timeout_spec(timeout, action)
        options = SpawnOptions(cwd=cwd, process_group=process_group)
        result = supervisor.run(
            target,
            timeout=timeout_spec,
            environment=environment,
            options=options,
            split_stderr=split_stderr,
            debug_log=sys.stderr if debug else None,
        )
    except ProcessStartupError as e:
        console.print(f"[red]Error: {escape(e.message)}[/red]")
        raise typer.Exit(EXIT_SPAWN_FAILED) from e
    except CommandRunnerError as e:
        console.print(f"[red]Error: {escape(e.message)}[/red]")
        raise typer.Exit(EXIT_USAGE) from e

    write_stdout(result.output)
    if result.stderr is not None:
        write_stderr(result.stderr)
    logger.info("Command %s", result.status)

    if result.term_signal is not None:
        raise typer.Exit(128 + result.term_signal)
    raise typer.Exit(result.exit_code or 0)


@app.command()
def version() -> None:
    """Show version information."""
    from .. import __version__

    table = Table(title="commandrunner Version Information")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")
    table.add_row("commandrunner", __version__)
    table.add_row("Python", sys.version.split()[0])
    Console().print(table)


@app.command()
def config(ctx: typer.Context) -> None:
    """Show current configuration."""
    cli_options: GlobalCliOptions = ctx.obj["cli_options"]
    current_config = get_config()
    table = Table(title="commandrunner Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Poll Interval", f"{current_config.poll_interval}s")
    table.add_row("Read Chunk Size", f"{current_config.read_chunk_size} bytes")
    table.add_row("Terminal Signal", current_config.kill_signal)
    table.add_row("Log Level", cli_options.log_level)
    table.add_row("Config File", str(cli_options.config_file or "-"))
    Console().print(table)


if __name__ == "__main__":
    app()
