#!/usr/bin/env python3
"""
opencode-loop CLI: drive an agent task through repeated turns until it
reports complete or blocked.

Usage:
    opencode-loop run [OPTIONS] [PROMPT...]
    opencode-loop status
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Never

import typer

from opencode_loop.core.protocols import LoopError
from opencode_loop.infra.io.config import ConfigurationError, LoopConfig
from opencode_loop.infra.io.console_sink import ConsoleEventSink
from opencode_loop.infra.io.log_output.console import Colors, log, set_verbose
from opencode_loop.infra.sigint_guard import InterruptEscalator
from opencode_loop.infra.tools.env import get_user_env_path, load_user_env
from opencode_loop.orchestration.factory import create_orchestrator, open_runtime

if TYPE_CHECKING:
    from opencode_loop.core.models import RunReport

# Bootstrap state: tracks whether bootstrap() has been called
_bootstrapped = False

DEBUG_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def bootstrap() -> None:
    """Initialize environment.

    Idempotent. Loads environment variables from
    ~/.config/opencode-loop/.env so LoopConfig.from_env() sees them.
    """
    global _bootstrapped

    if _bootstrapped:
        return
    load_user_env()
    _bootstrapped = True


def configure_debug_logging() -> None:
    """Send DEBUG diagnostics from opencode_loop loggers to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(DEBUG_LOG_FORMAT))
    package_logger = logging.getLogger("opencode_loop")
    package_logger.setLevel(logging.DEBUG)
    package_logger.addHandler(handler)


def read_prompt(words: list[str] | None, file: Path | None) -> str:
    """Resolve the task prompt from positional words or --file.

    Raises:
        typer.BadParameter: If both or neither source is given, or the
            result is empty.
    """
    if words and file is not None:
        raise typer.BadParameter("Give the prompt either as arguments or via --file, not both")
    if file is not None:
        try:
            text = file.read_text().strip()
        except OSError as exc:
            raise typer.BadParameter(f"Cannot read prompt file {file}: {exc}") from exc
    else:
        text = " ".join(words or []).strip()
    if not text:
        raise typer.BadParameter("A non-empty prompt is required (arguments or --file)")
    return text


async def _run_with_signals(config: LoopConfig, sink: ConsoleEventSink) -> RunReport:
    loop = asyncio.get_running_loop()
    interrupt_event = asyncio.Event()
    escalator = InterruptEscalator(loop, interrupt_event)
    escalator.install()
    pause_signal = getattr(signal, "SIGUSR1", None)
    if pause_signal is not None:
        loop.add_signal_handler(pause_signal, sink.toggle_pause)
    try:
        async with open_runtime(config) as handle:
            orchestrator = create_orchestrator(config, handle, event_sink=sink)
            return await orchestrator.run(interrupt_event=interrupt_event)
    finally:
        if pause_signal is not None:
            loop.remove_signal_handler(pause_signal)
        escalator.restore()


app = typer.Typer(
    name="opencode-loop",
    help="Run an agent in a loop until it declares the task complete or blocked",
    add_completion=False,
)


@app.command()
def run(
    prompt: Annotated[
        list[str] | None,
        typer.Argument(help="Task prompt (joined with spaces)"),
    ] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Read the task prompt from a file"),
    ] = None,
    cwd: Annotated[
        Path,
        typer.Option("--cwd", "-C", help="Target project directory"),
    ] = Path("."),
    max_iterations: Annotated[
        int | None,
        typer.Option(
            "--max-iterations",
            "-n",
            help="Iteration budget (default: 50)",
            rich_help_panel="Execution Limits",
        ),
    ] = None,
    max_retries: Annotated[
        int | None,
        typer.Option(
            "--max-retries",
            help="Failed turns tolerated per iteration (default: 3)",
            rich_help_panel="Execution Limits",
        ),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option("--model", "-m", help="Model ('provider/model' for OpenCode)"),
    ] = None,
    agent: Annotated[
        str | None,
        typer.Option("--agent", help="OpenCode agent name (default: loop)"),
    ] = None,
    runtime: Annotated[
        str | None,
        typer.Option("--runtime", help="Agent runtime: opencode or claude"),
    ] = None,
    port: Annotated[
        int | None,
        typer.Option(
            "--port",
            help="Port for the launched OpenCode server (0 = auto)",
            rich_help_panel="Server",
        ),
    ] = None,
    attach: Annotated[
        str | None,
        typer.Option(
            "--attach",
            help="URL of a running OpenCode server to use instead of launching one",
            rich_help_panel="Server",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose/--quiet",
            "-v/-q",
            help="Show full tool details and session status changes",
            rich_help_panel="Debugging",
        ),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Write DEBUG diagnostics to stderr",
            rich_help_panel="Debugging",
        ),
    ] = False,
) -> Never:
    """Run the agent loop on a task."""
    bootstrap()
    text = read_prompt(prompt, file)

    try:
        config = LoopConfig.from_env(
            prompt=text,
            cwd=cwd.resolve(),
            max_iterations=max_iterations,
            max_retries=max_retries,
            model=model,
            agent=agent,
            runtime=runtime,
            port=port,
            attach=attach,
            verbose=verbose,
            debug=debug,
        )
    except ConfigurationError as exc:
        for error in exc.errors:
            log("✗", f"Error: {error}", Colors.RED)
        raise typer.Exit(1) from exc

    if config.debug:
        configure_debug_logging()
    set_verbose(config.verbose)

    sink = ConsoleEventSink()
    try:
        report = asyncio.run(_run_with_signals(config, sink))
    except LoopError as exc:
        log("✗", f"Fatal error: {exc}", Colors.RED)
        raise typer.Exit(1) from exc

    raise typer.Exit(report.exit_code)


@app.command()
def status() -> None:
    """Show the config file location and effective settings."""
    bootstrap()
    env_path = get_user_env_path()
    print()
    if env_path.exists():
        log("◦", f"Config: {env_path}", Colors.CYAN)
    else:
        log("○", f"Config: {env_path} (not found)", Colors.GRAY)

    try:
        config = LoopConfig.from_env(validate=False)
    except ConfigurationError as exc:
        for error in exc.errors:
            log("✗", f"Error: {error}", Colors.RED)
        raise typer.Exit(1) from exc

    log("◦", f"Runtime: {config.runtime}")
    log("◦", f"Max iterations: {config.max_iterations}")
    log("◦", f"Max retries: {config.max_retries}")
    log("◦", f"Agent: {config.agent}")
    log("◦", f"Model: {config.model or '(runtime default)'}")
    if config.attach:
        log("◦", f"Attach: {config.attach}")
    print()
