"""Console event sink implementation for LoopOrchestrator.

Provides ConsoleEventSink which outputs orchestrator events to the console
using the log helpers from log_output/console.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from opencode_loop.core.models import LoopStatus, RunResult, StopReason
from opencode_loop.infra.io.base_sink import BaseEventSink
from opencode_loop.infra.io.log_output.console import (
    Colors,
    format_cost,
    format_duration,
    format_tokens,
    log,
    log_banner,
    log_separator,
    log_tool,
    log_verbose,
    set_iteration,
)

if TYPE_CHECKING:
    from opencode_loop.core.models import IterationRecord, RunReport
    from opencode_loop.core.protocols import EventRunConfig

_STOP_REASON_TEXT = {
    StopReason.TERMINAL_STATUS: "agent declared a final status",
    StopReason.BUDGET_EXHAUSTED: "iteration budget exhausted",
    StopReason.RETRIES_EXHAUSTED: "max retries exceeded",
    StopReason.INTERRUPTED: "interrupted",
    StopReason.RUNTIME_ERROR: "runtime error",
}


class ConsoleEventSink(BaseEventSink):
    """Event sink that outputs to the console using the log helpers.

    Example:
        sink = ConsoleEventSink()
        orchestrator = create_orchestrator(config, event_sink=sink)
        await orchestrator.run()  # Produces console output
    """

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def on_run_started(self, config: EventRunConfig) -> None:
        log_banner("opencode-loop")
        prompt = config.prompt
        if len(prompt) > 100:
            prompt = prompt[:100] + "..."
        log("◦", f"Prompt: {prompt}")
        log("◦", f"Target: {config.cwd}")
        log("◦", f"Runtime: {config.runtime}")
        log("◦", f"Max iterations: {config.max_iterations}")
        log_verbose("◦", f"Max retries: {config.max_retries}")
        if config.model:
            log("◦", f"Model: {config.model}")
        if config.agent:
            log_verbose("◦", f"Agent: {config.agent}")
        if config.server_url:
            log("◦", f"Attach a TUI with: opencode attach --url {config.server_url}")
        log_separator()

    def on_run_completed(self, report: RunReport) -> None:
        set_iteration(0, 0)
        log_separator()
        log_banner("Loop Summary")

        if not report.records:
            log("◦", "No iterations completed.")
        for record in report.records:
            if record.status is not None:
                status = f"{record.status.status.value.upper()}: {record.status.message}"
            else:
                status = "no loop_control call"
            log(
                "◦",
                f"  Iteration {record.index}: {status} "
                f"({format_duration(record.duration_ms)}, {format_cost(record.cost)})",
            )

        log_separator()
        log("◦", f"Total iterations: {len(report.records)}")
        log("◦", f"Total time: {format_duration(report.total_duration_ms)}")
        log("◦", f"Total cost: {format_cost(report.total_cost)}")
        log(
            "◦",
            f"Total tokens: {report.tokens_in:,} in / {report.tokens_out:,} out",
        )
        log_verbose("◦", f"Stopped: {_STOP_REASON_TEXT[report.stop_reason]}")

        result = report.result
        if result == RunResult.COMPLETE:
            log("✓", "Result: COMPLETE", Colors.GREEN)
        elif result == RunResult.BLOCKED:
            log("✗", "Result: BLOCKED", Colors.RED)
        else:
            log(
                "⚠",
                "Result: INCOMPLETE (max iterations or interrupted)",
                Colors.YELLOW,
            )

    # -------------------------------------------------------------------------
    # Iteration lifecycle
    # -------------------------------------------------------------------------

    def on_iteration_started(self, index: int, max_iterations: int) -> None:
        set_iteration(index, max_iterations)
        log_separator()
        log("→", f"Starting iteration {index}/{max_iterations}")

    def on_iteration_completed(self, record: IterationRecord) -> None:
        verdict = record.status
        if verdict is None:
            log("⚠", "Agent did not call loop_control", Colors.YELLOW)
        elif verdict.status == LoopStatus.COMPLETE:
            log("✓", f"Agent signaled COMPLETE: {verdict.message}", Colors.GREEN)
        elif verdict.status == LoopStatus.BLOCKED:
            log("✗", f"Agent signaled BLOCKED: {verdict.message}", Colors.RED)
        elif verdict.status == LoopStatus.PROGRESS:
            log("◦", f"Agent signaled PROGRESS: {verdict.message}", Colors.BLUE)
        else:
            log(
                "⚠",
                f"Agent signaled {verdict.status.value.upper()}: {verdict.message}",
                Colors.YELLOW,
            )
        log(
            "◦",
            f"  Duration: {format_duration(record.duration_ms)} | "
            f"Cost: {format_cost(record.cost)} | "
            f"Tokens: {format_tokens(record.tokens_in)} in / "
            f"{format_tokens(record.tokens_out)} out",
            dim=True,
        )

    # -------------------------------------------------------------------------
    # Runtime activity
    # -------------------------------------------------------------------------

    def on_status_change(self, status: str) -> None:
        log_verbose("◦", f"Session status: {status}")

    def on_tool_update(self, tool: str, status: str, title: str | None = None) -> None:
        log_tool(tool, title or status)

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def on_info(self, message: str) -> None:
        log("◦", message)

    def on_success(self, message: str) -> None:
        log("✓", message, Colors.GREEN)

    def on_warn(self, message: str) -> None:
        log("⚠", message, Colors.YELLOW)

    def on_error(self, message: str) -> None:
        log("✗", message, Colors.RED, stderr=True)

    # -------------------------------------------------------------------------
    # Pause control
    # -------------------------------------------------------------------------

    def toggle_pause(self) -> bool:
        paused = super().toggle_pause()
        if paused:
            log("⏸", "Paused; the loop stops after the current iteration", Colors.YELLOW)
        else:
            log("▶", "Resumed", Colors.GREEN)
        return paused
