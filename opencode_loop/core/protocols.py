"""Protocols decoupling the orchestrator from runtimes and presentation.

AgentRuntime abstracts the agent server (OpenCode over HTTP, or the Claude
Agent SDK in-process) so the orchestrator can be tested with fakes.
LoopEventSink receives semantic orchestration events; implementations handle
presentation (console, tests) while the orchestrator focuses on coordination.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .models import AssistantTurn, IterationRecord, RunReport, RuntimeEvent


class LoopError(Exception):
    """Base class for opencode-loop errors."""


class RuntimeRequestError(LoopError):
    """Raised when the agent runtime rejects a request (create, prompt)."""


@dataclass
class EventRunConfig:
    """Configuration snapshot for a run, passed to on_run_started."""

    prompt: str
    cwd: Path
    max_iterations: int
    max_retries: int
    runtime: str
    model: str | None = None
    agent: str | None = None
    server_url: str | None = None


@runtime_checkable
class AgentRuntime(Protocol):
    """Minimum surface the orchestrator needs from an agent runtime.

    A "task" is the runtime's unit of conversation (an OpenCode session, a
    Claude SDK client). Every method that takes task_id operates on that one
    conversation.
    """

    async def create_task(self) -> str:
        """Create a task/session and return its identifier.

        Raises:
            RuntimeRequestError: If the runtime refuses to create the task.
        """
        ...

    async def send_prompt(
        self,
        task_id: str,
        text: str,
        *,
        agent: str | None = None,
        model: str | None = None,
    ) -> None:
        """Send a prompt without waiting for the turn to finish.

        Raises:
            RuntimeRequestError: If the runtime does not accept the prompt.
        """
        ...

    async def get_latest_turn(self, task_id: str) -> AssistantTurn | None:
        """Return the latest assistant-authored turn, or None if none exists."""
        ...

    async def abort_task(self, task_id: str) -> None:
        """Ask the runtime to stop the in-flight turn (best effort)."""
        ...

    def subscribe_events(self) -> AsyncIterator[RuntimeEvent]:
        """Open the push event stream.

        The iterator ends when the stream closes and raises on transport
        failure. Cancelling the consuming task terminates it.
        """
        ...

    async def close(self) -> None:
        """Release connections and child processes."""
        ...


@runtime_checkable
class LoopEventSink(Protocol):
    """Protocol for receiving orchestrator events.

    All methods except wait_for_unpause are synchronous and should be
    non-blocking. Sinks without a pause control report is_paused() False and
    return from wait_for_unpause immediately.
    """

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def on_run_started(self, config: EventRunConfig) -> None:
        """Called once when the run begins."""
        ...

    def on_run_completed(self, report: RunReport) -> None:
        """Called exactly once when the run ends, with all records so far."""
        ...

    # -------------------------------------------------------------------------
    # Iteration lifecycle
    # -------------------------------------------------------------------------

    def on_iteration_started(self, index: int, max_iterations: int) -> None:
        """Called when a prompt for iteration ``index`` is about to be sent."""
        ...

    def on_iteration_completed(self, record: IterationRecord) -> None:
        """Called after an iteration's record is appended."""
        ...

    # -------------------------------------------------------------------------
    # Runtime activity
    # -------------------------------------------------------------------------

    def on_status_change(self, status: str) -> None:
        """Called when the runtime reports a task status (busy, idle, retry...)."""
        ...

    def on_tool_update(self, tool: str, status: str, title: str | None = None) -> None:
        """Called when a tool invocation changes state."""
        ...

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def on_info(self, message: str) -> None: ...

    def on_success(self, message: str) -> None: ...

    def on_warn(self, message: str) -> None: ...

    def on_error(self, message: str) -> None: ...

    # -------------------------------------------------------------------------
    # Pause control
    # -------------------------------------------------------------------------

    def is_paused(self) -> bool:
        """Whether the user has paused the loop."""
        ...

    async def wait_for_unpause(self) -> None:
        """Suspend until the loop is unpaused (returns at once if not paused)."""
        ...
