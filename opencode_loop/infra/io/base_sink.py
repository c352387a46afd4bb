"""Base event sink implementations.

- BaseEventSink: no-op implementation of every LoopEventSink method, with a
  working pause gate. Subclasses override only what they present.
- NullEventSink: silent sink for tests and programmatic use.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from opencode_loop.pipeline.wait_slot import PauseGate

if TYPE_CHECKING:
    from opencode_loop.core.models import IterationRecord, RunReport
    from opencode_loop.core.protocols import EventRunConfig


class BaseEventSink:
    """No-op base for LoopEventSink implementations.

    Pause state lives in a PauseGate; presentation layers call
    set_paused()/toggle_pause() from their input handling.
    """

    def __init__(self) -> None:
        self._pause_gate = PauseGate()

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def on_run_started(self, config: EventRunConfig) -> None:
        pass

    def on_run_completed(self, report: RunReport) -> None:
        pass

    # -------------------------------------------------------------------------
    # Iteration lifecycle
    # -------------------------------------------------------------------------

    def on_iteration_started(self, index: int, max_iterations: int) -> None:
        pass

    def on_iteration_completed(self, record: IterationRecord) -> None:
        pass

    # -------------------------------------------------------------------------
    # Runtime activity
    # -------------------------------------------------------------------------

    def on_status_change(self, status: str) -> None:
        pass

    def on_tool_update(self, tool: str, status: str, title: str | None = None) -> None:
        pass

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def on_info(self, message: str) -> None:
        pass

    def on_success(self, message: str) -> None:
        pass

    def on_warn(self, message: str) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass

    # -------------------------------------------------------------------------
    # Pause control
    # -------------------------------------------------------------------------

    def is_paused(self) -> bool:
        return self._pause_gate.paused

    def set_paused(self, paused: bool) -> None:
        self._pause_gate.set_paused(paused)

    def toggle_pause(self) -> bool:
        """Flip the pause state; returns True if now paused."""
        return self._pause_gate.toggle()

    async def wait_for_unpause(self) -> None:
        await self._pause_gate.wait()


class NullEventSink(BaseEventSink):
    """No-op event sink for testing.

    Example:
        sink = NullEventSink()
        orchestrator = LoopOrchestrator(config, runtime, event_sink=sink)
        await orchestrator.run()  # No console output
    """
