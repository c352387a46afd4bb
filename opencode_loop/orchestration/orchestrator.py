"""LoopOrchestrator: drives one agent task through repeated turns.

Each iteration sends a prompt, waits for the turn to go idle (retrying
failed turns), reconciles the turn's verdict, records it and decides whether
to continue. The run ends when the agent declares complete/blocked, the
iteration budget runs out, retries are exhausted, or the interrupt event
fires. A RunReport is emitted exactly once on every path that got past
sending the first prompt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from opencode_loop.core.models import IterationRecord, RunReport, StopReason
from opencode_loop.core.protocols import EventRunConfig, RuntimeRequestError
from opencode_loop.domain.prompts import build_continuation_prompt, get_prompts
from opencode_loop.infra.io.base_sink import NullEventSink
from opencode_loop.infra.sigint_guard import (
    FlowInterruptedError,
    InterruptGuard,
    await_interruptible,
)
from opencode_loop.pipeline.event_bridge import (
    STREAM_ERROR_TASK_ID,
    BridgeCallbacks,
    EventBridgeHandle,
    subscribe,
)
from opencode_loop.pipeline.idle_retry_policy import (
    IdleWaitCoordinator,
    RetryConfig,
    WaitOutcome,
)
from opencode_loop.pipeline.turn_reconciler import (
    ReconciledTurn,
    TurnCapture,
    resolve,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from opencode_loop.core.models import TaskStatus
    from opencode_loop.core.protocols import AgentRuntime, LoopEventSink
    from opencode_loop.domain.prompts import PromptProvider
    from opencode_loop.infra.io.config import LoopConfig

logger = logging.getLogger(__name__)


@dataclass
class RunState:
    """Mutable state for one run, owned by the orchestrator loop."""

    current_iteration: int = 0
    consecutive_misses: int = 0
    aborted: bool = False
    total_cost: float = 0.0
    tokens_in: int = 0
    tokens_out: int = 0
    records: list[IterationRecord] = field(default_factory=list)

    def append(self, record: IterationRecord) -> None:
        """Append the next record. Indices must be contiguous from 1."""
        expected = len(self.records) + 1
        if record.index != expected:
            raise ValueError(
                f"IterationRecord index {record.index} out of order (expected {expected})"
            )
        self.records.append(record)
        self.total_cost += record.cost
        self.tokens_in += record.tokens_in
        self.tokens_out += record.tokens_out


class LoopOrchestrator:
    """Iteration loop for a single agent task.

    Example:
        orchestrator = LoopOrchestrator(config, runtime, event_sink=ConsoleEventSink())
        report = await orchestrator.run(interrupt_event=interrupt_event)
    """

    def __init__(
        self,
        config: LoopConfig,
        runtime: AgentRuntime,
        *,
        event_sink: LoopEventSink | None = None,
        prompts: PromptProvider | None = None,
        server_url: str | None = None,
        sleep: Callable[[float, asyncio.Event | None], Awaitable[bool]] = (
            await_interruptible
        ),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.event_sink: LoopEventSink = event_sink or NullEventSink()
        self._prompts = prompts or get_prompts()
        self._server_url = server_url
        self._sleep = sleep
        self._clock = clock
        self._retry_config = RetryConfig(
            max_retries=config.max_retries, retry_backoff=config.retry_backoff
        )

        self.state = RunState()
        self._capture = TurnCapture()
        self._task_id: str | None = None
        self._interrupt_event = asyncio.Event()
        self._coordinator = IdleWaitCoordinator(self._retry_config)
        self._bridge: EventBridgeHandle | None = None
        self._resubscribe_task: asyncio.Task[None] | None = None
        self._stream_failures = 0
        self._closing = False
        self._first_prompt_sent = False
        self._report: RunReport | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def run(self, *, interrupt_event: asyncio.Event | None = None) -> RunReport:
        """Run the loop to completion.

        Args:
            interrupt_event: Set by the caller (usually a signal handler) to
                stop the run. The in-flight turn is aborted on a best-effort
                basis and the report covers the iterations finished so far.

        Returns:
            The final RunReport.

        Raises:
            RuntimeRequestError: If the task cannot be created or the first
                prompt is rejected (no report is emitted), or if a later
                prompt is rejected (after the report is emitted).
        """
        self.state = RunState()
        self._capture.reset()
        self._first_prompt_sent = False
        self._closing = False
        self._report = None
        self._stream_failures = 0
        self._interrupt_event = interrupt_event or asyncio.Event()
        self._coordinator = IdleWaitCoordinator(
            self._retry_config,
            interrupt_event=self._interrupt_event,
            sleep=self._sleep,
        )
        guard = InterruptGuard(self._interrupt_event)

        self.event_sink.on_run_started(
            EventRunConfig(
                prompt=self.config.prompt,
                cwd=self.config.cwd,
                max_iterations=self.config.max_iterations,
                max_retries=self.config.max_retries,
                runtime=self.config.runtime,
                model=self.config.model,
                agent=self.config.agent,
                server_url=self._server_url,
            )
        )

        self.event_sink.on_info("Creating session...")
        task_id = await self.runtime.create_task()
        self._task_id = task_id
        self.event_sink.on_success(f"Session created: {task_id}")
        self._bridge = subscribe(self.runtime, task_id, self._build_callbacks())

        try:
            stop_reason = await self._run_loop(task_id, guard)
        except FlowInterruptedError:
            stop_reason = await self._abort_in_flight(task_id)
        except RuntimeRequestError as exc:
            if not self._first_prompt_sent:
                raise
            self.event_sink.on_error(f"Failed to send prompt: {exc}")
            self._emit_report(StopReason.RUNTIME_ERROR)
            raise
        finally:
            await self._shutdown()

        return self._emit_report(stop_reason)

    # -------------------------------------------------------------------------
    # Iteration loop
    # -------------------------------------------------------------------------

    async def _run_loop(self, task_id: str, guard: InterruptGuard) -> StopReason:
        state = self.state
        max_iterations = self.config.max_iterations
        prompt = self.config.prompt
        state.current_iteration = 1

        while True:
            guard.raise_if_interrupted()
            index = state.current_iteration
            self._capture.reset()
            self.event_sink.on_iteration_started(index, max_iterations)
            started = self._clock()

            # Armed before sending so an idle that races the send is kept.
            self._coordinator.arm()
            await self._send_prompt(task_id, prompt)
            self._first_prompt_sent = True

            outcome = await self._coordinator.wait_for_idle_or_error(
                self._make_retry(task_id)
            )
            if outcome == WaitOutcome.ERROR_EXHAUSTED:
                record = self._build_record(index, None, started)
                state.append(record)
                self.event_sink.on_iteration_completed(record)
                self.event_sink.on_error("Max retries exceeded. Stopping loop.")
                return StopReason.RETRIES_EXHAUSTED

            reconciled = await resolve(self._capture.verdict, self.runtime, task_id)
            logger.debug(
                "Iteration %d reconciled via %s: %s",
                index,
                reconciled.source,
                reconciled.verdict.status.value if reconciled.verdict else None,
            )
            record = self._build_record(index, reconciled, started)
            state.append(record)
            self.event_sink.on_iteration_completed(record)

            verdict = reconciled.verdict
            if verdict is None:
                state.consecutive_misses += 1
            else:
                state.consecutive_misses = 0
            if verdict is not None and verdict.status.is_terminal:
                return StopReason.TERMINAL_STATUS

            if index + 1 > max_iterations:
                self.event_sink.on_warn(
                    f"Reached max iterations ({max_iterations}). Stopping loop."
                )
                return StopReason.BUDGET_EXHAUSTED

            state.current_iteration = index + 1
            if self.event_sink.is_paused():
                self.event_sink.on_info("Paused. Waiting for resume...")
                await self._wait_for_unpause()

            prompt = self._next_prompt(verdict)

    def _next_prompt(self, verdict: TaskStatus | None) -> str:
        misses = self.state.consecutive_misses
        if verdict is None:
            self.event_sink.on_warn(
                f"Agent did not call loop_control ({misses} in a row). Re-prompting..."
            )
        else:
            self.event_sink.on_info("Re-prompting agent...")
        return build_continuation_prompt(verdict, misses, self._prompts)

    def _build_record(
        self, index: int, reconciled: ReconciledTurn | None, started: float
    ) -> IterationRecord:
        duration_ms = max(0, int((self._clock() - started) * 1000))
        turn = reconciled.turn if reconciled is not None else None
        if turn is not None:
            cost, tokens_in, tokens_out = turn.cost, turn.tokens_in, turn.tokens_out
        else:
            cost, tokens_in, tokens_out = self._capture.usage_totals()
        return IterationRecord(
            index=index,
            status=reconciled.verdict if reconciled is not None else None,
            cost=max(0.0, cost),
            tokens_in=max(0, tokens_in),
            tokens_out=max(0, tokens_out),
            duration_ms=duration_ms,
        )

    async def _send_prompt(self, task_id: str, text: str) -> None:
        await self.runtime.send_prompt(
            task_id, text, agent=self.config.agent, model=self.config.model
        )

    def _make_retry(self, task_id: str) -> Callable[[int], Awaitable[None]]:
        async def _retry(retry_index: int) -> None:
            self.event_sink.on_warn(
                f"Retrying prompt (attempt {retry_index + 1}/{self.config.max_retries})..."
            )
            await self._send_prompt(task_id, self._prompts.retry_continue)

        return _retry

    async def _wait_for_unpause(self) -> None:
        unpause = asyncio.ensure_future(self.event_sink.wait_for_unpause())
        interrupted = asyncio.ensure_future(self._interrupt_event.wait())
        try:
            done, _ = await asyncio.wait(
                {unpause, interrupted}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            unpause.cancel()
            interrupted.cancel()
        if unpause not in done:
            raise FlowInterruptedError("Interrupted while paused")
        self.event_sink.on_info("Resumed.")

    # -------------------------------------------------------------------------
    # Event bridge wiring
    # -------------------------------------------------------------------------

    def _build_callbacks(self) -> BridgeCallbacks:
        return BridgeCallbacks(
            on_idle=self._on_idle,
            on_error=self._on_bridge_error,
            on_status=self.event_sink.on_status_change,
            on_tool_update=self.event_sink.on_tool_update,
            on_task_status=self._capture.record_verdict,
            on_usage=self._capture.record_usage,
            on_closed=self._on_stream_closed,
        )

    def _on_idle(self) -> None:
        self._stream_failures = 0
        if not self._coordinator.notify_idle():
            logger.debug("Idle with no pending wait; discarded")

    def _on_bridge_error(self, task_id: str, message: str) -> None:
        if task_id == STREAM_ERROR_TASK_ID:
            self._on_stream_lost(message)
            return
        self.event_sink.on_error(f"Session error: {message}")
        if not self._coordinator.notify_error(message):
            logger.debug("Session error with no pending wait; discarded")

    def _on_stream_closed(self) -> None:
        self._on_stream_lost("Event stream closed by the runtime")

    def _on_stream_lost(self, message: str) -> None:
        if self._closing:
            return
        self.event_sink.on_warn(f"{message}; reconnecting")
        if self._resubscribe_task is None or self._resubscribe_task.done():
            self._resubscribe_task = asyncio.create_task(
                self._resubscribe(), name="event-bridge-resubscribe"
            )

    async def _resubscribe(self) -> None:
        old = self._bridge
        if old is not None:
            await old.wait_closed()
        delay = self._retry_config.backoff_for(self._stream_failures)
        self._stream_failures += 1
        if await self._sleep(delay, self._interrupt_event) or self._closing:
            return
        assert self._task_id is not None
        logger.info("Resubscribing to the event stream (attempt %d)", self._stream_failures)
        self._bridge = subscribe(self.runtime, self._task_id, self._build_callbacks())

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    async def _abort_in_flight(self, task_id: str) -> StopReason:
        self.state.aborted = True
        self.event_sink.on_warn("Received interrupt signal, aborting current session...")
        try:
            await self.runtime.abort_task(task_id)
        except Exception as exc:  # best effort
            logger.debug("abort_task failed: %s", exc)
        return StopReason.INTERRUPTED

    async def _shutdown(self) -> None:
        self._closing = True
        self._coordinator.cancel()
        if self._resubscribe_task is not None and not self._resubscribe_task.done():
            self._resubscribe_task.cancel()
            try:
                await self._resubscribe_task
            except asyncio.CancelledError:
                pass
        if self._bridge is not None:
            self._bridge.abort()
            await self._bridge.wait_closed()

    def _emit_report(self, stop_reason: StopReason) -> RunReport:
        if self._report is None:
            self._report = RunReport.from_records(self.state.records, stop_reason)
            self.event_sink.on_run_completed(self._report)
        return self._report
