"""Wait for a turn to finish, retrying failed turns with backoff.

IdleWaitCoordinator owns the single wait slot that the event bridge
resolves. The orchestrator arms the slot before sending an iteration's prompt
(so an idle notification that arrives while the send is still in flight is
not lost), then calls wait_for_idle_or_error(). Retries re-arm only after the
re-send, because the failed turn may still report idle.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from opencode_loop.infra.sigint_guard import FlowInterruptedError, await_interruptible
from opencode_loop.pipeline.wait_slot import SingleSlot

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF = (0.0, 5.0, 15.0)


@dataclass
class RetryConfig:
    """Configuration for failed-turn retry behavior.

    retry_backoff[n] is the delay in seconds before retry n (0-based). Retries
    beyond the end of the sequence reuse its last entry.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff: tuple[float, ...] = DEFAULT_RETRY_BACKOFF

    def __post_init__(self) -> None:
        """Validate configuration invariants."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if not self.retry_backoff:
            raise ValueError("retry_backoff must have at least one entry")
        if any(delay < 0 for delay in self.retry_backoff):
            raise ValueError("retry_backoff entries must be non-negative")

    def backoff_for(self, retry_index: int) -> float:
        """Delay before the retry with the given 0-based index."""
        return self.retry_backoff[min(retry_index, len(self.retry_backoff) - 1)]


class WaitOutcome(Enum):
    """Result of waiting for a turn."""

    IDLE = "idle"
    ERROR_EXHAUSTED = "error-exhausted"


@dataclass(frozen=True)
class TurnSignal:
    """What ended a wait: the task went idle, or it reported an error."""

    kind: str
    error: str | None = None

    @property
    def is_idle(self) -> bool:
        return self.kind == "idle"


_IDLE = TurnSignal("idle")


class IdleWaitCoordinator:
    """Single-outstanding-wait coordinator for one run.

    Example:
        coordinator = IdleWaitCoordinator(RetryConfig(max_retries=3))
        coordinator.arm()
        await runtime.send_prompt(task_id, prompt)
        outcome = await coordinator.wait_for_idle_or_error(on_retry=resend)
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        interrupt_event: asyncio.Event | None = None,
        sleep: Callable[[float, asyncio.Event | None], Awaitable[bool]] = (
            await_interruptible
        ),
    ) -> None:
        self.config = config or RetryConfig()
        self._interrupt_event = interrupt_event
        self._sleep = sleep
        self._slot: SingleSlot[TurnSignal] = SingleSlot("turn wait")
        self._pending: asyncio.Future[TurnSignal] | None = None

    @property
    def armed(self) -> bool:
        return self._pending is not None

    def arm(self) -> None:
        """Register the wait for the next turn.

        Raises:
            SlotBusyError: If a wait is already registered.
        """
        self._pending = self._slot.register()

    def notify_idle(self) -> bool:
        """Resolve the pending wait with idle. False if nobody was waiting."""
        return self._slot.resolve(_IDLE)

    def notify_error(self, error: str) -> bool:
        """Resolve the pending wait with an error. False if nobody was waiting."""
        return self._slot.resolve(TurnSignal("error", error))

    def cancel(self) -> None:
        """Drop the pending wait, if any."""
        self._slot.clear()
        self._pending = None

    async def _await_signal(self, future: asyncio.Future[TurnSignal]) -> TurnSignal:
        if self._interrupt_event is None:
            return await future
        interrupt_waiter = asyncio.ensure_future(self._interrupt_event.wait())
        try:
            done, _ = await asyncio.wait(
                {future, interrupt_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            interrupt_waiter.cancel()
        if future in done:
            return future.result()
        self._slot.clear()
        raise FlowInterruptedError("Interrupted while waiting for the agent")

    async def wait_for_idle_or_error(
        self,
        on_retry: Callable[[int], Awaitable[None]],
        max_retries: int | None = None,
    ) -> WaitOutcome:
        """Wait until the current turn goes idle, retrying failed turns.

        On each error the retry count increments. Once it reaches max_retries
        the wait gives up; otherwise it sleeps the backoff for this retry and
        calls on_retry(n) (n is 0-based), which must re-send a continuation
        prompt. The wait is re-armed after on_retry returns, so signals that
        arrive during the backoff or the re-send are discarded.

        Args:
            on_retry: Re-issues the prompt for retry n.
            max_retries: Overrides config.max_retries.

        Returns:
            WaitOutcome.IDLE or WaitOutcome.ERROR_EXHAUSTED.

        Raises:
            FlowInterruptedError: If the interrupt event fires while waiting.
        """
        limit = self.config.max_retries if max_retries is None else max_retries
        retries = 0
        while True:
            if self._pending is None:
                self.arm()
            future = self._pending
            assert future is not None
            try:
                signal = await self._await_signal(future)
            finally:
                self._pending = None

            if signal.is_idle:
                return WaitOutcome.IDLE

            retries += 1
            logger.warning(
                "Turn failed (%d/%d): %s", retries, limit, signal.error
            )
            if retries >= limit:
                return WaitOutcome.ERROR_EXHAUSTED

            retry_index = retries - 1
            if await self._sleep(self.config.backoff_for(retry_index), self._interrupt_event):
                raise FlowInterruptedError("Interrupted during retry backoff")
            # Armed only once the re-send returns; the failed turn can still
            # report a trailing idle that must not end the retried turn's wait.
            await on_retry(retry_index)
