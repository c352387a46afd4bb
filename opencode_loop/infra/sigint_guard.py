"""Shared interrupt handling helpers for the loop.

Interrupts are represented as an asyncio.Event injected into the
orchestrator, so tests can simulate them without touching OS signals.

Key components:
- FlowInterruptedError: Exception raised when a flow is interrupted
- InterruptGuard: Helper class to check/raise on interrupt events
- await_interruptible(): Interruptible sleep function
- InterruptEscalator: SIGINT/SIGTERM handler with two-stage escalation
"""

from __future__ import annotations

import asyncio
import os
import signal
from typing import TYPE_CHECKING

from opencode_loop.core.protocols import LoopError

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import FrameType

__all__ = [
    "FlowInterruptedError",
    "InterruptEscalator",
    "InterruptGuard",
    "await_interruptible",
]


class FlowInterruptedError(LoopError):
    """Raised when a flow is interrupted by SIGINT/SIGTERM.

    Named to avoid shadowing Python's built-in InterruptedError
    (which is an OSError with errno.EINTR).
    """


class InterruptGuard:
    """Helper class to check and raise on interrupt events.

    Wraps an asyncio.Event to provide convenient methods for
    checking interrupt state and raising FlowInterruptedError.
    """

    def __init__(self, event: asyncio.Event | None) -> None:
        """Initialize the interrupt guard.

        Args:
            event: The interrupt event to monitor. If None, interrupt
                   checking is disabled (is_interrupted always returns False).
        """
        self._event = event

    def is_interrupted(self) -> bool:
        """Check if the interrupt event is set."""
        if self._event is None:
            return False
        return self._event.is_set()

    def raise_if_interrupted(self) -> None:
        """Raise FlowInterruptedError if the interrupt event is set."""
        if self.is_interrupted():
            raise FlowInterruptedError("Flow interrupted")


async def await_interruptible(
    delay: float, interrupt_event: asyncio.Event | None
) -> bool:
    """Wait for delay seconds, but return early if interrupted.

    Args:
        delay: Number of seconds to wait.
        interrupt_event: Event to monitor for interruption. If None,
                        waits the full duration.

    Returns:
        True if interrupted before delay elapsed, False if waited full duration.
    """
    if interrupt_event is None:
        await asyncio.sleep(delay)
        return False

    if interrupt_event.is_set():
        return True

    try:
        await asyncio.wait_for(interrupt_event.wait(), timeout=delay)
        return True
    except TimeoutError:
        return False


class InterruptEscalator:
    """Two-stage handler for SIGINT/SIGTERM.

    Stage 1 (first signal): set the interrupt event so the orchestrator can
    abort the in-flight turn and emit its summary.
    Stage 2 (any later signal): terminate the process immediately, without
    further cleanup.

    Usage:
        escalator = InterruptEscalator(loop, interrupt_event)
        escalator.install()
        try:
            await orchestrator.run(interrupt_event=interrupt_event)
        finally:
            escalator.restore()
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        interrupt_event: asyncio.Event,
        *,
        force_exit: Callable[[int], object] = os._exit,
        on_first_signal: Callable[[], None] | None = None,
    ) -> None:
        self._loop = loop
        self._interrupt_event = interrupt_event
        self._force_exit = force_exit
        self._on_first_signal = on_first_signal
        self._original_handlers: dict[int, object] = {}
        self.signal_count = 0

    def handle(self, signum: int, frame: FrameType | None = None) -> None:
        """Signal handler entry point (also callable directly from tests)."""
        self.signal_count += 1
        if self.signal_count == 1:
            self._loop.call_soon_threadsafe(self._interrupt_event.set)
            if self._on_first_signal is not None:
                self._loop.call_soon_threadsafe(self._on_first_signal)
            return
        self._force_exit(1)

    def install(self) -> None:
        """Install the handler for SIGINT and SIGTERM, remembering the originals."""
        for sig in self.SIGNALS:
            self._original_handlers[sig] = signal.signal(sig, self.handle)

    def restore(self) -> None:
        """Restore the handlers that were active before install()."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)  # type: ignore[arg-type]
        self._original_handlers.clear()
