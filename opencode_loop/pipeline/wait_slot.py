"""Single-waiter cells used to hand results between asyncio tasks.

SingleSlot holds at most one pending future. The producer side (the event
bridge, a signal callback) resolves it; resolving clears the slot, so a late
second resolution finds nothing and is dropped.

PauseGate is the pause/unpause gate built on a SingleSlot: at most one task
may wait for unpause at a time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SlotBusyError(RuntimeError):
    """Raised when registering a waiter on a slot that already has one."""


class SingleSlot(Generic[T]):
    """A cell holding at most one outstanding waiter.

    Example:
        slot: SingleSlot[str] = SingleSlot()
        future = slot.register()
        ...  # another task calls slot.resolve("idle")
        outcome = await future
    """

    def __init__(self, name: str = "slot") -> None:
        self._name = name
        self._future: asyncio.Future[T] | None = None

    @property
    def armed(self) -> bool:
        """Whether a waiter is registered and not yet resolved."""
        return self._future is not None and not self._future.done()

    def register(self) -> asyncio.Future[T]:
        """Register the single waiter and return its future.

        Raises:
            SlotBusyError: If a waiter is already registered.
        """
        if self.armed:
            raise SlotBusyError(f"{self._name} already has a pending waiter")
        self._future = asyncio.get_running_loop().create_future()
        return self._future

    def resolve(self, value: T) -> bool:
        """Resolve and clear the registered waiter.

        Returns:
            True if a waiter received the value, False if the slot was empty
            and the value was discarded.
        """
        future = self._future
        self._future = None
        if future is None or future.done():
            logger.debug("%s: discarding resolution %r (no waiter)", self._name, value)
            return False
        future.set_result(value)
        return True

    def clear(self) -> None:
        """Drop the registered waiter, cancelling it if still pending."""
        future = self._future
        self._future = None
        if future is not None and not future.done():
            future.cancel()


class PauseGate:
    """External pause control with at most one unpause waiter."""

    def __init__(self) -> None:
        self._paused = False
        self._waiter: SingleSlot[None] = SingleSlot("unpause")

    @property
    def paused(self) -> bool:
        return self._paused

    def set_paused(self, paused: bool) -> None:
        """Pause or unpause. Unpausing releases and clears the waiter."""
        self._paused = paused
        if not paused:
            self._waiter.resolve(None)

    def toggle(self) -> bool:
        """Flip the pause state and return the new value."""
        self.set_paused(not self._paused)
        return self._paused

    async def wait(self) -> None:
        """Suspend until unpaused; returns at once when not paused.

        Raises:
            SlotBusyError: If another task is already waiting.
        """
        if not self._paused:
            return
        await self._waiter.register()
