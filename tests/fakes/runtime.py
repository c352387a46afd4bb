"""Scripted AgentRuntime for orchestrator and bridge tests.

Each send_prompt() consumes the next TurnScript and pushes its events onto
an in-memory stream. Items in a script may also be:

- an Exception: the current subscription raises it (transport failure)
- STREAM_END: the current subscription ends cleanly (server closed it)

Once the scripts run out, every further prompt just produces session.idle.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from opencode_loop.core.models import AssistantTurn, RuntimeEvent
from opencode_loop.core.protocols import RuntimeRequestError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

TASK_ID = "ses_test"

STREAM_END = object()


# Event builders ---------------------------------------------------------------


def idle_event(task_id: str = TASK_ID) -> RuntimeEvent:
    return RuntimeEvent("session.idle", {"sessionID": task_id})


def error_event(message: str = "boom", task_id: str = TASK_ID) -> RuntimeEvent:
    return RuntimeEvent(
        "session.error",
        {"sessionID": task_id, "error": {"name": "APIError", "data": {"message": message}}},
    )


def status_event(status: dict[str, Any], task_id: str = TASK_ID) -> RuntimeEvent:
    return RuntimeEvent("session.status", {"sessionID": task_id, "status": status})


def tool_part(
    tool: str,
    state: str = "completed",
    *,
    tool_input: dict[str, Any] | None = None,
    title: str | None = None,
    error: str | None = None,
    task_id: str = TASK_ID,
) -> dict[str, Any]:
    part_state: dict[str, Any] = {"status": state, "input": tool_input or {}}
    if title is not None:
        part_state["title"] = title
    if error is not None:
        part_state["error"] = error
    return {"type": "tool", "tool": tool, "sessionID": task_id, "state": part_state}


def part_event(part: dict[str, Any]) -> RuntimeEvent:
    return RuntimeEvent("message.part.updated", {"part": part})


def loop_control_part(
    status: str, message: str = "", *, task_id: str = TASK_ID
) -> RuntimeEvent:
    """A settled loop_control call as pushed by the runtime."""
    return part_event(
        tool_part(
            "loop_control",
            tool_input={"status": status, "message": message},
            task_id=task_id,
        )
    )


def usage_event(
    message_id: str,
    cost: float,
    tokens_in: int,
    tokens_out: int,
    *,
    role: str = "assistant",
    task_id: str = TASK_ID,
) -> RuntimeEvent:
    return RuntimeEvent(
        "message.updated",
        {
            "info": {
                "id": message_id,
                "sessionID": task_id,
                "role": role,
                "cost": cost,
                "tokens": {"input": tokens_in, "output": tokens_out},
            }
        },
    )


# Runtime -----------------------------------------------------------------------


@dataclass
class TurnScript:
    """Events pushed for one prompt, and what the pull query then returns."""

    events: list[Any] = field(default_factory=list)
    latest: AssistantTurn | None = None


class FakeRuntime:
    """In-memory AgentRuntime driven by per-prompt scripts.

    Attributes:
        prompts: Text of every prompt sent, in order.
        pull_calls: Number of get_latest_turn() calls.
        aborted: Task ids passed to abort_task().
        subscriptions: Number of subscribe_events() calls.
        max_live_subscriptions: Highest number of simultaneously open streams.
    """

    def __init__(
        self,
        turns: list[TurnScript | list[Any]] | None = None,
        *,
        task_id: str = TASK_ID,
        send_errors: dict[int, Exception] | None = None,
        create_error: Exception | None = None,
        abort_error: Exception | None = None,
        on_send: Callable[[int, str], None] | None = None,
    ) -> None:
        self._turns = [t if isinstance(t, TurnScript) else TurnScript(list(t)) for t in turns or []]
        self.task_id = task_id
        self._send_errors = send_errors or {}
        self._create_error = create_error
        self._abort_error = abort_error
        self._on_send = on_send
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._latest: AssistantTurn | None = None

        self.prompts: list[str] = []
        self.send_kwargs: list[dict[str, Any]] = []
        self.pull_calls = 0
        self.aborted: list[str] = []
        self.subscriptions = 0
        self.live_subscriptions = 0
        self.max_live_subscriptions = 0
        self.closed = False

    async def create_task(self) -> str:
        if self._create_error is not None:
            raise self._create_error
        return self.task_id

    async def send_prompt(
        self,
        task_id: str,
        text: str,
        *,
        agent: str | None = None,
        model: str | None = None,
    ) -> None:
        index = len(self.prompts)
        if index in self._send_errors:
            raise self._send_errors[index]
        self.prompts.append(text)
        self.send_kwargs.append({"agent": agent, "model": model})
        if self._on_send is not None:
            self._on_send(index, text)
        script = self._turns[index] if index < len(self._turns) else TurnScript([idle_event(task_id)])
        self._latest = script.latest
        for item in script.events:
            self._queue.put_nowait(item)

    async def get_latest_turn(self, task_id: str) -> AssistantTurn | None:
        self.pull_calls += 1
        return self._latest

    async def abort_task(self, task_id: str) -> None:
        self.aborted.append(task_id)
        if self._abort_error is not None:
            raise self._abort_error

    def push(self, item: Any) -> None:  # noqa: ANN401
        """Push an event (or failure marker) outside any script."""
        self._queue.put_nowait(item)

    async def subscribe_events(self) -> AsyncIterator[RuntimeEvent]:
        self.subscriptions += 1
        self.live_subscriptions += 1
        self.max_live_subscriptions = max(self.max_live_subscriptions, self.live_subscriptions)
        try:
            while True:
                item = await self._queue.get()
                if item is STREAM_END:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.live_subscriptions -= 1

    async def close(self) -> None:
        self.closed = True


def request_error(message: str = "HTTP 500") -> RuntimeRequestError:
    return RuntimeRequestError(message)
