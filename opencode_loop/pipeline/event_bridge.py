"""Event bridge: runtime push stream -> orchestrator callbacks.

Consumes AgentRuntime.subscribe_events() in one background asyncio task,
keeps only events for the target task, and translates them into the small
callback set in BridgeCallbacks.

Recognized events (OpenCode wire shape):
    session.idle          -> on_idle()
    session.error         -> on_error(task_id, message)
    session.status        -> on_status(label)
    message.part.updated  -> on_tool_update(...) and, for a settled
                             loop_control part, on_task_status(verdict)
    message.updated       -> on_usage(...) for assistant messages

A transport failure that was not caused by abort() is reported as
on_error("", "Event stream error: ..."); the empty task id marks the stream
itself as broken rather than the task.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from opencode_loop.domain.status import classify_tool_part

if TYPE_CHECKING:
    from collections.abc import Callable

    from opencode_loop.core.models import RuntimeEvent, TaskStatus
    from opencode_loop.core.protocols import AgentRuntime

logger = logging.getLogger(__name__)

# Target id passed to on_error when the stream itself failed.
STREAM_ERROR_TASK_ID = ""


@dataclass
class BridgeCallbacks:
    """Callbacks invoked by the bridge.

    Attributes:
        on_idle: The target task finished its turn.
        on_error: (task_id, message). task_id is STREAM_ERROR_TASK_ID when the
            stream broke.
        on_status: Human-readable task status label.
        on_tool_update: (tool, state_status, title).
        on_task_status: Verdict of a settled loop_control call, captured live.
        on_usage: (message_id, cost, tokens_in, tokens_out) of an assistant
            message.
        on_closed: The stream ended on its own (not via abort()).
    """

    on_idle: Callable[[], None]
    on_error: Callable[[str, str], None]
    on_status: Callable[[str], None] | None = None
    on_tool_update: Callable[[str, str, str | None], None] | None = None
    on_task_status: Callable[[TaskStatus], None] | None = None
    on_usage: Callable[[str, float, int, int], None] | None = None
    on_closed: Callable[[], None] | None = None


class EventBridgeHandle:
    """Handle to a running subscription. abort() is the only way to stop it."""

    def __init__(self) -> None:
        self._aborted = False
        self._task: asyncio.Task[None] | None = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def done(self) -> bool:
        """Whether the consumer task has finished (for any reason)."""
        return self._task is None or self._task.done()

    def abort(self) -> None:
        """Stop consuming events. Safe to call repeatedly and after stream end."""
        if self._aborted:
            return
        self._aborted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Wait for the consumer task to finish."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._aborted:
                raise


def format_status_label(status: Any) -> str:  # noqa: ANN401
    """Render a session.status payload as a short label."""
    if not isinstance(status, dict):
        return str(status)
    status_type = status.get("type", "unknown")
    if status_type == "retry":
        return f"retry (attempt {status.get('attempt')}: {status.get('message')})"
    return str(status_type)


def format_error(error: Any) -> str:  # noqa: ANN401
    """Render a session.error payload as text."""
    if error is None:
        return "unknown error"
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        data = error.get("data")
        if isinstance(data, dict) and isinstance(data.get("message"), str):
            name = error.get("name")
            return f"{name}: {data['message']}" if name else data["message"]
    try:
        return json.dumps(error)
    except (TypeError, ValueError):
        return repr(error)


def _event_task_id(event: RuntimeEvent) -> str | None:
    props = event.properties
    if event.type == "message.part.updated":
        part = props.get("part") or {}
        return part.get("sessionID")
    if event.type == "message.updated":
        info = props.get("info") or {}
        return info.get("sessionID")
    return props.get("sessionID")


def dispatch_event(
    event: RuntimeEvent, target_id: str, callbacks: BridgeCallbacks
) -> None:
    """Translate one runtime event into callbacks.

    Events for other tasks, and event types the bridge does not know, are
    dropped.
    """
    if _event_task_id(event) != target_id:
        return
    props = event.properties

    if event.type == "session.idle":
        callbacks.on_idle()
    elif event.type == "session.error":
        callbacks.on_error(target_id, format_error(props.get("error")))
    elif event.type == "session.status":
        if callbacks.on_status is not None:
            callbacks.on_status(format_status_label(props.get("status")))
    elif event.type == "message.part.updated":
        _dispatch_part(props.get("part") or {}, callbacks)
    elif event.type == "message.updated":
        _dispatch_usage(props.get("info") or {}, callbacks)


def _dispatch_part(part: dict[str, Any], callbacks: BridgeCallbacks) -> None:
    if part.get("type") != "tool":
        return
    state = part.get("state")
    if not isinstance(state, dict):
        state = {}
    state_status = state.get("status", "")
    title = state.get("title") if state_status in ("running", "completed") else None
    if callbacks.on_tool_update is not None:
        callbacks.on_tool_update(part.get("tool", ""), state_status, title or None)

    verdict = classify_tool_part(part)
    if verdict is not None and callbacks.on_task_status is not None:
        logger.debug("Inline verdict captured: %s", verdict.status.value)
        callbacks.on_task_status(verdict)


def _dispatch_usage(info: dict[str, Any], callbacks: BridgeCallbacks) -> None:
    if info.get("role") != "assistant" or callbacks.on_usage is None:
        return
    tokens = info.get("tokens") or {}
    callbacks.on_usage(
        str(info.get("id", "")),
        float(info.get("cost") or 0.0),
        int(tokens.get("input") or 0),
        int(tokens.get("output") or 0),
    )


async def _consume(
    runtime: AgentRuntime,
    target_id: str,
    callbacks: BridgeCallbacks,
    handle: EventBridgeHandle,
) -> None:
    try:
        async for event in runtime.subscribe_events():
            if handle.aborted:
                break
            dispatch_event(event, target_id, callbacks)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        if handle.aborted:
            return
        logger.warning("Event stream failed: %s", exc)
        callbacks.on_error(STREAM_ERROR_TASK_ID, f"Event stream error: {exc}")
        return

    if not handle.aborted:
        logger.info("Event stream closed by the runtime")
        if callbacks.on_closed is not None:
            callbacks.on_closed()


def subscribe(
    runtime: AgentRuntime, target_id: str, callbacks: BridgeCallbacks
) -> EventBridgeHandle:
    """Start consuming the runtime's event stream for one task.

    Must be called from a running event loop.

    Returns:
        A handle whose abort() stops the background task.
    """
    handle = EventBridgeHandle()
    handle._task = asyncio.create_task(
        _consume(runtime, target_id, callbacks, handle),
        name=f"event-bridge-{target_id}",
    )
    return handle
