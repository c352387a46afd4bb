"""Classification of loop_control tool calls into turn verdicts.

The agent declares its status by calling the loop_control tool. Parts arrive
in the runtime's wire shape:

    {"type": "tool", "tool": "loop_control",
     "state": {"status": "completed", "input": {"status": "...", "message": "..."}}}

Only settled calls count: a part still pending or running is skipped while
scanning backwards.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from opencode_loop.core.models import LOOP_CONTROL_TOOL, LoopStatus, TaskStatus

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)


def is_loop_control_tool(tool_name: object) -> bool:
    """Return True if tool_name denotes loop_control, namespaced or not."""
    return isinstance(tool_name, str) and tool_name.endswith(LOOP_CONTROL_TOOL)


def classify_tool_part(part: Mapping[str, Any]) -> TaskStatus | None:
    """Classify a single part.

    Returns:
        A TaskStatus if the part is a completed or errored loop_control call,
        otherwise None.
    """
    if part.get("type") != "tool" or not is_loop_control_tool(part.get("tool")):
        return None
    state = part.get("state")
    if not isinstance(state, dict):
        return None
    state_status = state.get("status")
    if state_status == "completed":
        raw_input = state.get("input")
        if not isinstance(raw_input, dict):
            return TaskStatus(status=LoopStatus.UNKNOWN, message="")
        message = raw_input.get("message")
        return TaskStatus(
            status=LoopStatus.parse(raw_input.get("status")),
            message=message if isinstance(message, str) else "",
        )
    if state_status == "error":
        return TaskStatus(
            status=LoopStatus.UNKNOWN,
            message=f"{LOOP_CONTROL_TOOL} tool errored: {state.get('error')}",
        )
    return None


def classify(parts: Sequence[Mapping[str, Any]]) -> TaskStatus | None:
    """Classify one turn's output parts into a verdict.

    Scans from the most recent part backwards and returns the verdict of the
    first settled loop_control call. Earlier calls in the same turn are
    ignored.

    Returns:
        The verdict, or None if the agent never called loop_control this turn.
    """
    for index in range(len(parts) - 1, -1, -1):
        verdict = classify_tool_part(parts[index])
        if verdict is not None:
            logger.debug(
                "loop_control found at part[%d]: %s", index, verdict.status.value
            )
            return verdict
    logger.debug("No settled loop_control call among %d parts", len(parts))
    return None
