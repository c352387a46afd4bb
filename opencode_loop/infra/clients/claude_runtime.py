"""Claude Agent SDK runtime adapter.

ClaudeAgentRuntime implements AgentRuntime on top of ClaudeSDKClient. The
SDK has no server-side event stream, so SDK messages are translated into the
same RuntimeEvent shapes the OpenCode server emits:

    ToolUseBlock     -> message.part.updated (state "running")
    ToolResultBlock  -> message.part.updated (state "completed" or "error")
    ResultMessage    -> message.updated (usage), then session.idle or
                        session.error

The loop_control tool is served in-process through an SDK MCP server named
"loop", so the agent sees it as ``mcp__loop__loop_control``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import TYPE_CHECKING, Any

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ResultMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    create_sdk_mcp_server,
    tool,
)

from opencode_loop.core.models import LOOP_CONTROL_TOOL, AssistantTurn, RuntimeEvent
from opencode_loop.core.protocols import RuntimeRequestError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path

    from claude_agent_sdk.types import McpSdkServerConfig

logger = logging.getLogger(__name__)

MCP_SERVER_NAME = "loop"

LOOP_SYSTEM_APPEND = (
    f"You are running inside an automated loop. End EVERY turn by calling the "
    f"{LOOP_CONTROL_TOOL} tool: 'complete' when all work is done, 'blocked' "
    f"when you cannot proceed, 'progress' only when clearly more work remains."
)

_TOOL_DESCRIPTION = (
    "MANDATORY: Signal your current status to the loop orchestrator. "
    "You MUST call this tool as the LAST action of EVERY turn. "
    "Use 'complete' when ALL tasks are finished, 'blocked' when you cannot "
    "proceed, or 'progress' ONLY when there is clearly more work remaining. "
    "Do NOT use 'progress' if all work is done; use 'complete' instead."
)

_TOOL_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "status": {
            "type": "string",
            "enum": ["complete", "blocked", "progress"],
            "description": (
                "'complete' = all tasks finished successfully, "
                "'blocked' = cannot proceed due to an issue, "
                "'progress' = reporting a checkpoint, will continue working"
            ),
        },
        "message": {
            "type": "string",
            "description": (
                "A brief summary of what was accomplished, what is blocked, "
                "or current progress"
            ),
        },
    },
    "required": ["status", "message"],
}


def loop_control_reply(status: object, message: str) -> str:
    """Text returned to the agent after a loop_control call."""
    if status == "complete":
        return (
            "Loop status set to COMPLETE. The orchestrator will end the loop. "
            f"Summary: {message}"
        )
    if status == "blocked":
        return f"Loop status set to BLOCKED. The orchestrator will stop. Reason: {message}"
    if status == "progress":
        return (
            "Progress recorded. The orchestrator will continue the loop. "
            f"Progress: {message}"
        )
    return (
        f"Unrecognized status {status!r}. Call {LOOP_CONTROL_TOOL} again with "
        "status 'complete', 'blocked' or 'progress'."
    )


def create_loop_control_server() -> McpSdkServerConfig:
    """Build the in-process MCP server exposing loop_control."""

    @tool(LOOP_CONTROL_TOOL, _TOOL_DESCRIPTION, _TOOL_SCHEMA)
    async def loop_control(args: dict[str, Any]) -> dict[str, Any]:
        message = args.get("message")
        text = loop_control_reply(
            args.get("status"), message if isinstance(message, str) else ""
        )
        return {"content": [{"type": "text", "text": text}]}

    return create_sdk_mcp_server(name=MCP_SERVER_NAME, version="1.0.0", tools=[loop_control])


def _tool_title(tool_input: dict[str, Any]) -> str | None:
    for key in ("description", "command", "file_path", "pattern", "path", "url"):
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _result_text(content: object) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [
            item.get("text", "")
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        return "\n".join(texts)
    return ""


class SdkEventTranslator:
    """Translates one task's SDK messages into RuntimeEvents.

    Also keeps the parts of the current turn so the pull query can be
    answered without a server.
    """

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        self.turn_count = 0
        self.parts: list[dict[str, Any]] = []
        self.cost = 0.0
        self.tokens_in = 0
        self.tokens_out = 0
        self._tool_parts: dict[str, dict[str, Any]] = {}

    @property
    def message_id(self) -> str:
        return f"{self.task_id}-turn-{self.turn_count}"

    def start_turn(self) -> None:
        self.turn_count += 1
        self.parts = []
        self._tool_parts = {}
        self.cost = 0.0
        self.tokens_in = 0
        self.tokens_out = 0

    def latest_turn(self) -> AssistantTurn | None:
        if self.turn_count == 0:
            return None
        return AssistantTurn(
            parts=list(self.parts),
            cost=self.cost,
            tokens_in=self.tokens_in,
            tokens_out=self.tokens_out,
            message_id=self.message_id,
        )

    def _part_event(self, part: dict[str, Any]) -> RuntimeEvent:
        return RuntimeEvent("message.part.updated", {"part": dict(part)})

    def translate(self, message: object) -> list[RuntimeEvent]:
        """Translate one SDK message into zero or more RuntimeEvents."""
        events: list[RuntimeEvent] = []
        if isinstance(message, (AssistantMessage, UserMessage)):
            content = message.content if isinstance(message.content, list) else []
            for block in content:
                if isinstance(block, TextBlock):
                    self.parts.append(
                        {"type": "text", "sessionID": self.task_id, "text": block.text}
                    )
                elif isinstance(block, ToolUseBlock):
                    events.append(self._on_tool_use(block))
                elif isinstance(block, ToolResultBlock):
                    event = self._on_tool_result(block)
                    if event is not None:
                        events.append(event)
        elif isinstance(message, ResultMessage):
            events.extend(self._on_result(message))
        return events

    def _on_tool_use(self, block: ToolUseBlock) -> RuntimeEvent:
        tool_input = block.input if isinstance(block.input, dict) else {}
        part = {
            "id": block.id,
            "type": "tool",
            "sessionID": self.task_id,
            "tool": block.name,
            "state": {
                "status": "running",
                "input": tool_input,
                "title": _tool_title(tool_input),
            },
        }
        self._tool_parts[block.id] = part
        self.parts.append(part)
        return self._part_event(part)

    def _on_tool_result(self, block: ToolResultBlock) -> RuntimeEvent | None:
        part = self._tool_parts.get(block.tool_use_id)
        if part is None:
            logger.debug("Tool result for unknown tool_use_id %s", block.tool_use_id)
            return None
        previous = part["state"]
        output = _result_text(block.content)
        if block.is_error:
            state = {"status": "error", "input": previous["input"], "error": output}
        else:
            state = {
                "status": "completed",
                "input": previous["input"],
                "title": previous.get("title"),
                "output": output,
            }
        part["state"] = state
        return self._part_event(part)

    def _on_result(self, message: ResultMessage) -> list[RuntimeEvent]:
        usage = message.usage or {}
        self.cost = float(message.total_cost_usd or 0.0)
        self.tokens_in = int(usage.get("input_tokens") or 0)
        self.tokens_out = int(usage.get("output_tokens") or 0)
        events = [
            RuntimeEvent(
                "message.updated",
                {
                    "info": {
                        "id": self.message_id,
                        "sessionID": self.task_id,
                        "role": "assistant",
                        "cost": self.cost,
                        "tokens": {"input": self.tokens_in, "output": self.tokens_out},
                    }
                },
            )
        ]
        if message.is_error:
            events.append(
                RuntimeEvent(
                    "session.error",
                    {
                        "sessionID": self.task_id,
                        "error": message.result or message.subtype,
                    },
                )
            )
        else:
            events.append(RuntimeEvent("session.idle", {"sessionID": self.task_id}))
        return events


class ClaudeAgentRuntime:
    """AgentRuntime backed by the Claude Agent SDK."""

    def __init__(
        self,
        cwd: Path,
        *,
        model: str | None = None,
        client_factory: Callable[[ClaudeAgentOptions], Any] = ClaudeSDKClient,
    ) -> None:
        self.cwd = cwd
        self.model = model
        self._client_factory = client_factory
        self._clients: dict[str, Any] = {}
        self._translators: dict[str, SdkEventTranslator] = {}
        self._pumps: dict[str, asyncio.Task[None]] = {}
        self._events: asyncio.Queue[RuntimeEvent | None] = asyncio.Queue()

    def build_options(self, model: str | None = None) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            cwd=str(self.cwd),
            permission_mode="bypassPermissions",
            model=model or self.model,
            system_prompt={
                "type": "preset",
                "preset": "claude_code",
                "append": LOOP_SYSTEM_APPEND,
            },
            setting_sources=["project", "user"],
            mcp_servers={MCP_SERVER_NAME: create_loop_control_server()},
        )

    def _client(self, task_id: str) -> Any:  # noqa: ANN401
        try:
            return self._clients[task_id]
        except KeyError:
            raise RuntimeRequestError(f"Unknown task: {task_id}") from None

    async def create_task(self) -> str:
        task_id = f"claude-{uuid.uuid4().hex[:12]}"
        client = self._client_factory(self.build_options())
        try:
            await client.connect()
        except Exception as exc:
            raise RuntimeRequestError(f"Failed to start Claude SDK client: {exc}") from exc
        self._clients[task_id] = client
        self._translators[task_id] = SdkEventTranslator(task_id)
        logger.info("Created Claude SDK task %s", task_id)
        return task_id

    async def send_prompt(
        self,
        task_id: str,
        text: str,
        *,
        agent: str | None = None,
        model: str | None = None,
    ) -> None:
        client = self._client(task_id)
        pump = self._pumps.get(task_id)
        if pump is not None and not pump.done():
            raise RuntimeRequestError(f"Task {task_id} is still running a turn")
        translator = self._translators[task_id]
        translator.start_turn()
        try:
            await client.query(text)
        except Exception as exc:
            raise RuntimeRequestError(f"Failed to send prompt: {exc}") from exc
        self._pumps[task_id] = asyncio.create_task(
            self._pump(client, translator), name=f"claude-pump-{task_id}"
        )

    async def _pump(self, client: Any, translator: SdkEventTranslator) -> None:  # noqa: ANN401
        self._events.put_nowait(
            RuntimeEvent(
                "session.status",
                {"sessionID": translator.task_id, "status": {"type": "busy"}},
            )
        )
        try:
            async for message in client.receive_response():
                for event in translator.translate(message):
                    self._events.put_nowait(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Claude SDK stream failed: %s", exc)
            self._events.put_nowait(
                RuntimeEvent(
                    "session.error",
                    {"sessionID": translator.task_id, "error": str(exc)},
                )
            )

    async def get_latest_turn(self, task_id: str) -> AssistantTurn | None:
        translator = self._translators.get(task_id)
        return translator.latest_turn() if translator is not None else None

    async def abort_task(self, task_id: str) -> None:
        await self._client(task_id).interrupt()

    async def subscribe_events(self) -> AsyncIterator[RuntimeEvent]:
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        for pump in self._pumps.values():
            pump.cancel()
        for pump in self._pumps.values():
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        for task_id, client in self._clients.items():
            try:
                await client.disconnect()
            except Exception as exc:
                logger.debug("disconnect failed for %s: %s", task_id, exc)
        self._clients.clear()
        self._events.put_nowait(None)
