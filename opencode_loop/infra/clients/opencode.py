"""OpenCode runtime adapter over the OpenCode server HTTP API.

OpencodeRuntime implements AgentRuntime with httpx:

    POST /session                     create a session
    POST /session/{id}/prompt_async   send a prompt without waiting (204)
    GET  /session/{id}/message        message history (pull query)
    POST /session/{id}/abort          abort the in-flight turn
    GET  /event                       server-sent event stream

OpencodeServer launches ``opencode serve`` in the target project and waits
for the line announcing its URL.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
from typing import TYPE_CHECKING, Any

import httpx

from opencode_loop.core.models import AssistantTurn, RuntimeEvent
from opencode_loop.core.protocols import RuntimeRequestError
from opencode_loop.infra.io.config import split_model

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_STARTUP_TIMEOUT_SECONDS = 30.0
_LISTENING_RE = re.compile(r"on\s+(https?://[^\s]+)")


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[RuntimeEvent]:
    """Parse server-sent event lines into RuntimeEvents.

    Only ``data:`` fields are used; an event is dispatched at each blank line.
    Payloads that are not a JSON object with a "type" are skipped.
    """
    data: list[str] = []
    async for line in lines:
        if line == "":
            if data:
                event = _decode_event("\n".join(data))
                data.clear()
                if event is not None:
                    yield event
            continue
        if line.startswith("data:"):
            data.append(line[5:].lstrip(" "))
    if data:
        event = _decode_event("\n".join(data))
        if event is not None:
            yield event


def _decode_event(payload: str) -> RuntimeEvent | None:
    try:
        raw = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON event payload: %.200s", payload)
        return None
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        return None
    properties = raw.get("properties")
    return RuntimeEvent(
        type=raw["type"],
        properties=properties if isinstance(properties, dict) else {},
    )


def latest_assistant_turn(messages: list[dict[str, Any]]) -> AssistantTurn | None:
    """Pick the last assistant message from a session's message list."""
    for message in reversed(messages):
        info = message.get("info") or {}
        if info.get("role") != "assistant":
            continue
        tokens = info.get("tokens") or {}
        return AssistantTurn(
            parts=list(message.get("parts") or []),
            cost=float(info.get("cost") or 0.0),
            tokens_in=int(tokens.get("input") or 0),
            tokens_out=int(tokens.get("output") or 0),
            message_id=info.get("id"),
        )
    return None


class OpencodeRuntime:
    """AgentRuntime backed by an OpenCode server."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    async def _request(
        self, method: str, path: str, *, json_body: Any = None  # noqa: ANN401
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, json=json_body)
        except httpx.HTTPError as exc:
            raise RuntimeRequestError(f"{method} {path} failed: {exc}") from exc
        if not response.is_success:
            raise RuntimeRequestError(
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:500]}"
            )
        return response

    async def create_task(self) -> str:
        response = await self._request("POST", "/session", json_body={})
        session_id = response.json().get("id")
        if not isinstance(session_id, str) or not session_id:
            raise RuntimeRequestError(f"Session response had no id: {response.text[:500]}")
        logger.info("Created OpenCode session %s", session_id)
        return session_id

    async def send_prompt(
        self,
        task_id: str,
        text: str,
        *,
        agent: str | None = None,
        model: str | None = None,
    ) -> None:
        body: dict[str, Any] = {"parts": [{"type": "text", "text": text}]}
        if agent:
            body["agent"] = agent
        if model:
            provider_id, model_id = split_model(model)
            body["model"] = {"providerID": provider_id, "modelID": model_id}
        await self._request("POST", f"/session/{task_id}/prompt_async", json_body=body)
        logger.debug("Prompt sent to %s (%d chars)", task_id, len(text))

    async def get_latest_turn(self, task_id: str) -> AssistantTurn | None:
        response = await self._request("GET", f"/session/{task_id}/message")
        messages = response.json()
        if not isinstance(messages, list):
            return None
        return latest_assistant_turn(messages)

    async def abort_task(self, task_id: str) -> None:
        await self._request("POST", f"/session/{task_id}/abort")

    async def subscribe_events(self) -> AsyncIterator[RuntimeEvent]:
        # No read timeout: the stream is idle while the agent thinks.
        async with self._client.stream(
            "GET", "/event", timeout=httpx.Timeout(None, connect=10.0)
        ) as response:
            response.raise_for_status()
            async for event in iter_sse_events(response.aiter_lines()):
                yield event

    async def close(self) -> None:
        await self._client.aclose()


class OpencodeServer:
    """A child ``opencode serve`` process."""

    def __init__(self, process: asyncio.subprocess.Process, url: str) -> None:
        self.process = process
        self.url = url
        self._drain_task: asyncio.Task[None] | None = None

    @classmethod
    async def start(
        cls,
        cwd: Path,
        *,
        hostname: str = "127.0.0.1",
        port: int = 0,
        timeout: float = DEFAULT_STARTUP_TIMEOUT_SECONDS,
        command: str = "opencode",
    ) -> OpencodeServer:
        """Launch the server in cwd and wait until it reports its URL.

        Raises:
            RuntimeRequestError: If the executable is missing, the process
                exits early, or no URL is reported within timeout seconds.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                "serve",
                f"--hostname={hostname}",
                f"--port={port}",
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as exc:
            raise RuntimeRequestError(f"'{command}' executable not found on PATH") from exc

        try:
            url = await asyncio.wait_for(_read_server_url(process), timeout)
        except TimeoutError:
            process.kill()
            await process.wait()
            raise RuntimeRequestError(
                f"Timeout waiting for server to start after {timeout}s"
            ) from None
        except RuntimeRequestError:
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise

        server = cls(process, url)
        server._drain_task = asyncio.create_task(server._drain_output())
        logger.info("OpenCode server listening on %s (pid %s)", url, process.pid)
        return server

    async def _drain_output(self) -> None:
        stdout = self.process.stdout
        if stdout is None:
            return
        while line := await stdout.readline():
            logger.debug("opencode: %s", line.decode(errors="replace").rstrip())

    async def close(self) -> None:
        """Terminate the server, killing it if it does not exit promptly."""
        if self.process.returncode is None:
            self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), 5.0)
            except TimeoutError:
                self.process.kill()
                await self.process.wait()
        if self._drain_task is not None:
            self._drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._drain_task


async def _read_server_url(process: asyncio.subprocess.Process) -> str:
    assert process.stdout is not None
    output: list[str] = []
    while True:
        raw = await process.stdout.readline()
        if not raw:
            code = await process.wait()
            raise RuntimeRequestError(
                f"Server exited with code {code}\nServer output: {''.join(output)}"
            )
        line = raw.decode(errors="replace")
        output.append(line)
        if line.startswith("opencode server listening"):
            match = _LISTENING_RE.search(line)
            if match is None:
                raise RuntimeRequestError(f"Failed to parse server url from output: {line}")
            return match.group(1)
