"""Tests for the OpenCode HTTP runtime and server launcher."""

import json
import stat
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import httpx
import pytest

from opencode_loop.core.models import RuntimeEvent
from opencode_loop.core.protocols import RuntimeRequestError
from opencode_loop.infra.clients.opencode import (
    OpencodeRuntime,
    OpencodeServer,
    iter_sse_events,
    latest_assistant_turn,
)


async def _lines(*lines: str) -> AsyncIterator[str]:
    for line in lines:
        yield line


async def _collect(lines: AsyncIterator[str]) -> list[RuntimeEvent]:
    return [event async for event in iter_sse_events(lines)]


def _sse(*payloads: dict[str, Any]) -> bytes:
    return "".join(f"data: {json.dumps(p)}\n\n" for p in payloads).encode()


class Recorder:
    """MockTransport handler that records requests and answers from a table."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, text="not found")
        return self.routes[key]

    def body(self, index: int) -> Any:  # noqa: ANN401
        return json.loads(self.requests[index].content)


def _runtime(handler: Recorder) -> OpencodeRuntime:
    return OpencodeRuntime("http://opencode.test/", transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestIterSseEvents:
    @pytest.mark.asyncio
    async def test_parses_data_lines(self) -> None:
        events = await _collect(
            _lines(
                'data: {"type": "session.idle", "properties": {"sessionID": "s1"}}',
                "",
                ": keepalive comment",
                "",
                'data: {"type": "server.connected"}',
                "",
            )
        )
        assert events == [
            RuntimeEvent("session.idle", {"sessionID": "s1"}),
            RuntimeEvent("server.connected", {}),
        ]

    @pytest.mark.asyncio
    async def test_multiline_data_and_trailing_event(self) -> None:
        events = await _collect(
            _lines('data: {"type": "session.idle",', 'data: "properties": {}}')
        )
        assert events == [RuntimeEvent("session.idle", {})]

    @pytest.mark.asyncio
    async def test_skips_malformed_payloads(self) -> None:
        events = await _collect(
            _lines("data: not json", "", "data: [1, 2]", "", 'data: {"no": "type"}', "")
        )
        assert events == []


@pytest.mark.unit
class TestLatestAssistantTurn:
    def test_picks_last_assistant_message(self) -> None:
        messages = [
            {"info": {"id": "m1", "role": "assistant", "cost": 0.1}, "parts": [{"type": "text"}]},
            {
                "info": {
                    "id": "m2",
                    "role": "assistant",
                    "cost": 0.2,
                    "tokens": {"input": 10, "output": 5},
                },
                "parts": [{"type": "tool"}],
            },
            {"info": {"id": "m3", "role": "user"}, "parts": []},
        ]
        turn = latest_assistant_turn(messages)
        assert turn is not None
        assert turn.message_id == "m2"
        assert turn.parts == [{"type": "tool"}]
        assert (turn.cost, turn.tokens_in, turn.tokens_out) == (0.2, 10, 5)

    def test_no_assistant_message(self) -> None:
        assert latest_assistant_turn([{"info": {"role": "user"}, "parts": []}]) is None
        assert latest_assistant_turn([]) is None


@pytest.mark.unit
class TestOpencodeRuntime:
    @pytest.mark.asyncio
    async def test_create_task(self) -> None:
        handler = Recorder({("POST", "/session"): httpx.Response(200, json={"id": "ses_1"})})
        runtime = _runtime(handler)
        assert await runtime.create_task() == "ses_1"
        await runtime.close()

    @pytest.mark.asyncio
    async def test_create_task_without_id_raises(self) -> None:
        handler = Recorder({("POST", "/session"): httpx.Response(200, json={})})
        with pytest.raises(RuntimeRequestError, match="no id"):
            await _runtime(handler).create_task()

    @pytest.mark.asyncio
    async def test_send_prompt_body(self) -> None:
        handler = Recorder({("POST", "/session/ses_1/prompt_async"): httpx.Response(204)})
        runtime = _runtime(handler)
        await runtime.send_prompt(
            "ses_1", "Fix it", agent="loop", model="openrouter/anthropic/claude"
        )
        assert handler.body(0) == {
            "parts": [{"type": "text", "text": "Fix it"}],
            "agent": "loop",
            "model": {"providerID": "openrouter", "modelID": "anthropic/claude"},
        }

    @pytest.mark.asyncio
    async def test_send_prompt_without_agent_or_model(self) -> None:
        handler = Recorder({("POST", "/session/ses_1/prompt_async"): httpx.Response(204)})
        await _runtime(handler).send_prompt("ses_1", "hi")
        assert handler.body(0) == {"parts": [{"type": "text", "text": "hi"}]}

    @pytest.mark.asyncio
    async def test_http_error_becomes_runtime_request_error(self) -> None:
        handler = Recorder(
            {("POST", "/session/ses_1/prompt_async"): httpx.Response(500, text="kaput")}
        )
        with pytest.raises(RuntimeRequestError, match="HTTP 500: kaput"):
            await _runtime(handler).send_prompt("ses_1", "hi")

    @pytest.mark.asyncio
    async def test_transport_error_becomes_runtime_request_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        runtime = OpencodeRuntime("http://opencode.test", transport=httpx.MockTransport(handler))
        with pytest.raises(RuntimeRequestError, match="refused"):
            await runtime.create_task()

    @pytest.mark.asyncio
    async def test_get_latest_turn(self) -> None:
        messages = [
            {"info": {"id": "m1", "role": "user"}, "parts": []},
            {"info": {"id": "m2", "role": "assistant", "cost": 0.3}, "parts": [{"type": "text"}]},
        ]
        handler = Recorder({("GET", "/session/ses_1/message"): httpx.Response(200, json=messages)})
        turn = await _runtime(handler).get_latest_turn("ses_1")
        assert turn is not None
        assert turn.message_id == "m2"

    @pytest.mark.asyncio
    async def test_get_latest_turn_unexpected_shape(self) -> None:
        handler = Recorder({("GET", "/session/ses_1/message"): httpx.Response(200, json={})})
        assert await _runtime(handler).get_latest_turn("ses_1") is None

    @pytest.mark.asyncio
    async def test_abort_task(self) -> None:
        handler = Recorder({("POST", "/session/ses_1/abort"): httpx.Response(200, json=True)})
        await _runtime(handler).abort_task("ses_1")
        assert [r.url.path for r in handler.requests] == ["/session/ses_1/abort"]

    @pytest.mark.asyncio
    async def test_subscribe_events_streams_sse(self) -> None:
        body = _sse(
            {"type": "server.connected", "properties": {}},
            {"type": "session.idle", "properties": {"sessionID": "ses_1"}},
        )
        handler = Recorder({("GET", "/event"): httpx.Response(200, content=body)})
        runtime = _runtime(handler)
        events = [event async for event in runtime.subscribe_events()]
        assert [e.type for e in events] == ["server.connected", "session.idle"]
        await runtime.close()

    @pytest.mark.asyncio
    async def test_subscribe_events_http_error_raises(self) -> None:
        handler = Recorder({("GET", "/event"): httpx.Response(503)})
        with pytest.raises(httpx.HTTPStatusError):
            async for _ in _runtime(handler).subscribe_events():
                pass


def _fake_server_script(tmp_path: Path, body: str) -> str:
    script = tmp_path / "fake-opencode"
    script.write_text(f"#!/bin/sh\n{body}\n")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script)


@pytest.mark.integration
class TestOpencodeServer:
    @pytest.mark.asyncio
    async def test_start_reads_url_and_close_terminates(self, tmp_path: Path) -> None:
        command = _fake_server_script(
            tmp_path,
            'echo "starting"\n'
            'echo "opencode server listening on http://127.0.0.1:4321"\n'
            "exec sleep 30",
        )
        server = await OpencodeServer.start(tmp_path, command=command, timeout=10)
        try:
            assert server.url == "http://127.0.0.1:4321"
            assert server.process.returncode is None
        finally:
            await server.close()
        assert server.process.returncode is not None

    @pytest.mark.asyncio
    async def test_early_exit_raises(self, tmp_path: Path) -> None:
        command = _fake_server_script(tmp_path, 'echo "port in use"\nexit 3')
        with pytest.raises(RuntimeRequestError, match="exited with code 3"):
            await OpencodeServer.start(tmp_path, command=command, timeout=10)

    @pytest.mark.asyncio
    async def test_missing_executable_raises(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeRequestError, match="not found"):
            await OpencodeServer.start(tmp_path, command=str(tmp_path / "nope"))

    @pytest.mark.asyncio
    async def test_startup_timeout_kills_process(self, tmp_path: Path) -> None:
        command = _fake_server_script(tmp_path, "exec sleep 30")
        with pytest.raises(RuntimeRequestError, match="Timeout waiting for server"):
            await OpencodeServer.start(tmp_path, command=command, timeout=0.5)
