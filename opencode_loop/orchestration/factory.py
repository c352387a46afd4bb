"""Factory functions for LoopOrchestrator and its runtime.

Usage:
    config = LoopConfig.from_env(prompt="Fix the tests", cwd=Path("."))
    async with open_runtime(config) as handle:
        orchestrator = create_orchestrator(config, handle, event_sink=sink)
        report = await orchestrator.run(interrupt_event=interrupt_event)

    # With a fake runtime for testing
    orchestrator = create_orchestrator(config, RuntimeHandle(fake_runtime))
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from opencode_loop.orchestration.orchestrator import LoopOrchestrator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from opencode_loop.core.protocols import AgentRuntime, LoopEventSink
    from opencode_loop.infra.clients.opencode import OpencodeServer
    from opencode_loop.infra.io.config import LoopConfig

__all__ = ["RuntimeHandle", "create_orchestrator", "create_runtime", "open_runtime"]

logger = logging.getLogger(__name__)


@dataclass
class RuntimeHandle:
    """A runtime plus whatever was launched to back it."""

    runtime: AgentRuntime
    server: OpencodeServer | None = None
    server_url: str | None = None

    async def close(self) -> None:
        try:
            await self.runtime.close()
        finally:
            if self.server is not None:
                logger.info("Shutting down server...")
                await self.server.close()


async def create_runtime(config: LoopConfig) -> RuntimeHandle:
    """Build the runtime selected by config.runtime.

    For OpenCode, attaches to config.attach or launches ``opencode serve`` in
    config.cwd.

    Raises:
        RuntimeRequestError: If the OpenCode server cannot be started.
    """
    if config.runtime == "claude":
        from opencode_loop.infra.clients.claude_runtime import ClaudeAgentRuntime

        return RuntimeHandle(ClaudeAgentRuntime(config.cwd, model=config.model))

    from opencode_loop.infra.clients.opencode import OpencodeRuntime, OpencodeServer

    if config.attach:
        logger.info("Attaching to existing server at %s", config.attach)
        return RuntimeHandle(OpencodeRuntime(config.attach), server_url=config.attach)

    server = await OpencodeServer.start(
        config.cwd, hostname=config.hostname, port=config.port
    )
    return RuntimeHandle(OpencodeRuntime(server.url), server=server, server_url=server.url)


@contextlib.asynccontextmanager
async def open_runtime(config: LoopConfig) -> AsyncIterator[RuntimeHandle]:
    """Create the runtime and close it (and any launched server) on exit."""
    handle = await create_runtime(config)
    try:
        yield handle
    finally:
        await handle.close()


def create_orchestrator(
    config: LoopConfig,
    handle: RuntimeHandle,
    *,
    event_sink: LoopEventSink | None = None,
) -> LoopOrchestrator:
    """Create a LoopOrchestrator bound to the given runtime."""
    return LoopOrchestrator(
        config,
        handle.runtime,
        event_sink=event_sink,
        server_url=handle.server_url,
    )
