"""Contract test for AgentRuntime implementations.

FakeRuntime stands in for both real runtimes in orchestrator tests, so all
three must expose the same surface.
"""

import inspect

import pytest

from opencode_loop.core.protocols import AgentRuntime
from opencode_loop.infra.clients.claude_runtime import ClaudeAgentRuntime
from opencode_loop.infra.clients.opencode import OpencodeRuntime
from tests.fakes.runtime import FakeRuntime

RUNTIMES = [FakeRuntime, OpencodeRuntime, ClaudeAgentRuntime]


def _protocol_methods() -> list[str]:
    return sorted(
        name
        for name, _ in inspect.getmembers(AgentRuntime, predicate=inspect.isfunction)
        if not name.startswith("_")
    )


@pytest.mark.unit
@pytest.mark.parametrize("runtime_cls", RUNTIMES)
def test_runtime_implements_protocol_methods(runtime_cls: type) -> None:
    missing = [name for name in _protocol_methods() if not hasattr(runtime_cls, name)]
    assert not missing, f"{runtime_cls.__name__} missing: {missing}"


@pytest.mark.unit
@pytest.mark.parametrize("runtime_cls", RUNTIMES)
def test_runtime_method_kinds_match(runtime_cls: type) -> None:
    """Coroutines stay coroutines; subscribe_events is an async generator."""
    for name in _protocol_methods():
        impl = getattr(runtime_cls, name)
        if name == "subscribe_events":
            assert inspect.isasyncgenfunction(impl), name
        else:
            assert inspect.iscoroutinefunction(impl), f"{runtime_cls.__name__}.{name}"


@pytest.mark.unit
@pytest.mark.parametrize("runtime_cls", RUNTIMES)
def test_send_prompt_keywords(runtime_cls: type) -> None:
    params = inspect.signature(runtime_cls.send_prompt).parameters
    assert params["agent"].kind is inspect.Parameter.KEYWORD_ONLY
    assert params["model"].kind is inspect.Parameter.KEYWORD_ONLY
