"""Unit tests for turn reconciliation."""

import pytest

from opencode_loop.core.models import AssistantTurn, LoopStatus, TaskStatus
from opencode_loop.pipeline.turn_reconciler import TurnCapture, resolve
from tests.fakes.runtime import TASK_ID, FakeRuntime, TurnScript, request_error, tool_part


def _turn_with(status: str, message: str = "") -> AssistantTurn:
    part = tool_part("loop_control", tool_input={"status": status, "message": message})
    return AssistantTurn(parts=[part], cost=0.5, tokens_in=100, tokens_out=20, message_id="m1")


class FailingPullRuntime(FakeRuntime):
    async def get_latest_turn(self, task_id: str) -> AssistantTurn | None:
        self.pull_calls += 1
        raise request_error("GET /session/ses_test/message returned HTTP 500")


@pytest.mark.unit
class TestResolve:
    @pytest.mark.asyncio
    async def test_inline_verdict_skips_pull_query(self) -> None:
        runtime = FakeRuntime()
        inline = TaskStatus(LoopStatus.COMPLETE, "done")
        reconciled = await resolve(inline, runtime, TASK_ID)
        assert reconciled.verdict == inline
        assert reconciled.source == "inline"
        assert reconciled.turn is None
        assert runtime.pull_calls == 0

    @pytest.mark.asyncio
    async def test_pull_fallback_classifies_latest_turn(self) -> None:
        runtime = FakeRuntime([TurnScript(latest=_turn_with("progress", "step"))])
        await runtime.send_prompt(TASK_ID, "go")
        reconciled = await resolve(None, runtime, TASK_ID)
        assert reconciled.verdict == TaskStatus(LoopStatus.PROGRESS, "step")
        assert reconciled.source == "pull"
        assert reconciled.turn is not None
        assert reconciled.turn.cost == 0.5
        assert runtime.pull_calls == 1

    @pytest.mark.asyncio
    async def test_pull_without_assistant_message_is_absent(self) -> None:
        runtime = FakeRuntime()
        reconciled = await resolve(None, runtime, TASK_ID)
        assert reconciled.verdict is None
        assert reconciled.turn is None
        assert runtime.pull_calls == 1

    @pytest.mark.asyncio
    async def test_pull_failure_is_absent(self) -> None:
        runtime = FailingPullRuntime()
        reconciled = await resolve(None, runtime, TASK_ID)
        assert reconciled.verdict is None
        assert reconciled.source == "pull"


@pytest.mark.unit
class TestTurnCapture:
    def test_usage_keeps_latest_totals_per_message(self) -> None:
        capture = TurnCapture()
        capture.record_usage("m1", 0.1, 100, 10)
        capture.record_usage("m1", 0.3, 150, 40)
        capture.record_usage("m2", 0.2, 50, 5)
        assert capture.usage_totals() == pytest.approx((0.5, 200, 45))

    def test_reset_clears_verdict_and_usage(self) -> None:
        capture = TurnCapture()
        capture.record_verdict(TaskStatus(LoopStatus.PROGRESS))
        capture.record_usage("m1", 0.1, 1, 1)
        capture.reset()
        assert capture.verdict is None
        assert capture.usage_totals() == (0, 0, 0)

    def test_later_verdict_replaces_earlier(self) -> None:
        capture = TurnCapture()
        capture.record_verdict(TaskStatus(LoopStatus.PROGRESS, "a"))
        capture.record_verdict(TaskStatus(LoopStatus.COMPLETE, "b"))
        assert capture.verdict == TaskStatus(LoopStatus.COMPLETE, "b")
