"""Turn reconciliation: push-captured verdict first, pull query as fallback.

The idle notification and the stored message history can race: a turn may
be reported idle before its parts are final in the pull query. A verdict the
event bridge captured live is therefore authoritative; the pull query only
runs when nothing was captured.

The pull query is session-scoped ("latest assistant message"), so if a
runtime interleaves assistant messages the fallback may read a neighbouring
turn. Runtimes that answer one turn at a time (OpenCode sessions, the Claude
SDK client) do not hit this.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from opencode_loop.core.protocols import RuntimeRequestError
from opencode_loop.domain.status import classify

if TYPE_CHECKING:
    from opencode_loop.core.models import AssistantTurn, TaskStatus
    from opencode_loop.core.protocols import AgentRuntime

logger = logging.getLogger(__name__)


@dataclass
class TurnCapture:
    """Per-turn values captured from the push stream.

    Reset at the start of every iteration so nothing from a previous turn is
    attributed to the current one.
    """

    verdict: TaskStatus | None = None
    usage: dict[str, tuple[float, int, int]] = field(default_factory=dict)

    def reset(self) -> None:
        self.verdict = None
        self.usage.clear()

    def record_verdict(self, verdict: TaskStatus) -> None:
        self.verdict = verdict

    def record_usage(
        self, message_id: str, cost: float, tokens_in: int, tokens_out: int
    ) -> None:
        # message.updated repeats as a message grows; keep the latest totals.
        self.usage[message_id] = (cost, tokens_in, tokens_out)

    def usage_totals(self) -> tuple[float, int, int]:
        """Sum (cost, tokens_in, tokens_out) over the turn's messages."""
        cost = sum(u[0] for u in self.usage.values())
        tokens_in = sum(u[1] for u in self.usage.values())
        tokens_out = sum(u[2] for u in self.usage.values())
        return cost, tokens_in, tokens_out


@dataclass(frozen=True)
class ReconciledTurn:
    """Outcome of reconciling one turn.

    Attributes:
        verdict: The turn's verdict, or None if no status was declared.
        source: "inline" when the push-captured verdict was used, "pull"
            when the pull query ran.
        turn: The pull query result (None on the inline path or if the
            runtime had no assistant message).
    """

    verdict: TaskStatus | None
    source: str
    turn: AssistantTurn | None = None


async def resolve(
    inline_verdict: TaskStatus | None, runtime: AgentRuntime, target_id: str
) -> ReconciledTurn:
    """Resolve the authoritative verdict for the turn that just ended.

    The pull query is not called when inline_verdict is present.
    """
    if inline_verdict is not None:
        logger.debug("Using inline verdict: %s", inline_verdict.status.value)
        return ReconciledTurn(verdict=inline_verdict, source="inline")

    try:
        turn = await runtime.get_latest_turn(target_id)
    except RuntimeRequestError as exc:
        logger.warning("Pull query for %s failed: %s", target_id, exc)
        return ReconciledTurn(verdict=None, source="pull")

    if turn is None:
        logger.debug("No assistant message found for %s", target_id)
        return ReconciledTurn(verdict=None, source="pull")
    return ReconciledTurn(verdict=classify(turn.parts), source="pull", turn=turn)
