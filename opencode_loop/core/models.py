"""Shared dataclasses for the loop orchestrator.

This module provides the types that flow between the classifier, the
pipeline stages, the orchestrator and the event sinks, kept here to avoid
circular dependencies.

Types:
- LoopStatus: Status values an agent can declare through loop_control
- TaskStatus: A classified verdict for one turn
- AssistantTurn: Pull-query result for the latest assistant message
- RuntimeEvent: One event from the runtime's push stream
- IterationRecord: Immutable record of one completed iteration
- RunResult / StopReason: How a run ended
- RunReport: Final aggregate handed to sinks and the CLI
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Name of the declare-status tool. Runtimes may namespace it
# (e.g. "mcp__loop__loop_control"), so matching is done by suffix.
LOOP_CONTROL_TOOL = "loop_control"


class LoopStatus(Enum):
    """Status an agent declares at the end of a turn."""

    COMPLETE = "complete"
    BLOCKED = "blocked"
    PROGRESS = "progress"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        """Whether this status ends the run."""
        return self in (LoopStatus.COMPLETE, LoopStatus.BLOCKED)

    @classmethod
    def parse(cls, raw: object) -> LoopStatus:
        """Map a raw status value to a LoopStatus.

        Only the exact values complete/blocked/progress are recognized.
        Anything else (including case or whitespace variants) maps to
        UNKNOWN; the agent is never rejected for a malformed status.
        """
        for member in (cls.COMPLETE, cls.BLOCKED, cls.PROGRESS):
            if raw == member.value:
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class TaskStatus:
    """Classified verdict for one turn.

    Attributes:
        status: The declared status.
        message: Free-text summary supplied with the status (may be empty).
    """

    status: LoopStatus
    message: str = ""


@dataclass(frozen=True)
class AssistantTurn:
    """Latest assistant-authored turn as returned by the pull query.

    Attributes:
        parts: Ordered output parts of the message (runtime wire dicts).
        cost: Cost of the message in USD.
        tokens_in: Input tokens consumed.
        tokens_out: Output tokens produced.
        message_id: Runtime identifier of the message, if known.
    """

    parts: list[dict[str, Any]]
    cost: float = 0.0
    tokens_in: int = 0
    tokens_out: int = 0
    message_id: str | None = None


@dataclass(frozen=True)
class RuntimeEvent:
    """One event from the runtime's push stream.

    Mirrors the OpenCode event wire shape ({"type": ..., "properties": {...}}).
    Runtimes without a native event stream synthesize the same shape.
    """

    type: str
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IterationRecord:
    """Immutable record of one completed iteration.

    Attributes:
        index: 1-based iteration number.
        status: The turn's verdict, or None if no status was declared.
        cost: Cost attributed to the turn.
        tokens_in: Input tokens attributed to the turn.
        tokens_out: Output tokens attributed to the turn.
        duration_ms: Wall-clock time from sending the prompt to reconciliation.
    """

    index: int
    status: TaskStatus | None
    cost: float = 0.0
    tokens_in: int = 0
    tokens_out: int = 0
    duration_ms: int = 0

    def __post_init__(self) -> None:
        if self.index < 1:
            raise ValueError("index must be >= 1")
        if self.cost < 0 or self.tokens_in < 0 or self.tokens_out < 0:
            raise ValueError("cost and token counts must be non-negative")
        if self.duration_ms < 0:
            raise ValueError("duration_ms must be non-negative")


class RunResult(Enum):
    """Tri-state outcome of a run, derived from the last record's verdict."""

    COMPLETE = "complete"
    BLOCKED = "blocked"
    INCOMPLETE = "incomplete"


class StopReason(Enum):
    """Why the iteration loop stopped."""

    TERMINAL_STATUS = "terminal_status"
    BUDGET_EXHAUSTED = "budget_exhausted"
    RETRIES_EXHAUSTED = "retries_exhausted"
    INTERRUPTED = "interrupted"
    RUNTIME_ERROR = "runtime_error"


@dataclass(frozen=True)
class RunReport:
    """Final report for a run.

    Attributes:
        records: Iteration records in index order.
        stop_reason: Why the loop stopped.
        total_cost: Sum of record costs.
        total_duration_ms: Sum of record durations.
        tokens_in: Sum of record input tokens.
        tokens_out: Sum of record output tokens.
    """

    records: tuple[IterationRecord, ...]
    stop_reason: StopReason
    total_cost: float = 0.0
    total_duration_ms: int = 0
    tokens_in: int = 0
    tokens_out: int = 0

    @classmethod
    def from_records(
        cls, records: list[IterationRecord], stop_reason: StopReason
    ) -> RunReport:
        """Build a report by aggregating the given records."""
        return cls(
            records=tuple(records),
            stop_reason=stop_reason,
            total_cost=sum(r.cost for r in records),
            total_duration_ms=sum(r.duration_ms for r in records),
            tokens_in=sum(r.tokens_in for r in records),
            tokens_out=sum(r.tokens_out for r in records),
        )

    @property
    def result(self) -> RunResult:
        """Result derived from the last record's verdict."""
        if not self.records or self.records[-1].status is None:
            return RunResult.INCOMPLETE
        last = self.records[-1].status.status
        if last == LoopStatus.COMPLETE:
            return RunResult.COMPLETE
        if last == LoopStatus.BLOCKED:
            return RunResult.BLOCKED
        return RunResult.INCOMPLETE

    @property
    def exit_code(self) -> int:
        """Process exit code for the CLI.

        0: complete, 2: blocked, 130: interrupted, 1: anything else.
        """
        if self.stop_reason == StopReason.INTERRUPTED:
            return 130
        result = self.result
        if result == RunResult.COMPLETE:
            return 0
        if result == RunResult.BLOCKED:
            return 2
        return 1
