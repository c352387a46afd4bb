"""In-memory fake implementations for testing.

Fakes are preferred over mocks because they:

1. Implement real protocol contracts, catching interface mismatches at test time
2. Provide deterministic, predictable behavior without call-order dependencies
3. Enable behavior-based testing (assert outputs/state) over interaction testing

Available fakes:
- FakeRuntime: Scripted AgentRuntime with an in-memory event stream
- FakeEventSink: Event capture with completeness verification

Usage:
    from tests.fakes import FakeRuntime, FakeEventSink
    from tests.fakes.runtime import idle_event, loop_control_part

    runtime = FakeRuntime([[loop_control_part("complete", "done"), idle_event()]])
"""

from tests.fakes.event_sink import FakeEventSink, RecordedEvent
from tests.fakes.runtime import FakeRuntime, TurnScript

__all__ = ["FakeEventSink", "FakeRuntime", "RecordedEvent", "TurnScript"]
