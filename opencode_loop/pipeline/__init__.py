"""Pipeline stages driven by LoopOrchestrator.

Each module is one stage with explicit inputs/outputs that can be tested in
isolation.

Modules:
    event_bridge: Push-stream consumer translating runtime events to callbacks
    turn_reconciler: Inline-vs-pull verdict reconciliation for a finished turn
    idle_retry_policy: Wait for idle/error with bounded retries and backoff
    wait_slot: Single-waiter cells (turn wait, pause gate)
"""

from opencode_loop.pipeline.event_bridge import (
    BridgeCallbacks,
    EventBridgeHandle,
    subscribe,
)
from opencode_loop.pipeline.idle_retry_policy import (
    IdleWaitCoordinator,
    RetryConfig,
    WaitOutcome,
)
from opencode_loop.pipeline.turn_reconciler import (
    ReconciledTurn,
    TurnCapture,
    resolve,
)
from opencode_loop.pipeline.wait_slot import PauseGate, SingleSlot, SlotBusyError

__all__ = [
    "BridgeCallbacks",
    "EventBridgeHandle",
    "IdleWaitCoordinator",
    "PauseGate",
    "ReconciledTurn",
    "RetryConfig",
    "SingleSlot",
    "SlotBusyError",
    "TurnCapture",
    "WaitOutcome",
    "resolve",
    "subscribe",
]
