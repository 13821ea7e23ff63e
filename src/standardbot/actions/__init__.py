"""Action execution for resolved requests."""

from standardbot.actions.executor import (
    ActionExecutor,
    ActionResult,
    ActionStatus,
    PreconditionSkip,
)
from standardbot.actions.merge_gate import (
    GateFailure,
    GateStatus,
    GateTimeout,
    MergeAborted,
    MergeGateState,
    MergeReadinessGate,
    NotMergeable,
    RetryPolicy,
    poll_until,
)

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "ActionStatus",
    "GateFailure",
    "GateStatus",
    "GateTimeout",
    "MergeAborted",
    "MergeGateState",
    "MergeReadinessGate",
    "NotMergeable",
    "PreconditionSkip",
    "RetryPolicy",
    "poll_until",
]
