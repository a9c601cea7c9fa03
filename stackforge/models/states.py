"""Per-stack deployment state machine models."""

from __future__ import annotations

from enum import Enum


class StackState(str, Enum):
    """Lifecycle state of one stack within a deployment run."""

    PENDING = "pending"
    RESOLVING = "resolving"
    PUBLISHING = "publishing"
    APPLYING = "applying"
    SUCCEEDED = "succeeded"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    DELETING = "deleting"
    DELETED = "deleted"


# Valid state transitions, enforced by StackMachine.
# Terminal states have no outgoing transitions within a run.
VALID_TRANSITIONS: dict[StackState, set[StackState]] = {
    StackState.PENDING: {
        StackState.RESOLVING,
        StackState.DELETING,
        StackState.FAILED,
    },
    StackState.RESOLVING: {
        StackState.PUBLISHING,
        StackState.APPLYING,
        StackState.FAILED,
    },
    StackState.PUBLISHING: {StackState.APPLYING, StackState.FAILED},
    StackState.APPLYING: {
        StackState.SUCCEEDED,
        StackState.ROLLED_BACK,
        StackState.FAILED,
    },
    StackState.DELETING: {StackState.DELETED, StackState.FAILED},
    StackState.SUCCEEDED: set(),
    StackState.ROLLED_BACK: set(),
    StackState.FAILED: set(),
    StackState.DELETED: set(),
}

TERMINAL_STATES: frozenset[StackState] = frozenset(
    state for state, targets in VALID_TRANSITIONS.items() if not targets
)
