"""Classification of provisioner stack statuses.

The provisioner speaks CloudFormation's status vocabulary. The orchestrator
only needs to know whether a status is still moving, and if not, which
terminal outcome it represents.
"""

from __future__ import annotations

from enum import Enum


class StatusClass(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    DELETED = "deleted"


_SUCCEEDED = {
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "IMPORT_COMPLETE",
}

# The stack reverted to its prior live state.
_ROLLED_BACK = {
    "ROLLBACK_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
    "IMPORT_ROLLBACK_COMPLETE",
}

_FAILED = {
    "CREATE_FAILED",
    "ROLLBACK_FAILED",
    "DELETE_FAILED",
    "UPDATE_FAILED",
    "UPDATE_ROLLBACK_FAILED",
    "IMPORT_ROLLBACK_FAILED",
}

_DELETED = {"DELETE_COMPLETE"}


def classify(status: str) -> StatusClass:
    """Map a provisioner status string onto a ``StatusClass``."""
    if status in _SUCCEEDED:
        return StatusClass.SUCCEEDED
    if status in _ROLLED_BACK:
        return StatusClass.ROLLED_BACK
    if status in _FAILED:
        return StatusClass.FAILED
    if status in _DELETED:
        return StatusClass.DELETED
    if status.endswith("_IN_PROGRESS") or status == "REVIEW_IN_PROGRESS":
        return StatusClass.IN_PROGRESS
    return StatusClass.FAILED


def is_terminal(status: str) -> bool:
    return classify(status) != StatusClass.IN_PROGRESS


# A stack registered by a CREATE changeset that was never executed. It has
# no resources and no outputs.
PLACEHOLDER_STATUS = "REVIEW_IN_PROGRESS"

# Left by a create that never completed. The provisioner accepts neither an
# update nor a second create for these, only a delete.
_FAILED_CREATE = {
    "ROLLBACK_COMPLETE",
    "ROLLBACK_FAILED",
    "CREATE_FAILED",
    PLACEHOLDER_STATUS,
}


def is_placeholder(status: str) -> bool:
    return status == PLACEHOLDER_STATUS


def needs_replacement(status: str) -> bool:
    """True if the stack must be deleted before it can be created again."""
    return status in _FAILED_CREATE
