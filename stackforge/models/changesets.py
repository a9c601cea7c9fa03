"""ChangeSet models — a computed, unexecuted diff against live stack state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from stackforge.models.stacks import StackDefinition


class ChangeSetStatus(str, Enum):
    CREATED = "created"
    EXECUTED = "executed"
    DISCARDED = "discarded"


class ResourceChange(BaseModel):
    """One resource-level change reported by the provisioner."""

    model_config = ConfigDict(frozen=True)

    action: str  # "Add" | "Modify" | "Remove"
    logical_id: str
    resource_type: str = ""
    replacement: bool = False
    nested_stack: str | None = None  # set when the change lives in a nested unit


class ChangeSet(BaseModel):
    """A proposed transition for one stack.

    ``base_fingerprint`` captures the live state the diff was computed
    against; execution is refused if the live state has moved since.
    """

    model_config = ConfigDict(frozen=True)

    changeset_id: str = Field(default_factory=lambda: f"cs-{uuid.uuid4().hex[:12]}")
    stack_name: str
    physical_name: str
    target: StackDefinition
    resolved_inputs: dict[str, str] = {}
    template_url: str = ""
    changes: list[ResourceChange] = []
    include_nested: bool = True
    base_fingerprint: str = ""
    provider_ref: str = ""  # changeset identifier on the provisioner side
    status: ChangeSetStatus = ChangeSetStatus.CREATED
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_empty(self) -> bool:
        return not self.changes
