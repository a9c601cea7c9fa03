"""Deployment run reports — what the caller sees after create/update/delete."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from stackforge.models.states import StackState


class StackOutcome(BaseModel):
    """Terminal (or last reached) state of one stack in a run."""

    model_config = ConfigDict(frozen=True)

    stack_name: str
    physical_name: str = ""
    state: StackState
    error_kind: str | None = None
    error_message: str | None = None
    template_revision: str | None = None
    resolved_inputs: dict[str, str] = {}
    outputs: dict[str, str] = {}
    attempts: int = 0


class DeploymentReport(BaseModel):
    """Summary of one orchestrator run.

    ``succeeded`` is never true while any stack is ROLLED_BACK or FAILED,
    or while any planned stack was left unattempted.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    operation: str  # "create" | "update" | "delete" | "changeset"
    stack_set: str
    environment: str
    outcomes: list[StackOutcome] = []
    cancelled: bool = False
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None

    @property
    def goal_state(self) -> StackState:
        return StackState.DELETED if self.operation == "delete" else StackState.SUCCEEDED

    @property
    def succeeded(self) -> bool:
        if self.cancelled:
            return False
        return all(o.state == self.goal_state for o in self.outcomes)

    @property
    def furthest_outcome(self) -> StackOutcome | None:
        """The last stack that left PENDING, or None if nothing ran."""
        attempted = [o for o in self.outcomes if o.state != StackState.PENDING]
        return attempted[-1] if attempted else None

    @property
    def failure(self) -> StackOutcome | None:
        for outcome in self.outcomes:
            if outcome.state in (StackState.FAILED, StackState.ROLLED_BACK):
                return outcome
        return None
