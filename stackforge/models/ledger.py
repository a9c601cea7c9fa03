"""Deployment ledger entry model (append-only, hash-chained).

One entry per stack state transition. The ledger is what teardown reads to
recover the last successful creation order of a stack set.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from stackforge.models.states import StackState


class LedgerEntry(BaseModel):
    """A single entry in the append-only deployment ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stack_set: str
    environment: str
    operation: str
    stack_name: str
    state_transition: str  # "from_state->to_state", e.g. "pending->resolving"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""  # SHA-256 of canonical resolved inputs
    template_revision: str = ""
    detail: str = ""
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry

    @property
    def to_state(self) -> StackState:
        return StackState(self.state_transition.split("->", 1)[-1])
