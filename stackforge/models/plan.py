"""Deployment plan models — the ordered output of StackGraph."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from stackforge.models.stacks import ReferenceSpec, StackDefinition, StackSet


class DependencyEdge(BaseModel):
    """producer -> consumer, carried by one named reference."""

    model_config = ConfigDict(frozen=True)

    producer: str
    consumer: str
    reference_name: str
    reference: ReferenceSpec


class DeploymentPlan(BaseModel):
    """Topologically ordered stacks for one deployment run.

    Immutable once computed. Resolved input values are not stored here;
    they live in the run's composition context and in the report.
    """

    model_config = ConfigDict(frozen=True)

    plan_id: str = Field(default_factory=lambda: f"plan-{uuid.uuid4().hex[:12]}")
    stack_set: StackSet
    order: list[str]
    edges: list[DependencyEdge] = []
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def teardown_order(self) -> list[str]:
        """Exact reverse of the creation order."""
        return list(reversed(self.order))

    @property
    def stacks(self) -> list[StackDefinition]:
        return [self.stack_set.get_stack(name) for name in self.order]

    def producers_of(self, stack_name: str) -> list[str]:
        """Direct producers of a stack, deduplicated, in plan order."""
        names = {e.producer for e in self.edges if e.consumer == stack_name}
        return [n for n in self.order if n in names]
