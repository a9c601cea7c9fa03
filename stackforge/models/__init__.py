"""stackforge data models — all Pydantic v2, all frozen (immutable)."""

from stackforge.models.artifacts import TemplateArtifact
from stackforge.models.changesets import ChangeSet, ChangeSetStatus, ResourceChange
from stackforge.models.ledger import LedgerEntry
from stackforge.models.plan import DependencyEdge, DeploymentPlan
from stackforge.models.reports import DeploymentReport, StackOutcome
from stackforge.models.stacks import (
    Export,
    ExternalParameter,
    NestedOutput,
    Output,
    Parameter,
    ReferenceSpec,
    StackDefinition,
    StackSet,
    TemplateArtifactRef,
)
from stackforge.models.states import TERMINAL_STATES, VALID_TRANSITIONS, StackState

__all__ = [
    # stacks
    "Parameter",
    "Output",
    "NestedOutput",
    "Export",
    "ExternalParameter",
    "ReferenceSpec",
    "TemplateArtifactRef",
    "StackDefinition",
    "StackSet",
    # states
    "StackState",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    # plan
    "DependencyEdge",
    "DeploymentPlan",
    # artifacts
    "TemplateArtifact",
    # changesets
    "ChangeSet",
    "ChangeSetStatus",
    "ResourceChange",
    # reports
    "StackOutcome",
    "DeploymentReport",
    # ledger
    "LedgerEntry",
]
