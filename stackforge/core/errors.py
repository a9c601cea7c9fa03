"""Error taxonomy for the stack engine.

Four families, each with a stable ``kind`` string that reports and the CLI
surface:

- ``GraphError`` — the declared stack set is invalid; raised before any
  provisioning begins.
- ``ReferenceResolutionError`` — a reference could not be materialized for
  the stack being resolved; halts the remaining plan.
- ``ProvisioningError`` — the provisioner failed or was unreachable.
  ``TransientProvisioningError`` is the only retryable member.
- ``SafetyViolation`` — an operation was refused to keep live state safe.
"""

from __future__ import annotations


class StackforgeError(Exception):
    """Root of all engine errors."""

    kind: str = "error"


# ---------------------------------------------------------------------------
# Graph errors
# ---------------------------------------------------------------------------


class GraphError(StackforgeError):
    kind = "graph_error"


class CycleDetected(GraphError):
    kind = "cycle_detected"

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class UnresolvedReference(GraphError):
    kind = "unresolved_reference"

    def __init__(self, stack: str, reference_name: str, detail: str = "") -> None:
        self.stack = stack
        self.reference_name = reference_name
        msg = f"Stack {stack!r}: reference {reference_name!r} has no producer"
        super().__init__(f"{msg} ({detail})" if detail else msg)


class DuplicateStack(GraphError):
    kind = "duplicate_stack"

    def __init__(self, stack: str) -> None:
        self.stack = stack
        super().__init__(f"Stack {stack!r} is declared more than once")


class DuplicateExport(GraphError):
    kind = "duplicate_export"

    def __init__(self, export_name: str, producers: list[str]) -> None:
        self.export_name = export_name
        self.producers = list(producers)
        super().__init__(
            f"Export {export_name!r} is produced by more than one stack: "
            f"{', '.join(self.producers)}"
        )


class UnknownParameter(GraphError):
    kind = "unknown_parameter"

    def __init__(self, stack: str, reference_name: str) -> None:
        self.stack = stack
        self.reference_name = reference_name
        super().__init__(
            f"Stack {stack!r}: reference {reference_name!r} does not bind a "
            f"declared parameter"
        )


# ---------------------------------------------------------------------------
# Reference resolution errors
# ---------------------------------------------------------------------------


class ReferenceResolutionError(StackforgeError):
    kind = "reference_error"

    def __init__(self, stack: str, reference_name: str, message: str) -> None:
        self.stack = stack
        self.reference_name = reference_name
        super().__init__(f"Stack {stack!r}, reference {reference_name!r}: {message}")


class OutputNotFound(ReferenceResolutionError):
    kind = "output_not_found"


class ExportNotFound(ReferenceResolutionError):
    kind = "export_not_found"


class AmbiguousExport(ReferenceResolutionError):
    """More than one live value for an export name — a consistency violation."""

    kind = "ambiguous_export"


class ParameterNotFound(ReferenceResolutionError):
    kind = "parameter_not_found"


class ParameterVersionNotFound(ReferenceResolutionError):
    kind = "parameter_version_not_found"


class MissingParameter(ReferenceResolutionError):
    kind = "missing_parameter"


# ---------------------------------------------------------------------------
# Provisioning errors
# ---------------------------------------------------------------------------


class ProvisioningError(StackforgeError):
    kind = "provisioning_error"


class TransientProvisioningError(ProvisioningError):
    """Network or throttling failure; safe to retry."""

    kind = "transient_provisioning_error"


class ProvisioningFailed(ProvisioningError):
    kind = "provisioning_failed"


class ProvisioningTimeout(ProvisioningError):
    kind = "provisioning_timeout"


class StackNotFound(ProvisioningError):
    kind = "stack_not_found"


# ---------------------------------------------------------------------------
# Safety violations
# ---------------------------------------------------------------------------


class SafetyViolation(StackforgeError):
    kind = "safety_violation"


class ExportInUse(SafetyViolation):
    kind = "export_in_use"

    def __init__(self, stack: str, export_name: str, importers: list[str]) -> None:
        self.stack = stack
        self.export_name = export_name
        self.importers = list(importers)
        super().__init__(
            f"Cannot delete {stack!r}: export {export_name!r} is still imported "
            f"by {', '.join(self.importers)}"
        )


class ChangeSetStale(SafetyViolation):
    kind = "changeset_stale"

    def __init__(self, changeset_id: str, stack: str) -> None:
        self.changeset_id = changeset_id
        self.stack = stack
        super().__init__(
            f"ChangeSet {changeset_id} for {stack!r} was computed against a live "
            f"state that has since changed; recompute it"
        )


class ChangeSetConsumed(SafetyViolation):
    kind = "changeset_consumed"

    def __init__(self, changeset_id: str, status: str) -> None:
        self.changeset_id = changeset_id
        super().__init__(f"ChangeSet {changeset_id} is already {status}")


# ---------------------------------------------------------------------------
# Supporting errors
# ---------------------------------------------------------------------------


class ArtifactIntegrityError(StackforgeError):
    """A revision key already holds different content."""

    kind = "artifact_integrity_error"


class ArtifactNotFound(StackforgeError):
    kind = "artifact_not_found"


class InvalidTransitionError(StackforgeError):
    kind = "invalid_transition"


class StackSetParseError(StackforgeError):
    kind = "stack_set_parse_error"


class LedgerIntegrityError(StackforgeError):
    kind = "ledger_integrity_error"
