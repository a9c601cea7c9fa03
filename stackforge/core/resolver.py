"""Reference resolver — turns a ReferenceSpec into a concrete input value.

Each reference kind has its own source:

- ``NestedOutput`` reads the in-progress composition context (no I/O).
- ``Export`` does a point-in-time lookup in the injected Export registry.
- ``ExternalParameter`` fetches an exact version from the injected parameter
  store; there is no fallback to another version.

The resolver never retries. Transient collaborator failures propagate to the
orchestrator, which owns the retry policy.
"""

from __future__ import annotations

import logging
import threading
from typing import assert_never

from stackforge.backends.base import (
    ExportRegistry,
    ParameterPathMissing,
    ParameterStore,
    ParameterVersionMissing,
)
from stackforge.core.errors import (
    AmbiguousExport,
    ExportNotFound,
    MissingParameter,
    OutputNotFound,
    ParameterNotFound,
    ParameterVersionNotFound,
)
from stackforge.models.stacks import (
    Export,
    ExternalParameter,
    NestedOutput,
    ReferenceSpec,
    StackDefinition,
)

logger = logging.getLogger(__name__)


class CompositionContext:
    """Per-run state shared by every stack resolved in that run.

    Holds the outputs produced so far and the first value observed for each
    external reference. Once a reference has been read in a run, later reads
    return the same value even if the external store has moved on.
    """

    def __init__(self, run_id: str = "") -> None:
        self.run_id = run_id
        self._outputs: dict[str, dict[str, str]] = {}
        self._snapshot: dict[ReferenceSpec, str] = {}
        self._lock = threading.Lock()

    def record_outputs(self, stack_name: str, outputs: dict[str, str]) -> None:
        with self._lock:
            self._outputs[stack_name] = dict(outputs)

    def get_output(self, stack_name: str, output_name: str) -> str | None:
        with self._lock:
            return self._outputs.get(stack_name, {}).get(output_name)

    def snapshot_get(self, spec: ReferenceSpec) -> str | None:
        with self._lock:
            return self._snapshot.get(spec)

    def snapshot_put(self, spec: ReferenceSpec, value: str) -> str:
        """Store *value* unless a value is already pinned; return the pinned one."""
        with self._lock:
            return self._snapshot.setdefault(spec, value)


class ReferenceResolver:
    """Resolves references against injected collaborators.

    Parameters
    ----------
    export_registry:
        Region-scoped Export registry.
    parameter_store:
        Versioned external parameter store.
    """

    def __init__(
        self,
        export_registry: ExportRegistry,
        parameter_store: ParameterStore,
    ) -> None:
        self._exports = export_registry
        self._parameters = parameter_store

    def resolve(
        self,
        stack_name: str,
        reference_name: str,
        spec: ReferenceSpec,
        context: CompositionContext,
    ) -> str:
        """Resolve one reference for *stack_name*."""
        if isinstance(spec, NestedOutput):
            value = context.get_output(spec.child_stack, spec.output_name)
            if value is None:
                raise OutputNotFound(
                    stack_name, reference_name,
                    f"{spec.describe()} has not been produced yet in this run",
                )
            return value

        if isinstance(spec, Export):
            pinned = context.snapshot_get(spec)
            if pinned is not None:
                return pinned
            return context.snapshot_put(
                spec, self._resolve_export(stack_name, reference_name, spec)
            )

        if isinstance(spec, ExternalParameter):
            pinned = context.snapshot_get(spec)
            if pinned is not None:
                return pinned
            return context.snapshot_put(
                spec, self._resolve_parameter(stack_name, reference_name, spec)
            )

        assert_never(spec)

    def _resolve_export(self, stack_name: str, reference_name: str, spec: Export) -> str:
        records = [
            r for r in self._exports.list_exports(spec.export_name)
            if r.name == spec.export_name
        ]
        if not records:
            raise ExportNotFound(
                stack_name, reference_name,
                f"no live export named {spec.export_name!r}",
            )
        if len(records) > 1:
            owners = ", ".join(r.exporting_stack for r in records)
            logger.error(
                "Export %s has %d live values (%s); registry is inconsistent",
                spec.export_name, len(records), owners,
            )
            raise AmbiguousExport(
                stack_name, reference_name,
                f"export {spec.export_name!r} has multiple live values from {owners}",
            )
        return records[0].value

    def _resolve_parameter(
        self, stack_name: str, reference_name: str, spec: ExternalParameter
    ) -> str:
        try:
            return self._parameters.get_parameter(spec.path, spec.version)
        except ParameterVersionMissing:
            raise ParameterVersionNotFound(
                stack_name, reference_name,
                f"version {spec.version} of {spec.path!r} does not exist",
            ) from None
        except ParameterPathMissing:
            raise ParameterNotFound(
                stack_name, reference_name, f"no parameter at {spec.path!r}"
            ) from None

    # ------------------------------------------------------------------
    # Full input materialization
    # ------------------------------------------------------------------

    def resolve_inputs(
        self,
        stack: StackDefinition,
        context: CompositionContext,
        *,
        injected: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """Materialize every declared parameter of *stack*.

        Precedence: resolved references, then static ``parameter_values``,
        then *injected* values (such as the environment tag), then declared
        defaults. A required parameter left without a value raises
        ``MissingParameter``.
        """
        resolved: dict[str, str] = {}
        for ref_name, spec in stack.references.items():
            resolved[ref_name] = self.resolve(stack.name, ref_name, spec, context)
            logger.debug("Resolved %s.%s from %s", stack.name, ref_name, spec.describe())

        injected = injected or {}
        inputs: dict[str, str] = {}
        for param in stack.parameters:
            if param.name in resolved:
                inputs[param.name] = resolved[param.name]
            elif param.name in stack.parameter_values:
                inputs[param.name] = stack.parameter_values[param.name]
            elif param.name in injected:
                inputs[param.name] = injected[param.name]
            elif param.default is not None:
                inputs[param.name] = param.default
            else:
                raise MissingParameter(
                    stack.name, param.name, "required parameter has no value"
                )
        return inputs
