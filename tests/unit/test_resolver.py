"""Tests for ReferenceResolver and CompositionContext."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from stackforge.backends.memory import InMemoryExportRegistry, InMemoryParameterStore
from stackforge.core.errors import (
    AmbiguousExport,
    ExportNotFound,
    MissingParameter,
    OutputNotFound,
    ParameterNotFound,
    ParameterVersionNotFound,
    TransientProvisioningError,
)
from stackforge.core.resolver import CompositionContext, ReferenceResolver
from stackforge.models.stacks import (
    Export,
    ExternalParameter,
    NestedOutput,
    Parameter,
    StackDefinition,
)


@pytest.fixture
def resolver(
    export_registry: InMemoryExportRegistry, parameter_store: InMemoryParameterStore
) -> ReferenceResolver:
    return ReferenceResolver(export_registry, parameter_store)


@pytest.fixture
def context() -> CompositionContext:
    return CompositionContext("sf-test-run")


class TestNestedOutput:
    def test_reads_context(self, resolver: ReferenceResolver, context: CompositionContext):
        context.record_outputs("Networking", {"VpcId": "vpc-123"})
        spec = NestedOutput(parent_stack="App", child_stack="Networking", output_name="VpcId")
        assert resolver.resolve("SecurityGroup", "VpcId", spec, context) == "vpc-123"

    def test_not_yet_produced_fails_fast(
        self, resolver: ReferenceResolver, context: CompositionContext
    ):
        spec = NestedOutput(parent_stack="App", child_stack="Networking", output_name="VpcId")
        with pytest.raises(OutputNotFound) as exc_info:
            resolver.resolve("SecurityGroup", "VpcId", spec, context)
        assert exc_info.value.kind == "output_not_found"
        assert exc_info.value.stack == "SecurityGroup"


class TestExport:
    def test_single_live_value(
        self,
        resolver: ReferenceResolver,
        context: CompositionContext,
        export_registry: InMemoryExportRegistry,
    ):
        export_registry.add_export("role", "arn:aws:iam::1:role/app", "acme-testing-iam")
        assert resolver.resolve("Compute", "role", Export(export_name="role"), context) == (
            "arn:aws:iam::1:role/app"
        )

    def test_missing_export(self, resolver: ReferenceResolver, context: CompositionContext):
        with pytest.raises(ExportNotFound):
            resolver.resolve("Compute", "role", Export(export_name="role"), context)

    def test_two_live_values_is_ambiguous(
        self,
        resolver: ReferenceResolver,
        context: CompositionContext,
        export_registry: InMemoryExportRegistry,
    ):
        export_registry.add_export("role", "arn:one", "stack-one")
        export_registry.add_export("role", "arn:two", "stack-two")
        with pytest.raises(AmbiguousExport, match="stack-one, stack-two"):
            resolver.resolve("Compute", "role", Export(export_name="role"), context)

    def test_transient_registry_failure_propagates(
        self, parameter_store: InMemoryParameterStore, context: CompositionContext
    ):
        class FlakyRegistry(InMemoryExportRegistry):
            def list_exports(self, name=None):
                raise TransientProvisioningError("Rate exceeded")

        resolver = ReferenceResolver(FlakyRegistry(), parameter_store)
        with pytest.raises(TransientProvisioningError):
            resolver.resolve("Compute", "role", Export(export_name="role"), context)


class TestExternalParameter:
    def test_exact_version(
        self,
        resolver: ReferenceResolver,
        context: CompositionContext,
        parameter_store: InMemoryParameterStore,
    ):
        parameter_store.put_parameter("/app/db", "v1-value")
        parameter_store.put_parameter("/app/db", "v2-value")
        spec = ExternalParameter(path="/app/db", version=1)
        assert resolver.resolve("App", "db", spec, context) == "v1-value"

    def test_missing_version_never_falls_back(
        self,
        resolver: ReferenceResolver,
        context: CompositionContext,
        parameter_store: InMemoryParameterStore,
    ):
        parameter_store.put_parameter("/app/db", "v1-value")
        with pytest.raises(ParameterVersionNotFound):
            resolver.resolve("App", "db", ExternalParameter(path="/app/db", version=2), context)

    def test_missing_path(self, resolver: ReferenceResolver, context: CompositionContext):
        with pytest.raises(ParameterNotFound):
            resolver.resolve("App", "db", ExternalParameter(path="/nope", version=1), context)

    def test_version_is_mandatory(self):
        with pytest.raises(ValueError):
            ExternalParameter(path="/app/db")  # type: ignore[call-arg]

    def test_version_must_be_positive(self):
        with pytest.raises(ValueError):
            ExternalParameter(path="/app/db", version=0)


class TestPointInTimeSnapshot:
    def test_later_export_change_not_observed(
        self,
        resolver: ReferenceResolver,
        context: CompositionContext,
        export_registry: InMemoryExportRegistry,
    ):
        export_registry.add_export("role", "arn:first", "acme-testing-iam")
        spec = Export(export_name="role")
        assert resolver.resolve("A", "role", spec, context) == "arn:first"

        export_registry.remove_stack("acme-testing-iam")
        export_registry.add_export("role", "arn:second", "acme-testing-iam")
        assert resolver.resolve("B", "role", spec, context) == "arn:first"

    def test_fresh_context_sees_new_value(
        self,
        resolver: ReferenceResolver,
        export_registry: InMemoryExportRegistry,
    ):
        export_registry.add_export("role", "arn:first", "acme-testing-iam")
        spec = Export(export_name="role")
        resolver.resolve("A", "role", spec, CompositionContext("run-1"))

        export_registry.remove_stack("acme-testing-iam")
        export_registry.add_export("role", "arn:second", "acme-testing-iam")
        assert resolver.resolve("A", "role", spec, CompositionContext("run-2")) == "arn:second"

    def test_snapshot_put_keeps_first_value(self, context: CompositionContext):
        spec = Export(export_name="role")
        assert context.snapshot_put(spec, "first") == "first"
        assert context.snapshot_put(spec, "second") == "first"


class TestResolveInputs:
    def test_precedence(
        self,
        resolver: ReferenceResolver,
        context: CompositionContext,
        make_stack: Callable[..., StackDefinition],
    ):
        context.record_outputs("Net", {"VpcId": "vpc-1"})
        stack = make_stack(
            "SG",
            nested_in="App",
            parameters=[
                Parameter(name="VpcId", default="vpc-default"),
                Parameter(name="Name", default="default-name"),
                Parameter(name="Environment"),
                Parameter(name="Size", default="small"),
            ],
            references={
                "VpcId": NestedOutput(parent_stack="App", child_stack="Net", output_name="VpcId")
            },
            parameter_values={"Name": "explicit"},
        )
        inputs = resolver.resolve_inputs(stack, context, injected={"Environment": "testing"})
        assert inputs == {
            "VpcId": "vpc-1",
            "Name": "explicit",
            "Environment": "testing",
            "Size": "small",
        }

    def test_missing_required_parameter(
        self,
        resolver: ReferenceResolver,
        context: CompositionContext,
        make_stack: Callable[..., StackDefinition],
    ):
        stack = make_stack("App", parameters=[Parameter(name="Required")])
        with pytest.raises(MissingParameter) as exc_info:
            resolver.resolve_inputs(stack, context)
        assert exc_info.value.reference_name == "Required"

    def test_injected_only_fills_declared_parameters(
        self,
        resolver: ReferenceResolver,
        context: CompositionContext,
        make_stack: Callable[..., StackDefinition],
    ):
        stack = make_stack("App", parameters=[Parameter(name="Size", default="s")])
        assert resolver.resolve_inputs(stack, context, injected={"Environment": "x"}) == {
            "Size": "s"
        }
