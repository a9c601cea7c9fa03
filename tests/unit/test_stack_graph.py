"""Tests for StackGraph — ordering, producer checks, cycles, teardown safety."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from stackforge.backends.memory import InMemoryExportRegistry
from stackforge.core.errors import (
    CycleDetected,
    DuplicateExport,
    DuplicateStack,
    ExportInUse,
    UnknownParameter,
    UnresolvedReference,
)
from stackforge.core.stack_graph import StackGraph, check_teardown_safety
from stackforge.models.stacks import (
    Export,
    ExternalParameter,
    NestedOutput,
    Output,
    Parameter,
    StackDefinition,
    StackSet,
)


def _set(*stacks: StackDefinition, **kwargs) -> StackSet:
    return StackSet(name="test", application="acme", stacks=list(stacks), **kwargs)


class TestOrdering:
    def test_scenario_order(self, scenario_stack_set: StackSet):
        plan = StackGraph(scenario_stack_set).build()
        assert plan.order == ["S3", "IAM", "Networking", "SecurityGroup", "Compute"]

    def test_teardown_is_exact_reverse(self, scenario_stack_set: StackSet):
        plan = StackGraph(scenario_stack_set).build()
        assert plan.teardown_order == list(reversed(plan.order))

    def test_producers_precede_consumers(self, scenario_stack_set: StackSet):
        plan = StackGraph(scenario_stack_set).build()
        for edge in plan.edges:
            assert plan.order.index(edge.producer) < plan.order.index(edge.consumer)

    def test_ties_broken_by_declaration_order(self, make_stack: Callable[..., StackDefinition]):
        """Independent stacks keep the order they were declared in."""
        stacks = [make_stack(name) for name in ("Zeta", "Alpha", "Mid")]
        assert StackGraph(_set(*stacks)).build().order == ["Zeta", "Alpha", "Mid"]

    def test_order_is_deterministic(self, scenario_stack_set: StackSet):
        orders = {tuple(StackGraph(scenario_stack_set).topological_order()) for _ in range(5)}
        assert len(orders) == 1

    def test_consumer_declared_first_still_follows_producer(
        self, make_stack: Callable[..., StackDefinition]
    ):
        consumer = make_stack(
            "Consumer",
            parameters=[Parameter(name="v")],
            references={"v": Export(export_name="x")},
        )
        producer = make_stack("Producer", outputs=[Output(name="V", export_name="x")])
        assert StackGraph(_set(consumer, producer)).build().order == ["Producer", "Consumer"]

    def test_edges_record_reference(self, scenario_stack_set: StackSet):
        plan = StackGraph(scenario_stack_set).build()
        edge = next(e for e in plan.edges if e.consumer == "Compute" and e.producer == "IAM")
        assert edge.reference_name == "role"
        assert edge.reference == Export(export_name="role")

    def test_get_dependents_transitive(self, scenario_stack_set: StackSet):
        graph = StackGraph(scenario_stack_set)
        assert set(graph.get_dependents("S3")) == {"IAM", "Compute"}
        assert graph.get_producers("Compute") == ["IAM", "SecurityGroup"]


class TestProducers:
    def test_missing_exporter_is_unresolved(self, scenario_stack_set: StackSet):
        """Compute imports "role" but IAM is not part of the plan."""
        without_iam = scenario_stack_set.model_copy(
            update={"stacks": [s for s in scenario_stack_set.stacks if s.name != "IAM"]}
        )
        with pytest.raises(UnresolvedReference) as exc_info:
            StackGraph(without_iam)
        assert exc_info.value.stack == "Compute"
        assert exc_info.value.reference_name == "role"

    def test_external_export_is_accepted(self, make_stack: Callable[..., StackDefinition]):
        consumer = make_stack(
            "App",
            parameters=[Parameter(name="vpc")],
            references={"vpc": Export(export_name="shared-vpc")},
        )
        plan = StackGraph(_set(consumer, external_exports=["shared-vpc"])).build()
        assert plan.order == ["App"]
        assert plan.edges == []

    def test_external_parameter_needs_producer_or_declaration(
        self, make_stack: Callable[..., StackDefinition]
    ):
        consumer = make_stack(
            "App",
            parameters=[Parameter(name="key")],
            references={"key": ExternalParameter(path="/shared/key", version=2)},
        )
        with pytest.raises(UnresolvedReference):
            StackGraph(_set(consumer))
        plan = StackGraph(_set(consumer, external_parameters=["/shared/key"])).build()
        assert plan.order == ["App"]

    def test_parameter_with_two_writers_is_unresolved(
        self, make_stack: Callable[..., StackDefinition]
    ):
        a = make_stack("A", writes_parameters=["p"])
        b = make_stack("B", writes_parameters=["p"])
        c = make_stack(
            "C",
            parameters=[Parameter(name="p")],
            references={"p": ExternalParameter(path="p", version=1)},
        )
        with pytest.raises(UnresolvedReference, match="written by A, B"):
            StackGraph(_set(a, b, c))

    def test_nested_output_requires_child_in_parent(
        self, make_stack: Callable[..., StackDefinition]
    ):
        child = make_stack("Net", outputs=[Output(name="VpcId")])  # not nested
        consumer = make_stack(
            "SG",
            nested_in="App",
            parameters=[Parameter(name="VpcId")],
            references={
                "VpcId": NestedOutput(parent_stack="App", child_stack="Net", output_name="VpcId")
            },
        )
        with pytest.raises(UnresolvedReference, match="not nested in"):
            StackGraph(_set(child, consumer))

    def test_nested_output_must_be_declared(self, make_stack: Callable[..., StackDefinition]):
        child = make_stack("Net", nested_in="App")
        consumer = make_stack(
            "SG",
            nested_in="App",
            parameters=[Parameter(name="VpcId")],
            references={
                "VpcId": NestedOutput(parent_stack="App", child_stack="Net", output_name="VpcId")
            },
        )
        with pytest.raises(UnresolvedReference, match="declares no output"):
            StackGraph(_set(child, consumer))

    def test_nested_output_not_visible_outside_tree(
        self, make_stack: Callable[..., StackDefinition]
    ):
        child = make_stack("Net", nested_in="App", outputs=[Output(name="VpcId")])
        outsider = make_stack(
            "Other",
            parameters=[Parameter(name="VpcId")],
            references={
                "VpcId": NestedOutput(parent_stack="App", child_stack="Net", output_name="VpcId")
            },
        )
        with pytest.raises(UnresolvedReference, match="deployment tree"):
            StackGraph(_set(child, outsider))

    def test_reference_must_bind_declared_parameter(
        self, make_stack: Callable[..., StackDefinition]
    ):
        producer = make_stack("P", outputs=[Output(name="V", export_name="x")])
        consumer = make_stack("C", references={"undeclared": Export(export_name="x")})
        with pytest.raises(UnknownParameter):
            StackGraph(_set(producer, consumer))

    def test_duplicate_stack_names(self, make_stack: Callable[..., StackDefinition]):
        with pytest.raises(DuplicateStack):
            StackGraph(_set(make_stack("A"), make_stack("A")))

    def test_duplicate_export_across_stacks(self, make_stack: Callable[..., StackDefinition]):
        a = make_stack("A", outputs=[Output(name="V", export_name="x")])
        b = make_stack("B", outputs=[Output(name="W", export_name="x")])
        with pytest.raises(DuplicateExport) as exc_info:
            StackGraph(_set(a, b))
        assert exc_info.value.producers == ["A", "B"]


class TestCycles:
    def test_two_stack_cycle_names_both(self, make_stack: Callable[..., StackDefinition]):
        """IAM -> S3 and S3 -> IAM."""
        s3 = make_stack(
            "S3",
            parameters=[Parameter(name="role")],
            outputs=[Output(name="Bucket", export_name="bucket")],
            references={"role": Export(export_name="role")},
        )
        iam = make_stack(
            "IAM",
            parameters=[Parameter(name="bucket")],
            outputs=[Output(name="RoleArn", export_name="role")],
            references={"bucket": Export(export_name="bucket")},
        )
        with pytest.raises(CycleDetected) as exc_info:
            StackGraph(_set(s3, iam)).build()
        assert set(exc_info.value.cycle) == {"S3", "IAM"}

    def test_self_edge_is_a_cycle(self, make_stack: Callable[..., StackDefinition]):
        loop = make_stack(
            "Loop",
            parameters=[Parameter(name="v")],
            outputs=[Output(name="V", export_name="loop")],
            references={"v": Export(export_name="loop")},
        )
        with pytest.raises(CycleDetected) as exc_info:
            StackGraph(_set(loop))
        assert exc_info.value.cycle == ["Loop", "Loop"]

    def test_cycle_excludes_acyclic_prefix(self, make_stack: Callable[..., StackDefinition]):
        root = make_stack("Root", outputs=[Output(name="R", export_name="root")])
        a = make_stack(
            "A",
            parameters=[Parameter(name="root"), Parameter(name="b")],
            outputs=[Output(name="A", export_name="a")],
            references={"root": Export(export_name="root"), "b": Export(export_name="b")},
        )
        b = make_stack(
            "B",
            parameters=[Parameter(name="a")],
            outputs=[Output(name="B", export_name="b")],
            references={"a": Export(export_name="a")},
        )
        with pytest.raises(CycleDetected) as exc_info:
            StackGraph(_set(root, a, b)).build()
        assert set(exc_info.value.cycle) == {"A", "B"}
        assert "Root" not in exc_info.value.cycle


class TestTeardownSafety:
    def test_refused_while_imported(self, make_stack: Callable[..., StackDefinition]):
        iam = make_stack("IAM", outputs=[Output(name="RoleArn", export_name="role")])
        registry = InMemoryExportRegistry()
        registry.add_export("role", "arn:role", "acme-testing-iam")
        registry.add_import("role", "acme-testing-compute")
        with pytest.raises(ExportInUse) as exc_info:
            check_teardown_safety(iam, "acme-testing-iam", registry)
        assert exc_info.value.importers == ["acme-testing-compute"]

    def test_allowed_once_importer_gone(self, make_stack: Callable[..., StackDefinition]):
        iam = make_stack("IAM", outputs=[Output(name="RoleArn", export_name="role")])
        registry = InMemoryExportRegistry()
        registry.add_export("role", "arn:role", "acme-testing-iam")
        registry.add_import("role", "acme-testing-compute")
        registry.remove_stack("acme-testing-compute")
        check_teardown_safety(iam, "acme-testing-iam", registry)

    def test_live_exports_not_in_declaration_are_checked(
        self, make_stack: Callable[..., StackDefinition]
    ):
        """An export added to the live stack out of band still blocks deletion."""
        iam = make_stack("IAM")
        registry = InMemoryExportRegistry()
        registry.add_export("legacy-role", "arn:legacy", "acme-testing-iam")
        registry.add_import("legacy-role", "someone-else")
        with pytest.raises(ExportInUse):
            check_teardown_safety(iam, "acme-testing-iam", registry)
