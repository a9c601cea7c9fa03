"""Stack dependency graph — ordering, validation and teardown safety.

The graph is induced by the references each stack declares:

- ``NestedOutput`` — the child stack nested in the same parent produces it.
- ``Export`` — the single stack exporting that name produces it, unless the
  name is declared as an external export of the stack set.
- ``ExternalParameter`` — a stack declaring the path in
  ``writes_parameters`` produces it, unless the path is declared as an
  external parameter of the stack set.

Creation order is a Kahn topological sort with ties broken by declaration
order; teardown order is its exact reverse.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from typing import assert_never

from stackforge.backends.base import ExportRegistry
from stackforge.core.errors import (
    CycleDetected,
    DuplicateExport,
    DuplicateStack,
    ExportInUse,
    UnknownParameter,
    UnresolvedReference,
)
from stackforge.models.plan import DependencyEdge, DeploymentPlan
from stackforge.models.stacks import (
    Export,
    ExternalParameter,
    NestedOutput,
    ReferenceSpec,
    StackDefinition,
    StackSet,
)

logger = logging.getLogger(__name__)


class StackGraph:
    """Directed acyclic graph of stacks, producer -> consumer.

    Construction validates identities and producers; ``build()`` orders the
    graph and raises ``CycleDetected`` if it is not acyclic.
    """

    def __init__(self, stack_set: StackSet) -> None:
        self._stack_set = stack_set
        self._stacks: dict[str, StackDefinition] = {}
        for stack in stack_set.stacks:
            if stack.name in self._stacks:
                raise DuplicateStack(stack.name)
            self._stacks[stack.name] = stack
        self._index: dict[str, int] = {
            name: i for i, name in enumerate(self._stacks)
        }

        self._exporters = self._collect_exporters()
        self._writers: dict[str, list[str]] = {}
        for stack in stack_set.stacks:
            for path in stack.writes_parameters:
                self._writers.setdefault(path, []).append(stack.name)

        self._edges = self._collect_edges()

        # Adjacency, deduplicated: several references may join the same pair.
        self._producers: dict[str, list[str]] = {name: [] for name in self._stacks}
        self._consumers: dict[str, list[str]] = {name: [] for name in self._stacks}
        for edge in self._edges:
            if edge.producer not in self._producers[edge.consumer]:
                self._producers[edge.consumer].append(edge.producer)
                self._consumers[edge.producer].append(edge.consumer)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    def _collect_exporters(self) -> dict[str, str]:
        owners: dict[str, list[str]] = {}
        for stack in self._stack_set.stacks:
            for export_name in stack.export_names:
                owners.setdefault(export_name, []).append(stack.name)
        for export_name, producers in owners.items():
            if len(producers) > 1:
                raise DuplicateExport(export_name, producers)
        return {name: producers[0] for name, producers in owners.items()}

    def _collect_edges(self) -> list[DependencyEdge]:
        edges: list[DependencyEdge] = []
        for consumer in self._stack_set.stacks:
            for ref_name, spec in consumer.references.items():
                if consumer.get_parameter(ref_name) is None:
                    raise UnknownParameter(consumer.name, ref_name)
                producer = self._producer_for(consumer, ref_name, spec)
                if producer is None:
                    continue
                if producer == consumer.name:
                    raise CycleDetected([consumer.name, consumer.name])
                edges.append(
                    DependencyEdge(
                        producer=producer,
                        consumer=consumer.name,
                        reference_name=ref_name,
                        reference=spec,
                    )
                )
        return edges

    def _producer_for(
        self, consumer: StackDefinition, ref_name: str, spec: ReferenceSpec
    ) -> str | None:
        """Return the producing stack, or None for externally supplied values.

        Raises ``UnresolvedReference`` when nothing produces the value.
        """
        if isinstance(spec, NestedOutput):
            child = self._stacks.get(spec.child_stack)
            if child is None or child.nested_in != spec.parent_stack:
                raise UnresolvedReference(
                    consumer.name, ref_name,
                    f"{spec.child_stack!r} is not nested in {spec.parent_stack!r}",
                )
            if not child.has_output(spec.output_name):
                raise UnresolvedReference(
                    consumer.name, ref_name,
                    f"{spec.child_stack!r} declares no output {spec.output_name!r}",
                )
            same_tree = (
                consumer.nested_in == spec.parent_stack
                or consumer.name == spec.parent_stack
            )
            if not same_tree:
                raise UnresolvedReference(
                    consumer.name, ref_name,
                    f"nested outputs of {spec.parent_stack!r} are only visible "
                    f"inside that deployment tree",
                )
            return child.name

        if isinstance(spec, Export):
            producer = self._exporters.get(spec.export_name)
            if producer is not None:
                return producer
            if spec.export_name in self._stack_set.external_exports:
                return None
            raise UnresolvedReference(consumer.name, ref_name)

        if isinstance(spec, ExternalParameter):
            writers = self._writers.get(spec.path, [])
            if len(writers) == 1:
                return writers[0]
            if len(writers) > 1:
                raise UnresolvedReference(
                    consumer.name, ref_name,
                    f"{spec.path!r} is written by {', '.join(writers)}",
                )
            if spec.path in self._stack_set.external_parameters:
                return None
            raise UnresolvedReference(consumer.name, ref_name)

        assert_never(spec)

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def build(self) -> DeploymentPlan:
        """Compute the deployment plan for the stack set."""
        order = self.topological_order()
        logger.info(
            "Planned %d stacks for %s: %s",
            len(order), self._stack_set.name, ", ".join(order),
        )
        return DeploymentPlan(
            stack_set=self._stack_set,
            order=order,
            edges=list(self._edges),
        )

    def topological_order(self) -> list[str]:
        """Kahn's algorithm; ready stacks are taken in declaration order."""
        in_degree = {name: len(p) for name, p in self._producers.items()}
        ready = [self._index[n] for n, deg in in_degree.items() if deg == 0]
        heapq.heapify(ready)
        names = list(self._stacks)

        result: list[str] = []
        while ready:
            node = names[heapq.heappop(ready)]
            result.append(node)
            for consumer in self._consumers[node]:
                in_degree[consumer] -= 1
                if in_degree[consumer] == 0:
                    heapq.heappush(ready, self._index[consumer])

        if len(result) != len(self._stacks):
            remaining = {n for n in self._stacks if n not in set(result)}
            raise CycleDetected(self._find_cycle(remaining))
        return result

    def _find_cycle(self, remaining: set[str]) -> list[str]:
        """Walk producers inside the unsorted remainder until a node repeats.

        Every node left over by Kahn's algorithm still has a producer in the
        remainder, so the walk always closes a cycle.
        """
        node = min(remaining, key=self._index.__getitem__)
        path: list[str] = []
        position: dict[str, int] = {}
        while node not in position:
            position[node] = len(path)
            path.append(node)
            node = next(p for p in self._producers[node] if p in remaining)
        cycle = path[position[node]:]
        cycle.reverse()  # walked consumer -> producer
        return cycle

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def edges(self) -> list[DependencyEdge]:
        return list(self._edges)

    def get_producers(self, stack_name: str) -> list[str]:
        """Direct producers of a stack."""
        return list(self._producers.get(stack_name, []))

    def get_dependents(self, stack_name: str) -> list[str]:
        """All transitive consumers of a stack (BFS)."""
        result: list[str] = []
        queue = deque(self._consumers.get(stack_name, []))
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._consumers.get(node, []))
        return result


# ---------------------------------------------------------------------------
# Teardown safety
# ---------------------------------------------------------------------------


def check_teardown_safety(
    stack: StackDefinition,
    physical_name: str,
    registry: ExportRegistry,
) -> None:
    """Refuse deletion while any live stack imports one of this stack's exports.

    Reads the live registry rather than the declared graph: an importer may
    have been deployed by an unrelated run. Call it immediately before each
    destructive action, not once per plan.
    """
    export_names = list(stack.export_names)
    for record in registry.list_exports():
        if record.exporting_stack == physical_name and record.name not in export_names:
            export_names.append(record.name)

    for export_name in export_names:
        importers = [
            name for name in registry.list_importers(export_name)
            if name != physical_name
        ]
        if importers:
            raise ExportInUse(stack.name, export_name, importers)
