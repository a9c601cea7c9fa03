"""Stack definition models — opaque deployable units and their references.

A stack is described only by what the engine needs to order and wire it:
parameters, outputs, input references and the template artifact it is
deployed from. Resource internals are never modelled here.

``ReferenceSpec`` is a closed tagged union over the three sharing mechanisms.
Consumers must handle every member; see ``stackforge.core.resolver`` and
``stackforge.core.stack_graph``.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, model_validator


# ---------------------------------------------------------------------------
# Reference kinds
# ---------------------------------------------------------------------------


class NestedOutput(BaseModel):
    """Output of a nested unit, read within one deployment tree.

    Resolved at parent-compose time from outputs already produced in the
    current run. Bound to the parent's lifecycle.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["nested_output"] = "nested_output"
    parent_stack: str
    child_stack: str
    output_name: str

    def describe(self) -> str:
        return f"{self.parent_stack}/{self.child_stack}.{self.output_name}"


class Export(BaseModel):
    """Region-scoped, cross-stack exported value."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["export"] = "export"
    export_name: str

    def describe(self) -> str:
        return f"export:{self.export_name}"


class ExternalParameter(BaseModel):
    """Versioned entry in the global parameter store.

    The version is mandatory; there is no "latest" read.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["external_parameter"] = "external_parameter"
    path: str
    version: PositiveInt

    def describe(self) -> str:
        return f"param:{self.path}@{self.version}"


ReferenceSpec = Annotated[
    Union[NestedOutput, Export, ExternalParameter],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Stack declarations
# ---------------------------------------------------------------------------


class Parameter(BaseModel):
    """A declared stack input."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "String"
    default: str | None = None

    @property
    def required(self) -> bool:
        return self.default is None


class Output(BaseModel):
    """A declared stack output, optionally exported under ``export_name``."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    export_name: str | None = None


class TemplateArtifactRef(BaseModel):
    """Points a stack at a template bundle in the artifact store.

    ``revision=None`` means "whatever revision is published for this run";
    the orchestrator pins it before applying.
    """

    model_config = ConfigDict(frozen=True)

    template_name: str
    revision: str | None = None
    alias: str = "latest"
    source_path: str | None = None  # local template file, used by publish


class StackDefinition(BaseModel):
    """Declarative description of a single stack."""

    model_config = ConfigDict(frozen=True)

    name: str
    parameters: list[Parameter] = []
    outputs: list[Output] = []
    references: dict[str, ReferenceSpec] = {}
    template: TemplateArtifactRef
    nested_in: str | None = None
    writes_parameters: list[str] = []
    capabilities: list[str] = []
    parameter_values: dict[str, str] = {}
    tags: dict[str, str] = {}

    @model_validator(mode="after")
    def _check_unique_names(self) -> StackDefinition:
        _ensure_unique("parameter", [p.name for p in self.parameters], self.name)
        _ensure_unique("output", [o.name for o in self.outputs], self.name)
        _ensure_unique(
            "export",
            [o.export_name for o in self.outputs if o.export_name],
            self.name,
        )
        return self

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def output_names(self) -> list[str]:
        return [o.name for o in self.outputs]

    @property
    def export_names(self) -> list[str]:
        return [o.export_name for o in self.outputs if o.export_name]

    def get_parameter(self, name: str) -> Parameter | None:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def has_output(self, name: str) -> bool:
        return name in self.output_names


def _ensure_unique(label: str, names: list[str], stack_name: str) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValueError(f"Duplicate {label} name {name!r} in stack {stack_name!r}")
        seen.add(name)


class StackSet(BaseModel):
    """A named group of stacks deployed together.

    ``external_parameters`` and ``external_exports`` declare values that are
    supplied from outside the set; references to them are valid but produce
    no dependency edge.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    application: str = ""
    region: str = "us-west-2"
    stacks: list[StackDefinition] = []
    external_parameters: list[str] = []
    external_exports: list[str] = []

    def get_stack(self, name: str) -> StackDefinition:
        for stack in self.stacks:
            if stack.name == name:
                return stack
        raise KeyError(name)

    def physical_name(self, stack_name: str, environment: str) -> str:
        """Name of the stack as seen by the provisioner."""
        parts = [self.application or self.name, environment, stack_name]
        return "-".join(p for p in parts if p).lower()
