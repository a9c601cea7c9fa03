"""In-memory collaborators for tests, demos and dry runs.

These fakes behave like the real services closely enough for the engine:
stacks move through provisioner statuses, successful stacks publish their
exports, deleting a stack whose export is still imported fails, parameters
are versioned, and failures (terminal and transient) can be injected.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Any

from stackforge.backends.base import (
    ExportRecord,
    ParameterPathMissing,
    ParameterVersionMissing,
    StackDescription,
)
from stackforge.backends.status import PLACEHOLDER_STATUS, is_placeholder, needs_replacement
from stackforge.core.errors import (
    ProvisioningFailed,
    StackNotFound,
    TransientProvisioningError,
)
from stackforge.models.stacks import Export, StackSet


# ---------------------------------------------------------------------------
# Blob store
# ---------------------------------------------------------------------------


class InMemoryBlobStore:
    """Dict-backed ``BlobStore``."""

    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, body: bytes) -> None:
        with self._lock:
            self._objects[key] = bytes(body)

    def get(self, key: str) -> bytes:
        with self._lock:
            if key not in self._objects:
                raise FileNotFoundError(f"Object not found: {key}")
            return self._objects[key]

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._objects

    def url_for(self, key: str) -> str:
        return f"memory://{key}"

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)


# ---------------------------------------------------------------------------
# Parameter store
# ---------------------------------------------------------------------------


class InMemoryParameterStore:
    """Versioned parameter store. Versions start at 1 and never change."""

    def __init__(self) -> None:
        self._values: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def put_parameter(self, path: str, value: str) -> int:
        """Write a new version of *path* and return its version number."""
        with self._lock:
            versions = self._values.setdefault(path, [])
            versions.append(value)
            return len(versions)

    def get_parameter(self, path: str, version: int) -> str:
        with self._lock:
            if path not in self._values:
                raise ParameterPathMissing(path)
            versions = self._values[path]
            if version < 1 or version > len(versions):
                raise ParameterVersionMissing(f"{path}:{version}")
            return versions[version - 1]

    def latest_version(self, path: str) -> int:
        with self._lock:
            return len(self._values.get(path, []))


# ---------------------------------------------------------------------------
# Export registry
# ---------------------------------------------------------------------------


class InMemoryExportRegistry:
    """Region-scoped export registry with import tracking."""

    def __init__(self) -> None:
        self._exports: list[ExportRecord] = []
        self._imports: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def add_export(self, name: str, value: str, exporting_stack: str) -> None:
        """Register an export; does not check uniqueness."""
        with self._lock:
            self._exports.append(
                ExportRecord(name=name, value=value, exporting_stack=exporting_stack)
            )

    def add_import(self, export_name: str, importing_stack: str) -> None:
        with self._lock:
            self._imports.setdefault(export_name, set()).add(importing_stack)

    def remove_stack(self, stack_name: str) -> None:
        """Drop every export and import owned by *stack_name*."""
        with self._lock:
            self._exports = [e for e in self._exports if e.exporting_stack != stack_name]
            for importers in self._imports.values():
                importers.discard(stack_name)

    def list_exports(self, name: str | None = None) -> list[ExportRecord]:
        with self._lock:
            return [e for e in self._exports if name is None or e.name == name]

    def list_importers(self, export_name: str) -> list[str]:
        with self._lock:
            return sorted(self._imports.get(export_name, set()))


# ---------------------------------------------------------------------------
# Provisioner
# ---------------------------------------------------------------------------


@dataclass
class StackProgram:
    """What the fake provisioner does when a stack is applied."""

    outputs: dict[str, str] = field(default_factory=dict)
    exports: dict[str, str] = field(default_factory=dict)  # export name -> value
    imports: list[str] = field(default_factory=list)
    writes: dict[str, str] = field(default_factory=dict)  # parameter path -> value
    fail_status: str | None = None
    fail_reason: str = "Resource creation failed"


@dataclass
class _LiveStack:
    name: str
    status: str
    parameters: dict[str, str]
    template_url: str
    tags: dict[str, str]
    outputs: dict[str, str] = field(default_factory=dict)
    status_reason: str = ""
    last_updated: str = ""
    pending_polls: int = 0
    final_status: str = ""


class InMemoryProvisioner:
    """A stack provisioner that settles stacks in memory.

    Parameters
    ----------
    export_registry:
        Receives exports and imports when a stack succeeds.
    parameter_store:
        Receives parameter writes programmed for a stack.
    in_progress_polls:
        Number of ``describe_stack`` calls that report ``*_IN_PROGRESS``
        before a submitted operation settles.
    """

    def __init__(
        self,
        export_registry: InMemoryExportRegistry | None = None,
        parameter_store: InMemoryParameterStore | None = None,
        *,
        in_progress_polls: int = 0,
    ) -> None:
        self.export_registry = export_registry or InMemoryExportRegistry()
        self.parameter_store = parameter_store or InMemoryParameterStore()
        self.in_progress_polls = in_progress_polls
        self.calls: list[tuple[str, str]] = []
        self._programs: dict[str, StackProgram] = {}
        self._stacks: dict[str, _LiveStack] = {}
        self._changesets: dict[str, dict[str, Any]] = {}
        self._transient: dict[str, int] = {}
        self._clock = itertools.count(1)
        self._lock = threading.RLock()

    @classmethod
    def for_stack_set(
        cls,
        stack_set: StackSet,
        environment: str,
        export_registry: InMemoryExportRegistry | None = None,
        parameter_store: InMemoryParameterStore | None = None,
        **kwargs: Any,
    ) -> InMemoryProvisioner:
        """Program every stack of *stack_set* from its declarations.

        Each declared output gets the value ``{physical}.{output}``; exported
        outputs are published under their export name, Export references are
        recorded as imports and written parameter paths get a new version.
        """
        provisioner = cls(export_registry, parameter_store, **kwargs)
        for stack in stack_set.stacks:
            physical = stack_set.physical_name(stack.name, environment)
            outputs = {o.name: f"{physical}.{o.name}" for o in stack.outputs}
            provisioner.program(
                physical,
                outputs=outputs,
                exports={o.export_name: outputs[o.name] for o in stack.outputs if o.export_name},
                imports=[
                    spec.export_name
                    for spec in stack.references.values()
                    if isinstance(spec, Export)
                ],
                writes={path: f"{physical}:{path}" for path in stack.writes_parameters},
            )
        return provisioner

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def program(self, name: str, **kwargs: Any) -> StackProgram:
        with self._lock:
            program = self._programs.get(name) or StackProgram()
            for key, value in kwargs.items():
                setattr(program, key, value)
            self._programs[name] = program
            return program

    def fail_next(
        self, name: str, status: str = "ROLLBACK_COMPLETE", reason: str = "Resource creation failed"
    ) -> None:
        """Make the next create/update of *name* settle in *status*."""
        self.program(name, fail_status=status, fail_reason=reason)

    def inject_transient(self, operation: str, count: int) -> None:
        """Raise TransientProvisioningError for the next *count* calls of *operation*."""
        with self._lock:
            self._transient[operation] = count

    def touch(self, name: str) -> None:
        """Simulate an out-of-band change to a live stack."""
        with self._lock:
            stack = self._require(name)
            stack.last_updated = self._tick()

    def live_stacks(self) -> list[str]:
        with self._lock:
            return sorted(self._stacks)

    # ------------------------------------------------------------------
    # StackProvisioner protocol
    # ------------------------------------------------------------------

    def create_stack(
        self,
        name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: list[str],
        *,
        disable_rollback: bool = False,
        tags: dict[str, str] | None = None,
    ) -> None:
        with self._lock:
            self._enter("create_stack", name)
            if name in self._stacks:
                raise ProvisioningFailed(f"Stack [{name}] already exists")
            stack = _LiveStack(
                name=name,
                status="CREATE_IN_PROGRESS",
                parameters=dict(parameters),
                template_url=template_url,
                tags=dict(tags or {}),
            )
            self._stacks[name] = stack
            self._settle(stack, "CREATE", disable_rollback=disable_rollback)

    def update_stack(
        self,
        name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: list[str],
        *,
        tags: dict[str, str] | None = None,
    ) -> bool:
        with self._lock:
            self._enter("update_stack", name)
            stack = self._require(name)
            if needs_replacement(stack.status):
                raise ProvisioningFailed(
                    f"Stack:{name} is in {stack.status} state and can not be updated."
                )
            if stack.template_url == template_url and stack.parameters == parameters:
                return False
            stack.parameters = dict(parameters)
            stack.template_url = template_url
            stack.tags = dict(tags or stack.tags)
            stack.status = "UPDATE_IN_PROGRESS"
            self._settle(stack, "UPDATE")
            return True

    def delete_stack(self, name: str) -> None:
        with self._lock:
            self._enter("delete_stack", name)
            stack = self._stacks.get(name)
            if stack is None:
                return
            self._changesets = {
                ref: cs for ref, cs in self._changesets.items() if cs["stack"] != name
            }
            program = self._programs.get(name, StackProgram())
            in_use = [
                export
                for export in program.exports
                if [s for s in self.export_registry.list_importers(export) if s != name]
            ]
            stack.status = "DELETE_IN_PROGRESS"
            stack.pending_polls = self.in_progress_polls
            if in_use:
                stack.final_status = "DELETE_FAILED"
                stack.status_reason = f"Export {in_use[0]} cannot be deleted as it is in use"
            else:
                stack.final_status = "DELETE_COMPLETE"
                stack.status_reason = ""
            if stack.pending_polls == 0:
                self._finish(stack)

    def describe_stack(self, name: str) -> StackDescription:
        with self._lock:
            self._enter("describe_stack", name)
            stack = self._require(name)
            if stack.pending_polls > 0:
                stack.pending_polls -= 1
                if stack.pending_polls == 0:
                    description = self._describe(stack)
                    self._finish(stack)
                    return description
            return self._describe(stack)

    def create_change_set(
        self,
        name: str,
        changeset_name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: list[str],
        *,
        include_nested: bool = True,
    ) -> str:
        with self._lock:
            self._enter("create_change_set", name)
            stack = self._stacks.get(name)
            if stack is None:
                stack = _LiveStack(
                    name=name,
                    status=PLACEHOLDER_STATUS,
                    parameters={},
                    template_url="",
                    tags={},
                    last_updated=self._tick(),
                )
                self._stacks[name] = stack
            ref = f"arn:memory:changeset/{name}/{changeset_name}"
            self._changesets[ref] = {
                "stack": name,
                "type": "CREATE" if is_placeholder(stack.status) else "UPDATE",
                "template_url": template_url,
                "parameters": dict(parameters),
                "capabilities": list(capabilities),
                "include_nested": include_nested,
            }
            return ref

    def describe_change_set(self, name: str, changeset_ref: str) -> list[dict[str, Any]]:
        with self._lock:
            self._enter("describe_change_set", name)
            changeset = self._changeset(changeset_ref)
            stack = self._stacks.get(name)
            if stack is None or changeset["type"] == "CREATE":
                return [{"action": "Add", "logical_id": name, "resource_type": "AWS::CloudFormation::Stack"}]
            changes = [
                {"action": "Modify", "logical_id": key, "resource_type": "Parameter"}
                for key in sorted(set(stack.parameters) | set(changeset["parameters"]))
                if stack.parameters.get(key) != changeset["parameters"].get(key)
            ]
            if stack.template_url != changeset["template_url"]:
                changes.append(
                    {
                        "action": "Modify",
                        "logical_id": name,
                        "resource_type": "AWS::CloudFormation::Stack",
                        "replacement": False,
                    }
                )
            return changes

    def execute_change_set(self, name: str, changeset_ref: str) -> None:
        with self._lock:
            self._enter("execute_change_set", name)
            changeset = self._changesets.pop(changeset_ref, None)
            if changeset is None:
                raise ProvisioningFailed(f"ChangeSet [{changeset_ref}] does not exist")
            stack = self._require(name)
            if changeset["type"] == "CREATE" and not is_placeholder(stack.status):
                raise ProvisioningFailed(f"Stack [{name}] already exists")
            stack.parameters = changeset["parameters"]
            stack.template_url = changeset["template_url"]
            action = changeset["type"]
            stack.status = f"{action}_IN_PROGRESS"
            self._settle(stack, action)

    def delete_change_set(self, name: str, changeset_ref: str) -> None:
        with self._lock:
            self._enter("delete_change_set", name)
            self._changesets.pop(changeset_ref, None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _enter(self, operation: str, name: str) -> None:
        self.calls.append((operation, name))
        remaining = self._transient.get(operation, 0)
        if remaining > 0:
            self._transient[operation] = remaining - 1
            raise TransientProvisioningError(f"Rate exceeded ({operation} {name})")

    def _require(self, name: str) -> _LiveStack:
        stack = self._stacks.get(name)
        if stack is None:
            raise StackNotFound(f"Stack with id {name} does not exist")
        return stack

    def _changeset(self, ref: str) -> dict[str, Any]:
        if ref not in self._changesets:
            raise ProvisioningFailed(f"ChangeSet [{ref}] does not exist")
        return self._changesets[ref]

    def _tick(self) -> str:
        return f"t{next(self._clock):06d}"

    def _settle(self, stack: _LiveStack, action: str, *, disable_rollback: bool = False) -> None:
        program = self._programs.get(stack.name, StackProgram())
        stack.last_updated = self._tick()
        if program.fail_status:
            stack.final_status = program.fail_status
            if disable_rollback and action == "CREATE" and program.fail_status == "ROLLBACK_COMPLETE":
                stack.final_status = "CREATE_FAILED"
            stack.status_reason = program.fail_reason
            program.fail_status = None
        else:
            stack.final_status = f"{action}_COMPLETE"
            stack.status_reason = ""
        stack.pending_polls = self.in_progress_polls
        if stack.pending_polls == 0:
            self._finish(stack)

    def _finish(self, stack: _LiveStack) -> None:
        stack.status = stack.final_status
        program = self._programs.get(stack.name, StackProgram())
        if stack.status == "DELETE_COMPLETE":
            del self._stacks[stack.name]
            self.export_registry.remove_stack(stack.name)
            return
        if stack.status not in ("CREATE_COMPLETE", "UPDATE_COMPLETE"):
            return
        stack.outputs = dict(program.outputs)
        self.export_registry.remove_stack(stack.name)
        for export_name, value in program.exports.items():
            self.export_registry.add_export(export_name, value, stack.name)
        for export_name in program.imports:
            self.export_registry.add_import(export_name, stack.name)
        for path, value in program.writes.items():
            self.parameter_store.put_parameter(path, value)

    @staticmethod
    def _describe(stack: _LiveStack) -> StackDescription:
        return StackDescription(
            name=stack.name,
            status=stack.status,
            status_reason=stack.status_reason,
            outputs=dict(stack.outputs),
            parameters=dict(stack.parameters),
            template_url=stack.template_url,
            last_updated=stack.last_updated,
        )
