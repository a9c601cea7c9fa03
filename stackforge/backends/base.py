"""Collaborator protocols for everything the engine does not own.

The engine never reaches for ambient state: the blob store, the stack
provisioner, the Export registry and the parameter store are all injected.
Any object with the right methods satisfies these protocols; see
``stackforge.backends.memory`` for in-memory fakes and
``stackforge.backends.aws`` for boto3-backed implementations.

Implementations raise ``TransientProvisioningError`` for retryable failures
and ``StackNotFound`` when a stack does not exist.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


# ---------------------------------------------------------------------------
# Shared value types
# ---------------------------------------------------------------------------


class ExportRecord(BaseModel):
    """One live entry in the region-scoped Export registry."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    exporting_stack: str


class StackDescription(BaseModel):
    """Live view of a stack as reported by the provisioner.

    ``status`` uses the provisioner's vocabulary (e.g. ``CREATE_COMPLETE``);
    see ``stackforge.backends.status`` for how it is classified.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    status: str
    status_reason: str = ""
    outputs: dict[str, str] = {}
    parameters: dict[str, str] = {}
    template_url: str = ""
    last_updated: str = ""

    def fingerprint_payload(self) -> dict[str, Any]:
        """The parts of live state a changeset depends on."""
        return {
            "status": self.status,
            "parameters": self.parameters,
            "template_url": self.template_url,
            "last_updated": self.last_updated,
        }


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class BlobStore(Protocol):
    """Plain object-key storage for template bundles."""

    def put(self, key: str, body: bytes) -> None: ...

    def get(self, key: str) -> bytes: ...

    def exists(self, key: str) -> bool: ...

    def url_for(self, key: str) -> str: ...


@runtime_checkable
class ExportRegistry(Protocol):
    """Region-scoped registry of exported stack outputs."""

    def list_exports(self, name: str | None = None) -> list[ExportRecord]:
        """Return live exports, optionally filtered to one name."""
        ...

    def list_importers(self, export_name: str) -> list[str]:
        """Return the names of live stacks importing *export_name*."""
        ...


@runtime_checkable
class ParameterStore(Protocol):
    """Global, hierarchical, versioned key-value store."""

    def get_parameter(self, path: str, version: int) -> str:
        """Return the value of *path* at exactly *version*.

        Raises ``ParameterPathMissing`` when the path is absent and
        ``ParameterVersionMissing`` when the version is absent.
        """
        ...


@runtime_checkable
class StackProvisioner(Protocol):
    """The external stack-provisioning API surface."""

    def create_stack(
        self,
        name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: list[str],
        *,
        disable_rollback: bool = False,
        tags: dict[str, str] | None = None,
    ) -> None: ...

    def update_stack(
        self,
        name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: list[str],
        *,
        tags: dict[str, str] | None = None,
    ) -> bool:
        """Submit an update. Returns False when there is nothing to update."""
        ...

    def delete_stack(self, name: str) -> None: ...

    def describe_stack(self, name: str) -> StackDescription: ...

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
        """Create a changeset and return the provisioner's identifier."""
        ...

    def describe_change_set(self, name: str, changeset_ref: str) -> list[dict[str, Any]]:
        """Return resource changes as dicts (action, logical_id, ...)."""
        ...

    def execute_change_set(self, name: str, changeset_ref: str) -> None: ...

    def delete_change_set(self, name: str, changeset_ref: str) -> None: ...


# ---------------------------------------------------------------------------
# Lookup errors raised by ParameterStore implementations
# ---------------------------------------------------------------------------


class ParameterPathMissing(KeyError):
    """The parameter path does not exist at all."""


class ParameterVersionMissing(KeyError):
    """The path exists but the requested version does not."""
