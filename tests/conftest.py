"""Shared test fixtures for Stackforge."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from stackforge.backends.memory import (
    InMemoryBlobStore,
    InMemoryExportRegistry,
    InMemoryParameterStore,
    InMemoryProvisioner,
)
from stackforge.config import Settings
from stackforge.core.artifact_store import TemplateArtifactStore
from stackforge.core.deployment_ledger import DeploymentLedger
from stackforge.core.orchestrator import DeploymentOrchestrator
from stackforge.core.stack_graph import StackGraph
from stackforge.models.plan import DeploymentPlan
from stackforge.models.stacks import (
    Export,
    ExternalParameter,
    NestedOutput,
    Output,
    Parameter,
    StackDefinition,
    StackSet,
    TemplateArtifactRef,
)

ENVIRONMENT = "testing"


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_dir: Path) -> Settings:
    """Settings isolated from the host environment, tuned for fast tests."""
    return Settings(
        _env_file=None,
        environment=ENVIRONMENT,
        backend="memory",
        ledger_path=tmp_dir / "ledger.db",
        max_attempts=3,
        backoff_base_seconds=1.0,
        backoff_max_seconds=4.0,
        poll_interval_seconds=1.0,
        stack_timeout_seconds=30.0,
    )


@pytest.fixture
def ledger(tmp_dir: Path) -> DeploymentLedger:
    """Provide a fresh DeploymentLedger backed by a temp SQLite database."""
    return DeploymentLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def artifact_store(blob_store: InMemoryBlobStore) -> TemplateArtifactStore:
    """Provide a TemplateArtifactStore over an in-memory blob store."""
    return TemplateArtifactStore(blob_store)


@pytest.fixture
def export_registry() -> InMemoryExportRegistry:
    return InMemoryExportRegistry()


@pytest.fixture
def parameter_store() -> InMemoryParameterStore:
    return InMemoryParameterStore()


# ---------------------------------------------------------------------------
# Stack factories
# ---------------------------------------------------------------------------


@pytest.fixture
def template_dir(tmp_dir: Path) -> Path:
    path = tmp_dir / "templates"
    path.mkdir()
    return path


@pytest.fixture
def make_stack(template_dir: Path) -> Callable[..., StackDefinition]:
    """Factory fixture: a StackDefinition with a real template source file."""

    def _factory(name: str, **overrides: Any) -> StackDefinition:
        source = template_dir / f"{name.lower()}.yml"
        if not source.exists():
            source.write_text(f"Description: {name}\nResources: {{}}\n")
        defaults: dict[str, Any] = {
            "name": name,
            "template": TemplateArtifactRef(
                template_name=source.name, source_path=str(source)
            ),
        }
        defaults.update(overrides)
        return StackDefinition(**defaults)

    return _factory


@pytest.fixture
def scenario_stack_set(make_stack: Callable[..., StackDefinition]) -> StackSet:
    """S3 / IAM / Networking / SecurityGroup / Compute.

    S3 writes parameter "p"; IAM reads it and exports "role"; the last three
    are nested in "App" and wired through nested outputs; Compute imports
    "role".
    """
    return StackSet(
        name="platform",
        application="acme",
        stacks=[
            make_stack(
                "S3",
                outputs=[Output(name="BucketName")],
                writes_parameters=["p"],
            ),
            make_stack(
                "IAM",
                parameters=[Parameter(name="Bucket")],
                outputs=[Output(name="RoleArn", export_name="role")],
                references={"Bucket": ExternalParameter(path="p", version=1)},
                capabilities=["CAPABILITY_NAMED_IAM"],
            ),
            make_stack(
                "Networking",
                nested_in="App",
                outputs=[Output(name="VpcId")],
            ),
            make_stack(
                "SecurityGroup",
                nested_in="App",
                parameters=[Parameter(name="VpcId")],
                outputs=[Output(name="GroupId")],
                references={
                    "VpcId": NestedOutput(
                        parent_stack="App", child_stack="Networking", output_name="VpcId"
                    )
                },
            ),
            make_stack(
                "Compute",
                nested_in="App",
                parameters=[
                    Parameter(name="role"),
                    Parameter(name="GroupId"),
                    Parameter(name="Environment"),
                    Parameter(name="InstanceType", default="t3.micro"),
                ],
                references={
                    "role": Export(export_name="role"),
                    "GroupId": NestedOutput(
                        parent_stack="App", child_stack="SecurityGroup", output_name="GroupId"
                    ),
                },
            ),
        ],
    )


@pytest.fixture
def scenario_plan(scenario_stack_set: StackSet) -> DeploymentPlan:
    return StackGraph(scenario_stack_set).build()


@pytest.fixture
def provisioner(
    scenario_stack_set: StackSet,
    export_registry: InMemoryExportRegistry,
    parameter_store: InMemoryParameterStore,
) -> InMemoryProvisioner:
    """A provisioner programmed from the scenario stack set."""
    return InMemoryProvisioner.for_stack_set(
        scenario_stack_set, ENVIRONMENT, export_registry, parameter_store
    )


@pytest.fixture
def make_orchestrator(
    provisioner: InMemoryProvisioner,
    artifact_store: TemplateArtifactStore,
    ledger: DeploymentLedger,
    settings: Settings,
    clock: FakeClock,
) -> Callable[..., DeploymentOrchestrator]:
    """Factory fixture: an orchestrator over the in-memory collaborators."""

    def _factory(**setting_overrides: Any) -> DeploymentOrchestrator:
        return DeploymentOrchestrator(
            provisioner=provisioner,
            export_registry=provisioner.export_registry,
            parameter_store=provisioner.parameter_store,
            artifact_store=artifact_store,
            ledger=ledger,
            settings=settings.model_copy(update=setting_overrides),
            sleep=clock.sleep,
            clock=clock,
        )

    return _factory


@pytest.fixture
def orchestrator(make_orchestrator: Callable[..., DeploymentOrchestrator]) -> DeploymentOrchestrator:
    return make_orchestrator()
