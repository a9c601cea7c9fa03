"""Shared CLI plumbing: logging setup, backend wiring and plan loading.

Backends
--------
memory
    Everything in memory: a dry run whose provisioner is programmed from
    the stack set. Nothing survives the process except the ledger.
local
    Templates published to ``artifact_store_path`` on disk; provisioning,
    exports and parameters are simulated in memory. Also a dry run: each
    command starts from no live stacks.
aws
    S3 for templates, CloudFormation for stacks and exports, SSM Parameter
    Store for external parameters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from stackforge.backends.base import BlobStore
from stackforge.config import Settings
from stackforge.core.artifact_store import TemplateArtifactStore
from stackforge.core.deployment_ledger import DeploymentLedger
from stackforge.core.orchestrator import DeploymentOrchestrator
from stackforge.core.stack_graph import StackGraph
from stackforge.loader import load_stack_set
from stackforge.models.plan import DeploymentPlan

logger = logging.getLogger(__name__)


def configure_logging(level: str, console: Console | None = None) -> None:
    """Route the root logger through Rich once per process."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.addHandler(
        RichHandler(console=console, show_path=False, rich_tracebacks=True, markup=False)
    )
    root.setLevel(level.upper())
    # Keep boto's wire logging out of the operator's terminal.
    for noisy in ("botocore", "boto3", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def load_plan(stack_set_file: Path) -> DeploymentPlan:
    """Parse the stack-set file and build its plan. Raises GraphError on bad graphs."""
    stack_set = load_stack_set(stack_set_file)
    plan = StackGraph(stack_set).build()
    logger.debug("Plan %s: %s", plan.plan_id, plan.order)
    return plan


@dataclass
class Runtime:
    settings: Settings
    orchestrator: DeploymentOrchestrator
    artifact_store: TemplateArtifactStore
    ledger: DeploymentLedger


def artifact_bucket_for(settings: Settings) -> str:
    """The configured bucket, or cloudformation.<region>.<account id> on aws."""
    if settings.artifact_bucket or settings.backend != "aws":
        return settings.artifact_bucket
    from stackforge.backends.aws import default_artifact_bucket

    bucket = default_artifact_bucket(settings.region)
    logger.info("No artifact bucket configured; using %s", bucket)
    return bucket


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.backend == "aws":
        from stackforge.backends.aws import S3BlobStore

        return S3BlobStore(artifact_bucket_for(settings), region=settings.region)
    if settings.backend == "local":
        from stackforge.backends.local import LocalBlobStore

        return LocalBlobStore(settings.artifact_store_path)
    from stackforge.backends.memory import InMemoryBlobStore

    return InMemoryBlobStore()


def build_runtime(settings: Settings, plan: DeploymentPlan) -> Runtime:
    """Wire the orchestrator and its collaborators for ``settings.backend``."""
    artifact_store = TemplateArtifactStore(
        build_blob_store(settings), prefix=settings.artifact_prefix
    )
    ledger = DeploymentLedger(settings.ledger_path)

    if settings.backend == "aws":
        from stackforge.backends.aws import (
            CloudFormationExportRegistry,
            CloudFormationProvisioner,
            SsmParameterStore,
        )

        provisioner = CloudFormationProvisioner(region=settings.region)
        export_registry = CloudFormationExportRegistry(region=settings.region)
        parameter_store = SsmParameterStore(region=settings.region)
    else:
        from stackforge.backends.memory import InMemoryProvisioner

        provisioner = InMemoryProvisioner.for_stack_set(plan.stack_set, settings.environment)
        export_registry = provisioner.export_registry
        parameter_store = provisioner.parameter_store

    orchestrator = DeploymentOrchestrator(
        provisioner=provisioner,
        export_registry=export_registry,
        parameter_store=parameter_store,
        artifact_store=artifact_store,
        ledger=ledger,
        settings=settings,
    )
    logger.debug("Backend %s wired for %s", settings.backend, plan.stack_set.name)
    return Runtime(settings, orchestrator, artifact_store, ledger)


def settings_for(environment: str | None, backend: str | None = None) -> Settings:
    """Settings from env/.env with command-line overrides applied."""
    overrides: dict[str, str] = {}
    if environment:
        overrides["environment"] = environment
    if backend:
        overrides["backend"] = backend
    return Settings(**overrides)


def dry_run_notice(settings: Settings) -> str | None:
    """Warning shown by commands that act on live stacks, or None on aws."""
    if settings.backend == "aws":
        return None
    return (
        f"Dry run ({settings.backend} backend): stacks are simulated inside this "
        f"command only. Nothing is provisioned and no stack state carries over "
        f"to the next command; use --backend aws to act on real stacks."
    )
