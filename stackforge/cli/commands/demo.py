"""``stackforge demo`` — deploy and tear down a sample stack set in memory.

Builds a five-stack set that uses all three sharing mechanisms:

- S3 writes an external parameter that IAM reads at version 1
- IAM exports a role that Compute imports
- Networking, SecurityGroup and Compute are nested units of one tree,
  wired through nested outputs

The set is planned, created and deleted against in-memory collaborators,
with the report shown after each step.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from stackforge.backends.memory import InMemoryBlobStore, InMemoryProvisioner
from stackforge.cli.runtime import settings_for
from stackforge.core.artifact_store import TemplateArtifactStore
from stackforge.core.deployment_ledger import DeploymentLedger
from stackforge.core.orchestrator import DeploymentOrchestrator
from stackforge.core.stack_graph import StackGraph
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
from stackforge.monitor.renderer import ReportRenderer

console = Console()

BUCKET_PARAMETER = "/demo/bucket-name"


def build_demo_stack_set(template_dir: Path) -> StackSet:
    """The sample set, with one small template file per stack in *template_dir*."""
    template_dir.mkdir(parents=True, exist_ok=True)

    def template(name: str) -> TemplateArtifactRef:
        path = template_dir / f"{name.lower()}.yml"
        path.write_text(f"Description: {name} demo stack\nResources: {{}}\n")
        return TemplateArtifactRef(template_name=path.name, source_path=str(path))

    return StackSet(
        name="demo",
        application="stackforge",
        stacks=[
            StackDefinition(
                name="S3",
                outputs=[Output(name="BucketName")],
                writes_parameters=[BUCKET_PARAMETER],
                template=template("S3"),
            ),
            StackDefinition(
                name="IAM",
                parameters=[Parameter(name="BucketName")],
                outputs=[Output(name="RoleArn", export_name="demo-role")],
                references={
                    "BucketName": ExternalParameter(path=BUCKET_PARAMETER, version=1),
                },
                capabilities=["CAPABILITY_NAMED_IAM"],
                template=template("IAM"),
            ),
            StackDefinition(
                name="Networking",
                nested_in="App",
                outputs=[Output(name="VpcId")],
                template=template("Networking"),
            ),
            StackDefinition(
                name="SecurityGroup",
                nested_in="App",
                parameters=[Parameter(name="VpcId")],
                outputs=[Output(name="GroupId")],
                references={
                    "VpcId": NestedOutput(
                        parent_stack="App", child_stack="Networking", output_name="VpcId"
                    ),
                },
                template=template("SecurityGroup"),
            ),
            StackDefinition(
                name="Compute",
                nested_in="App",
                parameters=[
                    Parameter(name="RoleArn"),
                    Parameter(name="GroupId"),
                    Parameter(name="Environment"),
                ],
                references={
                    "RoleArn": Export(export_name="demo-role"),
                    "GroupId": NestedOutput(
                        parent_stack="App", child_stack="SecurityGroup", output_name="GroupId"
                    ),
                },
                template=template("Compute"),
            ),
        ],
    )


def demo_cmd(
    environment: str = typer.Option(
        "demo",
        "--environment",
        "-e",
        help="Environment tag for the sample run.",
    ),
    ledger_db: str = typer.Option(
        ".stackforge/demo-ledger.db",
        "--ledger",
        help="Path to the ledger SQLite database (uses demo-specific default).",
    ),
    keep: bool = typer.Option(
        False,
        "--keep",
        help="Skip the teardown step.",
    ),
) -> None:
    """Plan, create and delete a sample stack set in memory."""
    settings = settings_for(environment, "memory").model_copy(
        update={"poll_interval_seconds": 0.0, "ledger_path": Path(ledger_db)}
    )
    renderer = ReportRenderer(console=console)

    console.print()
    console.print(
        Panel(
            "[bold]Stackforge Demo[/bold]\n\n"
            "Five stacks sharing values through an external parameter,\n"
            "an export and nested outputs, deployed in memory.",
            border_style="cyan",
            padding=(1, 2),
        )
    )
    console.print()

    with tempfile.TemporaryDirectory(prefix="stackforge-demo-") as tmp:
        stack_set = build_demo_stack_set(Path(tmp) / "templates")
        plan = StackGraph(stack_set).build()
        renderer.print_plan(plan, settings.environment)

        provisioner = InMemoryProvisioner.for_stack_set(
            stack_set, settings.environment, in_progress_polls=1
        )
        orchestrator = DeploymentOrchestrator(
            provisioner=provisioner,
            export_registry=provisioner.export_registry,
            parameter_store=provisioner.parameter_store,
            artifact_store=TemplateArtifactStore(InMemoryBlobStore()),
            ledger=DeploymentLedger(settings.ledger_path),
            settings=settings,
            sleep=lambda _: None,
        )

        report = orchestrator.create(plan)
        renderer.print_report(report)
        if not report.succeeded:
            raise typer.Exit(code=1)

        if keep:
            return

        teardown = orchestrator.delete(plan)
        renderer.print_report(teardown)
        if not teardown.succeeded:
            raise typer.Exit(code=1)

    console.print(
        f"[bold green]Demo complete.[/bold green] Ledger: {settings.ledger_path}"
    )
