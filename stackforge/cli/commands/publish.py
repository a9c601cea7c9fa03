"""``stackforge publish STACKSET`` — upload template bundles.

Every stack with a local template source is published under its revision
key, and the ``latest`` alias is repointed. A revision already holding
identical content is left alone; different content is refused.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from stackforge.cli.commands.options import BackendOpt, EnvironmentOpt, StackSetArg
from stackforge.cli.runtime import build_runtime, load_plan, settings_for
from stackforge.core.errors import StackforgeError
from stackforge.models.artifacts import TemplateArtifact

console = Console()


def publish_cmd(
    stack_set_file: Path = StackSetArg,
    environment: str = EnvironmentOpt,
    backend: str = BackendOpt,
    revision: str = typer.Option(
        None,
        "--revision",
        "-r",
        help="Publish under this revision instead of the source-tree hash.",
    ),
) -> None:
    """Publish the templates of a stack set to the artifact store."""
    settings = settings_for(environment, backend)
    try:
        plan = load_plan(stack_set_file)
        runtime = build_runtime(settings, plan)
        published: list[tuple[str, TemplateArtifact]] = []
        seen: set[str] = set()
        for stack in plan.stacks:
            source = stack.template.source_path
            if not source or source in seen:
                continue
            seen.add(source)
            pinned = revision or stack.template.revision
            path = Path(source)
            if path.is_dir():
                artifacts = runtime.artifact_store.publish_bundle(path, revision=pinned)
            else:
                if not path.exists():
                    console.print(f"[bold red]Template source not found:[/bold red] {path}")
                    raise typer.Exit(code=1)
                artifacts = [
                    runtime.artifact_store.publish(
                        stack.template.template_name,
                        path.read_bytes(),
                        revision=pinned,
                    )
                ]
            published.extend((stack.name, a) for a in artifacts)
    except StackforgeError as exc:
        console.print(f"[bold red]{exc.kind}:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if not published:
        console.print("[dim]No stack declares a local template source.[/dim]")
        return

    table = Table(title="Published templates", header_style="bold cyan")
    table.add_column("Stack", style="cyan")
    table.add_column("Template")
    table.add_column("Revision", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Key", style="dim")
    for stack_name, artifact in published:
        table.add_row(
            stack_name,
            artifact.template_name,
            artifact.revision,
            f"{artifact.size_bytes} B",
            artifact.revision_key,
        )
    console.print(table)
