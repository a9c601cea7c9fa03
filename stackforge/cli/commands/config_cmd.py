"""``stackforge config [STACKSET]`` — show the settings commands will run with."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stackforge.cli.commands.options import BackendOpt, EnvironmentOpt
from stackforge.cli.runtime import settings_for
from stackforge.core.errors import StackforgeError
from stackforge.loader import load_stack_set

console = Console()

_BACKEND_NOTES = {
    "memory": "dry run, nothing provisioned",
    "local": "dry run, templates on disk",
    "aws": "S3, CloudFormation, SSM",
}


def config_cmd(
    stack_set_file: Path = typer.Argument(
        None,
        exists=True,
        dir_okay=False,
        readable=True,
        help="Optional stack-set file; adds its application and name.",
    ),
    environment: str = EnvironmentOpt,
    backend: str = BackendOpt,
) -> None:
    """Show the resolved configuration."""
    settings = settings_for(environment, backend)
    rows: list[tuple[str, str]] = []

    if stack_set_file is not None:
        try:
            stack_set = load_stack_set(stack_set_file)
        except StackforgeError as exc:
            console.print(f"[bold red]{exc.kind}:[/bold red] {exc}")
            raise typer.Exit(code=1)
        rows.append(("Application", stack_set.application or "[dim]-[/dim]"))
        rows.append(("Stack set", stack_set.name))

    bucket = settings.artifact_bucket
    if not bucket:
        bucket = (
            f"[dim]cloudformation.{settings.region}.<account id>[/dim]"
            if settings.backend == "aws"
            else "[dim]-[/dim]"
        )
    rows.extend(
        [
            ("Environment", settings.environment),
            ("Region", settings.region),
            ("Backend", f"{settings.backend} [dim]({_BACKEND_NOTES[settings.backend]})[/dim]"),
            ("Artifact bucket", bucket),
            ("Artifact prefix", settings.artifact_prefix),
        ]
    )
    if settings.backend == "local":
        rows.append(("Artifact store", str(settings.artifact_store_path)))
    rows.extend(
        [
            ("Ledger", str(settings.ledger_path)),
            ("Rollback on failure", "yes" if settings.enable_rollback else "no"),
            ("Max parallel", str(settings.max_parallel)),
            ("Max attempts", str(settings.max_attempts)),
            ("Stack timeout", f"{settings.stack_timeout_seconds:.0f}s"),
            ("Log level", settings.log_level),
        ]
    )

    table = Table(show_header=False, expand=True)
    table.add_column("Setting", style="cyan", min_width=20)
    table.add_column("Value")
    for name, value in rows:
        table.add_row(name, value)

    console.print(Panel(table, title="[bold]Configuration[/bold]", border_style="blue"))
