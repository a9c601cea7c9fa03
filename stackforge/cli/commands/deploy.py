"""``stackforge create|update STACKSET`` — deploy a stack set in plan order."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from stackforge.cli.commands.options import BackendOpt, EnvironmentOpt, StackSetArg
from stackforge.cli.runtime import build_runtime, dry_run_notice, load_plan, settings_for
from stackforge.core.errors import StackforgeError
from stackforge.monitor.renderer import ReportRenderer

console = Console()


def _deploy(operation: str, stack_set_file: Path, environment: str | None, backend: str | None) -> None:
    settings = settings_for(environment, backend)
    notice = dry_run_notice(settings)
    if notice:
        console.print(f"[yellow]{notice}[/yellow]")
    renderer = ReportRenderer(console=console)
    try:
        plan = load_plan(stack_set_file)
        runtime = build_runtime(settings, plan)
        console.print(
            f"[bold cyan]{operation.capitalize()} {plan.stack_set.name} "
            f"({settings.environment}):[/bold cyan] {' -> '.join(plan.order)}"
        )
        if operation == "create":
            report = runtime.orchestrator.create(plan)
        else:
            report = runtime.orchestrator.update(plan)
    except StackforgeError as exc:
        console.print(f"[bold red]{exc.kind}:[/bold red] {exc}")
        raise typer.Exit(code=1)

    console.print()
    renderer.print_report(report)
    if not report.succeeded:
        raise typer.Exit(code=1)


def create_cmd(
    stack_set_file: Path = StackSetArg,
    environment: str = EnvironmentOpt,
    backend: str = BackendOpt,
) -> None:
    """Create every stack of a stack set in dependency order."""
    _deploy("create", stack_set_file, environment, backend)


def update_cmd(
    stack_set_file: Path = StackSetArg,
    environment: str = EnvironmentOpt,
    backend: str = BackendOpt,
) -> None:
    """Update every stack of a stack set in dependency order."""
    _deploy("update", stack_set_file, environment, backend)
