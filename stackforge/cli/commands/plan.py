"""``stackforge plan STACKSET`` — validate the graph and show the plan.

Nothing is provisioned. Exits non-zero on any graph or parse error.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from stackforge.cli.commands.options import EnvironmentOpt, StackSetArg
from stackforge.cli.runtime import load_plan, settings_for
from stackforge.core.errors import StackforgeError
from stackforge.monitor.renderer import ReportRenderer

console = Console()


def plan_cmd(
    stack_set_file: Path = StackSetArg,
    environment: str = EnvironmentOpt,
) -> None:
    """Show the deployment order and dependency edges of a stack set."""
    settings = settings_for(environment)
    try:
        plan = load_plan(stack_set_file)
    except StackforgeError as exc:
        console.print(f"[bold red]{exc.kind}:[/bold red] {exc}")
        raise typer.Exit(code=1)

    ReportRenderer(console=console).print_plan(plan, settings.environment)
