"""``stackforge delete STACKSET`` — tear a stack set down in reverse order.

The order is the reverse of the last successful creation recorded in the
ledger. A stack whose export is still imported anywhere is refused.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from stackforge.cli.commands.options import BackendOpt, EnvironmentOpt, StackSetArg, YesOpt
from stackforge.cli.runtime import build_runtime, dry_run_notice, load_plan, settings_for
from stackforge.core.errors import StackforgeError
from stackforge.monitor.renderer import ReportRenderer

console = Console()


def delete_cmd(
    stack_set_file: Path = StackSetArg,
    environment: str = EnvironmentOpt,
    backend: str = BackendOpt,
    yes: bool = YesOpt,
) -> None:
    """Delete every stack of a stack set, consumers first."""
    settings = settings_for(environment, backend)
    notice = dry_run_notice(settings)
    if notice:
        console.print(f"[yellow]{notice}[/yellow]")
    try:
        plan = load_plan(stack_set_file)
        runtime = build_runtime(settings, plan)
        order = runtime.orchestrator.teardown_order(plan)
        console.print(
            f"[bold cyan]Teardown order ({settings.environment}):[/bold cyan] "
            f"{' -> '.join(order)}"
        )
        if not yes and not typer.confirm(f"Delete {len(order)} stacks?"):
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit(code=1)
        report = runtime.orchestrator.delete(plan)
    except StackforgeError as exc:
        console.print(f"[bold red]{exc.kind}:[/bold red] {exc}")
        raise typer.Exit(code=1)

    console.print()
    ReportRenderer(console=console).print_report(report)
    if not report.succeeded:
        raise typer.Exit(code=1)
