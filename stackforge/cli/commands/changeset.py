"""``stackforge changeset STACKSET --stack NAME`` — preview, then apply on approval.

The changeset is computed against live state and shown. Unless
``--no-execute`` is given, the operator is asked to approve it; execution
re-checks live state and refuses a stale changeset.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from stackforge.cli.commands.options import BackendOpt, EnvironmentOpt, StackSetArg, YesOpt
from stackforge.cli.runtime import build_runtime, dry_run_notice, load_plan, settings_for
from stackforge.core.changeset_planner import ChangeSetPlanner
from stackforge.core.errors import ReferenceResolutionError, StackforgeError
from stackforge.models.changesets import ChangeSet
from stackforge.models.states import StackState
from stackforge.monitor.renderer import ReportRenderer

console = Console()


def changeset_cmd(
    stack_set_file: Path = StackSetArg,
    stack: str = typer.Option(..., "--stack", "-s", help="Stack to preview."),
    environment: str = EnvironmentOpt,
    backend: str = BackendOpt,
    execute: bool = typer.Option(
        True,
        "--execute/--no-execute",
        help="Offer to execute the changeset after showing it.",
    ),
    yes: bool = YesOpt,
) -> None:
    """Compute a changeset for one stack and optionally execute it."""
    settings = settings_for(environment, backend)
    notice = dry_run_notice(settings)
    if notice:
        console.print(f"[yellow]{notice}[/yellow]")
    renderer = ReportRenderer(console=console)
    try:
        plan = load_plan(stack_set_file)
        if stack not in plan.order:
            console.print(f"[bold red]Unknown stack:[/bold red] {stack}")
            raise typer.Exit(code=1)
        runtime = build_runtime(settings, plan)
        orchestrator = runtime.orchestrator
        planner = ChangeSetPlanner(orchestrator, plan.stack_set)

        target = plan.stack_set.get_stack(stack)
        inputs = orchestrator.resolve_inputs(target, orchestrator.live_context(plan))
        changeset = planner.plan(stack, target, inputs)
        renderer.print_changeset(changeset)

        if not execute:
            planner.discard(changeset)
            console.print("[dim]ChangeSet discarded (--no-execute).[/dim]")
            return

        def approve(cs: ChangeSet) -> bool:
            if yes:
                return True
            return typer.confirm(f"Execute {cs.changeset_id} against {cs.physical_name}?")

        outcome = planner.execute(changeset, approve=approve)
    except StackforgeError as exc:
        console.print(f"[bold red]{exc.kind}:[/bold red] {exc}")
        if notice and isinstance(exc, ReferenceResolutionError):
            console.print(
                "[dim]Producers are never live on a dry run, so only stacks whose "
                "references are satisfied without them can be previewed here.[/dim]"
            )
        raise typer.Exit(code=1)

    if outcome.state == StackState.PENDING:
        console.print("[yellow]ChangeSet declined; nothing was applied.[/yellow]")
        return
    if outcome.state != StackState.SUCCEEDED:
        console.print(
            f"[bold red]{outcome.state.value}:[/bold red] "
            f"{outcome.error_kind}: {outcome.error_message}"
        )
        raise typer.Exit(code=1)
    console.print(f"[bold green]ChangeSet {changeset.changeset_id} applied.[/bold green]")
