"""Rich terminal renderer for plans, run reports, changesets and run history.

Color scheme
------------
- green     : SUCCEEDED / DELETED
- red       : FAILED
- magenta   : ROLLED_BACK
- yellow    : RESOLVING / PUBLISHING / APPLYING / DELETING
- dim       : PENDING
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from stackforge.models.changesets import ChangeSet
from stackforge.models.ledger import LedgerEntry
from stackforge.models.plan import DeploymentPlan
from stackforge.models.reports import DeploymentReport
from stackforge.models.states import StackState

# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_STYLES: dict[StackState, str] = {
    StackState.SUCCEEDED: "bold green",
    StackState.DELETED: "bold green",
    StackState.FAILED: "bold red",
    StackState.ROLLED_BACK: "bold magenta",
    StackState.RESOLVING: "bold yellow",
    StackState.PUBLISHING: "bold yellow",
    StackState.APPLYING: "bold yellow",
    StackState.DELETING: "bold yellow",
    StackState.PENDING: "dim",
}

_STATE_ICONS: dict[StackState, str] = {
    StackState.SUCCEEDED: "[green]SUCCEEDED[/green]",
    StackState.DELETED: "[green]DELETED[/green]",
    StackState.FAILED: "[bold red]FAILED[/bold red]",
    StackState.ROLLED_BACK: "[magenta]ROLLED BACK[/magenta]",
    StackState.RESOLVING: "[yellow]RESOLVING[/yellow]",
    StackState.PUBLISHING: "[yellow]PUBLISHING[/yellow]",
    StackState.APPLYING: "[yellow]APPLYING[/yellow]",
    StackState.DELETING: "[yellow]DELETING[/yellow]",
    StackState.PENDING: "[dim]PENDING[/dim]",
}

_ACTION_STYLES = {"Add": "green", "Modify": "yellow", "Remove": "red"}


class ReportRenderer:
    """Renders engine models as Rich renderables.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    def render_plan(self, plan: DeploymentPlan, environment: str) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Stack", min_width=18)
        table.add_column("Physical name", min_width=24)
        table.add_column("Depends on")

        for i, name in enumerate(plan.order, start=1):
            producers = [
                f"{e.producer} [dim]({e.reference.describe()})[/dim]"
                for e in plan.edges
                if e.consumer == name
            ]
            table.add_row(
                str(i),
                f"[bold]{name}[/bold]",
                plan.stack_set.physical_name(name, environment),
                "\n".join(producers) or "[dim]-[/dim]",
            )

        summary = (
            f"[bold]Plan:[/bold] {plan.plan_id}  |  "
            f"[bold]Stacks:[/bold] {len(plan.order)}  |  "
            f"[bold]Edges:[/bold] {len(plan.edges)}  |  "
            f"[bold]Teardown:[/bold] {' -> '.join(plan.teardown_order)}"
        )
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title=f"[bold]Deployment plan: {plan.stack_set.name} ({environment})[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def render_report(self, report: DeploymentReport) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Stack", min_width=18)
        table.add_column("State", min_width=12, justify="center")
        table.add_column("Revision", width=14)
        table.add_column("Attempts", justify="right", width=9)
        table.add_column("Details", min_width=20)

        for outcome in report.outcomes:
            style = _STATE_STYLES.get(outcome.state, "")
            details = ""
            if outcome.error_kind:
                details = f"[red]{outcome.error_kind}[/red]: {outcome.error_message or ''}"
            elif outcome.outputs:
                details = ", ".join(f"{k}={v}" for k, v in sorted(outcome.outputs.items()))
            table.add_row(
                Text(outcome.stack_name, style=style),
                _STATE_ICONS.get(outcome.state, outcome.state.value),
                outcome.template_revision or "[dim]-[/dim]",
                str(outcome.attempts) if outcome.attempts else "[dim]-[/dim]",
                details,
            )

        if report.succeeded:
            verdict = f"[bold green]{report.operation} succeeded[/bold green]"
            border = "green"
        else:
            furthest = report.furthest_outcome
            reached = (
                f"{furthest.stack_name} ({furthest.state.value})" if furthest else "nothing"
            )
            cancelled = " [yellow](cancelled)[/yellow]" if report.cancelled else ""
            verdict = (
                f"[bold red]{report.operation} did not succeed[/bold red]{cancelled}  |  "
                f"[bold]Furthest:[/bold] {reached}"
            )
            border = "red"

        summary = f"[bold]Run:[/bold] {report.run_id}  |  {verdict}"
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title=f"[bold]{report.stack_set} ({report.environment})[/bold]",
            border_style=border,
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # ChangeSet
    # ------------------------------------------------------------------

    def render_changeset(self, changeset: ChangeSet) -> Panel:
        if changeset.is_empty:
            body: Table | Text = Text.from_markup("[dim]No changes.[/dim]")
        else:
            table = Table(show_header=True, header_style="bold cyan", expand=True)
            table.add_column("Action", width=8)
            table.add_column("Logical ID", min_width=20)
            table.add_column("Type", min_width=20)
            table.add_column("Replacement", justify="center", width=12)
            table.add_column("Nested stack")
            for change in changeset.changes:
                style = _ACTION_STYLES.get(change.action, "")
                table.add_row(
                    f"[{style}]{change.action}[/{style}]" if style else change.action,
                    change.logical_id,
                    change.resource_type,
                    "[bold red]yes[/bold red]" if change.replacement else "no",
                    change.nested_stack or "",
                )
            body = table

        return Panel(
            body,
            title=f"[bold]ChangeSet {changeset.changeset_id}[/bold]",
            subtitle=f"{changeset.physical_name}  |  {changeset.status.value}",
            border_style="cyan",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Ledger history
    # ------------------------------------------------------------------

    def render_history(self, run_id: str, entries: list[LedgerEntry], chain_valid: bool) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Time (UTC)", width=20)
        table.add_column("Stack", min_width=16)
        table.add_column("Transition", min_width=24)
        table.add_column("Revision", width=14)
        table.add_column("Detail")

        for entry in entries:
            style = _STATE_STYLES.get(entry.to_state, "")
            table.add_row(
                entry.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
                entry.stack_name,
                Text(entry.state_transition, style=style),
                entry.template_revision or "",
                entry.detail,
            )

        chain = "[green]valid[/green]" if chain_valid else "[bold red]BROKEN[/bold red]"
        return Panel(
            Group(table, Text(""), Text.from_markup(f"[bold]Chain:[/bold] {chain}")),
            title=f"[bold]Run {run_id}[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Convenience printers
    # ------------------------------------------------------------------

    def print_plan(self, plan: DeploymentPlan, environment: str) -> None:
        self.console.print(self.render_plan(plan, environment))

    def print_report(self, report: DeploymentReport) -> None:
        self.console.print(self.render_report(report))

    def print_changeset(self, changeset: ChangeSet) -> None:
        self.console.print(self.render_changeset(changeset))
