"""``stackforge history [RUN_ID]`` — show recorded runs from the ledger."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from stackforge.config import Settings
from stackforge.core.deployment_ledger import DeploymentLedger
from stackforge.core.errors import LedgerIntegrityError
from stackforge.monitor.renderer import ReportRenderer

console = Console()


def history_cmd(
    run_id: str = typer.Argument(
        None,
        help="Run to show. Lists all runs when omitted.",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database (defaults to STACKFORGE_LEDGER_PATH).",
    ),
) -> None:
    """Show ledger entries for a run and verify its hash chain."""
    db_path = ledger_db or Settings().ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)
    ledger = DeploymentLedger(db_path)

    if run_id is None:
        run_ids = ledger.get_all_run_ids()
        if not run_ids:
            console.print("[dim]No runs recorded.[/dim]")
            return
        for rid in run_ids:
            console.print(f"  {rid}")
        return

    entries = ledger.get_run_entries(run_id)
    if not entries:
        console.print(f"[bold red]No entries for run:[/bold red] {run_id}")
        raise typer.Exit(code=1)

    try:
        chain_valid = ledger.verify_chain(run_id)
    except LedgerIntegrityError as exc:
        console.print(f"[bold red]Chain verification failed:[/bold red] {exc}")
        chain_valid = False

    console.print(ReportRenderer(console=console).render_history(run_id, entries, chain_valid))
    if not chain_valid:
        raise typer.Exit(code=1)
