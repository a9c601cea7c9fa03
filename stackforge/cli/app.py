"""Main Typer application — imports and registers all CLI commands.

Entry point: ``stackforge`` (configured via pyproject.toml scripts).

Commands: plan, publish, create, update, changeset, delete, history, demo,
config, and the ``bucket`` group (setup, check).
"""

from __future__ import annotations

import typer

from stackforge.cli.commands.bucket import bucket_app
from stackforge.cli.commands.changeset import changeset_cmd
from stackforge.cli.commands.config_cmd import config_cmd
from stackforge.cli.commands.delete import delete_cmd
from stackforge.cli.commands.demo import demo_cmd
from stackforge.cli.commands.deploy import create_cmd, update_cmd
from stackforge.cli.commands.history import history_cmd
from stackforge.cli.commands.plan import plan_cmd
from stackforge.cli.commands.publish import publish_cmd
from stackforge.cli.runtime import configure_logging
from stackforge.config import Settings

app = typer.Typer(
    name="stackforge",
    help="Stackforge: dependency-ordered deployment of cloud stack sets.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="DEBUG, INFO, WARNING or ERROR (defaults to STACKFORGE_LOG_LEVEL).",
    ),
) -> None:
    """Configure logging before any command runs."""
    configure_logging(log_level or Settings().log_level)


# Register subcommands
app.command(name="plan", help="Validate a stack set and show its deployment plan.")(plan_cmd)
app.command(name="publish", help="Publish template bundles to the artifact store.")(publish_cmd)
app.command(name="create", help="Create a stack set in dependency order (a dry run unless --backend aws).")(create_cmd)
app.command(name="update", help="Update a stack set in dependency order (a dry run unless --backend aws).")(update_cmd)
app.command(name="changeset", help="Preview a changeset for one stack and apply it on approval (a dry run unless --backend aws).")(changeset_cmd)
app.command(name="delete", help="Delete a stack set in reverse creation order (a dry run unless --backend aws).")(delete_cmd)
app.command(name="history", help="Show ledger history for a run.")(history_cmd)
app.command(name="demo", help="Deploy and tear down a sample stack set in memory.")(demo_cmd)
app.command(name="config", help="Show the resolved configuration.")(config_cmd)
app.add_typer(bucket_app, name="bucket")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
