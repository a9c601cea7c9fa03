"""Option declarations shared by every stack-set command."""

from __future__ import annotations

import typer

StackSetArg = typer.Argument(
    ...,
    exists=True,
    dir_okay=False,
    readable=True,
    help="Path to the stack-set YAML file.",
)

EnvironmentOpt = typer.Option(
    None,
    "--environment",
    "-e",
    help="Environment tag (defaults to STACKFORGE_ENVIRONMENT).",
)

BackendOpt = typer.Option(
    None,
    "--backend",
    "-b",
    help=(
        "memory, local or aws (defaults to STACKFORGE_BACKEND). memory and local "
        "are dry runs: stacks are simulated per command and nothing is provisioned."
    ),
)

YesOpt = typer.Option(
    False,
    "--yes",
    "-y",
    help="Do not ask for confirmation.",
)
