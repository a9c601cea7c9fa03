"""``stackforge bucket setup|check`` — prepare the S3 artifact bucket.

``setup`` creates the bucket when it is missing, turns on versioning and
blocks every form of public access. ``check`` only confirms that the bucket
exists and these credentials can reach it. Both always talk to S3,
whatever STACKFORGE_BACKEND says.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich.console import Console

from stackforge.cli.runtime import artifact_bucket_for
from stackforge.config import Settings
from stackforge.core.errors import StackforgeError

if TYPE_CHECKING:
    from stackforge.backends.aws import S3BlobStore

console = Console()

bucket_app = typer.Typer(
    help="Create or check the S3 bucket templates are published to.",
    no_args_is_help=True,
)

BucketOpt = typer.Option(
    None,
    "--bucket",
    help=(
        "Bucket name (defaults to STACKFORGE_ARTIFACT_BUCKET, then "
        "cloudformation.<region>.<account id>)."
    ),
)

RegionOpt = typer.Option(
    None,
    "--region",
    "-r",
    help="AWS region (defaults to STACKFORGE_REGION).",
)


def open_bucket(bucket: str | None, region: str | None) -> S3BlobStore:
    """The artifact bucket named by the options, env and .env, in that order."""
    from stackforge.backends.aws import S3BlobStore

    overrides: dict[str, str] = {"backend": "aws"}
    if bucket:
        overrides["artifact_bucket"] = bucket
    if region:
        overrides["region"] = region
    settings = Settings(**overrides)
    return S3BlobStore(artifact_bucket_for(settings), region=settings.region)


@bucket_app.command(name="setup")
def setup_cmd(bucket: str = BucketOpt, region: str = RegionOpt) -> None:
    """Create the artifact bucket, enable versioning and block public access."""
    try:
        store = open_bucket(bucket, region)
        console.print(f"[bold cyan]Setting up bucket:[/bold cyan] {store.bucket}")
        store.ensure_bucket()
    except StackforgeError as exc:
        console.print(f"[bold red]{exc.kind}:[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(
        f"[bold green]Bucket {store.bucket} is ready[/bold green] "
        "(versioning enabled, public access blocked)."
    )


@bucket_app.command(name="check")
def check_cmd(bucket: str = BucketOpt, region: str = RegionOpt) -> None:
    """Check that the artifact bucket exists and is accessible."""
    try:
        store = open_bucket(bucket, region)
        accessible = store.check()
    except StackforgeError as exc:
        console.print(f"[bold red]{exc.kind}:[/bold red] {exc}")
        raise typer.Exit(code=1)
    if not accessible:
        console.print(
            f"[bold red]Bucket {store.bucket} does not exist or is not accessible.[/bold red]"
        )
        raise typer.Exit(code=1)
    console.print(f"[bold green]Bucket {store.bucket} exists and is accessible.[/bold green]")
