"""Unit tests for the CLI — Typer command registration and basic behavior.

Every command runs against the in-memory backend with the ledger and the
artifact store redirected into a temporary directory.
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import boto3
import pytest
from botocore.stub import Stubber
from typer.testing import CliRunner

from stackforge.backends.aws import S3BlobStore
from stackforge.cli.app import app
from stackforge.cli.commands import bucket as bucket_module
from stackforge.core.deployment_ledger import DeploymentLedger

runner = CliRunner()

STACKSET = textwrap.dedent(
    """\
    apiVersion: stackforge/v1
    kind: StackSet
    metadata:
      name: web
      application: shop
    stacks:
      - name: S3
        template: templates/s3.yml
        outputs: [BucketName]
        writes_parameters: [/shop/bucket]
      - name: IAM
        template: templates/iam.yml
        capabilities: [CAPABILITY_NAMED_IAM]
        parameters: [Bucket]
        outputs:
          - {name: RoleArn, export: shop-role}
        references:
          Bucket: {parameter: /shop/bucket, version: 1}
      - name: App
        template: templates/app.yml
        parameters:
          - Role
          - Environment
        references:
          Role: {export: shop-role}
    """
)


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("STACKFORGE_BACKEND", "memory")
    monkeypatch.setenv("STACKFORGE_LEDGER_PATH", str(tmp_path / "ledger.db"))
    monkeypatch.setenv("STACKFORGE_ARTIFACT_STORE_PATH", str(tmp_path / "artifacts"))
    monkeypatch.setenv("STACKFORGE_POLL_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("COLUMNS", "200")
    templates = tmp_path / "templates"
    templates.mkdir()
    for name in ("s3", "iam", "app"):
        (templates / f"{name}.yml").write_text(f"Description: {name}\nResources: {{}}\n")
    (tmp_path / "stackset.yaml").write_text(STACKSET)
    return tmp_path


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    @pytest.mark.parametrize(
        "command",
        [
            "plan",
            "publish",
            "create",
            "update",
            "changeset",
            "delete",
            "history",
            "demo",
            "config",
            "bucket",
        ],
    )
    def test_command_registered(self, command: str):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


# ---------------------------------------------------------------------------
# Test: commands
# ---------------------------------------------------------------------------


class TestPlanCommand:
    def test_shows_order(self, workspace: Path):
        result = runner.invoke(app, ["plan", "stackset.yaml", "-e", "dev"])
        assert result.exit_code == 0, result.output
        assert "shop-dev-iam" in result.output
        assert "shop-dev-app" in result.output

    def test_graph_error_exits_nonzero(self, workspace: Path):
        bad = workspace / "bad.yaml"
        bad.write_text(STACKSET.replace("{export: shop-role}", "{export: missing-role}"))
        result = runner.invoke(app, ["plan", "bad.yaml"])
        assert result.exit_code == 1
        assert "unresolved_reference" in result.output

    def test_missing_file(self, workspace: Path):
        result = runner.invoke(app, ["plan", "nope.yaml"])
        assert result.exit_code != 0


class TestDeployCommands:
    def test_create_succeeds(self, workspace: Path):
        result = runner.invoke(app, ["create", "stackset.yaml"])
        assert result.exit_code == 0, result.output
        assert "create succeeded" in result.output

        ledger = DeploymentLedger(workspace / "ledger.db")
        assert ledger.last_creation_order("web", "testing") == ["S3", "IAM", "App"]

    def test_update_succeeds(self, workspace: Path):
        result = runner.invoke(app, ["update", "stackset.yaml", "-e", "staging"])
        assert result.exit_code == 0, result.output
        assert "update succeeded" in result.output

    def test_failed_run_exits_nonzero(self, workspace: Path):
        (workspace / "stackset.yaml").write_text(
            STACKSET.replace("          - Environment\n", "          - Environment\n          - Missing\n")
        )
        result = runner.invoke(app, ["create", "stackset.yaml"])
        assert result.exit_code == 1
        assert "missing_parameter" in result.output

    def test_delete_requires_confirmation(self, workspace: Path):
        result = runner.invoke(app, ["delete", "stackset.yaml"], input="n\n")
        assert result.exit_code == 1
        assert "Aborted" in result.output

    def test_delete_with_yes(self, workspace: Path):
        result = runner.invoke(app, ["delete", "stackset.yaml", "--yes"])
        assert result.exit_code == 0, result.output
        assert "App -> IAM -> S3" in result.output


class TestPublishCommand:
    def test_local_backend_writes_files(self, workspace: Path):
        result = runner.invoke(app, ["publish", "stackset.yaml", "-b", "local", "-r", "v1"])
        assert result.exit_code == 0, result.output
        assert (workspace / "artifacts" / "templates" / "v1" / "iam.yml").exists()
        assert (workspace / "artifacts" / "templates" / "latest" / "iam.yml").exists()


class TestChangesetCommand:
    def test_execute_with_yes(self, workspace: Path):
        result = runner.invoke(app, ["changeset", "stackset.yaml", "--stack", "S3", "--yes"])
        assert result.exit_code == 0, result.output
        assert "applied" in result.output

    def test_no_execute_discards(self, workspace: Path):
        result = runner.invoke(
            app, ["changeset", "stackset.yaml", "--stack", "S3", "--no-execute"]
        )
        assert result.exit_code == 0, result.output
        assert "discarded" in result.output

    def test_declined(self, workspace: Path):
        result = runner.invoke(
            app, ["changeset", "stackset.yaml", "--stack", "S3"], input="n\n"
        )
        assert result.exit_code == 0, result.output
        assert "declined" in result.output

    def test_unknown_stack(self, workspace: Path):
        result = runner.invoke(app, ["changeset", "stackset.yaml", "--stack", "Nope"])
        assert result.exit_code == 1


class TestHistoryCommand:
    def test_lists_and_verifies_runs(self, workspace: Path):
        runner.invoke(app, ["create", "stackset.yaml"])
        ledger = DeploymentLedger(workspace / "ledger.db")
        [run_id] = ledger.get_all_run_ids()

        listing = runner.invoke(app, ["history"])
        assert listing.exit_code == 0
        assert run_id in listing.output

        detail = runner.invoke(app, ["history", run_id])
        assert detail.exit_code == 0, detail.output
        assert "valid" in detail.output

    def test_unknown_run(self, workspace: Path):
        runner.invoke(app, ["create", "stackset.yaml"])
        result = runner.invoke(app, ["history", "sf-nope"])
        assert result.exit_code == 1


class TestDemoCommand:
    def test_demo_runs(self, workspace: Path):
        result = runner.invoke(app, ["demo", "--ledger", str(workspace / "demo.db")])
        assert result.exit_code == 0, result.output
        assert "Demo complete" in result.output


# ---------------------------------------------------------------------------
# Test: dry runs on the simulated backends
# ---------------------------------------------------------------------------


class TestDryRunNotice:
    @pytest.mark.parametrize(
        "args",
        [
            ["create", "stackset.yaml"],
            ["update", "stackset.yaml"],
            ["delete", "stackset.yaml", "--yes"],
            ["changeset", "stackset.yaml", "--stack", "S3", "--yes"],
        ],
    )
    def test_memory_backend_says_dry_run(self, workspace: Path, args: list[str]):
        result = runner.invoke(app, args)
        assert result.exit_code == 0, result.output
        assert "Dry run (memory backend)" in result.output

    def test_local_backend_says_dry_run(self, workspace: Path):
        result = runner.invoke(app, ["create", "stackset.yaml", "-b", "local"])
        assert result.exit_code == 0, result.output
        assert "Dry run (local backend)" in result.output

    def test_backend_help_mentions_dry_run(self, workspace: Path):
        result = runner.invoke(app, ["create", "--help"])
        assert result.exit_code == 0
        assert "dry run" in result.output

    def test_changeset_on_consumer_explains_missing_producer(self, workspace: Path):
        result = runner.invoke(app, ["changeset", "stackset.yaml", "--stack", "App", "--yes"])
        assert result.exit_code == 1
        assert "Producers are never live on a dry run" in result.output


# ---------------------------------------------------------------------------
# Test: config and bucket
# ---------------------------------------------------------------------------


class TestConfigCommand:
    def test_shows_settings(self, workspace: Path):
        result = runner.invoke(app, ["config", "-e", "dev"])
        assert result.exit_code == 0, result.output
        assert "Configuration" in result.output
        assert "dev" in result.output
        assert "memory" in result.output
        assert "dry run" in result.output
        assert "Application" not in result.output

    def test_with_stack_set(self, workspace: Path):
        result = runner.invoke(app, ["config", "stackset.yaml"])
        assert result.exit_code == 0, result.output
        assert "shop" in result.output
        assert "web" in result.output

    def test_aws_bucket_defaults_to_account_bucket(self, workspace: Path):
        result = runner.invoke(app, ["config", "-b", "aws"])
        assert result.exit_code == 0, result.output
        assert "cloudformation.us-west-2.<account id>" in result.output

    def test_explicit_bucket(self, workspace: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("STACKFORGE_ARTIFACT_BUCKET", "team-artifacts")
        result = runner.invoke(app, ["config", "-b", "aws"])
        assert result.exit_code == 0, result.output
        assert "team-artifacts" in result.output


@pytest.fixture
def s3_stub(monkeypatch: pytest.MonkeyPatch):
    client = boto3.client(
        "s3",
        region_name="us-west-2",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    opened: list[tuple] = []

    def open_bucket(bucket, region):
        opened.append((bucket, region))
        return S3BlobStore(bucket or "artifacts", client)

    monkeypatch.setattr(bucket_module, "open_bucket", open_bucket)
    with Stubber(client) as stubber:
        yield stubber, opened
        stubber.assert_no_pending_responses()


class TestBucketCommands:
    def test_setup(self, workspace: Path, s3_stub):
        stubber, opened = s3_stub
        stubber.add_response(
            "create_bucket",
            {},
            {
                "Bucket": "artifacts",
                "CreateBucketConfiguration": {"LocationConstraint": "us-west-2"},
            },
        )
        stubber.add_response("put_bucket_versioning", {}, None)
        stubber.add_response("put_public_access_block", {}, None)
        result = runner.invoke(app, ["bucket", "setup", "--bucket", "artifacts", "-r", "us-west-2"])
        assert result.exit_code == 0, result.output
        assert "Bucket artifacts is ready" in result.output
        assert opened == [("artifacts", "us-west-2")]

    def test_setup_failure_exits_nonzero(self, workspace: Path, s3_stub):
        stubber, _ = s3_stub
        stubber.add_client_error(
            "create_bucket", service_error_code="BucketAlreadyExists", http_status_code=409
        )
        result = runner.invoke(app, ["bucket", "setup"])
        assert result.exit_code == 1
        assert "BucketAlreadyExists" in result.output

    def test_check_existing(self, workspace: Path, s3_stub):
        stubber, _ = s3_stub
        stubber.add_response("head_bucket", {}, {"Bucket": "artifacts"})
        result = runner.invoke(app, ["bucket", "check"])
        assert result.exit_code == 0, result.output
        assert "exists and is accessible" in result.output

    def test_check_missing(self, workspace: Path, s3_stub):
        stubber, _ = s3_stub
        stubber.add_client_error("head_bucket", service_error_code="404", http_status_code=404)
        result = runner.invoke(app, ["bucket", "check", "--bucket", "artifacts"])
        assert result.exit_code == 1
        assert "does not exist or is not accessible" in result.output
