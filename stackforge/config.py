"""Runtime configuration — env-driven via pydantic-settings.

Reads from a .env file and STACKFORGE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from stackforge.core.retry import RetryPolicy


class Settings(BaseSettings):
    """Deployment settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export STACKFORGE_ENVIRONMENT=production
        export STACKFORGE_REGION=eu-west-1
        export STACKFORGE_BACKEND=aws
        export STACKFORGE_ARTIFACT_BUCKET=cloudformation.eu-west-1.123456789012

    Or via .env file::

        STACKFORGE_LOG_LEVEL=DEBUG
        STACKFORGE_MAX_PARALLEL=4
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="STACKFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Target
    environment: str = "testing"
    region: str = "us-west-2"
    backend: Literal["memory", "local", "aws"] = "local"
    environment_parameter: str = "Environment"  # filled with the environment tag

    # Logging
    log_level: str = "INFO"

    # Artifact store
    artifact_bucket: str = ""  # aws: cloudformation.<region>.<account id> when empty
    artifact_prefix: str = "templates"
    artifact_store_path: Path = Path(".stackforge/artifacts")

    # Ledger
    ledger_path: Path = Path(".stackforge/ledger.db")

    # Provisioning policy
    max_attempts: int = 5
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    poll_interval_seconds: float = 5.0
    stack_timeout_seconds: float = 1800.0
    enable_rollback: bool = True
    max_parallel: int = 1

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_base_seconds=self.backoff_base_seconds,
            backoff_max_seconds=self.backoff_max_seconds,
            poll_interval_seconds=self.poll_interval_seconds,
            stack_timeout_seconds=self.stack_timeout_seconds,
        )
