"""Bounded exponential backoff and terminal-state polling.

Only ``TransientProvisioningError`` is retried. Everything else propagates
immediately so the orchestrator can decide whether to halt.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field

from stackforge.core.errors import ProvisioningTimeout, TransientProvisioningError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """How often and how patiently the orchestrator talks to the provisioner."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=1)
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    backoff_max_seconds: float = Field(default=30.0, ge=0)
    poll_interval_seconds: float = Field(default=5.0, ge=0)
    stack_timeout_seconds: float = Field(default=1800.0, gt=0)

    def backoff(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""
        return min(self.backoff_base_seconds * (2 ** (attempt - 1)), self.backoff_max_seconds)


class Retrier:
    """Runs provisioner calls under a ``RetryPolicy``.

    ``sleep`` and ``clock`` are injectable so tests never wait.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy
        self._sleep = sleep
        self._clock = clock

    def call(self, description: str, fn: Callable[[], T]) -> tuple[T, int]:
        """Call *fn*, retrying transient failures; return (result, attempts)."""
        attempt = 1
        while True:
            try:
                return fn(), attempt
            except TransientProvisioningError as exc:
                if attempt >= self.policy.max_attempts:
                    logger.error(
                        "%s failed after %d attempts: %s", description, attempt, exc
                    )
                    raise
                delay = self.policy.backoff(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    description, attempt, self.policy.max_attempts, exc, delay,
                )
                self._sleep(delay)
                attempt += 1

    def poll(
        self,
        description: str,
        fetch: Callable[[], T],
        done: Callable[[T], bool],
    ) -> T:
        """Poll *fetch* until *done* holds or the per-stack timeout elapses.

        Each fetch goes through ``call`` so a transient read failure does not
        abort the wait.
        """
        deadline = self._clock() + self.policy.stack_timeout_seconds
        while True:
            value, _ = self.call(description, fetch)
            if done(value):
                return value
            if self._clock() >= deadline:
                raise ProvisioningTimeout(
                    f"{description} did not reach a terminal state within "
                    f"{self.policy.stack_timeout_seconds:.0f}s"
                )
            self._sleep(self.policy.poll_interval_seconds)
