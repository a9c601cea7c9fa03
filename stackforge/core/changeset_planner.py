"""ChangeSet planner — compute, review, then execute or discard a diff.

A changeset is always computed against the live state of its stack, and
that state is fingerprinted at creation. Execution re-reads the live state
and refuses to proceed if the fingerprint has moved: an operator must never
approve one diff and have another applied.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from stackforge.backends.status import StatusClass, classify, is_placeholder, is_terminal
from stackforge.core.errors import (
    ChangeSetConsumed,
    ChangeSetStale,
    ProvisioningError,
    ProvisioningFailed,
)
from stackforge.core.hasher import compute_state_fingerprint
from stackforge.core.orchestrator import DeploymentOrchestrator
from stackforge.models.changesets import ChangeSet, ChangeSetStatus, ResourceChange
from stackforge.models.reports import StackOutcome
from stackforge.models.stacks import StackDefinition, StackSet
from stackforge.models.states import StackState

logger = logging.getLogger(__name__)

ABSENT_FINGERPRINT = "absent"


class ChangeSetPlanner:
    """Creates and executes changesets for the stacks of one stack set.

    Parameters
    ----------
    orchestrator:
        Supplies the provisioner, the live stack-state accessor, template
        location and the retry policy.
    stack_set:
        The set whose stacks are planned; used for physical names.
    """

    def __init__(self, orchestrator: DeploymentOrchestrator, stack_set: StackSet) -> None:
        self._orchestrator = orchestrator
        self._provisioner = orchestrator.provisioner
        self._retrier = orchestrator.retrier
        self._stack_set = stack_set
        self._status: dict[str, ChangeSetStatus] = {}
        self._lock = threading.Lock()

    def physical_name(self, stack_name: str) -> str:
        return self._stack_set.physical_name(stack_name, self._orchestrator.environment)

    def fingerprint(self, physical_name: str) -> str:
        """Fingerprint of the stack's current live state.

        A stack that only exists because a CREATE changeset registered it
        fingerprints as absent, the same as before the changeset was made.
        """
        description = self._orchestrator.describe_stack(physical_name)
        if description is None or is_placeholder(description.status):
            return ABSENT_FINGERPRINT
        return compute_state_fingerprint(description.fingerprint_payload())

    def status_of(self, changeset: ChangeSet) -> ChangeSetStatus:
        with self._lock:
            return self._status.get(changeset.changeset_id, changeset.status)

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    def plan(
        self,
        stack_name: str,
        target: StackDefinition,
        resolved_inputs: dict[str, str],
    ) -> ChangeSet:
        """Compute the diff between live state and *target*.

        Nothing is applied. Nested units are always included so the diff
        shows changes inside child stacks, not only the parent.
        """
        physical = self.physical_name(stack_name)
        base_fingerprint = self.fingerprint(physical)
        template_url, _ = self._orchestrator.locate_template(target)
        changeset = ChangeSet(
            stack_name=stack_name,
            physical_name=physical,
            target=target,
            resolved_inputs=resolved_inputs,
            template_url=template_url,
            include_nested=True,
            base_fingerprint=base_fingerprint,
        )
        provider_ref, _ = self._retrier.call(
            f"create changeset {changeset.changeset_id}",
            lambda: self._provisioner.create_change_set(
                physical,
                changeset.changeset_id,
                template_url,
                resolved_inputs,
                list(target.capabilities),
                include_nested=True,
            ),
        )
        raw_changes, _ = self._retrier.call(
            f"describe changeset {changeset.changeset_id}",
            lambda: self._provisioner.describe_change_set(physical, provider_ref),
        )
        changes = [_to_resource_change(c) for c in raw_changes]
        logger.info(
            "ChangeSet %s for %s: %d resource changes",
            changeset.changeset_id, physical, len(changes),
        )
        with self._lock:
            self._status[changeset.changeset_id] = ChangeSetStatus.CREATED
        return changeset.model_copy(update={"provider_ref": provider_ref, "changes": changes})

    # ------------------------------------------------------------------
    # Execute / discard
    # ------------------------------------------------------------------

    def execute(
        self,
        changeset: ChangeSet,
        approve: Callable[[ChangeSet], bool] | None = None,
    ) -> StackOutcome:
        """Apply *changeset* if it is still current and approved.

        Raises ``ChangeSetConsumed`` if it was already executed or discarded
        and ``ChangeSetStale`` if live state moved since it was computed. A
        declined approval discards the changeset, leaves live state untouched
        and returns a PENDING outcome.
        """
        self._claim(changeset)

        if self.fingerprint(changeset.physical_name) != changeset.base_fingerprint:
            self._release(changeset)
            logger.warning(
                "ChangeSet %s is stale; live state of %s has changed",
                changeset.changeset_id, changeset.physical_name,
            )
            raise ChangeSetStale(changeset.changeset_id, changeset.stack_name)

        if approve is not None and not approve(changeset):
            self._release(changeset)
            logger.info("ChangeSet %s declined", changeset.changeset_id)
            self.discard(changeset)
            return StackOutcome(
                stack_name=changeset.stack_name,
                physical_name=changeset.physical_name,
                state=StackState.PENDING,
                resolved_inputs=changeset.resolved_inputs,
            )

        try:
            _, attempts = self._retrier.call(
                f"execute changeset {changeset.changeset_id}",
                lambda: self._provisioner.execute_change_set(
                    changeset.physical_name, changeset.provider_ref
                ),
            )
            description = self._retrier.poll(
                f"changeset {changeset.changeset_id}",
                lambda: self._provisioner.describe_stack(changeset.physical_name),
                lambda d: is_terminal(d.status),
            )
        except ProvisioningError as exc:
            return self._outcome(changeset, StackState.FAILED, exc)

        status_class = classify(description.status)
        if status_class == StatusClass.SUCCEEDED:
            logger.info("ChangeSet %s executed", changeset.changeset_id)
            return StackOutcome(
                stack_name=changeset.stack_name,
                physical_name=changeset.physical_name,
                state=StackState.SUCCEEDED,
                resolved_inputs=changeset.resolved_inputs,
                outputs=description.outputs,
                attempts=attempts,
            )
        failure = ProvisioningFailed(
            f"{changeset.physical_name} ended in {description.status}: "
            f"{description.status_reason}"
        )
        state = (
            StackState.ROLLED_BACK
            if status_class == StatusClass.ROLLED_BACK
            else StackState.FAILED
        )
        return self._outcome(changeset, state, failure)

    def discard(self, changeset: ChangeSet) -> None:
        """Delete the changeset on the provisioner side without applying it."""
        with self._lock:
            status = self._status.get(changeset.changeset_id, changeset.status)
            if status != ChangeSetStatus.CREATED:
                raise ChangeSetConsumed(changeset.changeset_id, status.value)
            self._status[changeset.changeset_id] = ChangeSetStatus.DISCARDED
        self._retrier.call(
            f"discard changeset {changeset.changeset_id}",
            lambda: self._provisioner.delete_change_set(
                changeset.physical_name, changeset.provider_ref
            ),
        )
        logger.info("ChangeSet %s discarded", changeset.changeset_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _claim(self, changeset: ChangeSet) -> None:
        """Mark *changeset* executed, refusing if it was already consumed."""
        with self._lock:
            status = self._status.get(changeset.changeset_id, changeset.status)
            if status != ChangeSetStatus.CREATED:
                raise ChangeSetConsumed(changeset.changeset_id, status.value)
            self._status[changeset.changeset_id] = ChangeSetStatus.EXECUTED

    def _release(self, changeset: ChangeSet) -> None:
        with self._lock:
            self._status[changeset.changeset_id] = ChangeSetStatus.CREATED

    @staticmethod
    def _outcome(
        changeset: ChangeSet, state: StackState, error: ProvisioningError
    ) -> StackOutcome:
        return StackOutcome(
            stack_name=changeset.stack_name,
            physical_name=changeset.physical_name,
            state=state,
            error_kind=error.kind,
            error_message=str(error),
            resolved_inputs=changeset.resolved_inputs,
        )


def _to_resource_change(raw: dict[str, Any]) -> ResourceChange:
    return ResourceChange(
        action=raw.get("action", ""),
        logical_id=raw.get("logical_id", ""),
        resource_type=raw.get("resource_type", ""),
        replacement=bool(raw.get("replacement", False)),
        nested_stack=raw.get("nested_stack"),
    )
