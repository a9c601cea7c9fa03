"""Deployment orchestrator — drives stack lifecycles in graph order.

The DeploymentOrchestrator wires together the ReferenceResolver, the
TemplateArtifactStore, the StackMachine and the deployment ledger. It is the
single place that decides whether an error is retried, halts the plan, or is
reported to the caller.

Per stack::

    pending -> resolving -> [publishing] -> applying -> succeeded
                                                     -> rolled_back
                                                     -> failed

A stack only starts resolving once every producer has succeeded. Any
ROLLED_BACK or FAILED stack halts the plan: dependents are never attempted
and already-succeeded stacks are left as they are.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path

from stackforge.backends.base import (
    ExportRegistry,
    ParameterStore,
    StackDescription,
    StackProvisioner,
)
from stackforge.backends.status import (
    StatusClass,
    classify,
    is_terminal,
    needs_replacement,
)
from stackforge.config import Settings
from stackforge.core.artifact_store import TemplateArtifactStore
from stackforge.core.deployment_ledger import DeploymentLedger
from stackforge.core.errors import (
    ArtifactNotFound,
    ProvisioningError,
    ProvisioningFailed,
    ReferenceResolutionError,
    SafetyViolation,
    StackforgeError,
    StackNotFound,
)
from stackforge.core.hasher import compute_input_hash, compute_tree_revision
from stackforge.core.resolver import CompositionContext, ReferenceResolver
from stackforge.core.retry import Retrier
from stackforge.core.stack_graph import check_teardown_safety
from stackforge.core.stack_machine import StackMachine
from stackforge.models.plan import DeploymentPlan
from stackforge.models.reports import DeploymentReport, StackOutcome
from stackforge.models.stacks import StackDefinition
from stackforge.models.states import StackState

logger = logging.getLogger(__name__)

REVISION_TAG = "stackforge:revision"
STACK_SET_TAG = "stackforge:stack-set"


class DeploymentOrchestrator:
    """Runs create, update and delete over a DeploymentPlan.

    Parameters
    ----------
    provisioner:
        External stack-provisioning API.
    export_registry, parameter_store:
        Collaborators injected into the ReferenceResolver; the registry is
        also read for teardown safety.
    artifact_store:
        Where template bodies are published and located.
    ledger:
        Append-only record of every transition and run.
    settings:
        Environment tag, retry policy, rollback and parallelism settings.
    sleep, clock:
        Injectable for tests.
    """

    def __init__(
        self,
        *,
        provisioner: StackProvisioner,
        export_registry: ExportRegistry,
        parameter_store: ParameterStore,
        artifact_store: TemplateArtifactStore,
        ledger: DeploymentLedger,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or Settings()
        self.provisioner = provisioner
        self.export_registry = export_registry
        self.artifact_store = artifact_store
        self.ledger = ledger
        self.resolver = ReferenceResolver(export_registry, parameter_store)
        self.retrier = Retrier(self.settings.retry_policy, sleep=sleep, clock=clock)
        self._cancel = threading.Event()

    @property
    def environment(self) -> str:
        return self.settings.environment

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def create(self, plan: DeploymentPlan) -> DeploymentReport:
        """Create every stack in plan order."""
        return self._apply_plan(plan, "create")

    def update(self, plan: DeploymentPlan) -> DeploymentReport:
        """Update every stack in plan order; missing stacks are created."""
        return self._apply_plan(plan, "update")

    def delete(self, plan: DeploymentPlan) -> DeploymentReport:
        """Delete every stack in reverse of the last successful creation order.

        Teardown safety is re-checked against the live Export registry right
        before each deletion.
        """
        started_at = datetime.now(timezone.utc)
        run_id = self._new_run_id()
        self._cancel.clear()
        order = self.teardown_order(plan)
        machine = self._machine(plan, run_id, "delete")
        outcomes = self._initial_outcomes(plan)
        deleted: list[str] = []
        cancelled = False

        logger.info("Run %s: deleting %s in order %s", run_id, plan.stack_set.name, order)
        for name in order:
            if self._cancel.is_set():
                cancelled = True
                logger.warning("Run %s cancelled before deleting %s", run_id, name)
                break
            outcome = self._delete_stack(plan, name, machine)
            outcomes[name] = outcome
            if outcome.state != StackState.DELETED:
                logger.error(
                    "Run %s halted at %s (%s)", run_id, name, outcome.error_kind
                )
                break
            deleted.append(name)

        return self._finish(
            plan, run_id, "delete", order, outcomes, deleted, cancelled, started_at
        )

    def cancel(self) -> None:
        """Request a cooperative stop; in-flight stacks finish first."""
        self._cancel.set()

    # ------------------------------------------------------------------
    # Stack-state accessor
    # ------------------------------------------------------------------

    def physical_name(self, plan: DeploymentPlan, stack_name: str) -> str:
        return plan.stack_set.physical_name(stack_name, self.environment)

    def describe_stack(self, physical_name: str) -> StackDescription | None:
        """Live state of a stack, or None if it does not exist."""
        try:
            description, _ = self.retrier.call(
                f"describe {physical_name}",
                lambda: self.provisioner.describe_stack(physical_name),
            )
        except StackNotFound:
            return None
        return description

    def teardown_order(self, plan: DeploymentPlan) -> list[str]:
        """Reverse of the last successful creation order recorded for the set.

        Stacks of the plan missing from that record (never fully created) go
        first, in the plan's own teardown order.
        """
        recorded = self.ledger.last_creation_order(plan.stack_set.name, self.environment)
        if not recorded:
            return plan.teardown_order
        known = [n for n in recorded if n in plan.order]
        unknown = [n for n in plan.teardown_order if n not in known]
        return unknown + list(reversed(known))

    def live_context(self, plan: DeploymentPlan) -> CompositionContext:
        """Composition context seeded with the live outputs of every stack.

        Used when a single stack is previewed outside a full run, so that its
        NestedOutput references read what its producers currently expose.
        """
        context = CompositionContext(f"preview-{uuid.uuid4().hex[:6]}")
        for name in plan.order:
            description = self.describe_stack(self.physical_name(plan, name))
            if description is not None:
                context.record_outputs(name, description.outputs)
        return context

    def resolve_inputs(
        self,
        stack: StackDefinition,
        context: CompositionContext,
    ) -> dict[str, str]:
        """Materialize the inputs of *stack*, retrying transient lookups."""
        injected = {self.settings.environment_parameter: self.environment}
        inputs, _ = self.retrier.call(
            f"resolve {stack.name}",
            lambda: self.resolver.resolve_inputs(stack, context, injected=injected),
        )
        return inputs

    def locate_template(self, stack: StackDefinition) -> tuple[str, str]:
        """Return (template_url, revision), publishing the revision if missing."""
        revision = self._required_revision(stack) or ""
        if revision and not self.artifact_store.has_revision(
            stack.template.template_name, revision
        ):
            self._publish(stack, revision)
        return self.artifact_store.url_for(stack.template, revision or None), revision

    # ------------------------------------------------------------------
    # Plan execution
    # ------------------------------------------------------------------

    def _apply_plan(self, plan: DeploymentPlan, operation: str) -> DeploymentReport:
        started_at = datetime.now(timezone.utc)
        run_id = self._new_run_id()
        self._cancel.clear()
        machine = self._machine(plan, run_id, operation)
        context = CompositionContext(run_id)
        outcomes = self._initial_outcomes(plan)
        completed: list[str] = []

        logger.info(
            "Run %s: %s %s (%s) in order %s",
            run_id, operation, plan.stack_set.name, self.environment, plan.order,
        )
        if self.settings.max_parallel > 1:
            cancelled = self._run_parallel(plan, operation, machine, context, outcomes, completed)
        else:
            cancelled = self._run_sequential(plan, operation, machine, context, outcomes, completed)

        return self._finish(
            plan, run_id, operation, plan.order, outcomes, completed, cancelled, started_at
        )

    def _run_sequential(
        self,
        plan: DeploymentPlan,
        operation: str,
        machine: StackMachine,
        context: CompositionContext,
        outcomes: dict[str, StackOutcome],
        completed: list[str],
    ) -> bool:
        for name in plan.order:
            if self._cancel.is_set():
                logger.warning("Run %s cancelled before %s", context.run_id, name)
                return True
            outcome = self._deploy_stack(plan, name, operation, machine, context)
            outcomes[name] = outcome
            if outcome.state != StackState.SUCCEEDED:
                logger.error(
                    "Run %s halted at %s: %s (%s)",
                    context.run_id, name, outcome.state.value, outcome.error_kind,
                )
                return False
            completed.append(name)
        return False

    def _run_parallel(
        self,
        plan: DeploymentPlan,
        operation: str,
        machine: StackMachine,
        context: CompositionContext,
        outcomes: dict[str, StackOutcome],
        completed: list[str],
    ) -> bool:
        """Deploy independent branches concurrently.

        A stack is started once all its producers have succeeded. After the
        first failure no new stack is started; stacks already applying are
        allowed to reach a terminal state.
        """
        limit = self.settings.max_parallel
        started: set[str] = set()
        running: dict[Future[StackOutcome], str] = {}
        halted = False
        cancelled = False

        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="stackforge") as pool:
            while True:
                if not halted and not cancelled and self._cancel.is_set():
                    cancelled = True
                    logger.warning("Run %s cancelled; waiting for in-flight stacks", context.run_id)
                if not halted and not cancelled:
                    for name in plan.order:
                        if len(running) >= limit:
                            break
                        if name in started or not machine.producers_succeeded(name):
                            continue
                        started.add(name)
                        future = pool.submit(
                            self._deploy_stack, plan, name, operation, machine, context
                        )
                        running[future] = name
                if not running:
                    break
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    outcome = future.result()
                    outcomes[name] = outcome
                    if outcome.state == StackState.SUCCEEDED:
                        completed.append(name)
                    else:
                        halted = True
                        logger.error(
                            "Run %s halted at %s: %s (%s)",
                            context.run_id, name, outcome.state.value, outcome.error_kind,
                        )
        return cancelled

    # ------------------------------------------------------------------
    # Single stack: create / update
    # ------------------------------------------------------------------

    def _deploy_stack(
        self,
        plan: DeploymentPlan,
        name: str,
        operation: str,
        machine: StackMachine,
        context: CompositionContext,
    ) -> StackOutcome:
        stack = plan.stack_set.get_stack(name)
        physical = self.physical_name(plan, name)
        inputs: dict[str, str] = {}
        revision = ""
        attempts = 0

        def outcome(state: StackState, error: Exception | None = None, **extra) -> StackOutcome:
            return StackOutcome(
                stack_name=name,
                physical_name=physical,
                state=state,
                error_kind=getattr(error, "kind", type(error).__name__) if error else None,
                error_message=str(error) if error else None,
                template_revision=revision or None,
                resolved_inputs=inputs,
                attempts=attempts,
                **extra,
            )

        machine.transition(name, StackState.RESOLVING)
        try:
            inputs = self.resolve_inputs(stack, context)
        except (ReferenceResolutionError, ProvisioningError) as exc:
            machine.transition(name, StackState.FAILED, detail=str(exc))
            return outcome(StackState.FAILED, exc)

        try:
            revision = self._required_revision(stack) or ""
            if revision and not self.artifact_store.has_revision(
                stack.template.template_name, revision
            ):
                machine.transition(name, StackState.PUBLISHING, template_revision=revision)
                self._publish(stack, revision)
            template_url = self.artifact_store.url_for(stack.template, revision or None)
        except StackforgeError as exc:
            machine.transition(name, StackState.FAILED, detail=str(exc))
            return outcome(StackState.FAILED, exc)

        machine.transition(
            name,
            StackState.APPLYING,
            input_hash=compute_input_hash(name, inputs),
            template_revision=revision,
        )
        try:
            description, attempts = self._submit(
                plan, stack, physical, operation, template_url, inputs, revision
            )
            if description is None:
                description = self.retrier.poll(
                    f"{operation} {physical}",
                    lambda: self.provisioner.describe_stack(physical),
                    lambda d: is_terminal(d.status),
                )
        except ProvisioningError as exc:
            machine.transition(name, StackState.FAILED, detail=str(exc))
            return outcome(StackState.FAILED, exc)
        except Exception as exc:
            machine.transition(name, StackState.FAILED, detail=str(exc))
            raise

        status_class = classify(description.status)
        if status_class == StatusClass.SUCCEEDED:
            context.record_outputs(name, description.outputs)
            machine.transition(name, StackState.SUCCEEDED, template_revision=revision)
            return outcome(StackState.SUCCEEDED, outputs=description.outputs)

        failure = ProvisioningFailed(
            f"{physical} ended in {description.status}: {description.status_reason}"
        )
        if status_class == StatusClass.ROLLED_BACK and self.settings.enable_rollback:
            machine.transition(name, StackState.ROLLED_BACK, detail=str(failure))
            return outcome(StackState.ROLLED_BACK, failure)
        machine.transition(name, StackState.FAILED, detail=str(failure))
        return outcome(StackState.FAILED, failure)

    def _submit(
        self,
        plan: DeploymentPlan,
        stack: StackDefinition,
        physical: str,
        operation: str,
        template_url: str,
        inputs: dict[str, str],
        revision: str,
    ) -> tuple[StackDescription | None, int]:
        """Issue the create/update call.

        A stack left behind by a create that never completed is deleted
        first and then created again, for either operation. Returns a
        description when the stack is already settled (an update with
        nothing to change), otherwise None so the caller polls.
        """
        tags = {**stack.tags, STACK_SET_TAG: plan.stack_set.name}
        if revision:
            tags[REVISION_TAG] = revision

        existing = self.describe_stack(physical)
        if existing is not None and needs_replacement(existing.status):
            self._clear_failed_create(physical, existing)
            existing = None
        if operation == "create" or existing is None:
            _, attempts = self.retrier.call(
                f"create {physical}",
                lambda: self.provisioner.create_stack(
                    physical,
                    template_url,
                    inputs,
                    list(stack.capabilities),
                    disable_rollback=not self.settings.enable_rollback,
                    tags=tags,
                ),
            )
            return None, attempts

        changed, attempts = self.retrier.call(
            f"update {physical}",
            lambda: self.provisioner.update_stack(
                physical, template_url, inputs, list(stack.capabilities), tags=tags
            ),
        )
        if changed:
            return None, attempts
        logger.info("%s: no updates to perform", physical)
        description, _ = self.retrier.call(
            f"describe {physical}", lambda: self.provisioner.describe_stack(physical)
        )
        return description, attempts

    def _clear_failed_create(self, physical: str, existing: StackDescription) -> None:
        logger.warning(
            "%s is in %s from a create that never completed; deleting it first",
            physical, existing.status,
        )
        self.retrier.call(f"delete {physical}", lambda: self.provisioner.delete_stack(physical))
        remains = self.retrier.poll(
            f"delete {physical}",
            lambda: self.describe_stack(physical),
            lambda d: d is None or is_terminal(d.status),
        )
        if remains is not None and classify(remains.status) != StatusClass.DELETED:
            raise ProvisioningFailed(
                f"{physical} could not be cleared from {existing.status}: "
                f"ended in {remains.status}: {remains.status_reason}"
            )

    # ------------------------------------------------------------------
    # Single stack: delete
    # ------------------------------------------------------------------

    def _delete_stack(
        self, plan: DeploymentPlan, name: str, machine: StackMachine
    ) -> StackOutcome:
        stack = plan.stack_set.get_stack(name)
        physical = self.physical_name(plan, name)

        def outcome(state: StackState, error: Exception | None = None) -> StackOutcome:
            return StackOutcome(
                stack_name=name,
                physical_name=physical,
                state=state,
                error_kind=getattr(error, "kind", type(error).__name__) if error else None,
                error_message=str(error) if error else None,
            )

        try:
            # Re-validated here, immediately before the destructive call.
            self.retrier.call(
                f"teardown check {physical}",
                lambda: check_teardown_safety(stack, physical, self.export_registry),
            )
        except (SafetyViolation, ProvisioningError) as exc:
            machine.transition(name, StackState.FAILED, detail=str(exc))
            return outcome(StackState.FAILED, exc)

        machine.transition(name, StackState.DELETING)
        try:
            if self.describe_stack(physical) is None:
                machine.transition(name, StackState.DELETED, detail="stack absent")
                return outcome(StackState.DELETED)
            self.retrier.call(
                f"delete {physical}", lambda: self.provisioner.delete_stack(physical)
            )
            description = self.retrier.poll(
                f"delete {physical}",
                lambda: self.describe_stack(physical),
                lambda d: d is None or is_terminal(d.status),
            )
        except ProvisioningError as exc:
            machine.transition(name, StackState.FAILED, detail=str(exc))
            return outcome(StackState.FAILED, exc)

        if description is None or classify(description.status) == StatusClass.DELETED:
            machine.transition(name, StackState.DELETED)
            return outcome(StackState.DELETED)

        failure = ProvisioningFailed(
            f"{physical} ended in {description.status}: {description.status_reason}"
        )
        machine.transition(name, StackState.FAILED, detail=str(failure))
        return outcome(StackState.FAILED, failure)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _required_revision(stack: StackDefinition) -> str | None:
        """Pinned revision, or the revision of the local source tree."""
        if stack.template.revision:
            return stack.template.revision
        if stack.template.source_path:
            return compute_tree_revision(stack.template.source_path)
        return None

    def _publish(self, stack: StackDefinition, revision: str) -> None:
        source = stack.template.source_path
        if not source:
            raise ArtifactNotFound(
                f"Revision {revision} of {stack.template.template_name!r} is not "
                f"published and {stack.name!r} has no template source"
            )
        path = Path(source)
        if path.is_dir():
            self.artifact_store.publish_bundle(path, revision=revision)
        else:
            if not path.exists():
                raise ArtifactNotFound(f"Template source not found: {path}")
            self.artifact_store.publish(
                stack.template.template_name, path.read_bytes(), revision=revision
            )

    def _machine(self, plan: DeploymentPlan, run_id: str, operation: str) -> StackMachine:
        return StackMachine(
            self.ledger,
            plan,
            run_id=run_id,
            operation=operation,
            environment=self.environment,
        )

    def _initial_outcomes(self, plan: DeploymentPlan) -> dict[str, StackOutcome]:
        return {
            name: StackOutcome(
                stack_name=name,
                physical_name=self.physical_name(plan, name),
                state=StackState.PENDING,
            )
            for name in plan.order
        }

    def _finish(
        self,
        plan: DeploymentPlan,
        run_id: str,
        operation: str,
        order: list[str],
        outcomes: dict[str, StackOutcome],
        completed: list[str],
        cancelled: bool,
        started_at: datetime,
    ) -> DeploymentReport:
        report = DeploymentReport(
            run_id=run_id,
            operation=operation,
            stack_set=plan.stack_set.name,
            environment=self.environment,
            outcomes=[outcomes[name] for name in order],
            cancelled=cancelled,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        self.ledger.record_run(report, completed)
        if report.succeeded:
            logger.info("Run %s: %s succeeded for %d stacks", run_id, operation, len(order))
        else:
            furthest = report.furthest_outcome
            logger.error(
                "Run %s: %s did not succeed; furthest stack %s is %s",
                run_id,
                operation,
                furthest.stack_name if furthest else "-",
                furthest.state.value if furthest else "pending",
            )
        return report

    @staticmethod
    def _new_run_id() -> str:
        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        return f"sf-{ts}-{uuid.uuid4().hex[:6]}"
