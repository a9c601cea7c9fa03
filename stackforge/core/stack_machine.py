"""Per-stack state machine for one deployment run.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- A stack only enters RESOLVING once every producer has SUCCEEDED
- Every transition recorded in the deployment ledger
"""

from __future__ import annotations

import logging
import threading

from stackforge.core.deployment_ledger import DeploymentLedger
from stackforge.core.errors import InvalidTransitionError
from stackforge.models.ledger import LedgerEntry
from stackforge.models.plan import DeploymentPlan
from stackforge.models.states import VALID_TRANSITIONS, StackState

logger = logging.getLogger(__name__)


class StackMachine:
    """Tracks and validates stack states for a single run.

    Parameters
    ----------
    ledger:
        Ledger to record transitions into.
    plan:
        The plan being executed; its edges define which stacks must
        succeed before another may start resolving.
    run_id, operation, environment:
        Stamped onto every ledger entry.
    """

    def __init__(
        self,
        ledger: DeploymentLedger,
        plan: DeploymentPlan,
        *,
        run_id: str,
        operation: str,
        environment: str,
    ) -> None:
        self._ledger = ledger
        self._plan = plan
        self._run_id = run_id
        self._operation = operation
        self._environment = environment
        self._states: dict[str, StackState] = {
            name: StackState.PENDING for name in plan.order
        }
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    def get_state(self, stack_name: str) -> StackState:
        with self._lock:
            return self._states[stack_name]

    def get_all_states(self) -> dict[str, StackState]:
        with self._lock:
            return dict(self._states)

    def producers_succeeded(self, stack_name: str) -> bool:
        with self._lock:
            return all(
                self._states[p] == StackState.SUCCEEDED
                for p in self._plan.producers_of(stack_name)
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        stack_name: str,
        target: StackState,
        *,
        input_hash: str = "",
        template_revision: str = "",
        detail: str = "",
    ) -> LedgerEntry:
        """Move *stack_name* to *target*, recording the change in the ledger."""
        with self._lock:
            current = self._states[stack_name]
            allowed = VALID_TRANSITIONS.get(current, set())
            if target not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition {stack_name} from {current.value} to "
                    f"{target.value}. Allowed: {sorted(s.value for s in allowed)}"
                )
            if target == StackState.RESOLVING:
                waiting = [
                    p for p in self._plan.producers_of(stack_name)
                    if self._states[p] != StackState.SUCCEEDED
                ]
                if waiting:
                    raise InvalidTransitionError(
                        f"Cannot resolve {stack_name}: producers not succeeded: "
                        f"{', '.join(waiting)}"
                    )
            self._states[stack_name] = target

        entry = self._ledger.append(
            LedgerEntry(
                run_id=self._run_id,
                stack_set=self._plan.stack_set.name,
                environment=self._environment,
                operation=self._operation,
                stack_name=stack_name,
                state_transition=f"{current.value}->{target.value}",
                input_hash=input_hash,
                template_revision=template_revision,
                detail=detail,
            )
        )
        logger.info("%s: %s -> %s", stack_name, current.value, target.value)
        return entry
