"""Stage state machine for pipeline executions.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- At most one RUNNING stage per execution
- Every transition recorded in the run ledger
- State rebuildable from the ledger (for resume)
"""

from __future__ import annotations

import threading
from typing import Any

from greenshift.core.run_ledger import RunLedger
from greenshift.errors import GreenshiftError
from greenshift.models.ledger import LedgerEntry
from greenshift.models.stages import VALID_TRANSITIONS, StageState


class InvalidTransitionError(GreenshiftError):
    """Raised when a requested state transition is not valid."""


class StageMachine:
    """Tracks and records stage states per execution.

    Parameters
    ----------
    ledger:
        The run ledger to record transitions into.
    stage_names:
        Stage names of the pipeline definition, in declaration order.
    """

    def __init__(self, ledger: RunLedger, stage_names: list[str]) -> None:
        self._ledger = ledger
        self._stage_names = list(stage_names)
        # execution_id -> {stage_name -> StageState}
        self._states: dict[str, dict[str, StageState]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_execution(self, execution_id: str) -> dict[str, StageState]:
        """Initialize all stages to PENDING for a new execution."""
        states = {name: StageState.PENDING for name in self._stage_names}
        with self._lock:
            self._states[execution_id] = states
        return dict(states)

    def get_current_state(self, execution_id: str, stage_name: str) -> StageState:
        return self._states_for(execution_id).get(stage_name, StageState.PENDING)

    def get_all_states(self, execution_id: str) -> dict[str, StageState]:
        """Return a snapshot of all stage states for an execution."""
        return dict(self._states_for(execution_id))

    def _states_for(self, execution_id: str) -> dict[str, StageState]:
        with self._lock:
            if execution_id not in self._states:
                self._states[execution_id] = self._rebuild_state(execution_id)
            return self._states[execution_id]

    def _rebuild_state(self, execution_id: str) -> dict[str, StageState]:
        """Rebuild state from the ledger (for resume)."""
        states = {name: StageState.PENDING for name in self._stage_names}
        for entry in self._ledger.get_execution_entries(execution_id):
            if entry.subject in states and "->" in entry.state_transition:
                try:
                    states[entry.subject] = StageState(entry.to_state)
                except ValueError:
                    pass
        return states

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        execution_id: str,
        stage_name: str,
        target_state: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Move a stage to *target_state* and record it in the ledger.

        Validates:
        1. The transition is allowed by VALID_TRANSITIONS.
        2. If target is RUNNING, no other stage of the execution is RUNNING.

        Returns the sealed LedgerEntry.
        """
        states = self._states_for(execution_id)
        current = states.get(stage_name, StageState.PENDING)

        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage_name} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        if target_state == StageState.RUNNING:
            running = [
                name
                for name, state in states.items()
                if state == StageState.RUNNING and name != stage_name
            ]
            if running:
                raise InvalidTransitionError(
                    f"Cannot start {stage_name}: {running[0]} is still running"
                )

        entry = LedgerEntry(
            execution_id=execution_id,
            subject=stage_name,
            state_transition=f"{current.value}->{target_state.value}",
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=artifact_references or [],
            detail=detail or {},
        )
        sealed = self._ledger.append(entry)
        states[stage_name] = target_state
        return sealed

    def get_available_transitions(
        self, execution_id: str, stage_name: str
    ) -> set[StageState]:
        """Return the set of valid target states for a stage."""
        current = self.get_current_state(execution_id, stage_name)
        return VALID_TRANSITIONS.get(current, set())
