"""Tests for the StageMachine — valid transitions, one running stage, ledger replay."""

from __future__ import annotations

import pytest

from greenshift.core.run_ledger import RunLedger
from greenshift.core.stage_machine import InvalidTransitionError, StageMachine
from greenshift.models.stages import StageState

STAGES = ["source", "build", "deploy"]


@pytest.fixture
def stage_machine(ledger: RunLedger) -> StageMachine:
    return StageMachine(ledger, STAGES)


class TestStageMachine:
    def test_initialize_all_pending(self, stage_machine: StageMachine, execution_id: str):
        states = stage_machine.initialize_execution(execution_id)
        assert all(s == StageState.PENDING for s in states.values())
        assert list(states) == STAGES

    def test_valid_transition_recorded(
        self, stage_machine: StageMachine, ledger: RunLedger, execution_id: str
    ):
        stage_machine.initialize_execution(execution_id)
        entry = stage_machine.transition(execution_id, "source", StageState.RUNNING)
        assert entry.state_transition == "pending->running"
        assert entry.entry_hash
        assert ledger.get_latest(execution_id).entry_id == entry.entry_id

    def test_invalid_transition_rejected(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize_execution(execution_id)
        with pytest.raises(InvalidTransitionError, match="pending to succeeded"):
            stage_machine.transition(execution_id, "source", StageState.SUCCEEDED)

    def test_terminal_states_are_final(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize_execution(execution_id)
        stage_machine.transition(execution_id, "source", StageState.RUNNING)
        stage_machine.transition(execution_id, "source", StageState.FAILED)
        with pytest.raises(InvalidTransitionError):
            stage_machine.transition(execution_id, "source", StageState.RUNNING)

    def test_only_one_running_stage(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize_execution(execution_id)
        stage_machine.transition(execution_id, "source", StageState.RUNNING)
        with pytest.raises(InvalidTransitionError, match="still running"):
            stage_machine.transition(execution_id, "build", StageState.RUNNING)

    def test_executions_are_independent(self, stage_machine: StageMachine):
        stage_machine.initialize_execution("exec-a")
        stage_machine.initialize_execution("exec-b")
        stage_machine.transition("exec-a", "source", StageState.RUNNING)
        stage_machine.transition("exec-b", "source", StageState.RUNNING)
        assert stage_machine.get_current_state("exec-b", "source") == StageState.RUNNING

    def test_pending_can_be_skipped(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize_execution(execution_id)
        stage_machine.transition(execution_id, "deploy", StageState.SKIPPED)
        assert stage_machine.get_available_transitions(execution_id, "deploy") == set()

    def test_state_rebuilt_from_ledger(self, ledger: RunLedger, execution_id: str):
        first = StageMachine(ledger, STAGES)
        first.initialize_execution(execution_id)
        first.transition(execution_id, "source", StageState.RUNNING)
        first.transition(execution_id, "source", StageState.SUCCEEDED)
        first.transition(execution_id, "build", StageState.RUNNING)

        # A fresh machine (e.g. after a crash) replays the ledger.
        second = StageMachine(ledger, STAGES)
        assert second.get_all_states(execution_id) == {
            "source": StageState.SUCCEEDED,
            "build": StageState.RUNNING,
            "deploy": StageState.PENDING,
        }

    def test_running_stage_can_be_reentered_after_crash(
        self, ledger: RunLedger, execution_id: str
    ):
        first = StageMachine(ledger, STAGES)
        first.initialize_execution(execution_id)
        first.transition(execution_id, "source", StageState.RUNNING)

        second = StageMachine(ledger, STAGES)
        entry = second.transition(execution_id, "source", StageState.RUNNING)
        assert entry.state_transition == "running->running"
