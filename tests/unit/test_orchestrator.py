"""Unit tests for the Orchestrator.

Exercises construction-time wiring checks, declaration-order execution,
halt-on-failure, branch skipping, cancellation, artifact release and
resume from the ledger, using small in-test stages.
"""

from __future__ import annotations

import threading
from typing import Any

import pytest

from greenshift.core.artifact_store import ArtifactStore
from greenshift.core.orchestrator import Orchestrator
from greenshift.core.run_ledger import RunLedger
from greenshift.core.wiring import WiringError
from greenshift.models.artifacts import Artifact, TriggerEvent
from greenshift.models.config import PipelineConfig
from greenshift.models.ledger import LedgerEntry
from greenshift.models.results import FailureKind, PipelineStatus
from greenshift.models.stages import PipelineDefinition, StageDefinition, StageState
from greenshift.stages.base import BaseStage, StageContext


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Step(BaseStage):
    """Concatenates its inputs' bytes and appends its own name."""

    def __init__(
        self,
        name: str,
        inputs: tuple[str, ...],
        outputs: tuple[str, ...],
        calls: list[str],
        *,
        fail: bool = False,
        on_run: Any = None,
    ) -> None:
        self._name = name
        self._inputs = inputs
        self._outputs = outputs
        self._calls = calls
        self._fail = fail
        self._on_run = on_run

    @property
    def name(self) -> str:
        return self._name

    @property
    def inputs(self) -> tuple[str, ...]:
        return self._inputs

    @property
    def outputs(self) -> tuple[str, ...]:
        return self._outputs

    def execute(self, inputs: dict[str, Artifact], context: StageContext) -> dict[str, Any]:
        self._calls.append(self._name)
        if self._on_run is not None:
            self._on_run()
        if self._fail:
            raise RuntimeError(f"{self._name} broke")
        data = b"".join(context.artifact_store.read_bytes(a) for a in inputs.values())
        return {out: data + f"|{self._name}".encode() for out in self._outputs}


class _TextStep(_Step):
    """Returns a plain string, which the artifact store cannot persist."""

    def execute(self, inputs: dict[str, Artifact], context: StageContext) -> dict[str, Any]:
        self._calls.append(self._name)
        return {out: "plain string output" for out in self._outputs}


def _trigger() -> TriggerEvent:
    return TriggerEvent(repo_ref="acme/orders-api", commit_id="abc123")


def _orchestrator(
    stages: list[BaseStage],
    config: PipelineConfig,
    ledger: RunLedger,
    artifact_store: ArtifactStore,
) -> Orchestrator:
    return Orchestrator.from_stages(
        "test-pipeline", stages, config, ledger=ledger, artifact_store=artifact_store
    )


# ---------------------------------------------------------------------------
# Test: Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_invalid_wiring_rejected_before_execution(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        calls: list[str] = []
        stages = [
            _Step("deploy", ("image",), ("deployment",), calls),
            _Step("build", ("trigger",), ("image",), calls),
        ]
        with pytest.raises(WiringError):
            _orchestrator(stages, config, ledger, artifact_store)
        assert calls == []
        assert ledger.get_all_execution_ids() == []

    def test_missing_executor_rejected(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        definition = PipelineDefinition(
            name="p",
            stages=(
                StageDefinition(name="a", inputs=("trigger",), outputs=("x",)),
                StageDefinition(name="b", inputs=("x",), outputs=("y",)),
            ),
        )
        with pytest.raises(WiringError, match="no executor for stage 'b'"):
            Orchestrator(
                definition,
                [_Step("a", ("trigger",), ("x",), [])],
                config,
                ledger=ledger,
                artifact_store=artifact_store,
            )

    def test_executor_declaration_must_match_definition(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        definition = PipelineDefinition(
            name="p",
            stages=(StageDefinition(name="a", inputs=("trigger",), outputs=("x",)),),
        )
        with pytest.raises(WiringError, match="declares"):
            Orchestrator(
                definition,
                [_Step("a", ("trigger",), ("other",), [])],
                config,
                ledger=ledger,
                artifact_store=artifact_store,
            )


# ---------------------------------------------------------------------------
# Test: Execution
# ---------------------------------------------------------------------------


class TestExecute:
    def test_stages_run_in_declaration_order(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        calls: list[str] = []
        orch = _orchestrator(
            [
                _Step("source", ("trigger",), ("source",), calls),
                _Step("build", ("source",), ("image",), calls),
                _Step("deploy", ("image",), ("deployment",), calls),
            ],
            config,
            ledger,
            artifact_store,
        )
        result = orch.execute(_trigger())

        assert result.status == PipelineStatus.SUCCEEDED
        assert calls == ["source", "build", "deploy"]
        assert result.stage_states == {
            "source": "succeeded",
            "build": "succeeded",
            "deploy": "succeeded",
        }
        deployment = artifact_store.read_bytes(result.artifacts["deployment"])
        assert deployment.endswith(b"|source|build|deploy")
        assert result.execution_id.startswith("gs-")
        assert orch.verify_chain(result.execution_id)

    def test_ledger_records_execution_and_stages(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        orch = _orchestrator(
            [_Step("source", ("trigger",), ("source",), [])], config, ledger, artifact_store
        )
        result = orch.execute(_trigger())
        transitions = [
            (e.subject, e.state_transition) for e in ledger.get_execution_entries(result.execution_id)
        ]
        assert transitions == [
            ("execution", "none->running"),
            ("source", "pending->running"),
            ("source", "running->succeeded"),
            ("execution", "running->succeeded"),
        ]
        succeeded = ledger.get_subject_history(result.execution_id, "source")[-1]
        assert succeeded.input_hash and succeeded.output_hash
        assert succeeded.artifact_references == [result.artifacts["source"].artifact_id]

    def test_halts_on_first_failure(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        calls: list[str] = []
        orch = _orchestrator(
            [
                _Step("source", ("trigger",), ("source",), calls),
                _Step("build", ("source",), ("image",), calls, fail=True),
                _Step("deploy", ("image",), ("deployment",), calls),
            ],
            config,
            ledger,
            artifact_store,
        )
        result = orch.execute(_trigger())

        assert result.status == PipelineStatus.FAILED
        assert result.failed_stage == "build"
        assert result.cause == "build broke"
        assert result.failure_kind == FailureKind.EXECUTOR
        assert not result.is_deployment_failure
        assert calls == ["source", "build"]
        assert result.stage_states["deploy"] == "pending"
        assert "pipeline failed at stage build" in result.describe()

    def test_unstorable_output_fails_the_stage(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        calls: list[str] = []
        orch = _orchestrator(
            [
                _TextStep("emit", ("trigger",), ("text",), calls),
                _Step("publish", ("text",), ("release",), calls),
            ],
            config,
            ledger,
            artifact_store,
        )
        result = orch.execute(_trigger())

        assert result.status == PipelineStatus.FAILED
        assert result.failed_stage == "emit"
        assert result.failure_kind == FailureKind.EXECUTOR
        assert "cannot be stored: ['text']" in result.cause
        assert calls == ["emit"]
        assert result.stage_states == {"emit": "failed", "publish": "pending"}
        transitions = [
            (e.subject, e.state_transition) for e in ledger.get_execution_entries(result.execution_id)
        ]
        assert ("emit", "running->failed") in transitions
        assert transitions[-1] == ("execution", "running->failed")

    def test_continue_independent_branches(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        calls: list[str] = []
        orch = _orchestrator(
            [
                _Step("source", ("trigger",), ("source",), calls),
                _Step("build", ("source",), ("image",), calls, fail=True),
                _Step("lint", ("source",), ("lint_report",), calls),
                _Step("deploy", ("image",), ("deployment",), calls),
            ],
            config.model_copy(update={"continue_independent_branches": True}),
            ledger,
            artifact_store,
        )
        result = orch.execute(_trigger())

        assert result.status == PipelineStatus.FAILED
        assert result.failed_stage == "build"
        assert calls == ["source", "build", "lint"]
        assert result.stage_states["lint"] == "succeeded"
        assert result.stage_states["deploy"] == "skipped"

    def test_cancel_between_stages(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        calls: list[str] = []
        cancel = threading.Event()
        orch = _orchestrator(
            [
                _Step("source", ("trigger",), ("source",), calls, on_run=cancel.set),
                _Step("build", ("source",), ("image",), calls),
            ],
            config,
            ledger,
            artifact_store,
        )
        result = orch.execute(_trigger(), cancel_event=cancel)

        assert result.status == PipelineStatus.CANCELLED
        assert result.failed_stage == "build"
        assert result.failure_kind == FailureKind.CANCELLED
        assert calls == ["source"]
        assert result.stage_states == {"source": "succeeded", "build": "pending"}

    def test_artifacts_released_after_last_consumer(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        orch = _orchestrator(
            [
                _Step("source", ("trigger",), ("source",), []),
                _Step("build", ("source",), ("image",), []),
            ],
            config.model_copy(update={"retain_artifacts": False}),
            ledger,
            artifact_store,
        )
        result = orch.execute(_trigger())

        assert set(result.artifacts) == {"image"}
        source_ref = ledger.get_subject_history(result.execution_id, "source")[-1]
        assert not artifact_store.exists(source_ref.artifact_references[0])

    def test_concurrent_executions_are_independent(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        orch = _orchestrator(
            [
                _Step("source", ("trigger",), ("source",), []),
                _Step("build", ("source",), ("image",), []),
            ],
            config,
            ledger,
            artifact_store,
        )
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(orch.execute(_trigger())))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert len(results) == 4
        assert all(r.succeeded for r in results)
        assert len({r.execution_id for r in results}) == 4
        for r in results:
            assert ledger.verify_chain(r.execution_id)


# ---------------------------------------------------------------------------
# Test: Resume
# ---------------------------------------------------------------------------


class TestResume:
    def test_resume_continues_after_crash(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        calls: list[str] = []
        stages = [
            _Step("source", ("trigger",), ("source",), calls),
            _Step("build", ("source",), ("image",), calls),
            _Step("deploy", ("image",), ("deployment",), calls),
        ]
        orch = _orchestrator(stages, config, ledger, artifact_store)

        # Simulate a crash while "build" was running.
        execution_id = "gs-crashed-001"
        orch.stage_machine.initialize_execution(execution_id)
        trigger = artifact_store.put("__trigger__", _trigger(), name="trigger")
        ledger.append(LedgerEntry(
            execution_id=execution_id,
            subject="execution",
            state_transition="none->running",
            artifact_references=[trigger.artifact_id],
        ))
        source = artifact_store.put("source", b"checked-out", name="source")
        orch.stage_machine.transition(execution_id, "source", StageState.RUNNING)
        orch.stage_machine.transition(
            execution_id, "source", StageState.SUCCEEDED,
            artifact_references=[source.artifact_id],
        )
        orch.stage_machine.transition(execution_id, "build", StageState.RUNNING)

        # A fresh orchestrator, as after a restart.
        restarted = _orchestrator(stages, config, ledger, artifact_store)
        result = restarted.resume(execution_id)

        assert result.succeeded
        assert calls == ["build", "deploy"]
        build_history = ledger.get_subject_history(execution_id, "build")
        assert [e.state_transition for e in build_history] == [
            "pending->running",
            "running->running",
            "running->succeeded",
        ]
        assert artifact_store.read_bytes(result.artifacts["deployment"]) == (
            b"checked-out|build|deploy"
        )
        assert restarted.verify_chain(execution_id)

    def test_resume_finished_execution_returns_recorded_result(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        calls: list[str] = []
        orch = _orchestrator(
            [
                _Step("source", ("trigger",), ("source",), calls),
                _Step("build", ("source",), ("image",), calls, fail=True),
            ],
            config,
            ledger,
            artifact_store,
        )
        first = orch.execute(_trigger())
        entries = len(ledger.get_execution_entries(first.execution_id))

        again = orch.resume(first.execution_id)
        assert again.status == PipelineStatus.FAILED
        assert again.failed_stage == "build"
        assert again.cause == "build broke"
        assert again.failure_kind == FailureKind.EXECUTOR
        assert calls == ["source", "build"]
        assert len(ledger.get_execution_entries(first.execution_id)) == entries

    def test_resume_unknown_execution(
        self, config: PipelineConfig, ledger: RunLedger, artifact_store: ArtifactStore
    ):
        orch = _orchestrator(
            [_Step("source", ("trigger",), ("source",), [])], config, ledger, artifact_store
        )
        with pytest.raises(KeyError):
            orch.resume("gs-unknown")
