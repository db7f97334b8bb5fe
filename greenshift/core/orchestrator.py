"""Pipeline orchestrator — the central coordinator for Greenshift executions.

The Orchestrator wires together the RunLedger, StageMachine, WiringPlan,
ArtifactStore and StageEngine into a single pipeline execution engine.

It runs the stages of one definition strictly in declaration order, hands
each stage the artifacts it declared as inputs, stores what it produces,
and is the only place that decides whether an execution halts. Failed
stages are never compensated: a rollback of the release is the deploy
stage's own business.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

from greenshift.core.artifact_store import ArtifactStore
from greenshift.core.hasher import compute_input_hash, compute_output_hash
from greenshift.core.run_ledger import RunLedger
from greenshift.core.stage_engine import StageEngine
from greenshift.core.stage_machine import StageMachine
from greenshift.core.wiring import TRIGGER_PRODUCER, WiringError, validate_wiring
from greenshift.models.artifacts import Artifact
from greenshift.models.config import PipelineConfig
from greenshift.models.ledger import LedgerEntry
from greenshift.models.results import (
    FailureKind,
    PipelineResult,
    PipelineStatus,
    StageFailed,
)
from greenshift.models.stages import PipelineDefinition, StageState
from greenshift.stages.base import BaseStage, StageContext

logger = logging.getLogger(__name__)

EXECUTION_SUBJECT = "execution"


def new_execution_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"gs-{ts}-{uuid.uuid4().hex[:6]}"


class Orchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    definition:
        The pipeline definition. Its wiring is validated here, so an invalid
        definition never starts an execution.
    stages:
        One executor per stage of the definition.
    config:
        Pipeline configuration. Uses defaults if not provided.
    ledger:
        Run ledger; opened at ``config.ledger_db_path`` if not provided.
    artifact_store:
        Artifact store; opened at ``config.artifact_store_path`` if not provided.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        stages: Sequence[BaseStage],
        config: PipelineConfig | None = None,
        *,
        ledger: RunLedger | None = None,
        artifact_store: ArtifactStore | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.definition = definition
        self.plan = validate_wiring(definition)
        self._stages = self._bind_stages(definition, stages)

        # Core subsystems
        self.ledger = ledger or RunLedger(self.config.ledger_db_path)
        self.artifact_store = artifact_store or ArtifactStore(self.config.artifact_store_path)
        self.stage_machine = StageMachine(self.ledger, definition.stage_names)
        self.engine = StageEngine()

    @classmethod
    def from_stages(
        cls,
        name: str,
        stages: Sequence[BaseStage],
        config: PipelineConfig | None = None,
        *,
        trigger_outputs: tuple[str, ...] = ("trigger",),
        ledger: RunLedger | None = None,
        artifact_store: ArtifactStore | None = None,
    ) -> "Orchestrator":
        """Build the definition from the stages' own declarations."""
        definition = PipelineDefinition(
            name=name,
            stages=tuple(stage.definition() for stage in stages),
            trigger_outputs=trigger_outputs,
        )
        return cls(definition, stages, config, ledger=ledger, artifact_store=artifact_store)

    @staticmethod
    def _bind_stages(
        definition: PipelineDefinition, stages: Sequence[BaseStage]
    ) -> dict[str, BaseStage]:
        by_name = {stage.name: stage for stage in stages}
        problems: list[str] = []
        for stage_def in definition.stages:
            stage = by_name.get(stage_def.name)
            if stage is None:
                problems.append(f"no executor for stage {stage_def.name!r}")
                continue
            if tuple(stage.inputs) != stage_def.inputs or tuple(stage.outputs) != stage_def.outputs:
                problems.append(
                    f"executor {stage!r} declares {tuple(stage.inputs)} -> "
                    f"{tuple(stage.outputs)}, definition says {stage_def.inputs} -> "
                    f"{stage_def.outputs}"
                )
        unknown = sorted(set(by_name) - set(definition.stage_names))
        if unknown:
            problems.append(f"executors for undefined stages {unknown}")
        if problems:
            raise WiringError(
                f"Invalid executors for pipeline {definition.name!r}: " + "; ".join(problems)
            )
        return by_name

    # ------------------------------------------------------------------
    # Execution lifecycle
    # ------------------------------------------------------------------

    def execute(
        self,
        trigger: BaseModel | dict[str, Any],
        *,
        cancel_event: threading.Event | None = None,
        execution_id: str | None = None,
    ) -> PipelineResult:
        """Run a new execution of the pipeline for *trigger*.

        Never raises for stage failures; the outcome is in the returned
        ``PipelineResult``.
        """
        execution_id = execution_id or new_execution_id()
        self.stage_machine.initialize_execution(execution_id)

        produced: dict[str, Artifact] = {}
        for name in self.definition.trigger_outputs:
            produced[name] = self.artifact_store.put(
                TRIGGER_PRODUCER, trigger, name=name, artifact_type="trigger"
            )

        self.ledger.append(
            LedgerEntry(
                execution_id=execution_id,
                subject=EXECUTION_SUBJECT,
                state_transition="none->running",
                input_hash=compute_input_hash(
                    EXECUTION_SUBJECT,
                    {name: a.content_ref for name, a in produced.items()},
                ),
                artifact_references=[a.artifact_id for a in produced.values()],
                detail={"pipeline": self.definition.name},
            )
        )
        logger.info(
            "execution %s of %s started", execution_id, self.definition.name
        )
        return self._run(execution_id, produced, cancel_event)

    def resume(
        self,
        execution_id: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> PipelineResult:
        """Continue an interrupted execution from the first stage that did not succeed.

        Stage states and produced artifacts are rebuilt from the ledger. A
        stage left RUNNING by a crash runs again. An execution that already
        finished returns its recorded result.
        """
        entries = self.ledger.get_execution_entries(execution_id)
        execution_entries = [e for e in entries if e.subject == EXECUTION_SUBJECT]
        if not execution_entries:
            raise KeyError(f"Unknown execution {execution_id}")

        produced = self._produced_from(entries)
        states = self.stage_machine.get_all_states(execution_id)

        last = execution_entries[-1]
        if last.to_state != "running":
            detail = last.detail
            return PipelineResult(
                execution_id=execution_id,
                pipeline_name=self.definition.name,
                status=PipelineStatus(last.to_state),
                failed_stage=detail.get("failed_stage"),
                cause=detail.get("cause"),
                failure_kind=detail.get("failure_kind"),
                stage_states={n: s.value for n, s in states.items()},
                artifacts=produced,
            )

        self.ledger.append(
            LedgerEntry(
                execution_id=execution_id,
                subject=EXECUTION_SUBJECT,
                state_transition="running->running",
                detail={"resumed": True},
            )
        )
        logger.info(
            "resuming execution %s: %s",
            execution_id,
            ", ".join(f"{n}={s.value}" for n, s in states.items()),
        )
        return self._run(execution_id, produced, cancel_event)

    # ------------------------------------------------------------------
    # Stage loop
    # ------------------------------------------------------------------

    def _run(
        self,
        execution_id: str,
        produced: dict[str, Artifact],
        cancel_event: threading.Event | None,
    ) -> PipelineResult:
        failed: list[str] = []
        first_failure: tuple[str, StageFailed] | None = None
        cancelled_at: str | None = None

        for index, stage_def in enumerate(self.definition.stages):
            name = stage_def.name
            state = self.stage_machine.get_current_state(execution_id, name)

            if state in (StageState.SUCCEEDED, StageState.SKIPPED):
                continue
            if state == StageState.FAILED:
                failed.append(name)
                first_failure = first_failure or (name, self._recorded_failure(execution_id, name))
                continue

            if first_failure is not None:
                if not self.config.continue_independent_branches:
                    break
                blocking = next((f for f in failed if self.plan.depends_on(name, f)), None)
                if blocking is not None:
                    self.stage_machine.transition(
                        execution_id,
                        name,
                        StageState.SKIPPED,
                        detail={"reason": f"depends on failed stage {blocking}"},
                    )
                    logger.info("stage %s skipped: depends on failed %s", name, blocking)
                    self._release_consumed(index, produced)
                    continue

            if cancel_event is not None and cancel_event.is_set():
                cancelled_at = name
                logger.warning("execution %s cancelled before %s", execution_id, name)
                break

            result = self._run_stage(execution_id, stage_def.name, state, produced, cancel_event)
            if isinstance(result, StageFailed):
                failed.append(name)
                first_failure = first_failure or (name, result)
                if result.kind == FailureKind.CANCELLED:
                    cancelled_at = name
                    break
            self._release_consumed(index, produced)

        return self._finish(execution_id, produced, first_failure, cancelled_at)

    def _run_stage(
        self,
        execution_id: str,
        name: str,
        state: StageState,
        produced: dict[str, Artifact],
        cancel_event: threading.Event | None,
    ) -> StageFailed | None:
        stage = self._stages[name]
        inputs = {input_name: produced[input_name] for input_name in stage.inputs}
        input_hash = compute_input_hash(
            name, {n: a.content_ref for n, a in inputs.items()}
        )

        self.stage_machine.transition(
            execution_id,
            name,
            StageState.RUNNING,
            input_hash=input_hash,
            detail={"resumed": True} if state == StageState.RUNNING else None,
        )

        context = StageContext(execution_id, self.artifact_store, self.config, cancel_event)
        result = self.engine.run(stage, inputs, context)

        if isinstance(result, StageFailed):
            self.stage_machine.transition(
                execution_id,
                name,
                StageState.FAILED,
                input_hash=input_hash,
                output_hash=compute_output_hash(name, {"error": result.cause}),
                detail={"cause": result.cause, "failure_kind": result.kind.value},
            )
            return result

        artifacts = {
            output_name: self.artifact_store.put(
                name, content, name=output_name, artifact_type=output_name
            )
            for output_name, content in result.outputs.items()
        }
        produced.update(artifacts)
        self.stage_machine.transition(
            execution_id,
            name,
            StageState.SUCCEEDED,
            input_hash=input_hash,
            output_hash=compute_output_hash(
                name, {n: a.content_ref for n, a in artifacts.items()}
            ),
            artifact_references=[a.artifact_id for a in artifacts.values()],
        )
        return None

    def _finish(
        self,
        execution_id: str,
        produced: dict[str, Artifact],
        failure: tuple[str, StageFailed] | None,
        cancelled_at: str | None,
    ) -> PipelineResult:
        states = self.stage_machine.get_all_states(execution_id)
        if cancelled_at is not None:
            status = PipelineStatus.CANCELLED
            failed_stage = cancelled_at
            cause = failure[1].cause if failure and failure[0] == cancelled_at else None
            kind: FailureKind | None = FailureKind.CANCELLED
        elif failure is not None:
            status = PipelineStatus.FAILED
            failed_stage, cause, kind = failure[0], failure[1].cause, failure[1].kind
        else:
            status = PipelineStatus.SUCCEEDED
            failed_stage = cause = kind = None

        detail: dict[str, Any] = {}
        if failed_stage is not None:
            detail["failed_stage"] = failed_stage
        if cause is not None:
            detail["cause"] = cause
        if kind is not None:
            detail["failure_kind"] = kind.value
        self.ledger.append(
            LedgerEntry(
                execution_id=execution_id,
                subject=EXECUTION_SUBJECT,
                state_transition=f"running->{status.value}",
                detail=detail,
            )
        )

        result = PipelineResult(
            execution_id=execution_id,
            pipeline_name=self.definition.name,
            status=status,
            failed_stage=failed_stage,
            cause=cause,
            failure_kind=kind,
            stage_states={n: s.value for n, s in states.items()},
            artifacts=dict(produced),
        )
        if result.succeeded:
            logger.info("%s", result.describe())
        else:
            logger.error("%s", result.describe())
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _release_consumed(self, index: int, produced: dict[str, Artifact]) -> None:
        """Release artifacts whose last consumer was the stage at *index*."""
        if self.config.retain_artifacts:
            return
        for artifact_name in self.plan.releasable_after(index):
            artifact = produced.pop(artifact_name, None)
            if artifact is not None:
                self.artifact_store.release(artifact.artifact_id)

    def _produced_from(self, entries: list[LedgerEntry]) -> dict[str, Artifact]:
        """Collect the still-retained artifacts referenced by trigger and succeeded-stage entries."""
        produced: dict[str, Artifact] = {}
        for entry in entries:
            if entry.subject == EXECUTION_SUBJECT or entry.to_state == StageState.SUCCEEDED.value:
                for artifact_id in entry.artifact_references:
                    if self.artifact_store.exists(artifact_id):
                        artifact = self.artifact_store.get(artifact_id)
                        produced[artifact.name] = artifact
        return produced

    def _recorded_failure(self, execution_id: str, stage_name: str) -> StageFailed:
        history = self.ledger.get_subject_history(execution_id, stage_name)
        detail = history[-1].detail if history else {}
        return StageFailed(
            cause=detail.get("cause", "failed in an earlier run"),
            kind=FailureKind(detail.get("failure_kind", FailureKind.EXECUTOR.value)),
        )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self, execution_id: str) -> dict[str, StageState]:
        """Return current state of all stages of an execution."""
        return self.stage_machine.get_all_states(execution_id)

    def get_execution_entries(self, execution_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for an execution."""
        return self.ledger.get_execution_entries(execution_id)

    def verify_chain(self, execution_id: str) -> bool:
        """Verify the hash chain integrity of an execution's ledger."""
        return self.ledger.verify_chain(execution_id)
