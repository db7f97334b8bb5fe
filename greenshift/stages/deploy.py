"""Blue/green deploy stage — releases the built image onto the execution target.

The stage is a thin adapter over ``BlueGreenController``: it serializes
deployments per target, finds the currently-serving task set, drives the
controller to completion and maps the outcome onto the stage result.

Outcome mapping:
- ``terminated``                -> success, emits a ``DeploymentSummary``
- ``rolled_back`` (unhealthy)   -> ``DeploymentRolledBackError`` (kind: deployment)
- ``rolled_back`` (cancelled)   -> ``DeploymentRolledBackError`` (kind: cancelled)
- stuck in ``finalizing``       -> ``DeploymentStuckError`` (kind: termination_stuck)
"""

from __future__ import annotations

import logging
from typing import Any

from greenshift.collaborators import (
    Clock,
    ExecutionTarget,
    HealthCheckProvider,
    TaskSetBackend,
)
from greenshift.core.run_ledger import RunLedger
from greenshift.deploy.controller import TARGET_LOCKS, BlueGreenController, TargetLocks
from greenshift.deploy.store import DeploymentStore
from greenshift.models.artifacts import Artifact, BuildOutput, DeploymentSummary
from greenshift.models.config import PipelineConfig
from greenshift.models.deployment import DeploymentRecord, DeploymentState
from greenshift.models.results import FailureKind
from greenshift.stages.base import BaseStage, StageContext, StageExecutionError

logger = logging.getLogger(__name__)

CANCELLED_REASON = "deployment cancelled"


class DeploymentRolledBackError(StageExecutionError):
    """The release was rolled back; blue is serving 100% again."""

    def __init__(self, record: DeploymentRecord) -> None:
        reason = record.failure_reason or "rolled back"
        super().__init__(f"deployment {record.deployment_id} rolled back: {reason}")
        self.record = record
        self.failure_kind = (
            FailureKind.CANCELLED if reason == CANCELLED_REASON else FailureKind.DEPLOYMENT
        )


class DeploymentStuckError(StageExecutionError):
    """The old task set could not be terminated; operator attention needed."""

    failure_kind = FailureKind.TERMINATION_STUCK

    def __init__(self, record: DeploymentRecord) -> None:
        task_set_id = (
            record.blue.task_set_id
            if record.state == DeploymentState.FINALIZING
            else (record.green.task_set_id if record.green else "?")
        )
        super().__init__(
            f"deployment {record.deployment_id} stuck in {record.state.value}: "
            f"task set {task_set_id} was not terminated ({record.failure_reason})"
        )
        self.record = record


class BlueGreenDeployStage(BaseStage):
    """Stage 3: Deploy — ``image`` -> ``deployment``.

    Parameters
    ----------
    backend, health, target:
        Execution-target collaborators handed to the controller.
    config:
        Pipeline configuration.
    store:
        Durable deployment state, used to resume an interrupted release.
    ledger:
        Run ledger receiving the controller's transitions.
    clock:
        Time source for the controller.
    target_locks:
        Per-target serialization; the process-wide locks by default.
    """

    def __init__(
        self,
        backend: TaskSetBackend,
        health: HealthCheckProvider,
        target: ExecutionTarget,
        config: PipelineConfig,
        *,
        store: DeploymentStore,
        ledger: RunLedger,
        clock: Clock | None = None,
        target_locks: TargetLocks | None = None,
    ) -> None:
        self._backend = backend
        self._target = target
        self._store = store
        self._locks = target_locks or TARGET_LOCKS
        self._controller = BlueGreenController(
            backend,
            health,
            target,
            config,
            store=store,
            ledger=ledger,
            clock=clock,
        )

    @property
    def name(self) -> str:
        return "deploy"

    @property
    def display_name(self) -> str:
        return "Blue/Green Deploy"

    @property
    def inputs(self) -> tuple[str, ...]:
        return ("image",)

    @property
    def outputs(self) -> tuple[str, ...]:
        return ("deployment",)

    @property
    def controller(self) -> BlueGreenController:
        return self._controller

    def execute(self, inputs: dict[str, Artifact], context: StageContext) -> dict[str, Any]:
        image = context.read(inputs["image"], BuildOutput)

        with self._locks.hold(self._target.target_id):
            record = self._store.find_by_execution(context.execution_id)
            if record is not None:
                if not record.is_terminal:
                    record = self._controller.resume(
                        record.deployment_id, context.cancel_event
                    )
            else:
                record = self._start(image.image_ref, context)

        if record.stuck:
            raise DeploymentStuckError(record)
        if record.state == DeploymentState.ROLLED_BACK:
            raise DeploymentRolledBackError(record)

        return {
            "deployment": DeploymentSummary(
                deployment_id=record.deployment_id,
                final_state=record.state.value,
                image_ref=record.image_ref,
                weight_history=list(record.weight_history),
                failure_reason=record.failure_reason,
            )
        }

    def _start(self, image_ref: str, context: StageContext) -> DeploymentRecord:
        primary = self._backend.primary_task_set(self._target)
        if primary is None:
            raise StageExecutionError(
                f"target {self._target.target_id} has no task set serving 100% of "
                "traffic; a blue/green release needs an existing primary"
            )
        blue_id, blue_image = primary
        if blue_image and blue_image == image_ref:
            logger.warning(
                "image %s is already serving on %s; releasing it again",
                image_ref,
                self._target.target_id,
            )
        record = self._controller.start(
            image_ref,
            blue_task_set_id=blue_id,
            blue_image_ref=blue_image,
            execution_id=context.execution_id,
        )
        return self._controller.run(record, context.cancel_event)
