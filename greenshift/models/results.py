"""Typed results returned by the stage engine and the orchestrator.

Failures travel as values, not exceptions: the orchestrator is the single
place that decides whether an execution halts.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from greenshift.models.artifacts import Artifact


class FailureKind(str, Enum):
    """Distinguishes an unhealthy release from a broken pipeline."""

    EXECUTOR = "executor"  # the pipeline or one of its tools broke
    DEPLOYMENT = "deployment"  # the release was unhealthy and rolled back
    TERMINATION_STUCK = "termination_stuck"  # old task set could not be destroyed
    CANCELLED = "cancelled"


class StageSucceeded(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["succeeded"] = "succeeded"
    outputs: dict[str, Any] = {}


class StageFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["failed"] = "failed"
    cause: str
    kind: FailureKind = FailureKind.EXECUTOR


StageResult = Union[StageSucceeded, StageFailed]


class PipelineStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PipelineResult(BaseModel):
    """Overall outcome of one pipeline execution."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    pipeline_name: str
    status: PipelineStatus
    failed_stage: str | None = None
    cause: str | None = None
    failure_kind: FailureKind | None = None
    stage_states: dict[str, str] = {}
    artifacts: dict[str, Artifact] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == PipelineStatus.SUCCEEDED

    @property
    def is_deployment_failure(self) -> bool:
        """True when the release itself was unhealthy (not a pipeline fault)."""
        return self.failure_kind == FailureKind.DEPLOYMENT

    def describe(self) -> str:
        """One-line human-readable summary."""
        if self.succeeded:
            return f"{self.pipeline_name} [{self.execution_id}] succeeded"
        if self.status == PipelineStatus.CANCELLED:
            return f"{self.pipeline_name} [{self.execution_id}] cancelled at stage {self.failed_stage}"
        prefix = (
            "release was unhealthy"
            if self.is_deployment_failure
            else "pipeline failed"
        )
        return (
            f"{self.pipeline_name} [{self.execution_id}] {prefix} at stage "
            f"{self.failed_stage}: {self.cause}"
        )
