"""Greenshift data models — all Pydantic v2, all frozen (immutable)."""

from greenshift.models.artifacts import (
    Artifact,
    BuildOutput,
    DeploymentSummary,
    SourceBundle,
    TriggerEvent,
)
from greenshift.models.config import PipelineConfig
from greenshift.models.deployment import (
    DEPLOYMENT_TRANSITIONS,
    DeploymentRecord,
    DeploymentState,
    HealthState,
    HealthStatus,
    TaskSet,
    TaskSetLabel,
)
from greenshift.models.ledger import LedgerEntry
from greenshift.models.results import (
    FailureKind,
    PipelineResult,
    PipelineStatus,
    StageFailed,
    StageResult,
    StageSucceeded,
)
from greenshift.models.stages import (
    VALID_TRANSITIONS,
    PipelineDefinition,
    StageDefinition,
    StageState,
)
from greenshift.models.traffic import (
    DeploymentConfigName,
    PolicyKind,
    TrafficShiftPolicy,
    policy_for,
)

__all__ = [
    # artifacts
    "Artifact",
    "TriggerEvent",
    "SourceBundle",
    "BuildOutput",
    "DeploymentSummary",
    # config
    "PipelineConfig",
    # stages
    "StageState",
    "VALID_TRANSITIONS",
    "StageDefinition",
    "PipelineDefinition",
    # results
    "FailureKind",
    "StageSucceeded",
    "StageFailed",
    "StageResult",
    "PipelineStatus",
    "PipelineResult",
    # traffic
    "PolicyKind",
    "TrafficShiftPolicy",
    "DeploymentConfigName",
    "policy_for",
    # deployment
    "TaskSetLabel",
    "HealthState",
    "HealthStatus",
    "TaskSet",
    "DeploymentState",
    "DEPLOYMENT_TRANSITIONS",
    "DeploymentRecord",
    # ledger
    "LedgerEntry",
]
