"""Blue/green deployment models — task sets, states, and the deployment record.

The record is rebuilt (never mutated) on every controller transition, and
its validator enforces ``weight(blue) + weight(green) == 100`` so no
transition can ever record a split that leaks or duplicates traffic.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from greenshift.models.traffic import TrafficShiftPolicy


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskSetLabel(str, Enum):
    BLUE = "blue"
    GREEN = "green"


class HealthState(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthStatus(BaseModel):
    """Answer from a health-check provider for one task set."""

    model_config = ConfigDict(frozen=True)

    state: HealthState
    reason: str = ""

    @property
    def healthy(self) -> bool:
        return self.state == HealthState.HEALTHY

    @classmethod
    def ok(cls) -> "HealthStatus":
        return cls(state=HealthState.HEALTHY)

    @classmethod
    def failing(cls, reason: str) -> "HealthStatus":
        return cls(state=HealthState.UNHEALTHY, reason=reason)


class TaskSet(BaseModel):
    """A group of running instances of one image behind a weighted endpoint."""

    model_config = ConfigDict(frozen=True)

    label: TaskSetLabel
    task_set_id: str
    image_ref: str
    weight: int = Field(0, ge=0, le=100)
    desired_weight: int = Field(0, ge=0, le=100)
    health: HealthState = HealthState.UNKNOWN
    created_at: datetime = Field(default_factory=_utcnow)
    termination_deadline: datetime | None = None
    destroyed: bool = False


class DeploymentState(str, Enum):
    """States of the blue/green controller."""

    PROVISIONING = "provisioning"
    SHIFTING = "shifting"
    VALIDATING = "validating"
    FINALIZING = "finalizing"
    TERMINATED = "terminated"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"


DEPLOYMENT_TRANSITIONS: dict[DeploymentState, set[DeploymentState]] = {
    DeploymentState.PROVISIONING: {DeploymentState.SHIFTING, DeploymentState.ROLLING_BACK},
    DeploymentState.SHIFTING: {DeploymentState.VALIDATING, DeploymentState.ROLLING_BACK},
    DeploymentState.VALIDATING: {
        DeploymentState.SHIFTING,
        DeploymentState.FINALIZING,
        DeploymentState.ROLLING_BACK,
    },
    # Self-transitions record a stuck termination.
    DeploymentState.FINALIZING: {DeploymentState.TERMINATED, DeploymentState.FINALIZING},
    DeploymentState.ROLLING_BACK: {DeploymentState.ROLLED_BACK, DeploymentState.ROLLING_BACK},
    DeploymentState.TERMINATED: set(),
    DeploymentState.ROLLED_BACK: set(),
}

TERMINAL_DEPLOYMENT_STATES: frozenset[DeploymentState] = frozenset(
    {DeploymentState.TERMINATED, DeploymentState.ROLLED_BACK}
)

# States in which a cancellation is turned into a rollback.
ROLLBACK_ON_CANCEL_STATES: frozenset[DeploymentState] = frozenset(
    {DeploymentState.PROVISIONING, DeploymentState.SHIFTING, DeploymentState.VALIDATING}
)


class DeploymentRecord(BaseModel):
    """Durable snapshot of one blue/green deployment."""

    model_config = ConfigDict(frozen=True)

    deployment_id: str = Field(default_factory=lambda: f"d-{uuid.uuid4().hex[:12]}")
    execution_id: str = ""
    target_id: str
    policy: TrafficShiftPolicy
    image_ref: str
    state: DeploymentState = DeploymentState.PROVISIONING
    blue: TaskSet
    green: TaskSet | None = None
    last_shift_at: datetime | None = None
    weight_history: list[int] = [0]
    failure_reason: str | None = None
    stuck: bool = False
    started_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_weight_invariant(self) -> "DeploymentRecord":
        green_weight = self.green.weight if self.green is not None else 0
        if self.blue.weight + green_weight != 100:
            raise ValueError(
                f"weight(blue)={self.blue.weight} + weight(green)={green_weight} != 100"
            )
        return self

    @property
    def green_weight(self) -> int:
        return self.green.weight if self.green is not None else 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_DEPLOYMENT_STATES

    @property
    def succeeded(self) -> bool:
        return self.state == DeploymentState.TERMINATED
