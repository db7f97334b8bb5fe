"""Traffic-shift policy models and the fixed deployment-config catalogue."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class PolicyKind(str, Enum):
    """How fast traffic moves from the old task set to the new one."""

    LINEAR = "linear"
    CANARY = "canary"
    ALL_AT_ONCE = "all_at_once"


class TrafficShiftPolicy(BaseModel):
    """A named traffic-shift schedule.

    ``all_at_once`` is normalized to a single 100% step with no interval.
    """

    model_config = ConfigDict(frozen=True)

    kind: PolicyKind
    step_percentage: int = 100
    step_interval: timedelta = timedelta(0)
    canary_bake_time: timedelta = timedelta(0)
    name: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalize_all_at_once(cls, data):
        if isinstance(data, dict) and data.get("kind") in (
            PolicyKind.ALL_AT_ONCE,
            PolicyKind.ALL_AT_ONCE.value,
        ):
            data = {
                **data,
                "step_percentage": 100,
                "step_interval": timedelta(0),
                "canary_bake_time": timedelta(0),
            }
        return data

    @model_validator(mode="after")
    def _check_bounds(self) -> "TrafficShiftPolicy":
        if not 0 < self.step_percentage <= 100:
            raise ValueError(
                f"step_percentage must be in (0, 100], got {self.step_percentage}"
            )
        if self.step_interval < timedelta(0):
            raise ValueError("step_interval must not be negative")
        if self.canary_bake_time < timedelta(0):
            raise ValueError("canary_bake_time must not be negative")
        return self


class DeploymentConfigName(str, Enum):
    """The fixed enumeration of shift policies a pipeline may select."""

    LINEAR_10_PERCENT_EVERY_1_MINUTES = "CodeDeployDefault.ECSLinear10PercentEvery1Minutes"
    LINEAR_10_PERCENT_EVERY_3_MINUTES = "CodeDeployDefault.ECSLinear10PercentEvery3Minutes"
    CANARY_10_PERCENT_5_MINUTES = "CodeDeployDefault.ECSCanary10Percent5Minutes"
    CANARY_10_PERCENT_15_MINUTES = "CodeDeployDefault.ECSCanary10Percent15Minutes"
    ALL_AT_ONCE = "CodeDeployDefault.ECSAllAtOnce"


DEFAULT_DEPLOYMENT_CONFIG = DeploymentConfigName.LINEAR_10_PERCENT_EVERY_1_MINUTES

PREDEFINED_POLICIES: dict[DeploymentConfigName, TrafficShiftPolicy] = {
    DeploymentConfigName.LINEAR_10_PERCENT_EVERY_1_MINUTES: TrafficShiftPolicy(
        kind=PolicyKind.LINEAR,
        step_percentage=10,
        step_interval=timedelta(minutes=1),
        name=DeploymentConfigName.LINEAR_10_PERCENT_EVERY_1_MINUTES.value,
    ),
    DeploymentConfigName.LINEAR_10_PERCENT_EVERY_3_MINUTES: TrafficShiftPolicy(
        kind=PolicyKind.LINEAR,
        step_percentage=10,
        step_interval=timedelta(minutes=3),
        name=DeploymentConfigName.LINEAR_10_PERCENT_EVERY_3_MINUTES.value,
    ),
    DeploymentConfigName.CANARY_10_PERCENT_5_MINUTES: TrafficShiftPolicy(
        kind=PolicyKind.CANARY,
        step_percentage=10,
        canary_bake_time=timedelta(minutes=5),
        name=DeploymentConfigName.CANARY_10_PERCENT_5_MINUTES.value,
    ),
    DeploymentConfigName.CANARY_10_PERCENT_15_MINUTES: TrafficShiftPolicy(
        kind=PolicyKind.CANARY,
        step_percentage=10,
        canary_bake_time=timedelta(minutes=15),
        name=DeploymentConfigName.CANARY_10_PERCENT_15_MINUTES.value,
    ),
    DeploymentConfigName.ALL_AT_ONCE: TrafficShiftPolicy(
        kind=PolicyKind.ALL_AT_ONCE,
        name=DeploymentConfigName.ALL_AT_ONCE.value,
    ),
}


def policy_for(name: DeploymentConfigName | str) -> TrafficShiftPolicy:
    """Return the traffic-shift policy for a deployment-config name.

    Raises ``ValueError`` for names outside the fixed enumeration.
    """
    return PREDEFINED_POLICIES[DeploymentConfigName(name)]
