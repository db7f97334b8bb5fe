"""Pipeline configuration — validated before pipeline construction.

The configuration is an explicit value passed into the orchestrator and
the deploy stage; nothing in the core reads process-wide settings, so
several pipeline definitions can coexist in one process.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, PositiveInt

from greenshift.models.traffic import (
    DEFAULT_DEPLOYMENT_CONFIG,
    DeploymentConfigName,
    TrafficShiftPolicy,
    policy_for,
)


class PipelineConfig(BaseModel):
    """Release parameters for one pipeline definition."""

    model_config = ConfigDict(frozen=True)

    pipeline_name: str = "BlueGreenDeploymentPipeline"
    deployment_config_name: DeploymentConfigName = DEFAULT_DEPLOYMENT_CONFIG
    task_set_termination_time_in_minutes: PositiveInt = 10
    container_port: PositiveInt = 80
    ecr_repo_name: str = Field("greenshift-app", min_length=1)
    ecs_task_role_arn: str = ""
    api_name: str = "greenshift-api"

    # Source
    source_repo_owner: str = ""
    code_repo_name: str = "greenshift-app"
    source_branch: str = "main"

    # Storage
    ledger_db_path: Path = Path(".greenshift/ledger.db")
    artifact_store_path: Path = Path(".greenshift/artifacts")

    # Orchestration
    continue_independent_branches: bool = False
    retain_artifacts: bool = True

    # Controller tuning
    provisioning_health_attempts: PositiveInt = 3
    health_poll_interval_seconds: float = Field(10.0, ge=0)
    termination_retry_attempts: PositiveInt = 3
    termination_retry_interval_seconds: float = Field(30.0, ge=0)

    @property
    def traffic_policy(self) -> TrafficShiftPolicy:
        """The traffic-shift policy selected by ``deployment_config_name``."""
        return policy_for(self.deployment_config_name)

    @property
    def repo_ref(self) -> str:
        if self.source_repo_owner:
            return f"{self.source_repo_owner}/{self.code_repo_name}"
        return self.code_repo_name
