"""Environment-driven settings.

Centralized settings using pydantic-settings. Reads from a .env file and
GREENSHIFT_* environment variables, then converts into the explicit
``PipelineConfig`` that pipeline construction takes.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

from greenshift.models.config import PipelineConfig
from greenshift.models.traffic import DEFAULT_DEPLOYMENT_CONFIG, DeploymentConfigName


class Settings(BaseSettings):
    """Process settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export GREENSHIFT_DEPLOYMENT_CONFIG_NAME=CodeDeployDefault.ECSAllAtOnce
        export GREENSHIFT_TASK_SET_TERMINATION_TIME_IN_MINUTES=5
        export GREENSHIFT_LOG_LEVEL=DEBUG

    Or via .env file::

        GREENSHIFT_CONTAINER_PORT=8080
        GREENSHIFT_ECR_REPO_NAME=orders-api
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GREENSHIFT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Storage paths
    ledger_path: Path = Path(".greenshift/ledger.db")
    artifact_store_path: Path = Path(".greenshift/artifacts")

    # Release parameters
    deployment_config_name: DeploymentConfigName = DEFAULT_DEPLOYMENT_CONFIG
    task_set_termination_time_in_minutes: PositiveInt = 10
    container_port: PositiveInt = 80
    ecr_repo_name: str = "greenshift-app"
    ecs_task_role_arn: str = ""
    api_name: str = "greenshift-api"
    code_build_project_name: str = "BuildContainerImage"

    # Source
    source_repo_owner: str = ""
    code_repo_name: str = "greenshift-app"
    source_branch: str = "main"

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    def to_pipeline_config(self, **overrides) -> PipelineConfig:
        """Build the validated ``PipelineConfig`` from these settings."""
        values = {
            "deployment_config_name": self.deployment_config_name,
            "task_set_termination_time_in_minutes": self.task_set_termination_time_in_minutes,
            "container_port": self.container_port,
            "ecr_repo_name": self.ecr_repo_name,
            "ecs_task_role_arn": self.ecs_task_role_arn,
            "api_name": self.api_name,
            "source_repo_owner": self.source_repo_owner,
            "code_repo_name": self.code_repo_name,
            "source_branch": self.source_branch,
            "ledger_db_path": self.ledger_path,
            "artifact_store_path": self.artifact_store_path,
        }
        values.update(overrides)
        return PipelineConfig(**values)
