"""Tests for Settings and PipelineConfig validation."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from greenshift.config import Settings
from greenshift.models.config import PipelineConfig
from greenshift.models.traffic import DeploymentConfigName, PolicyKind


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> pytest.MonkeyPatch:
    """Run from an empty directory so no stray .env file is picked up."""
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestSettings:
    def test_defaults(self, clean_env: pytest.MonkeyPatch):
        settings = Settings()
        assert settings.log_level == "INFO"
        assert settings.deployment_config_name == DeploymentConfigName.LINEAR_10_PERCENT_EVERY_1_MINUTES
        assert settings.task_set_termination_time_in_minutes == 10
        assert not settings.is_production

    def test_env_override(self, clean_env: pytest.MonkeyPatch):
        clean_env.setenv("GREENSHIFT_DEPLOYMENT_CONFIG_NAME", "CodeDeployDefault.ECSAllAtOnce")
        clean_env.setenv("GREENSHIFT_CONTAINER_PORT", "8080")
        clean_env.setenv("GREENSHIFT_ENVIRONMENT", "production")
        settings = Settings()
        assert settings.deployment_config_name == DeploymentConfigName.ALL_AT_ONCE
        assert settings.container_port == 8080
        assert settings.is_production

    def test_dotenv_file(self, clean_env: pytest.MonkeyPatch, tmp_path: Path):
        (tmp_path / ".env").write_text("GREENSHIFT_ECR_REPO_NAME=orders-api\n", encoding="utf-8")
        assert Settings().ecr_repo_name == "orders-api"

    def test_invalid_env_rejected(self, clean_env: pytest.MonkeyPatch):
        clean_env.setenv("GREENSHIFT_TASK_SET_TERMINATION_TIME_IN_MINUTES", "0")
        with pytest.raises(ValidationError):
            Settings()

    def test_to_pipeline_config(self, clean_env: pytest.MonkeyPatch, tmp_path: Path):
        clean_env.setenv("GREENSHIFT_SOURCE_REPO_OWNER", "acme")
        clean_env.setenv("GREENSHIFT_CODE_REPO_NAME", "orders-api")
        config = Settings().to_pipeline_config(ledger_db_path=tmp_path / "l.db")
        assert isinstance(config, PipelineConfig)
        assert config.repo_ref == "acme/orders-api"
        assert config.ledger_db_path == tmp_path / "l.db"


class TestPipelineConfig:
    def test_defaults(self):
        config = PipelineConfig()
        assert config.ecr_repo_name == "greenshift-app"
        assert config.container_port == 80
        assert config.repo_ref == "greenshift-app"
        assert config.traffic_policy.kind == PolicyKind.LINEAR
        assert config.traffic_policy.step_interval == timedelta(minutes=1)

    @pytest.mark.parametrize(
        "field, value",
        [
            ("task_set_termination_time_in_minutes", 0),
            ("container_port", -1),
            ("ecr_repo_name", ""),
            ("deployment_config_name", "CodeDeployDefault.ECSLinear50PercentEvery1Minutes"),
            ("health_poll_interval_seconds", -1.0),
        ],
    )
    def test_invalid_values_rejected(self, field: str, value: object):
        with pytest.raises(ValidationError):
            PipelineConfig(**{field: value})

    def test_config_is_immutable(self):
        config = PipelineConfig()
        with pytest.raises(ValidationError):
            config.container_port = 8080

    def test_policy_follows_config_name(self):
        config = PipelineConfig(deployment_config_name="CodeDeployDefault.ECSCanary10Percent5Minutes")
        assert config.traffic_policy.kind == PolicyKind.CANARY
        assert config.traffic_policy.canary_bake_time == timedelta(minutes=5)
