"""Shared test fixtures for Greenshift."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from greenshift.collaborators import (
    ExecutionTarget,
    InMemoryTaskSetBackend,
    ScriptedHealthCheck,
    SimulatedClock,
)
from greenshift.core.artifact_store import ArtifactStore
from greenshift.core.run_ledger import RunLedger
from greenshift.deploy.controller import BlueGreenController, TargetLocks
from greenshift.deploy.store import DeploymentStore
from greenshift.models.config import PipelineConfig

BLUE_TASK_SET = "ts-blue-0"
BLUE_IMAGE = "orders-api:previous"


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ArtifactStore:
    """Provide a fresh ArtifactStore in a temp directory."""
    return ArtifactStore(tmp_dir / "artifacts")


@pytest.fixture
def deployment_store(ledger: RunLedger) -> DeploymentStore:
    """Provide a DeploymentStore sharing the ledger's database file."""
    return DeploymentStore(ledger.db_path)


@pytest.fixture
def config(tmp_dir: Path) -> PipelineConfig:
    """Provide a PipelineConfig with temp storage paths."""
    return PipelineConfig(
        ecr_repo_name="orders-api",
        ledger_db_path=tmp_dir / "test_ledger.db",
        artifact_store_path=tmp_dir / "artifacts",
    )


@pytest.fixture
def clock() -> SimulatedClock:
    """Provide a simulated clock starting at a fixed instant."""
    return SimulatedClock(datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def target() -> ExecutionTarget:
    return ExecutionTarget(target_id="cluster-a", attributes={"region": "test"})


@pytest.fixture
def backend(target: ExecutionTarget) -> InMemoryTaskSetBackend:
    """Provide an in-memory backend whose blue task set serves 100%."""
    backend = InMemoryTaskSetBackend()
    backend.register_existing(target, BLUE_TASK_SET, image_ref=BLUE_IMAGE)
    return backend


@pytest.fixture
def healthy() -> ScriptedHealthCheck:
    return ScriptedHealthCheck()


@pytest.fixture
def execution_id() -> str:
    """Provide a deterministic test execution ID."""
    return "gs-test-exec-001"


@pytest.fixture
def make_controller(
    target: ExecutionTarget,
    config: PipelineConfig,
    deployment_store: DeploymentStore,
    ledger: RunLedger,
    clock: SimulatedClock,
    healthy: ScriptedHealthCheck,
    backend: InMemoryTaskSetBackend,
) -> Callable[..., BlueGreenController]:
    """Factory fixture: build a BlueGreenController with test collaborators."""

    def _factory(**overrides: Any) -> BlueGreenController:
        defaults: dict[str, Any] = {
            "backend": backend,
            "health": healthy,
            "target": target,
            "config": config,
            "store": deployment_store,
            "ledger": ledger,
            "clock": clock,
        }
        defaults.update(overrides)
        return BlueGreenController(
            defaults.pop("backend"),
            defaults.pop("health"),
            defaults.pop("target"),
            defaults.pop("config"),
            **defaults,
        )

    return _factory


@pytest.fixture
def target_locks() -> TargetLocks:
    """Provide process-independent target locks for a test."""
    return TargetLocks()
