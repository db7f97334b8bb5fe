"""The source -> build -> blue/green deploy release pipeline."""

from __future__ import annotations

from greenshift.collaborators import (
    BuildExecutor,
    Clock,
    ExecutionTarget,
    HealthCheckProvider,
    SourceProducer,
    TaskSetBackend,
)
from greenshift.core.artifact_store import ArtifactStore
from greenshift.core.orchestrator import Orchestrator
from greenshift.core.run_ledger import RunLedger
from greenshift.deploy.controller import TargetLocks
from greenshift.deploy.store import DeploymentStore
from greenshift.models.artifacts import TriggerEvent
from greenshift.models.config import PipelineConfig
from greenshift.stages import BlueGreenDeployStage, BuildStage, SourceStage


def build_release_pipeline(
    config: PipelineConfig,
    *,
    source: SourceProducer,
    builder: BuildExecutor,
    backend: TaskSetBackend,
    health: HealthCheckProvider,
    target: ExecutionTarget,
    clock: Clock | None = None,
    ledger: RunLedger | None = None,
    store: DeploymentStore | None = None,
    artifact_store: ArtifactStore | None = None,
    target_locks: TargetLocks | None = None,
) -> Orchestrator:
    """Wire the three release stages into an orchestrator.

    Parameters
    ----------
    config:
        Validated pipeline configuration.
    source, builder:
        Collaborators of the source and build stages.
    backend, health, target:
        Execution-target collaborators of the deploy stage.
    clock:
        Time source of the blue/green controller.
    ledger, store, artifact_store:
        Persistence; opened from the paths in *config* when omitted. The
        deployment store shares the ledger's database file by default.
    target_locks:
        Per-target serialization of deployments.
    """
    ledger = ledger or RunLedger(config.ledger_db_path)
    store = store or DeploymentStore(ledger.db_path)
    stages = [
        SourceStage(source),
        BuildStage(builder),
        BlueGreenDeployStage(
            backend,
            health,
            target,
            config,
            store=store,
            ledger=ledger,
            clock=clock,
            target_locks=target_locks,
        ),
    ]
    return Orchestrator.from_stages(
        config.pipeline_name,
        stages,
        config,
        ledger=ledger,
        artifact_store=artifact_store,
    )


def trigger_for(config: PipelineConfig, commit_id: str | None = None) -> TriggerEvent:
    """The trigger event of a push to the configured source branch."""
    return TriggerEvent(
        repo_ref=config.repo_ref,
        branch=config.source_branch,
        commit_id=commit_id,
    )
