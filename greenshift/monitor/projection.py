"""MonitorProjection — pure read-only view over the RunLedger.

The Release Monitor is a PROJECTION of the Run Ledger.  It does not compute
truth — it displays it.  Every call re-reads from the ledger, including
the traffic split of a deployment in flight (each controller transition
records both weights).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from greenshift.core.run_ledger import LedgerIntegrityError, RunLedger
from greenshift.models.deployment import DeploymentState
from greenshift.models.ledger import LedgerEntry
from greenshift.models.stages import PipelineDefinition, StageState

_EXECUTION = "execution"
_DEPLOYMENT_PREFIX = "deployment:"


class StageStatus(BaseModel):
    """Point-in-time status of a single pipeline stage."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    state: StageState = StageState.PENDING
    entered_at: datetime | None = None
    cause: str | None = None
    artifact_refs: list[str] = []


class DeploymentStatus(BaseModel):
    """Point-in-time status of a blue/green deployment."""

    model_config = ConfigDict(frozen=True)

    deployment_id: str
    target_id: str = ""
    state: DeploymentState
    blue_weight: int = 100
    green_weight: int = 0
    weight_history: list[int] = [0]
    reason: str | None = None
    stuck: bool = False


class ExecutionSnapshot(BaseModel):
    """A frozen, point-in-time snapshot of one pipeline execution.

    Computed fresh on every ``snapshot()`` call; never persisted.
    """

    model_config = ConfigDict(frozen=True)

    execution_id: str
    pipeline_name: str = ""
    status: str = "unknown"
    stages: list[StageStatus] = []
    deployments: list[DeploymentStatus] = []
    artifact_count: int = 0
    chain_valid: bool = True
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.stages if s.state == StageState.SUCCEEDED)

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    @property
    def failed_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.FAILED]

    @property
    def deployment(self) -> DeploymentStatus | None:
        """The most recent deployment of the execution, if any."""
        return self.deployments[-1] if self.deployments else None


class MonitorProjection:
    """Pure read-only projection over the RunLedger.

    Parameters
    ----------
    ledger:
        The RunLedger to project from.
    definition:
        Pipeline definition for display names and ordering. Without one,
        stages appear in the order the ledger first mentions them.
    """

    def __init__(
        self,
        ledger: RunLedger,
        definition: PipelineDefinition | None = None,
    ) -> None:
        self._ledger = ledger
        self._definition = definition

    def snapshot(self, execution_id: str) -> ExecutionSnapshot:
        """Produce a point-in-time snapshot of the execution.

        Raises ``KeyError`` if the ledger has no entries for it.
        """
        entries = self._ledger.get_execution_entries(execution_id)
        if not entries:
            raise KeyError(f"No ledger entries for execution {execution_id}")

        pipeline_name, status = self._execution_status(entries)
        return ExecutionSnapshot(
            execution_id=execution_id,
            pipeline_name=pipeline_name,
            status=status,
            stages=self._stage_statuses(entries),
            deployments=self._deployment_statuses(entries),
            artifact_count=len({r for e in entries for r in e.artifact_references}),
            chain_valid=self._check_chain_valid(execution_id),
            last_updated=entries[-1].timestamp_utc,
        )

    def _execution_status(self, entries: list[LedgerEntry]) -> tuple[str, str]:
        pipeline_name = self._definition.name if self._definition else ""
        status = "unknown"
        for entry in entries:
            if entry.subject != _EXECUTION:
                continue
            pipeline_name = entry.detail.get("pipeline", pipeline_name)
            status = entry.to_state
        return pipeline_name, status

    def _stage_statuses(self, entries: list[LedgerEntry]) -> list[StageStatus]:
        """Replay stage entries into one status per stage."""
        order: list[str] = []
        labels: dict[str, str] = {}
        if self._definition is not None:
            order = self._definition.stage_names
            labels = {s.name: s.label for s in self._definition.stages}

        info: dict[str, dict[str, Any]] = {}
        for entry in entries:
            if entry.subject == _EXECUTION or entry.subject.startswith(_DEPLOYMENT_PREFIX):
                continue
            try:
                state = StageState(entry.to_state)
            except ValueError:
                continue
            if entry.subject not in order:
                order.append(entry.subject)
            current = info.setdefault(entry.subject, {"artifact_refs": []})
            current["state"] = state
            current["entered_at"] = entry.timestamp_utc
            current["cause"] = entry.detail.get("cause") or entry.detail.get("reason")
            current["artifact_refs"].extend(entry.artifact_references)

        return [
            StageStatus(
                name=name,
                display_name=labels.get(name, name),
                state=info.get(name, {}).get("state", StageState.PENDING),
                entered_at=info.get(name, {}).get("entered_at"),
                cause=info.get(name, {}).get("cause"),
                artifact_refs=info.get(name, {}).get("artifact_refs", []),
            )
            for name in order
        ]

    def _deployment_statuses(self, entries: list[LedgerEntry]) -> list[DeploymentStatus]:
        """Replay controller entries; the weight history lists each distinct green weight."""
        deployments: dict[str, dict[str, Any]] = {}
        for entry in entries:
            if not entry.subject.startswith(_DEPLOYMENT_PREFIX):
                continue
            deployment_id = entry.subject[len(_DEPLOYMENT_PREFIX):]
            current = deployments.setdefault(
                deployment_id, {"weight_history": [0], "reason": None}
            )
            detail = entry.detail
            green = int(detail.get("green_weight", 0))
            if green != current["weight_history"][-1]:
                current["weight_history"].append(green)
            current.update(
                state=DeploymentState(entry.to_state),
                target_id=detail.get("target_id", ""),
                blue_weight=int(detail.get("blue_weight", 100)),
                green_weight=green,
                stuck=bool(detail.get("stuck", False)),
            )
            if detail.get("reason"):
                current["reason"] = detail["reason"]

        return [
            DeploymentStatus(deployment_id=deployment_id, **values)
            for deployment_id, values in deployments.items()
        ]

    def _check_chain_valid(self, execution_id: str) -> bool:
        """Check hash chain integrity without raising."""
        try:
            return self._ledger.verify_chain(execution_id)
        except LedgerIntegrityError:
            return False
