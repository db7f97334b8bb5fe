"""Blue/green deployment: the controller state machine and its durable store."""

from greenshift.deploy.controller import TARGET_LOCKS, BlueGreenController, TargetLocks
from greenshift.deploy.store import DeploymentStore

__all__ = ["BlueGreenController", "DeploymentStore", "TargetLocks", "TARGET_LOCKS"]
