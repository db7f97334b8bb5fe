"""Greenshift pipeline stages — the three stages of the release pipeline.

Usage::

    from greenshift.stages import RELEASE_STAGE_ORDER, SourceStage, BuildStage

    stages = [SourceStage(producer), BuildStage(executor), deploy_stage]

Stages take their collaborators in the constructor, so unlike the models
there is no zero-argument factory; ``build_release_pipeline`` in
``greenshift.pipeline`` wires the default set.
"""

from __future__ import annotations

from greenshift.stages.base import BaseStage, StageContext, StageExecutionError
from greenshift.stages.build import BuildStage
from greenshift.stages.deploy import (
    BlueGreenDeployStage,
    DeploymentRolledBackError,
    DeploymentStuckError,
)
from greenshift.stages.source import SourceStage

# ---------------------------------------------------------------------------
# Stage registry: stage name -> stage class
# ---------------------------------------------------------------------------

STAGE_REGISTRY: dict[str, type[BaseStage]] = {
    "source": SourceStage,
    "build": BuildStage,
    "deploy": BlueGreenDeployStage,
}

# Execution order of the release pipeline.
RELEASE_STAGE_ORDER: list[str] = ["source", "build", "deploy"]


__all__ = [
    # Base
    "BaseStage",
    "StageContext",
    "StageExecutionError",
    # Registry
    "STAGE_REGISTRY",
    "RELEASE_STAGE_ORDER",
    # Concrete stages
    "SourceStage",
    "BuildStage",
    "BlueGreenDeployStage",
    "DeploymentRolledBackError",
    "DeploymentStuckError",
]
