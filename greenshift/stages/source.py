"""Source stage — checks out the triggering branch into a source bundle."""

from __future__ import annotations

import logging
from typing import Any

from greenshift.collaborators import SourceProducer
from greenshift.models.artifacts import Artifact, TriggerEvent
from greenshift.stages.base import BaseStage, StageContext, StageExecutionError

logger = logging.getLogger(__name__)


class SourceStage(BaseStage):
    """Stage 1: Source — ``trigger`` -> ``source``."""

    def __init__(self, producer: SourceProducer) -> None:
        self._producer = producer

    @property
    def name(self) -> str:
        return "source"

    @property
    def display_name(self) -> str:
        return "Source Checkout"

    @property
    def inputs(self) -> tuple[str, ...]:
        return ("trigger",)

    @property
    def outputs(self) -> tuple[str, ...]:
        return ("source",)

    def execute(self, inputs: dict[str, Artifact], context: StageContext) -> dict[str, Any]:
        trigger = context.read(inputs["trigger"], TriggerEvent)
        bundle = self._producer.checkout(trigger.repo_ref, trigger.branch)
        if trigger.commit_id and bundle.commit_id != trigger.commit_id:
            raise StageExecutionError(
                f"checkout of {trigger.repo_ref}@{trigger.branch} returned commit "
                f"{bundle.commit_id[:12]}, expected {trigger.commit_id[:12]}"
            )
        logger.info(
            "checked out %s@%s at %s", bundle.repo_ref, bundle.branch, bundle.commit_id[:12]
        )
        return {"source": bundle}
