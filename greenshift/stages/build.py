"""Build stage — turns the source bundle into a container image reference."""

from __future__ import annotations

import logging
from typing import Any

from greenshift.collaborators import BuildExecutor, BuildFailedError
from greenshift.models.artifacts import Artifact, SourceBundle
from greenshift.stages.base import BaseStage, StageContext, StageExecutionError

logger = logging.getLogger(__name__)

# Lines of build log carried into a failure cause.
_LOG_TAIL_LINES = 20


class BuildStage(BaseStage):
    """Stage 2: Build — ``source`` -> ``image``."""

    def __init__(self, executor: BuildExecutor) -> None:
        self._executor = executor

    @property
    def name(self) -> str:
        return "build"

    @property
    def display_name(self) -> str:
        return "Container Image Build"

    @property
    def inputs(self) -> tuple[str, ...]:
        return ("source",)

    @property
    def outputs(self) -> tuple[str, ...]:
        return ("image",)

    def execute(self, inputs: dict[str, Artifact], context: StageContext) -> dict[str, Any]:
        source = context.read(inputs["source"], SourceBundle)
        try:
            output = self._executor.build(source)
        except BuildFailedError as exc:
            tail = "\n".join(exc.build_log.splitlines()[-_LOG_TAIL_LINES:])
            message = str(exc)
            if tail:
                message = f"{message}\n{tail}"
            raise StageExecutionError(message) from exc
        logger.info("built %s from %s", output.image_ref, source.commit_id[:12])
        return {"image": output}
