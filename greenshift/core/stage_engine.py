"""Stage engine — runs one stage and turns its outcome into a typed result.

The engine does not retry; retries belong to the external executor. It
does not decide whether the pipeline halts either: it returns
``StageSucceeded`` or ``StageFailed`` and the orchestrator decides.
"""

from __future__ import annotations

import logging
from time import perf_counter

from pydantic import BaseModel

from greenshift.models.artifacts import Artifact
from greenshift.models.results import FailureKind, StageFailed, StageResult, StageSucceeded
from greenshift.stages.base import BaseStage, StageContext

logger = logging.getLogger(__name__)

# Content types the artifact store can persist.
STORABLE_TYPES = (bytes, bytearray, memoryview, dict, BaseModel)


class StageEngine:
    """Invokes stage executors and validates their declared outputs."""

    def run(
        self,
        stage: BaseStage,
        inputs: dict[str, Artifact],
        context: StageContext,
    ) -> StageResult:
        """Execute *stage* with *inputs*; never raises for executor failures."""
        logger.info(
            "%s [%s] started (execution=%s)",
            stage.display_name,
            stage.name,
            context.execution_id,
        )
        started = perf_counter()
        try:
            outputs = stage.execute(inputs, context)
        except Exception as exc:
            kind = getattr(exc, "failure_kind", FailureKind.EXECUTOR)
            cause = str(exc) or type(exc).__name__
            logger.error(
                "%s [%s] failed (%s): %s",
                stage.display_name,
                stage.name,
                kind.value,
                cause,
            )
            return StageFailed(cause=cause, kind=kind)

        declared = set(stage.outputs)
        produced = set(outputs or {})
        if produced != declared:
            missing = sorted(declared - produced)
            extra = sorted(produced - declared)
            cause = f"stage {stage.name!r} outputs do not match its declaration"
            if missing:
                cause += f"; missing {missing}"
            if extra:
                cause += f"; undeclared {extra}"
            logger.error("%s [%s] %s", stage.display_name, stage.name, cause)
            return StageFailed(cause=cause, kind=FailureKind.EXECUTOR)

        unstorable = sorted(
            output_name
            for output_name, content in (outputs or {}).items()
            if not isinstance(content, STORABLE_TYPES)
        )
        if unstorable:
            cause = (
                f"stage {stage.name!r} produced outputs that cannot be stored: {unstorable}"
                " (expected bytes, a dict or a pydantic model)"
            )
            logger.error("%s [%s] %s", stage.display_name, stage.name, cause)
            return StageFailed(cause=cause, kind=FailureKind.EXECUTOR)

        logger.info(
            "%s [%s] succeeded in %.2fs",
            stage.display_name,
            stage.name,
            perf_counter() - started,
        )
        return StageSucceeded(outputs=outputs or {})
