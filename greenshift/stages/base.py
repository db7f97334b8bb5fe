"""Abstract base stage and the context handed to stage executors.

Every concrete stage inherits from BaseStage and implements ``execute()``.
A stage receives its declared input artifacts (read-only) and returns a
mapping of declared output names to content; the orchestrator stores that
content as new artifacts. Stages never touch the artifact store for writes.
"""

from __future__ import annotations

import abc
import threading
from typing import Any, ClassVar, TypeVar

from pydantic import BaseModel

from greenshift.core.artifact_store import ArtifactStore
from greenshift.errors import GreenshiftError
from greenshift.models.artifacts import Artifact
from greenshift.models.config import PipelineConfig
from greenshift.models.results import FailureKind
from greenshift.models.stages import StageDefinition

ModelT = TypeVar("ModelT", bound=BaseModel)


class StageExecutionError(GreenshiftError):
    """Raised when a stage's executor fails.

    ``failure_kind`` tells the orchestrator whether the pipeline itself
    broke or the release was unhealthy.
    """

    failure_kind: ClassVar[FailureKind] = FailureKind.EXECUTOR


class StageContext:
    """Execution-scoped view handed to ``BaseStage.execute``.

    Parameters
    ----------
    execution_id:
        The pipeline execution this stage runs in.
    artifact_store:
        Store the input artifacts are read from.
    config:
        Pipeline configuration.
    cancel_event:
        Set when the execution has been asked to stop.
    """

    def __init__(
        self,
        execution_id: str,
        artifact_store: ArtifactStore,
        config: PipelineConfig,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.execution_id = execution_id
        self.artifact_store = artifact_store
        self.config = config
        self.cancel_event = cancel_event

    def read(self, artifact: Artifact, model_cls: type[ModelT]) -> ModelT:
        """Deserialize an input artifact into *model_cls*."""
        return self.artifact_store.read_model(artifact, model_cls)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


class BaseStage(abc.ABC):
    """Abstract base for all pipeline stages.

    Subclasses **must** implement:
        * ``name`` — unique identifier within a pipeline (e.g. ``"build"``).
        * ``execute(inputs, context)`` — the stage's work.

    Subclasses **may** override ``display_name``, ``inputs`` and ``outputs``.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Unique stage name."""
        ...

    @property
    def display_name(self) -> str:
        return self.name.title()

    @property
    def inputs(self) -> tuple[str, ...]:
        """Artifact names consumed, in order."""
        return ()

    @property
    def outputs(self) -> tuple[str, ...]:
        """Artifact names produced."""
        return ()

    @abc.abstractmethod
    def execute(
        self, inputs: dict[str, Artifact], context: StageContext
    ) -> dict[str, Any]:
        """Run the stage.

        Parameters
        ----------
        inputs:
            Declared input artifacts, keyed by artifact name.
        context:
            Execution-scoped context.

        Returns
        -------
        dict:
            One entry per declared output: bytes, a dict, or a pydantic model.
        """
        ...

    def definition(self) -> StageDefinition:
        """The wiring declaration of this stage."""
        return StageDefinition(
            name=self.name,
            inputs=tuple(self.inputs),
            outputs=tuple(self.outputs),
            display_name=self.display_name,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"
