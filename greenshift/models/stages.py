"""Stage and pipeline definition models with the stage state machine table."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class StageState(str, Enum):
    """Lifecycle of a single stage within one pipeline execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# Terminal states (SUCCEEDED, FAILED, SKIPPED) have no outgoing transitions.
# A stage left RUNNING by a crash is re-entered on resume (RUNNING -> RUNNING).
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.PENDING: {StageState.RUNNING, StageState.SKIPPED},
    StageState.RUNNING: {StageState.SUCCEEDED, StageState.FAILED, StageState.RUNNING},
    StageState.SUCCEEDED: set(),
    StageState.FAILED: set(),
    StageState.SKIPPED: set(),
}

TERMINAL_STAGE_STATES: frozenset[StageState] = frozenset(
    {StageState.SUCCEEDED, StageState.FAILED, StageState.SKIPPED}
)


class StageDefinition(BaseModel):
    """A named unit of work and its artifact wiring.

    ``inputs`` are artifact names that must have been produced by a
    strictly earlier stage (or by the trigger event).
    """

    model_config = ConfigDict(frozen=True)

    name: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    display_name: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.name


class PipelineDefinition(BaseModel):
    """An ordered sequence of stages with artifact wiring between them."""

    model_config = ConfigDict(frozen=True)

    name: str
    stages: tuple[StageDefinition, ...] = Field(min_length=1)
    trigger_outputs: tuple[str, ...] = ("trigger",)

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]

    def get_stage(self, name: str) -> StageDefinition:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)
