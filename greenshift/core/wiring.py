"""Artifact wiring validation for pipeline definitions.

A definition is rejected at construction time (never at run time) when:
- two stages share a name,
- two producers declare the same artifact name,
- a stage consumes an artifact not produced by a strictly earlier stage
  or by the trigger event (forward or cyclic reference).

The resulting ``WiringPlan`` answers the questions the orchestrator asks
during execution: who produced an artifact, when it can be released, and
which stages depend on a failed one.
"""

from __future__ import annotations

from greenshift.errors import GreenshiftError
from greenshift.models.stages import PipelineDefinition

TRIGGER_PRODUCER = "__trigger__"


class WiringError(GreenshiftError):
    """Raised when a pipeline definition has invalid artifact wiring."""


class WiringPlan:
    """Validated artifact wiring for one pipeline definition."""

    def __init__(self, definition: PipelineDefinition) -> None:
        self._definition = definition
        self._producer: dict[str, str] = {}
        self._last_consumer: dict[str, int] = {}
        self._upstream: dict[str, set[str]] = {}
        self._validate()

    def _validate(self) -> None:
        definition = self._definition
        seen_names: set[str] = set()
        problems: list[str] = []

        for name in definition.trigger_outputs:
            self._producer[name] = TRIGGER_PRODUCER

        for index, stage in enumerate(definition.stages):
            if stage.name in seen_names:
                problems.append(f"duplicate stage name {stage.name!r}")
            seen_names.add(stage.name)

            upstream: set[str] = set()
            for input_name in stage.inputs:
                if input_name in stage.outputs:
                    problems.append(
                        f"stage {stage.name!r} consumes its own output {input_name!r}"
                    )
                    continue
                producer = self._producer.get(input_name)
                if producer is None:
                    problems.append(
                        f"stage {stage.name!r} input {input_name!r} is not produced "
                        f"by an earlier stage"
                    )
                    continue
                self._last_consumer[input_name] = index
                if producer != TRIGGER_PRODUCER:
                    upstream.add(producer)
                    upstream |= self._upstream.get(producer, set())
            self._upstream[stage.name] = upstream

            for output_name in stage.outputs:
                if output_name in self._producer:
                    problems.append(
                        f"artifact {output_name!r} from stage {stage.name!r} is already "
                        f"produced by {self._producer[output_name]!r}"
                    )
                    continue
                self._producer[output_name] = stage.name

        if problems:
            raise WiringError(
                f"Invalid wiring in pipeline {definition.name!r}: " + "; ".join(problems)
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def definition(self) -> PipelineDefinition:
        return self._definition

    def producer_of(self, artifact_name: str) -> str:
        """Return the stage name (or trigger marker) that produces *artifact_name*."""
        return self._producer[artifact_name]

    def depends_on(self, stage_name: str, other: str) -> bool:
        """True if *stage_name* transitively consumes outputs of *other*."""
        return other in self._upstream.get(stage_name, set())

    def releasable_after(self, stage_index: int) -> list[str]:
        """Artifact names whose last consumer is the stage at *stage_index*."""
        return [
            name for name, last in self._last_consumer.items() if last == stage_index
        ]


def validate_wiring(definition: PipelineDefinition) -> WiringPlan:
    """Validate *definition* and return its wiring plan.

    Raises ``WiringError`` on any forward, cyclic, duplicate or dangling
    reference.
    """
    return WiringPlan(definition)
