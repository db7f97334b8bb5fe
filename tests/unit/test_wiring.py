"""Tests for artifact wiring validation."""

from __future__ import annotations

import pytest

from greenshift.core.wiring import TRIGGER_PRODUCER, WiringError, validate_wiring
from greenshift.models.stages import PipelineDefinition, StageDefinition


def _definition(*stages: StageDefinition) -> PipelineDefinition:
    return PipelineDefinition(name="test", stages=stages)


RELEASE = _definition(
    StageDefinition(name="source", inputs=("trigger",), outputs=("source",)),
    StageDefinition(name="build", inputs=("source",), outputs=("image",)),
    StageDefinition(name="deploy", inputs=("image",), outputs=("deployment",)),
)


class TestValidWiring:
    def test_release_pipeline_is_valid(self):
        plan = validate_wiring(RELEASE)
        assert plan.producer_of("trigger") == TRIGGER_PRODUCER
        assert plan.producer_of("image") == "build"

    def test_transitive_dependencies(self):
        plan = validate_wiring(RELEASE)
        assert plan.depends_on("deploy", "source")
        assert plan.depends_on("deploy", "build")
        assert not plan.depends_on("source", "build")

    def test_releasable_after_last_consumer(self):
        plan = validate_wiring(RELEASE)
        assert plan.releasable_after(0) == ["trigger"]
        assert plan.releasable_after(1) == ["source"]
        # Final outputs have no consumer and are never released.
        assert "deployment" not in plan.releasable_after(2)

    def test_independent_branch(self):
        plan = validate_wiring(_definition(
            StageDefinition(name="source", inputs=("trigger",), outputs=("source",)),
            StageDefinition(name="build", inputs=("source",), outputs=("image",)),
            StageDefinition(name="lint", inputs=("source",), outputs=("lint_report",)),
        ))
        assert not plan.depends_on("lint", "build")
        assert plan.depends_on("lint", "source")


class TestInvalidWiring:
    def test_forward_reference_rejected(self):
        with pytest.raises(WiringError, match="not produced by an earlier stage"):
            validate_wiring(_definition(
                StageDefinition(name="deploy", inputs=("image",), outputs=("deployment",)),
                StageDefinition(name="build", inputs=("trigger",), outputs=("image",)),
            ))

    def test_dangling_input_rejected(self):
        with pytest.raises(WiringError, match="'nothing'"):
            validate_wiring(_definition(
                StageDefinition(name="build", inputs=("nothing",), outputs=("image",)),
            ))

    def test_self_consumption_rejected(self):
        with pytest.raises(WiringError, match="consumes its own output"):
            validate_wiring(_definition(
                StageDefinition(name="loop", inputs=("x",), outputs=("x",)),
            ))

    def test_duplicate_producer_rejected(self):
        with pytest.raises(WiringError, match="already produced"):
            validate_wiring(_definition(
                StageDefinition(name="a", inputs=("trigger",), outputs=("image",)),
                StageDefinition(name="b", inputs=("trigger",), outputs=("image",)),
            ))

    def test_duplicate_stage_name_rejected(self):
        with pytest.raises(WiringError, match="duplicate stage name"):
            validate_wiring(_definition(
                StageDefinition(name="a", inputs=("trigger",), outputs=("x",)),
                StageDefinition(name="a", inputs=("x",), outputs=("y",)),
            ))

    def test_all_problems_reported_together(self):
        with pytest.raises(WiringError) as exc_info:
            validate_wiring(_definition(
                StageDefinition(name="a", inputs=("missing",), outputs=("x",)),
                StageDefinition(name="b", inputs=("also_missing",), outputs=("x",)),
            ))
        message = str(exc_info.value)
        assert "'missing'" in message
        assert "'also_missing'" in message
        assert "already produced" in message
