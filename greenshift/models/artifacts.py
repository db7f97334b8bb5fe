"""Immutable artifact models passed between pipeline stages."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Artifact(BaseModel):
    """A versioned handle to data produced by a stage.

    The bytes live in the artifact store under ``content_ref``; this
    record is the handle downstream stages receive. Artifacts are never
    mutated — a stage that "updates" one produces a new artifact.
    """

    model_config = ConfigDict(frozen=True)

    artifact_id: str = Field(default_factory=lambda: f"art-{uuid.uuid4().hex}")
    name: str
    producing_stage: str
    content_ref: str  # "sha256:<hex>"
    artifact_type: str = "generic"
    size_bytes: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = {}


class TriggerEvent(BaseModel):
    """The event that starts a pipeline execution (e.g. a new commit)."""

    model_config = ConfigDict(frozen=True)

    repo_ref: str
    branch: str = "main"
    commit_id: str | None = None
    triggered_at: datetime = Field(default_factory=_utcnow)


class SourceBundle(BaseModel):
    """Versioned source content produced by the checkout stage."""

    model_config = ConfigDict(frozen=True)

    repo_ref: str
    branch: str
    commit_id: str
    content_ref: str


class BuildOutput(BaseModel):
    """Container image reference produced by the build stage."""

    model_config = ConfigDict(frozen=True)

    image_ref: str
    source_commit_id: str = ""
    build_log: str = ""


class DeploymentSummary(BaseModel):
    """Outcome of a blue/green release, emitted by the deploy stage."""

    model_config = ConfigDict(frozen=True)

    deployment_id: str
    final_state: str
    image_ref: str
    weight_history: list[int] = []
    failure_reason: str | None = None
