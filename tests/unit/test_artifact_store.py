"""Tests for the append-only ArtifactStore."""

from __future__ import annotations

import pytest

from greenshift.core.artifact_store import (
    ArtifactIntegrityError,
    ArtifactNotFoundError,
    ArtifactStore,
)
from greenshift.models.artifacts import BuildOutput


class TestArtifactStore:
    def test_put_and_get(self, artifact_store: ArtifactStore):
        artifact = artifact_store.put("build", b"hello", name="image")
        assert artifact.artifact_id.startswith("art-")
        assert artifact.content_ref.startswith("sha256:")
        assert artifact.producing_stage == "build"
        assert artifact.size_bytes == 5
        assert artifact_store.get(artifact.artifact_id) == artifact
        assert artifact_store.read_bytes(artifact) == b"hello"

    def test_same_content_gets_distinct_ids(self, artifact_store: ArtifactStore):
        a1 = artifact_store.put("build", b"same", name="image")
        a2 = artifact_store.put("build", b"same", name="image")
        assert a1.artifact_id != a2.artifact_id
        assert a1.content_ref == a2.content_ref

    def test_model_round_trip(self, artifact_store: ArtifactStore):
        output = BuildOutput(image_ref="orders-api:abc", source_commit_id="abc")
        artifact = artifact_store.put("build", output, name="image")
        assert artifact.artifact_type == "BuildOutput"
        assert artifact_store.read_model(artifact, BuildOutput) == output

    def test_dict_content_is_canonical(self, artifact_store: ArtifactStore):
        a1 = artifact_store.put("source", {"b": 1, "a": 2})
        a2 = artifact_store.put("source", {"a": 2, "b": 1})
        assert a1.content_ref == a2.content_ref

    def test_get_unknown_raises(self, artifact_store: ArtifactStore):
        with pytest.raises(ArtifactNotFoundError):
            artifact_store.get("art-missing")

    def test_not_found_is_a_key_error(self, artifact_store: ArtifactStore):
        with pytest.raises(KeyError):
            artifact_store.get("art-missing")

    def test_tampered_content_detected(self, artifact_store: ArtifactStore, tmp_dir):
        artifact = artifact_store.put("build", b"original")
        digest = artifact.content_ref.removeprefix("sha256:")
        (obj,) = (tmp_dir / "artifacts" / "objects").rglob(f"{digest}.dat")
        obj.write_bytes(b"tampered")

        assert artifact_store.verify(artifact) is False
        with pytest.raises(ArtifactIntegrityError):
            artifact_store.read_bytes(artifact)

    def test_release_drops_record_keeps_content(self, artifact_store: ArtifactStore):
        a1 = artifact_store.put("build", b"shared")
        a2 = artifact_store.put("build", b"shared")
        artifact_store.release(a1.artifact_id)

        assert not artifact_store.exists(a1.artifact_id)
        assert artifact_store.exists(a2.artifact_id)
        assert artifact_store.read_bytes(a2) == b"shared"

    def test_release_is_idempotent(self, artifact_store: ArtifactStore):
        artifact = artifact_store.put("build", b"x")
        artifact_store.release(artifact.artifact_id)
        artifact_store.release(artifact.artifact_id)
        assert not artifact_store.exists(artifact.artifact_id)
