"""Append-only artifact store.

Content bytes are content-addressed:
    {base_path}/objects/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
Artifact records are one JSON file per artifact id:
    {base_path}/records/{artifact_id}.json

Records are created with exclusive-create semantics, so an existing record
is never rewritten. Reads need no locking: a record is either absent or
complete (written to a temp file, then linked into place).
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from greenshift.core.hasher import canonical_json_bytes, sha256_hex
from greenshift.errors import GreenshiftError
from greenshift.models.artifacts import Artifact

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ArtifactNotFoundError(GreenshiftError, KeyError):
    """Raised when an artifact id was never produced (or has been released)."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "artifact not found"


class ArtifactIntegrityError(GreenshiftError):
    """Raised when stored bytes do not match an artifact's content address."""


class ArtifactStore:
    """Durable, append-only store of stage artifacts.

    Parameters
    ----------
    base_path:
        Root directory for artifact storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._objects = self._base / "objects"
        self._records = self._base / "records"
        self._objects.mkdir(parents=True, exist_ok=True)
        self._records.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extract_digest(content_ref: str) -> str:
        return content_ref.removeprefix("sha256:")

    def _object_path(self, digest: str) -> Path:
        return self._objects / digest[:2] / digest[2:4] / f"{digest}.dat"

    def _record_path(self, artifact_id: str) -> Path:
        return self._records / f"{artifact_id}.json"

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def put(
        self,
        stage_name: str,
        content: bytes | BaseModel | dict[str, Any],
        *,
        name: str = "",
        artifact_type: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> Artifact:
        """Store *content* as a new artifact produced by *stage_name*.

        Pydantic models and dicts are serialized to canonical JSON. The
        returned ``Artifact`` has a fresh unique id even when the same
        bytes were stored before.
        """
        if isinstance(content, BaseModel):
            data = canonical_json_bytes(content.model_dump(mode="json"))
            artifact_type = artifact_type or type(content).__name__
        elif isinstance(content, dict):
            data = canonical_json_bytes(content)
            artifact_type = artifact_type or "json"
        else:
            data = bytes(content)
            artifact_type = artifact_type or "bytes"

        digest = sha256_hex(data)
        self._write_object(digest, data)

        artifact = Artifact(
            name=name or stage_name,
            producing_stage=stage_name,
            content_ref=f"sha256:{digest}",
            artifact_type=artifact_type,
            size_bytes=len(data),
            metadata=metadata or {},
        )
        self._write_record(artifact)
        logger.debug(
            "stored artifact %s (%s) from stage %s",
            artifact.artifact_id,
            artifact.name,
            stage_name,
        )
        return artifact

    def _write_object(self, digest: str, data: bytes) -> None:
        path = self._object_path(digest)
        if path.exists():
            if sha256_hex(path.read_bytes()) != digest:
                raise ArtifactIntegrityError(
                    f"Existing object at {digest} failed integrity check"
                )
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{digest}.{uuid.uuid4().hex}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    def _write_record(self, artifact: Artifact) -> None:
        path = self._record_path(artifact.artifact_id)
        tmp = path.with_name(f"{artifact.artifact_id}.{uuid.uuid4().hex}.tmp")
        tmp.write_text(artifact.model_dump_json(), encoding="utf-8")
        try:
            # link() fails if the record already exists; it never overwrites.
            os.link(tmp, path)
        finally:
            tmp.unlink()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, artifact_id: str) -> Artifact:
        """Return the artifact record for *artifact_id*.

        Raises ``ArtifactNotFoundError`` if it was never produced.
        """
        path = self._record_path(artifact_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Artifact not found: {artifact_id}") from None
        return Artifact.model_validate_json(raw)

    def exists(self, artifact_id: str) -> bool:
        return self._record_path(artifact_id).exists()

    def read_bytes(self, artifact: Artifact) -> bytes:
        """Return the stored bytes of *artifact*, verifying their hash."""
        digest = self._extract_digest(artifact.content_ref)
        path = self._object_path(digest)
        if not path.exists():
            raise ArtifactNotFoundError(f"Content missing for {artifact.artifact_id}")
        data = path.read_bytes()
        if sha256_hex(data) != digest:
            raise ArtifactIntegrityError(
                f"Artifact {artifact.artifact_id} content does not match {artifact.content_ref}"
            )
        return data

    def read_model(self, artifact: Artifact, model_cls: type[ModelT]) -> ModelT:
        """Deserialize *artifact* content into *model_cls*."""
        return model_cls.model_validate_json(self.read_bytes(artifact))

    def verify(self, artifact: Artifact) -> bool:
        """Re-hash stored bytes and compare against the content address."""
        try:
            self.read_bytes(artifact)
        except (ArtifactNotFoundError, ArtifactIntegrityError):
            return False
        return True

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release(self, artifact_id: str) -> None:
        """Drop the record for *artifact_id*; content objects are shared and kept."""
        path = self._record_path(artifact_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        logger.debug("released artifact %s", artifact_id)
