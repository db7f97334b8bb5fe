"""External collaborators of the release pipeline.

Defines the Protocols the core talks to — source checkout, image build,
task-set management on the execution target, health checks, and time —
along with lightweight default implementations. The defaults are
deterministic and in-memory; the CLI demo and the test-suite run on them.
Production wiring provides real backends satisfying the same Protocols.
"""

from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from greenshift.core.hasher import sha256_hex
from greenshift.errors import GreenshiftError
from greenshift.models.artifacts import BuildOutput, SourceBundle
from greenshift.models.deployment import HealthStatus, TaskSetLabel


class BuildFailedError(GreenshiftError):
    """Raised by a build executor; carries the build log."""

    def __init__(self, message: str, build_log: str = "") -> None:
        super().__init__(message)
        self.build_log = build_log


class HealthCheckFailure(GreenshiftError):
    """An unhealthy signal for a task set. Triggers rollback, never fatal."""


class TerminationDeliveryError(GreenshiftError):
    """The execution target did not accept a task-set termination."""


class ExecutionTarget(BaseModel):
    """Opaque handle to the compute cluster and its network boundary.

    Passed through to the task-set backend; the core never inspects
    ``attributes``.
    """

    model_config = ConfigDict(frozen=True)

    target_id: str
    attributes: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class SourceProducer(Protocol):
    """Checks out a repository branch into a versioned source bundle."""

    def checkout(self, repo_ref: str, branch: str) -> SourceBundle:
        ...


@runtime_checkable
class BuildExecutor(Protocol):
    """Turns a source bundle into a container image reference.

    Raises ``BuildFailedError`` (with the build log) on failure. Retries,
    if any, are the executor's own business.
    """

    def build(self, source: SourceBundle) -> BuildOutput:
        ...


@runtime_checkable
class HealthCheckProvider(Protocol):
    """Reports the health of a task set.

    May return an unhealthy ``HealthStatus`` or raise ``HealthCheckFailure``;
    both count as an unhealthy signal.
    """

    def check(self, task_set_id: str) -> HealthStatus:
        ...


@runtime_checkable
class TaskSetBackend(Protocol):
    """Manages task sets and traffic weights on an execution target."""

    def primary_task_set(self, target: ExecutionTarget) -> tuple[str, str] | None:
        """Return ``(task_set_id, image_ref)`` of the set serving 100%, if any."""
        ...

    def create_task_set(
        self,
        target: ExecutionTarget,
        label: TaskSetLabel,
        image_ref: str,
        *,
        container_port: int,
        task_role_arn: str = "",
    ) -> str:
        """Register a new task set receiving no traffic; return its id."""
        ...

    def apply_weights(self, target: ExecutionTarget, weights: dict[str, int]) -> None:
        """Route traffic by ``{task_set_id: weight}``; weights sum to 100."""
        ...

    def destroy_task_set(self, target: ExecutionTarget, task_set_id: str) -> None:
        """Destroy a task set. Raises ``TerminationDeliveryError`` on outage."""
        ...


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime:
        ...

    def sleep(self, seconds: float) -> None:
        ...


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class SimulatedClock:
    """A clock whose ``sleep`` advances time instantly.

    Parameters
    ----------
    start:
        Initial time. Defaults to the current UTC time.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime.now(timezone.utc)
        self._lock = threading.Lock()
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            if seconds > 0:
                self._now += timedelta(seconds=seconds)

    def advance(self, delta: timedelta) -> None:
        with self._lock:
            self._now += delta


# ---------------------------------------------------------------------------
# Default implementations
# ---------------------------------------------------------------------------


class StaticSourceProducer:
    """Source producer that returns a bundle without touching a VCS.

    The commit id is derived from the repository and branch unless one is
    given, so repeated checkouts are deterministic.
    """

    def __init__(self, commit_id: str | None = None) -> None:
        self._commit_id = commit_id

    def checkout(self, repo_ref: str, branch: str) -> SourceBundle:
        commit_id = self._commit_id or sha256_hex(f"{repo_ref}@{branch}".encode())[:40]
        return SourceBundle(
            repo_ref=repo_ref,
            branch=branch,
            commit_id=commit_id,
            content_ref=f"git://{repo_ref}@{commit_id}",
        )


class StaticBuildExecutor:
    """Build executor that tags ``<repository>:<commit[:12]>`` without building.

    Parameters
    ----------
    repository:
        Image repository identifier.
    fail_with:
        When set, every build fails with this build log.
    """

    def __init__(self, repository: str, fail_with: str | None = None) -> None:
        self._repository = repository
        self._fail_with = fail_with
        self.builds: list[SourceBundle] = []

    def build(self, source: SourceBundle) -> BuildOutput:
        self.builds.append(source)
        if self._fail_with is not None:
            raise BuildFailedError(
                f"build of {source.commit_id[:12]} failed", build_log=self._fail_with
            )
        tag = source.commit_id[:12]
        return BuildOutput(
            image_ref=f"{self._repository}:{tag}",
            source_commit_id=source.commit_id,
            build_log=f"Building container image...\nSuccessfully tagged {self._repository}:{tag}",
        )


class ScriptedHealthCheck:
    """Health checks answered from a script, then a default.

    Parameters
    ----------
    script:
        Statuses returned in order for successive checks.
    default:
        Status returned once the script is exhausted (healthy by default).
    """

    def __init__(
        self,
        script: list[HealthStatus] | None = None,
        default: HealthStatus | None = None,
    ) -> None:
        self._script = list(script or [])
        self._default = default or HealthStatus.ok()
        self._lock = threading.Lock()
        self.checked: list[str] = []

    def check(self, task_set_id: str) -> HealthStatus:
        with self._lock:
            self.checked.append(task_set_id)
            if self._script:
                return self._script.pop(0)
            return self._default


class WeightTriggeredHealthCheck:
    """Reports a task set unhealthy once it carries at least ``fail_at_weight``.

    Reads weights from an ``InMemoryTaskSetBackend``; handy for scripting
    "fails under load" scenarios.
    """

    def __init__(self, backend: "InMemoryTaskSetBackend", fail_at_weight: int) -> None:
        self._backend = backend
        self._fail_at = fail_at_weight

    def check(self, task_set_id: str) -> HealthStatus:
        weight = self._backend.weight_of(task_set_id)
        if weight >= self._fail_at:
            return HealthStatus.failing(
                f"task set {task_set_id} unhealthy at {weight}% traffic"
            )
        return HealthStatus.ok()


class InMemoryTaskSetBackend:
    """Keeps task sets and weights in memory, per execution target.

    Parameters
    ----------
    failing_destroys:
        Number of initial ``destroy_task_set`` calls that raise
        ``TerminationDeliveryError`` (simulates a target outage).
    on_event:
        Optional callback receiving ``(action, details)`` for every call.
    """

    def __init__(
        self,
        failing_destroys: int = 0,
        on_event: Callable[[str, dict[str, Any]], None] | None = None,
    ) -> None:
        self._task_sets: dict[str, dict[str, int]] = {}
        self._owner: dict[str, str] = {}
        self._images: dict[str, str] = {}
        self._failing_destroys = failing_destroys
        self._on_event = on_event
        self._lock = threading.Lock()
        self.destroyed: list[str] = []
        self.weight_log: list[dict[str, int]] = []

    def register_existing(
        self,
        target: ExecutionTarget,
        task_set_id: str,
        image_ref: str = "",
        weight: int = 100,
    ) -> None:
        """Seed the currently-serving (blue) task set of a target."""
        with self._lock:
            self._task_sets.setdefault(target.target_id, {})[task_set_id] = weight
            self._owner[task_set_id] = target.target_id
            self._images[task_set_id] = image_ref

    def primary_task_set(self, target: ExecutionTarget) -> tuple[str, str] | None:
        with self._lock:
            for task_set_id, weight in self._task_sets.get(target.target_id, {}).items():
                if weight == 100:
                    return task_set_id, self._images.get(task_set_id, "")
        return None

    def create_task_set(
        self,
        target: ExecutionTarget,
        label: TaskSetLabel,
        image_ref: str,
        *,
        container_port: int,
        task_role_arn: str = "",
    ) -> str:
        task_set_id = f"ts-{label.value}-{uuid.uuid4().hex[:10]}"
        with self._lock:
            self._task_sets.setdefault(target.target_id, {})[task_set_id] = 0
            self._owner[task_set_id] = target.target_id
            self._images[task_set_id] = image_ref
        self._emit("create", {"task_set_id": task_set_id, "image_ref": image_ref, "port": container_port})
        return task_set_id

    def apply_weights(self, target: ExecutionTarget, weights: dict[str, int]) -> None:
        if sum(weights.values()) != 100:
            raise ValueError(f"weights must sum to 100, got {weights}")
        with self._lock:
            sets = self._task_sets.setdefault(target.target_id, {})
            for task_set_id, weight in weights.items():
                sets[task_set_id] = weight
                self._owner[task_set_id] = target.target_id
            self.weight_log.append(dict(weights))
        self._emit("weights", dict(weights))

    def destroy_task_set(self, target: ExecutionTarget, task_set_id: str) -> None:
        with self._lock:
            if self._failing_destroys > 0:
                self._failing_destroys -= 1
                raise TerminationDeliveryError(
                    f"target {target.target_id} did not acknowledge termination of {task_set_id}"
                )
            self._task_sets.get(target.target_id, {}).pop(task_set_id, None)
            self._owner.pop(task_set_id, None)
            self._images.pop(task_set_id, None)
            self.destroyed.append(task_set_id)
        self._emit("destroy", {"task_set_id": task_set_id})

    def weight_of(self, task_set_id: str) -> int:
        with self._lock:
            target_id = self._owner.get(task_set_id)
            if target_id is None:
                return 0
            return self._task_sets[target_id].get(task_set_id, 0)

    def task_sets(self, target: ExecutionTarget) -> dict[str, int]:
        with self._lock:
            return dict(self._task_sets.get(target.target_id, {}))

    def _emit(self, action: str, details: dict[str, Any]) -> None:
        if self._on_event is not None:
            self._on_event(action, details)
