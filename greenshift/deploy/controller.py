"""Blue/green deployment controller.

The controller is a state machine over ``DeploymentRecord``::

    provisioning -> shifting <-> validating -> finalizing -> terminated
          \\              \\            \\
           +--------------+------------+--> rolling_back -> rolled_back

Each state has one handler returning the next record. ``advance()``
performs exactly one transition, checks it against
``DEPLOYMENT_TRANSITIONS``, persists the record to the deployment store
and appends it to the run ledger. ``run()`` drives ``advance()`` to a
terminal state, or stops in ``finalizing`` when the old task set cannot
be terminated (a stuck deployment: it is never resolved by dropping the
old task set).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Callable

from greenshift.collaborators import (
    Clock,
    ExecutionTarget,
    HealthCheckFailure,
    HealthCheckProvider,
    SystemClock,
    TaskSetBackend,
    TerminationDeliveryError,
)
from greenshift.core.run_ledger import RunLedger
from greenshift.core.stage_machine import InvalidTransitionError
from greenshift.core.traffic import FULL_WEIGHT, next_shift_delay, next_weight
from greenshift.deploy.store import DeploymentStore
from greenshift.models.config import PipelineConfig
from greenshift.models.deployment import (
    DEPLOYMENT_TRANSITIONS,
    ROLLBACK_ON_CANCEL_STATES,
    DeploymentRecord,
    DeploymentState,
    HealthState,
    HealthStatus,
    TaskSet,
    TaskSetLabel,
)
from greenshift.models.ledger import LedgerEntry
from greenshift.models.traffic import TrafficShiftPolicy

logger = logging.getLogger(__name__)


def _evolve(model, **changes):
    """Rebuild a frozen model with *changes*, re-running its validators."""
    return type(model).model_validate({**model.model_dump(), **changes})


class TargetLocks:
    """One lock per execution target.

    Deployments against the same target queue behind each other; different
    targets proceed in parallel.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, target_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(target_id, threading.Lock())

    @contextmanager
    def hold(self, target_id: str) -> Iterator[None]:
        lock = self._lock_for(target_id)
        if not lock.acquire(blocking=False):
            logger.info("target %s busy; deployment queued", target_id)
            lock.acquire()
        try:
            yield
        finally:
            lock.release()


# Shared by every deploy stage in the process unless one is injected.
TARGET_LOCKS = TargetLocks()


class BlueGreenController:
    """Drives one blue/green deployment on an execution target.

    Parameters
    ----------
    backend:
        Task-set backend for the execution target.
    health:
        Health-check provider for task sets.
    target:
        Opaque execution target handle.
    config:
        Pipeline configuration (termination time, port, task role, tuning).
    store:
        Durable deployment state.
    ledger:
        Run ledger receiving one entry per transition.
    clock:
        Time source; ``SystemClock`` by default.
    """

    def __init__(
        self,
        backend: TaskSetBackend,
        health: HealthCheckProvider,
        target: ExecutionTarget,
        config: PipelineConfig,
        *,
        store: DeploymentStore,
        ledger: RunLedger,
        clock: Clock | None = None,
    ) -> None:
        self._backend = backend
        self._health = health
        self._target = target
        self._config = config
        self._store = store
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._handlers: dict[DeploymentState, Callable[[DeploymentRecord], DeploymentRecord]] = {
            DeploymentState.PROVISIONING: self._on_provisioning,
            DeploymentState.SHIFTING: self._on_shifting,
            DeploymentState.VALIDATING: self._on_validating,
            DeploymentState.FINALIZING: self._on_finalizing,
            DeploymentState.ROLLING_BACK: self._on_rolling_back,
        }

    @property
    def target(self) -> ExecutionTarget:
        return self._target

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        image_ref: str,
        *,
        blue_task_set_id: str,
        blue_image_ref: str = "",
        policy: TrafficShiftPolicy | None = None,
        execution_id: str = "",
    ) -> DeploymentRecord:
        """Create and persist a new deployment in ``provisioning``."""
        now = self._clock.now()
        record = DeploymentRecord(
            execution_id=execution_id,
            target_id=self._target.target_id,
            policy=policy or self._config.traffic_policy,
            image_ref=image_ref,
            blue=TaskSet(
                label=TaskSetLabel.BLUE,
                task_set_id=blue_task_set_id,
                image_ref=blue_image_ref,
                weight=FULL_WEIGHT,
                desired_weight=FULL_WEIGHT,
                health=HealthState.HEALTHY,
                created_at=now,
            ),
            started_at=now,
            updated_at=now,
        )
        self._store.save(record)
        self._record(None, record)
        logger.info(
            "deployment %s started: %s -> %s on %s (%s)",
            record.deployment_id,
            blue_task_set_id,
            image_ref,
            self._target.target_id,
            record.policy.name or record.policy.kind.value,
        )
        return record

    def advance(self, record: DeploymentRecord) -> DeploymentRecord:
        """Perform exactly one state transition and persist it."""
        if record.is_terminal:
            raise InvalidTransitionError(
                f"Deployment {record.deployment_id} is already {record.state.value}"
            )
        updated = self._handlers[record.state](record)
        return self._commit(record, updated)

    def run(
        self,
        record: DeploymentRecord,
        cancel_event: threading.Event | None = None,
    ) -> DeploymentRecord:
        """Advance *record* until it is terminal or stuck in ``finalizing``.

        A cancellation observed while provisioning, shifting or validating
        turns into a rollback so the task sets are never left split.
        """
        while not record.is_terminal:
            if (
                cancel_event is not None
                and cancel_event.is_set()
                and record.state in ROLLBACK_ON_CANCEL_STATES
            ):
                record = self._begin_rollback(record, "deployment cancelled")
                continue
            try:
                record = self.advance(record)
            except Exception as exc:
                if record.state not in ROLLBACK_ON_CANCEL_STATES:
                    raise
                logger.exception(
                    "deployment %s failed in %s; rolling back",
                    record.deployment_id,
                    record.state.value,
                )
                # Handlers persist intermediate progress, such as a freshly
                # created green, before they return.
                record = self._store.load(record.deployment_id) or record
                self.rollback(record, f"{type(exc).__name__}: {exc}")
                raise
            if record.stuck:
                break
        return record

    def resume(
        self,
        deployment_id: str,
        cancel_event: threading.Event | None = None,
    ) -> DeploymentRecord:
        """Continue a persisted deployment from its last recorded state."""
        record = self._store.load(deployment_id)
        if record is None:
            raise KeyError(f"Unknown deployment {deployment_id}")
        if record.stuck:
            record = _evolve(record, stuck=False)
        logger.info(
            "resuming deployment %s from %s", deployment_id, record.state.value
        )
        return self.run(record, cancel_event)

    def rollback(self, record: DeploymentRecord, reason: str = "rollback requested") -> DeploymentRecord:
        """Force green to 0 and destroy it, restoring blue to 100.

        Idempotent: rolling back a rolled-back deployment returns it as is.
        """
        if record.state == DeploymentState.ROLLED_BACK:
            return record
        if record.state in (DeploymentState.TERMINATED, DeploymentState.FINALIZING):
            raise InvalidTransitionError(
                f"Deployment {record.deployment_id} is {record.state.value}; "
                "cutover is complete and can no longer be rolled back"
            )
        if record.state != DeploymentState.ROLLING_BACK:
            record = self._begin_rollback(record, reason)
        while record.state == DeploymentState.ROLLING_BACK and not record.stuck:
            record = self.advance(record)
        return record

    def _begin_rollback(self, record: DeploymentRecord, reason: str) -> DeploymentRecord:
        updated = _evolve(
            record,
            state=DeploymentState.ROLLING_BACK,
            failure_reason=record.failure_reason or reason,
        )
        return self._commit(record, updated)

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    def _on_provisioning(self, record: DeploymentRecord) -> DeploymentRecord:
        green = record.green
        if green is None:
            task_set_id = self._backend.create_task_set(
                self._target,
                TaskSetLabel.GREEN,
                record.image_ref,
                container_port=self._config.container_port,
                task_role_arn=self._config.ecs_task_role_arn,
            )
            green = TaskSet(
                label=TaskSetLabel.GREEN,
                task_set_id=task_set_id,
                image_ref=record.image_ref,
                created_at=self._clock.now(),
            )
            # Persist immediately so a crash does not create a second green.
            record = _evolve(record, green=green)
            self._store.save(record)
            logger.info("green task set %s registered at weight 0", task_set_id)

        attempts = self._config.provisioning_health_attempts
        status = HealthStatus(state=HealthState.UNKNOWN)
        for attempt in range(1, attempts + 1):
            status = self._check(green)
            if status.healthy:
                return _evolve(
                    record,
                    state=DeploymentState.SHIFTING,
                    green=_evolve(green, health=HealthState.HEALTHY),
                )
            logger.warning(
                "green %s not healthy at weight 0 (attempt %d/%d): %s",
                green.task_set_id,
                attempt,
                attempts,
                status.reason,
            )
            if attempt < attempts:
                self._clock.sleep(self._config.health_poll_interval_seconds)

        return _evolve(
            record,
            state=DeploymentState.ROLLING_BACK,
            green=_evolve(green, health=HealthState.UNHEALTHY),
            failure_reason=f"green never became healthy: {status.reason}",
        )

    def _on_shifting(self, record: DeploymentRecord) -> DeploymentRecord:
        green = self._require_green(record)
        policy = record.policy
        current = green.weight
        now = self._clock.now()

        if record.last_shift_at is not None:
            due = record.last_shift_at + next_shift_delay(policy, current)
            remaining = due - now
            if remaining > timedelta(0):
                poll = timedelta(seconds=self._config.health_poll_interval_seconds)
                wait = min(remaining, poll) if poll > timedelta(0) else remaining
                self._clock.sleep(wait.total_seconds())
                now = self._clock.now()

        elapsed = None if record.last_shift_at is None else now - record.last_shift_at
        new_weight = next_weight(policy, elapsed, current)

        changes: dict[str, Any] = {
            "state": DeploymentState.VALIDATING,
            "weight_history": [*record.weight_history, new_weight],
        }
        if new_weight != current:
            self._backend.apply_weights(
                self._target,
                {green.task_set_id: new_weight, record.blue.task_set_id: FULL_WEIGHT - new_weight},
            )
            changes["green"] = _evolve(green, weight=new_weight, desired_weight=new_weight)
            changes["blue"] = _evolve(
                record.blue,
                weight=FULL_WEIGHT - new_weight,
                desired_weight=FULL_WEIGHT - new_weight,
            )
            changes["last_shift_at"] = now
            logger.info(
                "deployment %s shifted traffic: green=%d blue=%d",
                record.deployment_id,
                new_weight,
                FULL_WEIGHT - new_weight,
            )
        return _evolve(record, **changes)

    def _on_validating(self, record: DeploymentRecord) -> DeploymentRecord:
        green = self._require_green(record)
        status = self._check(green)

        if not status.healthy:
            logger.warning(
                "deployment %s: green unhealthy at %d%%: %s",
                record.deployment_id,
                green.weight,
                status.reason,
            )
            return _evolve(
                record,
                state=DeploymentState.ROLLING_BACK,
                green=_evolve(green, health=HealthState.UNHEALTHY),
                failure_reason=f"health check failed at {green.weight}% traffic: {status.reason}",
            )

        green = _evolve(green, health=HealthState.HEALTHY)
        if green.weight < FULL_WEIGHT:
            return _evolve(record, state=DeploymentState.SHIFTING, green=green)

        deadline = self._clock.now() + timedelta(
            minutes=self._config.task_set_termination_time_in_minutes
        )
        logger.info(
            "deployment %s cut over; blue %s terminates at %s",
            record.deployment_id,
            record.blue.task_set_id,
            deadline.isoformat(),
        )
        return _evolve(
            record,
            state=DeploymentState.FINALIZING,
            green=green,
            blue=_evolve(record.blue, termination_deadline=deadline),
        )

    def _on_finalizing(self, record: DeploymentRecord) -> DeploymentRecord:
        blue = record.blue
        deadline = blue.termination_deadline
        if deadline is not None:
            remaining = deadline - self._clock.now()
            if remaining > timedelta(0):
                # Blue stays registered at weight 0 so in-flight connections drain.
                self._clock.sleep(remaining.total_seconds())

        try:
            self._destroy(blue.task_set_id)
        except TerminationDeliveryError as exc:
            logger.error(
                "STUCK deployment %s: blue task set %s could not be terminated (%s); "
                "operator intervention required",
                record.deployment_id,
                blue.task_set_id,
                exc,
            )
            return _evolve(record, stuck=True, failure_reason=str(exc))

        logger.info(
            "deployment %s terminated blue task set %s", record.deployment_id, blue.task_set_id
        )
        return _evolve(
            record,
            state=DeploymentState.TERMINATED,
            blue=_evolve(blue, destroyed=True),
            stuck=False,
        )

    def _on_rolling_back(self, record: DeploymentRecord) -> DeploymentRecord:
        green = record.green
        blue = _evolve(record.blue, weight=FULL_WEIGHT, desired_weight=FULL_WEIGHT)

        if green is None or green.destroyed:
            self._backend.apply_weights(self._target, {blue.task_set_id: FULL_WEIGHT})
            return _evolve(record, state=DeploymentState.ROLLED_BACK, blue=blue)

        self._backend.apply_weights(
            self._target, {green.task_set_id: 0, blue.task_set_id: FULL_WEIGHT}
        )
        green = _evolve(green, weight=0, desired_weight=0)
        try:
            self._destroy(green.task_set_id)
        except TerminationDeliveryError as exc:
            logger.error(
                "STUCK rollback %s: green task set %s could not be terminated (%s)",
                record.deployment_id,
                green.task_set_id,
                exc,
            )
            return _evolve(record, blue=blue, green=green, stuck=True)

        logger.info(
            "deployment %s rolled back: %s", record.deployment_id, record.failure_reason
        )
        return _evolve(
            record,
            state=DeploymentState.ROLLED_BACK,
            blue=blue,
            green=_evolve(green, destroyed=True),
            stuck=False,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_green(self, record: DeploymentRecord) -> TaskSet:
        if record.green is None:
            raise InvalidTransitionError(
                f"Deployment {record.deployment_id} is {record.state.value} "
                "but has no green task set"
            )
        return record.green

    def _check(self, task_set: TaskSet) -> HealthStatus:
        try:
            return self._health.check(task_set.task_set_id)
        except HealthCheckFailure as exc:
            return HealthStatus.failing(str(exc))

    def _destroy(self, task_set_id: str) -> None:
        """Destroy a task set, retrying delivery a bounded number of times."""
        attempts = self._config.termination_retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                self._backend.destroy_task_set(self._target, task_set_id)
                return
            except TerminationDeliveryError as exc:
                if attempt == attempts:
                    raise
                logger.warning(
                    "termination of %s not delivered (attempt %d/%d): %s",
                    task_set_id,
                    attempt,
                    attempts,
                    exc,
                )
                self._clock.sleep(self._config.termination_retry_interval_seconds)

    def _commit(self, previous: DeploymentRecord, updated: DeploymentRecord) -> DeploymentRecord:
        allowed = DEPLOYMENT_TRANSITIONS.get(previous.state, set())
        if updated.state not in allowed:
            raise InvalidTransitionError(
                f"Deployment {previous.deployment_id} cannot go from "
                f"{previous.state.value} to {updated.state.value}"
            )
        updated = _evolve(updated, updated_at=self._clock.now())
        self._store.save(updated)
        self._record(previous.state, updated)
        return updated

    def _record(self, previous: DeploymentState | None, record: DeploymentRecord) -> None:
        before = previous.value if previous is not None else "none"
        detail: dict[str, Any] = {
            "deployment_id": record.deployment_id,
            "target_id": record.target_id,
            "blue_weight": record.blue.weight,
            "green_weight": record.green_weight,
        }
        if record.failure_reason:
            detail["reason"] = record.failure_reason
        if record.stuck:
            detail["stuck"] = True
        self._ledger.append(
            LedgerEntry(
                execution_id=record.execution_id or record.deployment_id,
                subject=f"deployment:{record.deployment_id}",
                state_transition=f"{before}->{record.state.value}",
                detail=detail,
            )
        )
