from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock

from . import db
from .cluster import ClusterRuntime, apply
from .errors import GroError, RolloutFailed, ValidationError
from .observer import LiveStateObserver
from .settings import settings
from .state import (
    ConvergenceAction,
    DesiredState,
    LiveState,
    ReplaceInstance,
    ReplicaInstance,
    ScaleDown,
    ScaleUp,
)
from .store import DesiredStateStore


class RolloutState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    SUPERSEDED = "superseded"
    FAILED = "failed"


@dataclass(frozen=True)
class RolloutPolicy:
    max_surge: int = 1
    max_unavailable: int = 0
    health_retry_budget: int = 3
    batch_timeout_s: float = 60.0
    rollout_timeout_s: float = 600.0

    @classmethod
    def from_settings(cls) -> "RolloutPolicy":
        return cls(
            max_surge=settings.max_surge,
            max_unavailable=settings.max_unavailable,
            health_retry_budget=settings.health_retry_budget,
            batch_timeout_s=settings.batch_timeout_s,
            rollout_timeout_s=settings.rollout_timeout_s,
        )

    def validate(self) -> None:
        if self.max_surge < 0 or self.max_unavailable < 0:
            raise ValidationError("max_surge and max_unavailable must be >= 0.")
        if self.max_surge == 0 and self.max_unavailable == 0:
            raise ValidationError("max_surge and max_unavailable cannot both be 0.")
        if self.health_retry_budget < 1:
            raise ValidationError("health_retry_budget must be >= 1.")


@dataclass(frozen=True)
class RolloutStep:
    kind: str  # create|ready|remove|gate_failed
    instance_ids: tuple[str, ...]
    ready: int
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RolloutController:
    """Executes a convergence plan as a progressive, health-gated rollout.

    Each iteration observes the cluster and takes exactly one kind of step:
    drop surplus replicas, wait for new replicas to turn Ready, create a
    batch bounded by max_surge, or drain stale replicas while keeping
    ``ready >= replica_count - max_unavailable``. A newer publish abandons
    the plan; nothing is rolled back.
    """

    def __init__(
        self,
        runtime: ClusterRuntime,
        observer: LiveStateObserver,
        store: DesiredStateStore,
        policy: RolloutPolicy | None = None,
    ):
        self.runtime = runtime
        self.observer = observer
        self.store = store
        self.policy = policy or RolloutPolicy.from_settings()
        self.lock = Lock()
        self.state = RolloutState.IDLE
        self.revision_id: int | None = None
        self.message = ""
        self.steps: list[RolloutStep] = []

    def _set(self, state: RolloutState, message: str) -> None:
        with self.lock:
            self.state = state
            self.message = message

    def _step(self, kind: str, ids: list[str], live: LiveState) -> None:
        with self.lock:
            self.steps.append(RolloutStep(kind, tuple(ids), len(live.ready())))

    def _superseded(self, desired: DesiredState) -> bool:
        return self.store.current_revision(desired.resource) != desired.revision_id

    def _sleep(self, desired: DesiredState, seconds: float) -> bool:
        """Wait, waking early on a newer publish. Returns True if superseded."""
        return self.store.wait_for_change(desired.resource, desired.revision_id, timeout=max(0.0, seconds))

    def _log(self, level: str, message: str, desired: DesiredState) -> None:
        db.log_event(level, message, resource=desired.resource, revision_id=desired.revision_id)

    def execute(self, desired: DesiredState, plan: list[ConvergenceAction]) -> RolloutState:
        """Run ``plan`` to completion.

        Returns COMPLETE or SUPERSEDED; raises RolloutFailed when the health
        gate exhausts its budget or the rollout times out. Any other engine
        error marks the rollout FAILED and propagates.
        """
        self.policy.validate()
        with self.lock:
            self.revision_id = desired.revision_id
            self.steps = []
        self._set(RolloutState.RUNNING, f"Rolling out revision {desired.revision_id}")
        self._log("INFO", f"Rollout started: {desired.image_reference} x{desired.replica_count} ({len(plan)} actions)", desired)
        try:
            return self._run(desired, plan)
        except RolloutFailed:
            raise
        except GroError as e:
            self._set(RolloutState.FAILED, f"{type(e).__name__}: {e}")
            self._log("ERROR", f"Rollout aborted: {type(e).__name__}: {e}", desired)
            raise

    def _run(self, desired: DesiredState, plan: list[ConvergenceAction]) -> RolloutState:
        order: list[str] = []
        for a in plan:
            if isinstance(a, ReplaceInstance):
                order.append(a.instance_id)
            elif isinstance(a, ScaleDown):
                order.extend(a.instance_ids)

        target = desired.replica_count
        floor = max(0, target - self.policy.max_unavailable)
        # Total instance count may exceed the larger of the prior total and
        # the target by at most max_surge.
        ceiling: int | None = None
        deadline = time.monotonic() + self.policy.rollout_timeout_s
        failures = 0

        while True:
            if self._superseded(desired):
                return self._abandon(desired)
            if time.monotonic() >= deadline:
                self._fail(desired, f"Rollout timed out after {self.policy.rollout_timeout_s}s")

            live = self.observer.observe_or_last()
            if self.observer.stale:
                # Never mutate the cluster based on a reused snapshot.
                if self._sleep(desired, desired.health_check.period_s):
                    return self._abandon(desired)
                continue
            if ceiling is None:
                ceiling = max(target, len(live.instances)) + self.policy.max_surge
            new, old = live.split(desired)
            new_ready = [i for i in new if i.ready]

            if not old and len(new) == target and len(new_ready) == target:
                self._set(RolloutState.COMPLETE, f"Revision {desired.revision_id} rolled out")
                self._log("INFO", f"RolloutComplete: {target} replicas on {desired.image_reference}", desired)
                return RolloutState.COMPLETE

            # Surplus replicas of the current template (scale-down).
            if len(new) > target:
                surplus = sorted(new, key=lambda i: (i.ready, -i.started_at.timestamp()))[: len(new) - target]
                victims = self._within_floor(surplus, live, floor)
                if victims:
                    self._remove(desired, victims, live)
                    continue

            pending = [i.instance_id for i in new if not i.ready]
            if pending:
                outcome = self._await_ready(desired, pending, deadline)
                live = self.observer.last_good or live
                if outcome == "superseded":
                    return self._abandon(desired)
                if outcome == "ready":
                    failures = 0
                    self._step("ready", pending, live)
                    continue
                failures = self._gate_failed(desired, pending, live, failures, "did not become Ready in time")
                continue

            to_create = min(target - len(new), ceiling - len(live.instances))
            if to_create > 0:
                created = apply(self.runtime, desired, ScaleUp(to_create))
                self._step("create", created, live)
                self._log("INFO", f"Created {len(created)} instance(s)", desired)
                continue

            rank = {iid: n for n, iid in enumerate(order)}
            candidates = sorted(old, key=lambda i: (i.ready, rank.get(i.instance_id, len(rank)), i.started_at))
            victims = self._within_floor(candidates, live, floor)
            if victims:
                self._remove(desired, victims, live)
                continue

            # No step possible: ready replicas are at or below the floor.
            failures = self._gate_failed(desired, [], live, failures, "no progress possible at the availability floor")
            if self._sleep(desired, max(desired.health_check.period_s, 0.0)):
                return self._abandon(desired)

    def _within_floor(self, candidates: list[ReplicaInstance], live: LiveState, floor: int) -> list[ReplicaInstance]:
        """Pick removable instances; NotReady ones never count toward availability."""
        ready_left = len(live.ready())
        victims: list[ReplicaInstance] = []
        for inst in candidates:
            if not inst.ready:
                victims.append(inst)
            elif ready_left - 1 >= floor:
                victims.append(inst)
                ready_left -= 1
        return victims

    def _remove(self, desired: DesiredState, victims: list[ReplicaInstance], live: LiveState) -> None:
        ids = [v.instance_id for v in victims]
        apply(self.runtime, desired, ScaleDown(tuple(ids)))
        self._step("remove", ids, live)
        self._log("INFO", f"Removed {len(ids)} instance(s)", desired)

    def _await_ready(self, desired: DesiredState, ids: list[str], deadline: float) -> str:
        """Health gate for one batch: 'ready', 'timeout' or 'superseded'."""
        hc = desired.health_check
        batch_deadline = min(deadline, time.monotonic() + self.policy.batch_timeout_s)

        live = self.observer.last_good
        if live is not None and hc.initial_delay_s > 0:
            started = [i.started_at for i in live.instances if i.instance_id in ids]
            if started:
                age = (datetime.now(timezone.utc) - max(started)).total_seconds()
                delay = min(hc.initial_delay_s - age, batch_deadline - time.monotonic())
                if delay > 0 and self._sleep(desired, delay):
                    return "superseded"

        while True:
            live = self.observer.observe_or_last()
            present = {i.instance_id: i for i in live.instances}
            waiting = [iid for iid in ids if iid in present and not present[iid].ready]
            if not waiting:
                return "ready"
            remaining = batch_deadline - time.monotonic()
            if remaining <= 0:
                return "timeout"
            if self._sleep(desired, min(hc.period_s, remaining)):
                return "superseded"

    def _gate_failed(self, desired: DesiredState, ids: list[str], live: LiveState, failures: int, why: str) -> int:
        failures += 1
        self._step("gate_failed", ids, live)
        self._log("WARN", f"Health gate failed ({failures}/{self.policy.health_retry_budget}): {why}", desired)
        if failures >= self.policy.health_retry_budget:
            self._fail(desired, f"Health gate exhausted after {failures} attempts: {why}")
        return failures

    def _fail(self, desired: DesiredState, message: str) -> None:
        self._set(RolloutState.FAILED, message)
        self._log("ERROR", f"RolloutFailed: {message}", desired)
        raise RolloutFailed(message, revision_id=desired.revision_id)

    def _abandon(self, desired: DesiredState) -> RolloutState:
        msg = f"Revision {desired.revision_id} superseded by {self.store.current_revision(desired.resource)}"
        self._set(RolloutState.SUPERSEDED, msg)
        self._log("INFO", f"Rollout abandoned: {msg}", desired)
        return RolloutState.SUPERSEDED
