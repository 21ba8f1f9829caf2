from __future__ import annotations

import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Callable, TypeVar

from .errors import RuntimeUnavailable
from .settings import settings
from .state import (
    ConvergenceAction,
    DesiredState,
    NoOp,
    Readiness,
    ReplaceInstance,
    ReplicaInstance,
    ScaleDown,
    ScaleUp,
    utc_now,
)


T = TypeVar("T")


class ClusterRuntime(ABC):
    """The two capabilities the engine needs from an orchestrator.

    ``list_instances`` reports raw (undebounced) readiness; creating and
    removing instances backs ``apply``.
    """

    @abstractmethod
    def list_instances(self, resource: str) -> list[ReplicaInstance]:
        ...

    @abstractmethod
    def create_instance(self, desired: DesiredState) -> str:
        ...

    @abstractmethod
    def remove_instance(self, resource: str, instance_id: str) -> None:
        ...


def with_retries(fn: Callable[[], T], attempts: int | None = None, backoff_s: float | None = None) -> T:
    """Call ``fn`` retrying RuntimeUnavailable with exponential backoff."""
    attempts = max(1, int(attempts if attempts is not None else settings.observe_retries))
    delay = settings.observe_backoff_s if backoff_s is None else backoff_s
    for attempt in range(attempts):
        try:
            return fn()
        except RuntimeUnavailable:
            if attempt == attempts - 1:
                raise
            time.sleep(delay * (2**attempt))
    raise AssertionError("unreachable")


def apply(runtime: ClusterRuntime, desired: DesiredState, action: ConvergenceAction) -> list[str]:
    """Apply one convergence action; returns the ids of created instances."""
    created: list[str] = []
    if isinstance(action, NoOp):
        return created
    if isinstance(action, ScaleUp):
        for _ in range(max(0, action.count)):
            created.append(with_retries(lambda: runtime.create_instance(desired)))
        return created
    if isinstance(action, ScaleDown):
        for instance_id in action.instance_ids:
            with_retries(lambda: runtime.remove_instance(desired.resource, instance_id))
        return created
    if isinstance(action, ReplaceInstance):
        created.append(with_retries(lambda: runtime.create_instance(desired)))
        with_retries(lambda: runtime.remove_instance(desired.resource, action.instance_id))
        return created
    raise TypeError(f"unknown convergence action: {action!r}")


# --- In-memory runtime -------------------------------------------------------


@dataclass(frozen=True)
class JournalEntry:
    op: str  # create|remove
    resource: str
    instance_id: str
    image_reference: str
    ready_after: int


@dataclass
class _SimInstance:
    resource: str
    instance_id: str
    image_reference: str
    template_hash: str | None
    started_at: datetime = field(default_factory=utc_now)


class InMemoryRuntime(ClusterRuntime):
    """Thread-safe fake cluster.

    Readiness is decided by ``readiness(instance)`` unless pinned with
    ``set_ready``. Every mutation is journaled together with the number of
    ready instances left afterwards. ``fail_next`` makes the next N calls
    raise RuntimeUnavailable to simulate an unreachable API.
    """

    def __init__(self, readiness: Callable[[ReplicaInstance], bool] | None = None):
        self.readiness = readiness or (lambda inst: True)
        self.lock = Lock()
        self.journal: list[JournalEntry] = []
        self.fail_next = 0
        self._instances: dict[str, _SimInstance] = {}
        self._pinned: dict[str, bool] = {}

    def _maybe_fail(self) -> None:
        if self.fail_next > 0:
            self.fail_next -= 1
            raise RuntimeUnavailable("simulated runtime outage")

    def _snapshot(self, resource: str) -> list[ReplicaInstance]:
        out: list[ReplicaInstance] = []
        for sim in self._instances.values():
            if sim.resource != resource:
                continue
            inst = ReplicaInstance(
                instance_id=sim.instance_id,
                image_reference=sim.image_reference,
                started_at=sim.started_at,
                template_hash=sim.template_hash,
            )
            ok = self._pinned.get(sim.instance_id)
            if ok is None:
                ok = bool(self.readiness(inst))
            out.append(
                ReplicaInstance(
                    instance_id=inst.instance_id,
                    image_reference=inst.image_reference,
                    readiness=Readiness.READY if ok else Readiness.NOT_READY,
                    started_at=inst.started_at,
                    template_hash=inst.template_hash,
                )
            )
        return out

    def _record(self, op: str, sim: _SimInstance) -> None:
        ready = sum(1 for i in self._snapshot(sim.resource) if i.ready)
        self.journal.append(JournalEntry(op, sim.resource, sim.instance_id, sim.image_reference, ready))

    def list_instances(self, resource: str) -> list[ReplicaInstance]:
        with self.lock:
            self._maybe_fail()
            return self._snapshot(resource)

    def create_instance(self, desired: DesiredState) -> str:
        with self.lock:
            self._maybe_fail()
            instance_id = f"{desired.resource}-{secrets.token_hex(4)}"
            sim = _SimInstance(
                resource=desired.resource,
                instance_id=instance_id,
                image_reference=desired.image_reference,
                template_hash=desired.template_hash(),
            )
            self._instances[instance_id] = sim
            self._record("create", sim)
            return instance_id

    def remove_instance(self, resource: str, instance_id: str) -> None:
        with self.lock:
            self._maybe_fail()
            sim = self._instances.pop(instance_id, None)
            self._pinned.pop(instance_id, None)
            if sim is not None:
                self._record("remove", sim)

    def seed(self, desired: DesiredState, count: int) -> list[str]:
        """Start ``count`` instances of ``desired`` without journaling them."""
        ids: list[str] = []
        with self.lock:
            for _ in range(count):
                instance_id = f"{desired.resource}-{secrets.token_hex(4)}"
                self._instances[instance_id] = _SimInstance(
                    resource=desired.resource,
                    instance_id=instance_id,
                    image_reference=desired.image_reference,
                    template_hash=desired.template_hash(),
                )
                ids.append(instance_id)
        return ids

    def set_ready(self, instance_id: str, ready: bool | None) -> None:
        with self.lock:
            if ready is None:
                self._pinned.pop(instance_id, None)
            else:
                self._pinned[instance_id] = ready


def make_runtime(kind: str | None = None) -> ClusterRuntime:
    kind = (kind or settings.runtime).strip().lower()
    if kind == "memory":
        return InMemoryRuntime()
    if kind == "docker":
        from .docker_ops import DockerRuntime

        return DockerRuntime()
    raise ValueError(f"unknown runtime '{kind}' (expected docker|memory)")
