from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ResourceLimits:
    cpu: str = "100m"
    memory: str = "128Mi"


@dataclass(frozen=True)
class HealthCheck:
    path: str = "/health"
    initial_delay_s: float = 0.0
    period_s: float = 5.0


@dataclass(frozen=True)
class DesiredState:
    """Target topology of one managed resource.

    ``revision_id`` is 0 until the store admits the state; published states
    are never edited, a new publish creates a new value.
    """

    resource: str
    image_reference: str
    replica_count: int = 1
    requests: ResourceLimits = field(default_factory=ResourceLimits)
    limits: ResourceLimits = field(default_factory=ResourceLimits)
    health_check: HealthCheck = field(default_factory=HealthCheck)
    internal_port: int = 8080
    revision_id: int = 0

    def template_hash(self) -> str:
        """Content hash of everything a replica is built from.

        Replica count and revision id are excluded: scaling never replaces
        running instances.
        """
        payload = {
            "image": self.image_reference,
            "requests": [self.requests.cpu, self.requests.memory],
            "limits": [self.limits.cpu, self.limits.memory],
            "health": [self.health_check.path, self.health_check.initial_delay_s, self.health_check.period_s],
            "port": self.internal_port,
        }
        raw = json.dumps(payload, sort_keys=True).encode()
        return hashlib.sha256(raw).hexdigest()[:12]


class Readiness(str, Enum):
    NOT_READY = "NotReady"
    READY = "Ready"


@dataclass(frozen=True)
class ReplicaInstance:
    instance_id: str
    image_reference: str
    readiness: Readiness = Readiness.NOT_READY
    started_at: datetime = field(default_factory=utc_now)
    template_hash: str | None = None

    @property
    def ready(self) -> bool:
        return self.readiness is Readiness.READY

    def matches(self, desired: DesiredState) -> bool:
        # Runtimes that cannot report a template hash are compared by image only.
        if self.template_hash is None:
            return self.image_reference == desired.image_reference
        return self.template_hash == desired.template_hash()


@dataclass(frozen=True)
class LiveState:
    resource: str
    instances: tuple[ReplicaInstance, ...] = ()
    observed_at: datetime = field(default_factory=utc_now)

    def ready(self) -> list[ReplicaInstance]:
        return [i for i in self.instances if i.ready]

    def split(self, desired: DesiredState) -> tuple[list[ReplicaInstance], list[ReplicaInstance]]:
        """Return (current-template instances, stale instances)."""
        new: list[ReplicaInstance] = []
        old: list[ReplicaInstance] = []
        for inst in self.instances:
            (new if inst.matches(desired) else old).append(inst)
        return new, old

    def ids(self) -> set[str]:
        return {i.instance_id for i in self.instances}


# --- Convergence actions -----------------------------------------------------


@dataclass(frozen=True)
class ScaleUp:
    count: int


@dataclass(frozen=True)
class ScaleDown:
    instance_ids: tuple[str, ...]


@dataclass(frozen=True)
class ReplaceInstance:
    instance_id: str


@dataclass(frozen=True)
class NoOp:
    pass


ConvergenceAction = ScaleUp | ScaleDown | ReplaceInstance | NoOp


# --- Status ------------------------------------------------------------------


class SyncPhase(str, Enum):
    SYNCED = "Synced"
    OUT_OF_SYNC = "OutOfSync"
    PROGRESSING = "Progressing"
    DEGRADED = "Degraded"
    ERROR = "Error"


@dataclass(frozen=True)
class SyncStatus:
    phase: SyncPhase
    reason: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {"phase": self.phase.value, "reason": self.reason}
