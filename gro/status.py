from __future__ import annotations

from typing import Callable

from .reconciler import Reconciler
from .rollout import RolloutState
from .state import SyncPhase, SyncStatus


def derive_status(phase: SyncPhase, rollout: RolloutState, reason: str | None = None) -> SyncStatus:
    """Map reconciler phase and rollout state to the reported SyncStatus."""
    if phase is SyncPhase.ERROR:
        return SyncStatus(SyncPhase.ERROR, reason or "unknown error")
    if phase is SyncPhase.DEGRADED:
        return SyncStatus(SyncPhase.DEGRADED, reason)
    if rollout is RolloutState.RUNNING or phase is SyncPhase.PROGRESSING:
        return SyncStatus(SyncPhase.PROGRESSING, reason)
    if phase is SyncPhase.OUT_OF_SYNC:
        return SyncStatus(SyncPhase.OUT_OF_SYNC, reason)
    return SyncStatus(SyncPhase.SYNCED)


class StatusReporter:
    """Read-only view over the reconcilers; holds no state of its own."""

    def __init__(self, lookup: Callable[[str], Reconciler | None]):
        self.lookup = lookup

    def current_status(self, resource: str) -> SyncStatus:
        rec = self.lookup(resource)
        if rec is None:
            return SyncStatus(SyncPhase.ERROR, "unknown resource")
        with rec.lock:
            phase, reason = rec.phase, rec.reason
        with rec.rollouts.lock:
            rollout = rec.rollouts.state
        return derive_status(phase, rollout, reason)
