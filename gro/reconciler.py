from __future__ import annotations

from dataclasses import dataclass, field
from threading import Event, Lock, Thread

from . import db
from .alerts import send_email
from .errors import GroError, RolloutFailed, StaleSnapshot
from .observer import LiveStateObserver
from .rollout import RolloutController, RolloutState
from .settings import settings
from .state import (
    ConvergenceAction,
    DesiredState,
    LiveState,
    NoOp,
    ReplaceInstance,
    ScaleDown,
    ScaleUp,
    SyncPhase,
)
from .store import DesiredStateStore


def compute_plan(desired: DesiredState, live: LiveState) -> list[ConvergenceAction]:
    """Structural diff of desired vs live, as an ordered action plan.

    Creations come first: stale replicas are replaced before any pure
    scale-down, so an image change always wins over a replica-count change.
    """
    new, old = live.split(desired)
    target = desired.replica_count

    # Replace NotReady stale replicas first, then the oldest.
    old_sorted = sorted(old, key=lambda i: (i.ready, i.started_at))
    replace_budget = max(0, target - len(new))
    replaced = old_sorted[:replace_budget]
    dropped = [i.instance_id for i in old_sorted[replace_budget:]]

    actions: list[ConvergenceAction] = []
    deficit = target - len(new) - len(replaced)
    if deficit > 0:
        actions.append(ScaleUp(deficit))
    actions.extend(ReplaceInstance(i.instance_id) for i in replaced)

    if len(new) > target:
        surplus = sorted(new, key=lambda i: (i.ready, -i.started_at.timestamp()))[: len(new) - target]
        dropped.extend(i.instance_id for i in surplus)
    if dropped:
        actions.append(ScaleDown(tuple(dropped)))

    return actions or [NoOp()]


def is_noop(plan: list[ConvergenceAction]) -> bool:
    return all(isinstance(a, NoOp) for a in plan)


@dataclass(frozen=True)
class TickResult:
    revision_id: int
    phase: SyncPhase
    plan: list[ConvergenceAction] = field(default_factory=list)
    rollout: RolloutState | None = None
    reason: str | None = None


class Reconciler:
    """Converges one resource toward its current desired state.

    Phases: Synced -> (diff) Progressing -> Synced | OutOfSync (superseded)
    | Degraded (health gate exhausted). A Degraded revision is not retried;
    only a newer publish, or the cluster converging on its own, leaves it.
    """

    COHERENT_READ_ATTEMPTS = 3

    def __init__(
        self,
        resource: str,
        store: DesiredStateStore,
        observer: LiveStateObserver,
        rollouts: RolloutController,
        poll_interval_s: float | None = None,
    ):
        self.resource = resource
        self.store = store
        self.observer = observer
        self.rollouts = rollouts
        self.poll_interval_s = settings.poll_interval_s if poll_interval_s is None else poll_interval_s
        self.lock = Lock()
        self.phase = SyncPhase.OUT_OF_SYNC
        self.reason: str | None = None
        self.last_plan: list[ConvergenceAction] = []
        self.degraded_revision: int | None = None
        self._seen_revision = 0
        self._stop = Event()
        self._thr: Thread | None = None

    # --- loop ---------------------------------------------------------------

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, name=f"reconcile-{self.resource}", daemon=True)
        self._thr.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thr:
            self._thr.join(timeout)

    def _loop(self) -> None:
        db.log_event("INFO", "Reconciler started", resource=self.resource)
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                db.log_event("ERROR", f"Reconciler tick failed: {type(e).__name__}: {e}", resource=self.resource)
            # Tick again on the next publish or after the poll interval.
            self.store.wait_for_change(self.resource, self._seen_revision, timeout=max(0.05, self.poll_interval_s))
        db.log_event("INFO", "Reconciler stopped", resource=self.resource)

    # --- tick ---------------------------------------------------------------

    def _set_phase(self, phase: SyncPhase, reason: str | None = None) -> None:
        with self.lock:
            prev = self.phase
            self.phase = phase
            self.reason = reason
        if prev != phase:
            db.log_event(
                "ERROR" if phase is SyncPhase.DEGRADED else "INFO",
                f"{prev.value} -> {phase.value}" + (f": {reason}" if reason else ""),
                resource=self.resource,
                revision_id=self._seen_revision or None,
            )

    def _coherent_read(self) -> tuple[DesiredState | None, LiveState]:
        """Read a DesiredState/LiveState pair that does not straddle a publish."""
        for _ in range(self.COHERENT_READ_ATTEMPTS):
            desired = self.store.current(self.resource)
            live = self.observer.observe_or_last()
            if self.store.current(self.resource) is desired:
                return desired, live
        return self.store.current(self.resource), self.observer.observe_or_last()

    def tick(self) -> TickResult:
        try:
            desired, live = self._coherent_read()
        except StaleSnapshot as e:
            self._set_phase(SyncPhase.ERROR, str(e))
            return TickResult(self._seen_revision, SyncPhase.ERROR, reason=str(e))

        if desired is None:
            self._set_phase(SyncPhase.ERROR, "no desired state published")
            return TickResult(0, SyncPhase.ERROR, reason="no desired state published")
        self._seen_revision = desired.revision_id

        plan = compute_plan(desired, live)
        with self.lock:
            self.last_plan = plan

        if is_noop(plan):
            self.degraded_revision = None
            self._set_phase(SyncPhase.SYNCED)
            return TickResult(desired.revision_id, SyncPhase.SYNCED, plan)

        if self.degraded_revision == desired.revision_id:
            return TickResult(desired.revision_id, SyncPhase.DEGRADED, plan, reason=self.reason)

        self.degraded_revision = None
        self._set_phase(SyncPhase.PROGRESSING, f"applying revision {desired.revision_id}")
        try:
            outcome = self.rollouts.execute(desired, plan)
        except RolloutFailed as e:
            self.degraded_revision = desired.revision_id
            self._set_phase(SyncPhase.DEGRADED, str(e))
            self._alert(desired, str(e))
            return TickResult(desired.revision_id, SyncPhase.DEGRADED, plan, RolloutState.FAILED, str(e))
        except GroError as e:
            # Transient: the next tick retries the same revision.
            reason = f"{type(e).__name__}: {e}"
            self._set_phase(SyncPhase.ERROR, reason)
            return TickResult(desired.revision_id, SyncPhase.ERROR, plan, RolloutState.FAILED, reason)

        if outcome is RolloutState.COMPLETE:
            self._set_phase(SyncPhase.SYNCED)
            return TickResult(desired.revision_id, SyncPhase.SYNCED, plan, outcome)
        self._set_phase(SyncPhase.OUT_OF_SYNC, "superseded by a newer revision")
        return TickResult(desired.revision_id, SyncPhase.OUT_OF_SYNC, plan, outcome)

    def _alert(self, desired: DesiredState, reason: str) -> None:
        if not settings.enable_email:
            return
        subject = f"DEGRADED: {desired.resource} revision {desired.revision_id}"
        body = (
            f"Resource: {desired.resource}\nRevision: {desired.revision_id}\n"
            f"Image: {desired.image_reference}\nReplicas: {desired.replica_count}\nDetail: {reason}"
        )
        send_email(subject, body)
