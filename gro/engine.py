from __future__ import annotations

from threading import Lock

from . import db
from .cluster import ClusterRuntime, make_runtime
from .observer import LiveStateObserver
from .publisher import RevisionPublisher
from .reconciler import Reconciler
from .rollout import RolloutController, RolloutPolicy
from .state import DesiredState
from .status import StatusReporter
from .store import DesiredStateStore


class Engine:
    """Wires the store, one reconciler per resource, and the status view."""

    def __init__(
        self,
        runtime: ClusterRuntime | None = None,
        store: DesiredStateStore | None = None,
        policy: RolloutPolicy | None = None,
        poll_interval_s: float | None = None,
        autostart: bool = True,
    ):
        self.runtime = runtime or make_runtime()
        self.store = store or DesiredStateStore()
        self.policy = policy or RolloutPolicy.from_settings()
        self.policy.validate()
        self.poll_interval_s = poll_interval_s
        self.autostart = autostart
        self.publisher = RevisionPublisher(self.store)
        self.reporter = StatusReporter(self.reconciler)
        self._lock = Lock()
        self._reconcilers: dict[str, Reconciler] = {}

    def start(self) -> None:
        """Restore persisted revisions and start a loop per known resource."""
        db.init_db()
        if self.store.persist:
            self.store.load()
        for resource in self.store.resources():
            self.ensure(resource)

    def ensure(self, resource: str) -> Reconciler:
        with self._lock:
            rec = self._reconcilers.get(resource)
            if rec is None:
                observer = LiveStateObserver(self.runtime, resource)
                rollouts = RolloutController(self.runtime, observer, self.store, self.policy)
                rec = Reconciler(resource, self.store, observer, rollouts, self.poll_interval_s)
                self._reconcilers[resource] = rec
                if self.autostart:
                    rec.start()
            return rec

    def reconciler(self, resource: str) -> Reconciler | None:
        return self._reconcilers.get(resource)

    def publish(self, desired: DesiredState) -> int:
        revision_id = self.store.publish(desired)
        self.ensure(desired.resource)
        return revision_id

    def publish_image(self, resource: str, ref: str, replica_count: int | None = None) -> int:
        revision_id = self.publisher.publish_image(resource, ref, replica_count)
        self.ensure(resource)
        return revision_id

    def shutdown(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            recs = list(self._reconcilers.values())
        for rec in recs:
            rec.stop(timeout)
