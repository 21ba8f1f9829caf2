from __future__ import annotations

import time
from dataclasses import replace
from threading import Event, Lock, Thread

from . import db
from .cluster import ClusterRuntime
from .errors import RuntimeUnavailable, StaleSnapshot
from .settings import settings
from .state import LiveState, Readiness, ReplicaInstance


class LiveStateObserver:
    """Produces debounced LiveState snapshots of one resource.

    A readiness transition is trusted only once the raw reading has been the
    same on two consecutive observations. Instances first seen after the
    initial snapshot start out NotReady. On runtime failure the last
    known-good snapshot is reused, never an empty one.
    """

    def __init__(
        self,
        runtime: ClusterRuntime,
        resource: str,
        timeout_s: float | None = None,
        retries: int | None = None,
        backoff_s: float | None = None,
    ):
        self.runtime = runtime
        self.resource = resource
        self.timeout_s = settings.observe_timeout_s if timeout_s is None else timeout_s
        self.retries = max(1, settings.observe_retries if retries is None else retries)
        self.backoff_s = settings.observe_backoff_s if backoff_s is None else backoff_s
        self.last_good: LiveState | None = None
        self.stale = False
        self._lock = Lock()
        self._trusted: dict[str, Readiness] = {}
        self._pending: dict[str, Readiness] = {}
        self._bootstrapped = False

    def _fetch(self) -> list[ReplicaInstance]:
        """One runtime call on its own daemon thread, bounded by timeout_s.

        A call that hangs past the timeout is left behind; it never holds up
        later observations.
        """
        result: dict[str, object] = {}
        done = Event()

        def call() -> None:
            try:
                result["instances"] = self.runtime.list_instances(self.resource)
            except Exception as e:
                result["error"] = e
            finally:
                done.set()

        Thread(target=call, name=f"observe-{self.resource}", daemon=True).start()
        if not done.wait(self.timeout_s):
            raise RuntimeUnavailable(f"observation timed out after {self.timeout_s}s")
        if "error" in result:
            raise result["error"]
        return result["instances"]

    def observe(self) -> LiveState:
        last_err: Exception | None = None
        for attempt in range(self.retries):
            try:
                raw = self._fetch()
            except RuntimeUnavailable as e:
                last_err = e
                if attempt < self.retries - 1:
                    time.sleep(self.backoff_s * (2**attempt))
                continue
            with self._lock:
                snap = LiveState(resource=self.resource, instances=tuple(self._debounce(raw)))
                self.last_good = snap
            return snap
        raise StaleSnapshot(f"runtime unreachable after {self.retries} attempts: {last_err}")

    def observe_or_last(self) -> LiveState:
        """Observe, falling back to the last known-good snapshot."""
        try:
            snap = self.observe()
        except StaleSnapshot as e:
            if self.last_good is None:
                raise
            self.stale = True
            db.log_event("WARN", f"Reusing last snapshot: {e}", resource=self.resource)
            return self.last_good
        self.stale = False
        return snap

    def _debounce(self, raw: list[ReplicaInstance]) -> list[ReplicaInstance]:
        out: list[ReplicaInstance] = []
        seen: set[str] = set()
        for inst in raw:
            iid = inst.instance_id
            seen.add(iid)
            trusted = self._trusted.get(iid)
            if trusted is None:
                # Nothing to debounce against on the very first snapshot.
                trusted = inst.readiness if not self._bootstrapped else Readiness.NOT_READY
            if inst.readiness == trusted:
                self._pending.pop(iid, None)
            elif self._pending.get(iid) == inst.readiness:
                trusted = inst.readiness
                self._pending.pop(iid, None)
            else:
                self._pending[iid] = inst.readiness
            self._trusted[iid] = trusted
            out.append(replace(inst, readiness=trusted))

        for gone in set(self._trusted) - seen:
            self._trusted.pop(gone, None)
            self._pending.pop(gone, None)
        self._bootstrapped = True
        return out
