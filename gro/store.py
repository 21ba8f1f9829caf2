from __future__ import annotations

import re
from dataclasses import replace
from threading import Condition, Lock

from . import db
from .errors import ValidationError
from .state import DesiredState


RESOURCE_NAME_RE = re.compile(r"^[a-z][a-z0-9\-]{0,62}$")

_CPU_RE = re.compile(r"^(\d+(?:\.\d+)?)(m?)$")
_MEM_RE = re.compile(r"^(\d+)(Ki|Mi|Gi|K|M|G)?$")
_MEM_UNITS = {None: 1, "K": 1000, "M": 1000**2, "G": 1000**3, "Ki": 1024, "Mi": 1024**2, "Gi": 1024**3}


def cpu_to_nano(cpu: str) -> int:
    """'250m' -> 250_000_000, '1.5' -> 1_500_000_000."""
    m = _CPU_RE.match(cpu.strip())
    if not m:
        raise ValueError(f"invalid cpu quantity: {cpu!r}")
    value = float(m.group(1))
    if m.group(2) == "m":
        value /= 1000.0
    return int(value * 1_000_000_000)


def memory_to_bytes(memory: str) -> int:
    m = _MEM_RE.match(memory.strip())
    if not m:
        raise ValueError(f"invalid memory quantity: {memory!r}")
    return int(m.group(1)) * _MEM_UNITS[m.group(2)]


def validate_desired(d: DesiredState) -> None:
    """Reject malformed desired states before they reach reconciliation."""
    if not RESOURCE_NAME_RE.match(d.resource or ""):
        raise ValidationError(
            "Invalid resource name. Use lowercase letters/numbers and hyphen, starting with a letter (max 63 chars)."
        )
    if not (d.image_reference or "").strip():
        raise ValidationError("image_reference must not be empty.")
    if not isinstance(d.replica_count, int) or d.replica_count < 0:
        raise ValidationError("replica_count must be an integer >= 0.")
    if not 1 <= int(d.internal_port) <= 65535:
        raise ValidationError("internal_port must be within 1..65535.")
    hc = d.health_check
    # Keep it a path (not a full URL) so probes cannot be pointed elsewhere.
    if not hc.path.startswith("/"):
        raise ValidationError("health_check.path must start with '/'.")
    if "://" in hc.path or ".." in hc.path:
        raise ValidationError("health_check.path must be a simple absolute path (no scheme, no '..').")
    if hc.initial_delay_s < 0 or hc.period_s < 0:
        raise ValidationError("health_check timings must be >= 0.")
    for label, res in (("requests", d.requests), ("limits", d.limits)):
        try:
            cpu_to_nano(res.cpu)
            memory_to_bytes(res.memory)
        except (ValueError, AttributeError) as e:
            raise ValidationError(f"{label}: {e}") from e


class DesiredStateStore:
    """Append-only, versioned record of desired state per resource.

    Writers are serialized by a lock and admitted in order; the "current"
    mapping is replaced wholesale on each publish so readers never lock.
    Concurrent publishes are never a conflict: the last one admitted wins.
    """

    def __init__(self, persist: bool = True):
        self.persist = persist
        self._lock = Lock()
        self._changed = Condition(self._lock)
        self._counter = 0
        self._current: dict[str, DesiredState] = {}
        self._history: dict[str, list[DesiredState]] = {}

    def load(self) -> None:
        """Restore history and current pointers from the database."""
        rows = db.list_revisions()
        with self._lock:
            history: dict[str, list[DesiredState]] = {}
            for row in rows:
                history.setdefault(row.resource, []).append(row.to_desired())
            self._history = history
            self._current = {name: revs[-1] for name, revs in history.items()}
            self._counter = max((r.revision_id for r in rows), default=0)

    def publish(self, desired: DesiredState) -> int:
        validate_desired(desired)
        with self._lock:
            self._counter += 1
            published = replace(desired, revision_id=self._counter)
            if self.persist:
                db.insert_revision(published)
            self._history.setdefault(published.resource, []).append(published)
            current = dict(self._current)
            current[published.resource] = published
            self._current = current
            self._changed.notify_all()
        if self.persist:
            db.log_event(
                "INFO",
                f"Published revision {published.revision_id}: {published.image_reference} x{published.replica_count}",
                resource=published.resource,
                revision_id=published.revision_id,
            )
        return published.revision_id

    def current(self, resource: str) -> DesiredState | None:
        return self._current.get(resource)

    def current_revision(self, resource: str) -> int:
        d = self._current.get(resource)
        return d.revision_id if d else 0

    def resources(self) -> list[str]:
        return sorted(self._current)

    def history(self, resource: str) -> list[DesiredState]:
        with self._lock:
            return list(self._history.get(resource, []))

    def wait_for_change(self, resource: str, since_revision: int, timeout: float | None) -> bool:
        """Block until a revision newer than ``since_revision`` is current.

        Returns True when one is, False on timeout.
        """
        with self._changed:
            return self._changed.wait_for(
                lambda: self.current_revision(resource) > since_revision,
                timeout=timeout,
            )
