import pytest

from gro.rollout import RolloutState
from gro.state import SyncPhase, SyncStatus
from gro.status import StatusReporter, derive_status


@pytest.mark.parametrize(
    "phase,rollout,expected",
    [
        (SyncPhase.SYNCED, RolloutState.COMPLETE, SyncPhase.SYNCED),
        (SyncPhase.SYNCED, RolloutState.IDLE, SyncPhase.SYNCED),
        (SyncPhase.OUT_OF_SYNC, RolloutState.SUPERSEDED, SyncPhase.OUT_OF_SYNC),
        (SyncPhase.PROGRESSING, RolloutState.RUNNING, SyncPhase.PROGRESSING),
        (SyncPhase.OUT_OF_SYNC, RolloutState.RUNNING, SyncPhase.PROGRESSING),
        (SyncPhase.DEGRADED, RolloutState.FAILED, SyncPhase.DEGRADED),
        (SyncPhase.ERROR, RolloutState.IDLE, SyncPhase.ERROR),
    ],
)
def test_derive_status(phase, rollout, expected):
    assert derive_status(phase, rollout, "why").phase is expected


def test_error_always_carries_a_reason():
    assert derive_status(SyncPhase.ERROR, RolloutState.IDLE) == SyncStatus(SyncPhase.ERROR, "unknown error")


def test_reporter_reads_reconciler(harness):
    reporter = StatusReporter(lambda name: harness.reconciler if name == "web" else None)
    assert reporter.current_status("api") == SyncStatus(SyncPhase.ERROR, "unknown resource")

    harness.seed("web:v1", 1)
    harness.publish("web:v1", 1)
    assert reporter.current_status("web").phase is SyncPhase.OUT_OF_SYNC
    harness.reconciler.tick()
    assert reporter.current_status("web") == SyncStatus(SyncPhase.SYNCED)
    assert reporter.current_status("web").as_dict() == {"phase": "Synced", "reason": None}
