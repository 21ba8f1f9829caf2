from dataclasses import replace
from threading import Thread

import pytest

from gro import db
from gro.errors import ValidationError
from gro.state import HealthCheck, ResourceLimits
from gro.store import DesiredStateStore

from conftest import make_desired


def test_publish_assigns_increasing_revisions_and_last_wins():
    store = DesiredStateStore()
    a = store.publish(make_desired("web:v1"))
    b = store.publish(make_desired("web:v2"))
    assert b > a
    cur = store.current("web")
    assert cur.image_reference == "web:v2"
    assert cur.revision_id == b
    assert [d.image_reference for d in store.history("web")] == ["web:v1", "web:v2"]


def test_published_state_is_a_new_value():
    store = DesiredStateStore()
    draft = make_desired("web:v1")
    store.publish(draft)
    assert draft.revision_id == 0
    assert store.current("web") is not draft


@pytest.mark.parametrize(
    "draft",
    [
        make_desired("web:v1", replicas=-1),
        make_desired("", replicas=1),
        make_desired("   ", replicas=1),
        make_desired("web:v1", resource="Web_Service"),
        replace(make_desired("web:v1"), health_check=HealthCheck(path="health")),
        replace(make_desired("web:v1"), health_check=HealthCheck(path="http://evil/x")),
        replace(make_desired("web:v1"), health_check=HealthCheck(period_s=-1)),
        replace(make_desired("web:v1"), limits=ResourceLimits(cpu="lots", memory="128Mi")),
        replace(make_desired("web:v1"), limits=ResourceLimits(cpu="500m", memory="huge")),
        replace(make_desired("web:v1"), requests=ResourceLimits(cpu="-1", memory="64Mi")),
        replace(make_desired("web:v1"), requests=ResourceLimits(cpu="100m", memory="12Tb")),
    ],
)
def test_invalid_desired_state_rejected(draft):
    store = DesiredStateStore()
    with pytest.raises(ValidationError):
        store.publish(draft)
    assert store.current(draft.resource) is None
    assert db.list_revisions() == []


def test_zero_replicas_is_valid():
    store = DesiredStateStore()
    store.publish(make_desired("web:v1", replicas=0))
    assert store.current("web").replica_count == 0


def test_revisions_persist_and_reload():
    store = DesiredStateStore()
    store.publish(make_desired("web:v1"))
    store.publish(make_desired("api:v7", resource="api"))
    store.publish(make_desired("web:v2", replicas=3))

    restored = DesiredStateStore()
    restored.load()
    assert restored.resources() == ["api", "web"]
    assert restored.current("web") == store.current("web")
    assert restored.current("web").health_check.period_s == 0.0
    # Counter continues after the persisted maximum.
    assert restored.publish(make_desired("web:v3")) == 4


def test_wait_for_change():
    store = DesiredStateStore()
    rev = store.publish(make_desired("web:v1"))
    assert store.wait_for_change("web", rev, timeout=0.01) is False

    t = Thread(target=lambda: store.publish(make_desired("web:v2")))
    t.start()
    assert store.wait_for_change("web", rev, timeout=5) is True
    t.join()
    assert store.current_revision("web") == rev + 1


def test_concurrent_publishes_resolve_to_last_admitted():
    store = DesiredStateStore()
    revs: list[int] = []

    def worker(n: int) -> None:
        for i in range(10):
            revs.append(store.publish(make_desired(f"web:w{n}-{i}")))

    threads = [Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(revs) == list(range(1, 41))
    history = store.history("web")
    assert [d.revision_id for d in history] == list(range(1, 41))
    assert store.current("web") == history[-1]
