import os as _os
import sys

import pytest

# Ensure project root is importable (so `import cli` / `import main` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from gro import db
from gro.cluster import InMemoryRuntime
from gro.observer import LiveStateObserver
from gro.reconciler import Reconciler
from gro.rollout import RolloutController, RolloutPolicy
from gro.settings import Settings
from gro.state import DesiredState, HealthCheck
from gro.store import DesiredStateStore


FAST_HEALTH = HealthCheck(path="/health", initial_delay_s=0.0, period_s=0.0)


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Every test gets its own sqlite file."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "gro.db")))
    db.init_db()


def make_desired(image: str = "web:v1", replicas: int = 2, resource: str = "web") -> DesiredState:
    return DesiredState(resource=resource, image_reference=image, replica_count=replicas, health_check=FAST_HEALTH)


class Harness:
    def __init__(self, policy: RolloutPolicy):
        self.runtime = InMemoryRuntime()
        self.store = DesiredStateStore()
        self.observer = LiveStateObserver(self.runtime, "web", timeout_s=2.0, retries=1, backoff_s=0.0)
        self.rollouts = RolloutController(self.runtime, self.observer, self.store, policy)
        self.reconciler = Reconciler("web", self.store, self.observer, self.rollouts, poll_interval_s=0.05)

    def publish(self, image: str, replicas: int = 2) -> DesiredState:
        self.store.publish(make_desired(image, replicas))
        return self.store.current("web")

    def seed(self, image: str, count: int) -> list[str]:
        return self.runtime.seed(make_desired(image, count), count)

    def images(self) -> list[str]:
        return sorted(i.image_reference for i in self.runtime.list_instances("web"))

    def ops(self) -> list[tuple[str, str]]:
        return [(e.op, e.image_reference) for e in self.runtime.journal]


@pytest.fixture
def policy():
    return RolloutPolicy(max_surge=1, max_unavailable=0, health_retry_budget=3, batch_timeout_s=0.05, rollout_timeout_s=10.0)


@pytest.fixture
def harness(policy):
    return Harness(policy)
