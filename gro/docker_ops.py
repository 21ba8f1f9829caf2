from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any

import docker
from docker.errors import DockerException, NotFound

from .cluster import ClusterRuntime
from .db import log_event
from .errors import RuntimeUnavailable
from .health import check_ready
from .settings import settings
from .state import DesiredState, Readiness, ReplicaInstance
from .store import cpu_to_nano, memory_to_bytes


LABEL_RESOURCE = "gro.resource"
LABEL_REVISION = "gro.revision"
LABEL_TEMPLATE = "gro.template"
LABEL_PORT = "gro.port"
LABEL_HEALTH_PATH = "gro.health_path"
LABEL_INITIAL_DELAY = "gro.initial_delay_s"


def container_http_base(container_name: str, internal_port: int) -> str:
    """HTTP base URL usable from within the same docker network."""
    return f"http://{container_name}:{int(internal_port)}"


def _parse_started_at(raw: str | None) -> datetime:
    if not raw or raw.startswith("0001-"):
        return datetime.now(timezone.utc)
    # Docker reports nanoseconds; fromisoformat handles at most microseconds.
    head, _, frac = raw.rstrip("Z").partition(".")
    text = f"{head}.{frac[:6]}" if frac else head
    return datetime.fromisoformat(text).replace(tzinfo=timezone.utc)


class DockerRuntime(ClusterRuntime):
    """Cluster runtime backed by the local Docker daemon.

    Containers are labeled with their resource, revision and template hash so
    they can be re-discovered after engine restarts.
    """

    def __init__(self, network: str | None = None, probe_timeout_s: float | None = None):
        self.network = network or settings.docker_network
        self.probe_timeout_s = settings.probe_timeout_s if probe_timeout_s is None else probe_timeout_s

    def _client(self) -> docker.DockerClient:
        try:
            return docker.from_env()
        except DockerException as e:
            raise RuntimeUnavailable(f"Docker is not available: {e}") from e

    def ensure_network(self) -> None:
        c = self._client()
        try:
            c.networks.get(self.network)
        except NotFound:
            c.networks.create(self.network, driver="bridge")
            log_event("INFO", f"Created docker network '{self.network}'.")
        except DockerException as e:
            raise RuntimeUnavailable(str(e)) from e

    def list_instances(self, resource: str) -> list[ReplicaInstance]:
        c = self._client()
        filters: dict[str, Any] = {"label": [f"{LABEL_RESOURCE}={resource}"]}
        try:
            containers = c.containers.list(all=True, filters=filters)
        except DockerException as e:
            raise RuntimeUnavailable(f"listing containers failed: {e}") from e

        out: list[ReplicaInstance] = []
        for cont in containers:
            labels = cont.labels or {}
            state = cont.attrs.get("State", {})
            started_at = _parse_started_at(state.get("StartedAt"))
            out.append(
                ReplicaInstance(
                    instance_id=cont.id,
                    image_reference=(cont.attrs.get("Config", {}) or {}).get("Image", ""),
                    readiness=self._readiness(cont.name, cont.status, labels, started_at),
                    started_at=started_at,
                    template_hash=labels.get(LABEL_TEMPLATE),
                )
            )
        return out

    def _readiness(self, name: str, status: str, labels: dict[str, str], started_at: datetime) -> Readiness:
        if status != "running":
            return Readiness.NOT_READY
        initial_delay = float(labels.get(LABEL_INITIAL_DELAY, "0") or 0)
        if (datetime.now(timezone.utc) - started_at).total_seconds() < initial_delay:
            return Readiness.NOT_READY
        port = int(labels.get(LABEL_PORT, "80"))
        url = f"{container_http_base(name, port)}{labels.get(LABEL_HEALTH_PATH, '/health')}"
        ok, _, _ = check_ready(url, timeout_s=self.probe_timeout_s)
        return Readiness.READY if ok else Readiness.NOT_READY

    def create_instance(self, desired: DesiredState) -> str:
        self.ensure_network()
        name = f"gro-{desired.resource}-r{desired.revision_id}-{secrets.token_hex(3)}"
        labels: dict[str, str] = {
            LABEL_RESOURCE: desired.resource,
            LABEL_REVISION: str(desired.revision_id),
            LABEL_TEMPLATE: desired.template_hash(),
            LABEL_PORT: str(desired.internal_port),
            LABEL_HEALTH_PATH: desired.health_check.path,
            LABEL_INITIAL_DELAY: str(desired.health_check.initial_delay_s),
        }

        c = self._client()
        try:
            container = c.containers.run(
                desired.image_reference,
                detach=True,
                name=name,
                network=self.network,
                labels=labels,
                nano_cpus=cpu_to_nano(desired.limits.cpu),
                mem_limit=memory_to_bytes(desired.limits.memory),
                mem_reservation=memory_to_bytes(desired.requests.memory),
                # Replacement is the engine's job; keep Docker's restart policy off.
                restart_policy={"Name": "no"},
            )
        except DockerException as e:
            raise RuntimeUnavailable(f"starting container failed: {e}") from e

        log_event(
            "INFO",
            f"Started container {name} from image {desired.image_reference}",
            resource=desired.resource,
            revision_id=desired.revision_id,
        )
        return container.id

    def remove_instance(self, resource: str, instance_id: str) -> None:
        c = self._client()
        try:
            cont = c.containers.get(instance_id)
            cont.remove(force=True)
        except NotFound:
            return
        except DockerException as e:
            raise RuntimeUnavailable(f"removing container failed: {e}") from e
        log_event("INFO", f"Removed container {instance_id[:12]}", resource=resource)
