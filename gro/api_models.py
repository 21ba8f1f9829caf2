from __future__ import annotations

from pydantic import BaseModel, Field

from .state import DesiredState, HealthCheck, ResourceLimits


class ResourcesModel(BaseModel):
    cpu: str = Field("100m", description="CPU quantity, e.g. 250m or 1.5")
    memory: str = Field("128Mi", description="Memory quantity, e.g. 128Mi")


class HealthCheckModel(BaseModel):
    path: str = Field("/health", description="Readiness endpoint path")
    initial_delay_s: float = Field(0.0, ge=0)
    period_s: float = Field(5.0, ge=0)


class PublishRequest(BaseModel):
    image_reference: str = Field(..., description="Immutable image reference (name:tag or name@sha256:...)")
    replica_count: int = Field(1, ge=0, le=100)
    requests: ResourcesModel = Field(default_factory=ResourcesModel)
    limits: ResourcesModel = Field(default_factory=ResourcesModel)
    health_check: HealthCheckModel = Field(default_factory=HealthCheckModel)
    internal_port: int = Field(8080, ge=1, le=65535, description="Container port the workload listens on")

    def to_desired(self, resource: str) -> DesiredState:
        return DesiredState(
            resource=resource,
            image_reference=self.image_reference,
            replica_count=self.replica_count,
            requests=ResourceLimits(**self.requests.model_dump()),
            limits=ResourceLimits(**self.limits.model_dump()),
            health_check=HealthCheck(**self.health_check.model_dump()),
            internal_port=self.internal_port,
        )


class ImageRequest(BaseModel):
    image_reference: str | None = Field(None, description="Full immutable image reference")
    repository: str | None = Field(None, description="Used with commit_sha to derive the tag")
    commit_sha: str | None = None
    replica_count: int | None = Field(None, ge=0, le=100)


def desired_to_dict(d: DesiredState) -> dict:
    return {
        "resource": d.resource,
        "revision_id": d.revision_id,
        "image_reference": d.image_reference,
        "replica_count": d.replica_count,
        "requests": {"cpu": d.requests.cpu, "memory": d.requests.memory},
        "limits": {"cpu": d.limits.cpu, "memory": d.limits.memory},
        "health_check": {
            "path": d.health_check.path,
            "initial_delay_s": d.health_check.initial_delay_s,
            "period_s": d.health_check.period_s,
        },
        "internal_port": d.internal_port,
        "template_hash": d.template_hash(),
    }
