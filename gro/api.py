from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query

from . import db
from .api_models import ImageRequest, PublishRequest, desired_to_dict
from .engine import Engine
from .errors import ValidationError
from .publisher import commit_tag


def create_app(engine: Engine | None = None) -> FastAPI:
    """HTTP surface: publish desired state and poll sync status."""
    holder: dict[str, Engine] = {}

    def get_engine() -> Engine:
        eng = holder.get("engine")
        if eng is None:
            raise HTTPException(status_code=503, detail="engine not started")
        return eng

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        eng = engine or Engine()
        eng.start()
        holder["engine"] = eng
        db.log_event("INFO", "API started")
        try:
            yield
        finally:
            eng.shutdown()

    app = FastAPI(title="GitOps Rollout Engine", lifespan=lifespan)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/resources")
    def list_resources() -> list[dict]:
        eng = get_engine()
        out = []
        for name in eng.store.resources():
            out.append(
                {
                    "resource": name,
                    "revision_id": eng.store.current_revision(name),
                    "status": eng.reporter.current_status(name).as_dict(),
                }
            )
        return out

    @app.post("/resources/{name}/revisions")
    def publish(name: str, req: PublishRequest) -> dict:
        eng = get_engine()
        try:
            revision_id = eng.publish(req.to_desired(name))
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"resource": name, "revision_id": revision_id}

    @app.post("/resources/{name}/image")
    def publish_image(name: str, req: ImageRequest) -> dict:
        eng = get_engine()
        try:
            if req.image_reference:
                ref = req.image_reference
            elif req.repository and req.commit_sha:
                ref = commit_tag(req.repository, req.commit_sha)
            else:
                raise ValidationError("provide image_reference, or repository and commit_sha")
            revision_id = eng.publish_image(name, ref, req.replica_count)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"resource": name, "revision_id": revision_id, "image_reference": ref}

    @app.get("/resources/{name}/desired")
    def desired(name: str) -> dict:
        d = get_engine().store.current(name)
        if d is None:
            raise HTTPException(status_code=404, detail="unknown resource")
        return desired_to_dict(d)

    @app.get("/resources/{name}/revisions")
    def revisions(name: str) -> list[dict]:
        history = get_engine().store.history(name)
        if not history:
            raise HTTPException(status_code=404, detail="unknown resource")
        return [desired_to_dict(d) for d in history]

    @app.get("/resources/{name}/status")
    def status(name: str) -> dict:
        eng = get_engine()
        rec = eng.reconciler(name)
        if rec is None:
            raise HTTPException(status_code=404, detail="unknown resource")
        body = eng.reporter.current_status(name).as_dict()
        with rec.rollouts.lock:
            body["rollout"] = {
                "state": rec.rollouts.state.value,
                "revision_id": rec.rollouts.revision_id,
                "message": rec.rollouts.message,
                "steps": [{"kind": s.kind, "instance_ids": list(s.instance_ids), "ready": s.ready} for s in rec.rollouts.steps],
            }
        body["revision_id"] = eng.store.current_revision(name)
        return body

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000), resource: str | None = None) -> list[dict]:
        return db.latest_events(limit=limit, resource=resource)

    return app


app = create_app()
