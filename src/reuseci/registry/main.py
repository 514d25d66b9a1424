from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import Settings, load_settings
from ..errors import NotFoundError, PipelineError, VersionImmutabilityError
from ..executor import ShellExecutor, StepExecutor
from ..model import Reference
from ..runner import PipelineRequest, PipelineRun
from ..serialize import item_from_dict, item_to_dict
from .db import make_engine, make_sessionmaker
from .models import Base, Run
from .store import SqlDefinitionStore

log = logging.getLogger("reuseci.registry")

# -------------------- Schemas --------------------

class PublishRequest(BaseModel):
    document: dict[str, Any]

class PublishResponse(BaseModel):
    reference: str
    digest: str
    created: bool

class ItemResponse(BaseModel):
    reference: str
    kind: str
    digest: str
    document: dict[str, Any]

class VersionsResponse(BaseModel):
    location: str
    versions: list[str]

class CreateRunRequest(BaseModel):
    reference: str
    inputs: dict[str, Any] = Field(default_factory=dict)
    secrets: dict[str, str] = Field(default_factory=dict)
    halt_on_failure: bool = False

class RunResponse(BaseModel):
    id: str
    reference: str
    digest: Optional[str]
    status: str
    result: Optional[dict[str, Any]]
    created_at: Optional[datetime]


def _status_for(exc: PipelineError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, VersionImmutabilityError):
        return 409
    return 422


def _run_response(run: Run) -> RunResponse:
    return RunResponse(
        id=run.id,
        reference=run.reference,
        digest=run.digest,
        status=run.status,
        result=run.result,
        created_at=run.created_at,
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    executor: Optional[StepExecutor] = None,
) -> FastAPI:
    settings = settings or load_settings()
    engine = make_engine(settings.database_url)
    Base.metadata.create_all(engine)
    sessions = make_sessionmaker(engine)
    store = SqlDefinitionStore(sessions)
    executor = executor or ShellExecutor(settings.workdir)

    app = FastAPI(title="ReuseCI Registry")
    app.state.store = store
    app.state.sessions = sessions

    @app.exception_handler(PipelineError)
    async def pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"error": exc.to_dict()})

    # -------------------- Definitions --------------------

    @app.post("/publish", response_model=PublishResponse)
    def publish(req: PublishRequest):
        item = item_from_dict(req.document, source="request")
        created = item.reference not in store
        digest = store.publish(item)
        log.info("publish %s %s (%s)", item.reference, digest, "created" if created else "unchanged")
        return PublishResponse(reference=str(item.reference), digest=digest, created=created)

    @app.get("/items/{reference:path}", response_model=ItemResponse)
    def get_item(reference: str):
        published = store.fetch(Reference.parse(reference))
        return ItemResponse(
            reference=str(published.item.reference),
            kind=published.item.kind,
            digest=published.digest,
            document=item_to_dict(published.item),
        )

    @app.get("/versions/{location:path}", response_model=VersionsResponse)
    def get_versions(location: str):
        return VersionsResponse(location=location, versions=store.versions(location))

    # -------------------- Runs --------------------

    def execute(run_id: str, prepared: PipelineRun) -> None:
        try:
            result = prepared.execute()
            status, payload = result.status.value, result.to_dict()
        except Exception as e:
            log.exception("run %s crashed", run_id)
            status, payload = "failed", {"error": f"{type(e).__name__}: {e}"}
        with sessions() as s, s.begin():
            run = s.get(Run, run_id)
            run.status = status
            run.result = payload

    @app.post("/runs", response_model=RunResponse, status_code=202)
    def create_run(req: CreateRunRequest, background: BackgroundTasks):
        # resolution and binding errors surface here, before anything runs
        prepared = PipelineRun.prepare(
            store,
            PipelineRequest(reference=req.reference, inputs=req.inputs, secrets=req.secrets),
            executor,
            coerce_inputs=True,
            max_workers=settings.max_workers,
            halt_on_failure=req.halt_on_failure or settings.halt_on_failure,
        )
        with sessions() as s, s.begin():
            run = Run(
                reference=str(prepared.resolved.reference),
                digest=prepared.resolved.digest,
                status="running",
            )
            s.add(run)
            s.flush()
            s.refresh(run)
            response = _run_response(run)

        background.add_task(execute, response.id, prepared)
        return response

    @app.get("/runs/{run_id}", response_model=RunResponse)
    def get_run(run_id: str):
        with sessions() as s:
            run = s.get(Run, run_id)
            if not run:
                raise HTTPException(status_code=404, detail="Run not found")
            return _run_response(run)

    return app


_app: Optional[FastAPI] = None


def __getattr__(name: str):
    # `uvicorn reuseci.registry.main:app` builds the app from the environment on first access
    global _app
    if name == "app":
        if _app is None:
            _app = create_app()
        return _app
    raise AttributeError(name)
