"""HTTP trigger and job endpoints."""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import TickflowConfig, load_config
from .contracts import Job, JobStatus
from .errors import ClaimError, PersistenceError
from .executors import ExecutorBackend, get_executor_backend
from .orchestrator import Orchestrator
from .persistence import JobStore, get_store

logger = logging.getLogger(__name__)


class StartWorkflowRequest(BaseModel):
    workflow_id: str = Field(..., min_length=1)
    input_data: Dict[str, Any] = Field(default_factory=dict)


class StartWorkflowResponse(BaseModel):
    id: str
    status: JobStatus
    created_at: datetime


class JobStatusResponse(BaseModel):
    job_id: str
    workflow_id: str
    status: JobStatus
    state: str
    current_step_id: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[Any] = None
    error: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(
            job_id=job.id,
            workflow_id=job.workflow_id,
            status=job.status,
            state=job.state.kind,
            current_step_id=job.current_step_id,
            retry_count=job.retry_count,
            next_retry_at=job.next_retry_at,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            result=job.final_result if job.status == JobStatus.COMPLETED else None,
            error=job.error_message if job.status == JobStatus.FAILED else None,
        )


class JobListResponse(BaseModel):
    jobs: List[JobStatusResponse]


def _require_secret(
    request: Request, authorization: Optional[str] = Header(default=None)
) -> None:
    expected = f"Bearer {request.app.state.secret}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        logger.warning("Unauthorized attempt to invoke orchestrator")
        raise HTTPException(status_code=401, detail="Unauthorized")


def _store(request: Request) -> JobStore:
    return request.app.state.store


def _orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def create_app(
    store: Optional[JobStore] = None,
    executor_backend: Optional[ExecutorBackend] = None,
    config: Optional[TickflowConfig] = None,
) -> FastAPI:
    """Create the FastAPI application.

    The orchestrator secret is validated here, once, so a misconfigured
    deployment fails at startup rather than on the first request.
    """
    config = config or load_config()
    secret = config.require_secret()
    store = store or get_store(config=config)
    executor_backend = executor_backend or get_executor_backend(config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("tickflow API starting")
        yield
        logger.info("tickflow API stopping")
        await executor_backend.close()
        await store.close()

    app = FastAPI(title="tickflow", version="0.1.0", lifespan=lifespan)
    app.state.secret = secret
    app.state.store = store
    app.state.orchestrator = Orchestrator(store, executor_backend, config)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.post("/orchestrate", dependencies=[Depends(_require_secret)])
    async def orchestrate(orchestrator: Orchestrator = Depends(_orchestrator)):
        try:
            summary = await orchestrator.run_tick()
        except ClaimError as e:
            return JSONResponse(status_code=500, content={"error": str(e)})
        except Exception:
            logger.exception("Unhandled error in orchestrator")
            return JSONResponse(
                status_code=500, content={"error": "Internal server error in orchestrator"}
            )
        return JSONResponse(content=summary.model_dump(mode="json", by_alias=True))

    @app.post("/retry-failed-jobs", dependencies=[Depends(_require_secret)])
    async def retry_failed_jobs(orchestrator: Orchestrator = Depends(_orchestrator)):
        try:
            summary = await orchestrator.promote_retryable_jobs()
        except ClaimError as e:
            return JSONResponse(status_code=500, content={"error": str(e)})
        return JSONResponse(content=summary.model_dump(mode="json", by_alias=True))

    @app.post(
        "/jobs",
        status_code=201,
        response_model=StartWorkflowResponse,
        dependencies=[Depends(_require_secret)],
    )
    async def start_workflow(
        body: StartWorkflowRequest, store: JobStore = Depends(_store)
    ) -> StartWorkflowResponse:
        try:
            definition = await store.read_workflow_definition(body.workflow_id)
            if definition is None:
                raise HTTPException(
                    status_code=404,
                    detail=f"Workflow with id '{body.workflow_id}' not found",
                )
            job = await store.create_job(body.workflow_id, body.input_data)
        except PersistenceError as e:
            logger.error(f"Job insert error: {e}")
            raise HTTPException(status_code=500, detail="Failed to create job") from e
        logger.info(f"Created job {job.id} for workflow {body.workflow_id}")
        return StartWorkflowResponse(id=job.id, status=job.status, created_at=job.created_at)

    @app.get(
        "/jobs", response_model=JobListResponse, dependencies=[Depends(_require_secret)]
    )
    async def list_jobs(
        status: Optional[JobStatus] = None, store: JobStore = Depends(_store)
    ) -> JobListResponse:
        jobs = await store.list_jobs(status=status)
        return JobListResponse(jobs=[JobStatusResponse.from_job(j) for j in jobs])

    @app.get(
        "/jobs/{job_id}",
        response_model=JobStatusResponse,
        dependencies=[Depends(_require_secret)],
    )
    async def get_job(job_id: str, store: JobStore = Depends(_store)) -> JobStatusResponse:
        job = await store.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return JobStatusResponse.from_job(job)

    return app
