"""In-memory implementation of the job store."""

from __future__ import annotations

import asyncio
import copy
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from ..contracts import Job, JobStatus, Transformer, utcnow
from .repository import JobStore, prepare_patch


class InMemoryJobStore(JobStore):
    """Store jobs, workflows and transformers in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Conditional updates hold a single
    lock so concurrent ticks in one process see compare-and-swap semantics.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._workflows: Dict[str, dict] = {}
        self._transformers: Dict[str, Transformer] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create_job(
        self, workflow_id: str, input_data: dict | None = None
    ) -> Job:
        now = utcnow()
        job = Job(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            input_data=copy.deepcopy(input_data or {}),
            created_at=now,
            last_updated_at=now,
        )
        async with self._lock:
            self._jobs[job.id] = job
        return job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_jobs(
        self, status: JobStatus | None = None, limit: int | None = None
    ) -> list[Job]:
        jobs = [j for j in self._jobs.values() if status is None or j.status == status]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        if limit is not None:
            jobs = jobs[:limit]
        return [j.model_copy(deep=True) for j in jobs]

    # ------------------------------------------------------------------
    async def claim_pending_jobs(self, limit: int) -> list[Job]:
        jobs = [j for j in self._jobs.values() if j.status == JobStatus.PENDING]
        jobs.sort(key=lambda j: j.created_at)
        return [j.model_copy(deep=True) for j in jobs[:limit]]

    async def claim_running_jobs(
        self,
        limit: int,
        *,
        owner: str,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> list[Job]:
        now = now or utcnow()
        locked_until = now + timedelta(seconds=lease_seconds)
        async with self._lock:
            candidates = [
                j
                for j in self._jobs.values()
                if j.status == JobStatus.RUNNING
                and j.current_step_id is not None
                and j.lease_expired(now)
            ]
            candidates.sort(key=lambda j: j.last_updated_at)
            return [
                self._lease(job, owner, locked_until, now) for job in candidates[:limit]
            ]

    async def lease_job(
        self,
        job_id: str,
        *,
        owner: str,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> Job | None:
        now = now or utcnow()
        async with self._lock:
            job = self._jobs.get(job_id)
            if (
                job is None
                or job.status != JobStatus.RUNNING
                or job.current_step_id is None
                or not job.lease_expired(now)
            ):
                return None
            return self._lease(job, owner, now + timedelta(seconds=lease_seconds), now)

    @staticmethod
    def _lease(job: Job, owner: str, locked_until: datetime, now: datetime) -> Job:
        job.locked_by = owner
        job.locked_until = locked_until
        job.last_updated_at = now
        return job.model_copy(deep=True)

    async def claim_retryable_jobs(
        self, limit: int, *, max_retries: int, now: Optional[datetime] = None
    ) -> list[Job]:
        now = now or utcnow()
        jobs = [
            j
            for j in self._jobs.values()
            if j.status == JobStatus.FAILED
            and j.next_retry_at is not None
            and j.next_retry_at <= now
            and j.retry_count <= max_retries
        ]
        jobs.sort(key=lambda j: j.next_retry_at)
        return [j.model_copy(deep=True) for j in jobs[:limit]]

    async def update_job(
        self,
        job_id: str,
        patch: dict[str, Any],
        *,
        expected_status: JobStatus | None = None,
        owner: str | None = None,
        now: Optional[datetime] = None,
    ) -> bool:
        values = prepare_patch(patch, now or utcnow())
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if expected_status is not None and job.status != expected_status:
                return False
            if owner is not None and job.locked_by != owner:
                return False
            data = job.model_dump()
            data.update(copy.deepcopy(values))
            self._jobs[job_id] = Job.model_validate(data)
        return True

    # ------------------------------------------------------------------
    async def read_workflow_definition(self, workflow_id: str) -> dict | None:
        definition = self._workflows.get(workflow_id)
        return copy.deepcopy(definition) if definition is not None else None

    async def read_transformer(self, transformer_id: str) -> Transformer | None:
        transformer = self._transformers.get(transformer_id)
        return transformer.model_copy(deep=True) if transformer else None

    async def save_workflow(self, workflow_id: str, definition: dict) -> None:
        self._workflows[workflow_id] = copy.deepcopy(definition)

    async def save_transformer(self, transformer: Transformer) -> None:
        self._transformers[transformer.id] = transformer.model_copy(deep=True)

    async def close(self) -> None:
        pass
