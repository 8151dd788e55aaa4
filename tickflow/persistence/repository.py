"""Job store abstraction for orchestrator state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from ..contracts import Job, JobStatus, Transformer

# Columns that ``update_job`` may change. ``last_updated_at`` is always stamped.
UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "current_step_id",
        "step_data",
        "final_result",
        "error_message",
        "retry_count",
        "next_retry_at",
        "retry_step_id",
        "locked_by",
        "locked_until",
        "started_at",
        "completed_at",
    }
)


def prepare_patch(patch: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Validate ``patch`` keys and stamp ``last_updated_at``."""
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update job fields: {', '.join(sorted(unknown))}")
    prepared = {
        key: value.value if isinstance(value, JobStatus) else value
        for key, value in patch.items()
    }
    prepared["last_updated_at"] = now
    return prepared


class JobStore(Protocol):
    """Protocol for job store backends.

    Every method is a single datastore call. Transport failures raise
    ``PersistenceError``; a missing record is ``None``.
    """

    async def create_job(
        self, workflow_id: str, input_data: dict | None = None
    ) -> Job:
        """Insert a new pending job."""

    async def get_job(self, job_id: str) -> Job | None:
        """Retrieve a job by id."""

    async def list_jobs(
        self, status: JobStatus | None = None, limit: int | None = None
    ) -> list[Job]:
        """Return jobs, newest first."""

    async def claim_pending_jobs(self, limit: int) -> list[Job]:
        """Return up to ``limit`` pending jobs, oldest first."""

    async def claim_running_jobs(
        self,
        limit: int,
        *,
        owner: str,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> list[Job]:
        """Lease up to ``limit`` running jobs to ``owner``, stalest first.

        Only jobs whose lease was acquired by this call are returned.
        """

    async def lease_job(
        self,
        job_id: str,
        *,
        owner: str,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> Job | None:
        """Lease one running job to ``owner`` if its lease is free or expired."""

    async def claim_retryable_jobs(
        self, limit: int, *, max_retries: int, now: Optional[datetime] = None
    ) -> list[Job]:
        """Return up to ``limit`` failed jobs whose retry is due."""

    async def update_job(
        self,
        job_id: str,
        patch: dict[str, Any],
        *,
        expected_status: JobStatus | None = None,
        owner: str | None = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Apply ``patch`` if the job still matches the expectations.

        Returns ``False`` when no row was affected.
        """

    async def read_workflow_definition(self, workflow_id: str) -> dict | None:
        """Return the raw workflow definition JSON."""

    async def read_transformer(self, transformer_id: str) -> Transformer | None:
        """Return the transformer record."""

    async def save_workflow(self, workflow_id: str, definition: dict) -> None:
        """Insert or replace a workflow definition."""

    async def save_transformer(self, transformer: Transformer) -> None:
        """Insert or replace a transformer."""

    async def close(self) -> None:
        """Release backend resources."""
