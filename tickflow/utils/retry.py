from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from ..constants import BACKOFF_SCHEDULE, DEFAULT_MAX_RETRIES
from ..contracts import Job, JobStatus, RetryDecision, utcnow


def compute_backoff(
    attempt: int, schedule: Sequence[timedelta] = BACKOFF_SCHEDULE
) -> timedelta:
    """Return the delay before retry number ``attempt`` (1-based).

    Attempts past the end of ``schedule`` reuse its last entry.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    index = min(attempt, len(schedule)) - 1
    return schedule[index]


def decide(
    current_retry_count: int,
    max_retries: int = DEFAULT_MAX_RETRIES,
    now: Optional[datetime] = None,
) -> RetryDecision:
    """Decide whether a job that just failed gets another attempt.

    The retry count never exceeds ``max_retries``: once another retry would go
    past the cap the job is given up and keeps its current count.
    """
    new_retry_count = current_retry_count + 1
    if new_retry_count > max_retries:
        return RetryDecision(retry=False, new_retry_count=current_retry_count)
    delay = compute_backoff(new_retry_count)
    return RetryDecision(
        retry=True,
        new_retry_count=new_retry_count,
        delay=delay,
        next_retry_at=(now or utcnow()) + delay,
    )


def failure_patch(
    job: Job,
    error: str,
    decision: RetryDecision,
    step_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Build the job update for a retryable failure.

    Shared by every code path that records a failed attempt, so they all apply
    the same backoff. ``step_id`` is where a scheduled retry resumes.
    """
    patch: dict[str, Any] = {
        "status": JobStatus.FAILED,
        "current_step_id": None,
        "error_message": error,
        "retry_count": decision.new_retry_count,
        "next_retry_at": decision.next_retry_at,
        "locked_by": None,
        "locked_until": None,
    }
    if decision.retry:
        patch["retry_step_id"] = step_id or job.current_step_id
    else:
        patch["retry_step_id"] = None
        patch["completed_at"] = now or utcnow()
    return patch


def terminal_failure_patch(
    error: str, now: Optional[datetime] = None
) -> dict[str, Any]:
    """Build the job update for a non-retryable failure."""
    return {
        "status": JobStatus.FAILED,
        "current_step_id": None,
        "error_message": error,
        "next_retry_at": None,
        "retry_step_id": None,
        "locked_by": None,
        "locked_until": None,
        "completed_at": now or utcnow(),
    }
