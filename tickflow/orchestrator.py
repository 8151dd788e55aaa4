"""Polling orchestration loop.

Each tick re-reads everything it needs from the job store, so the
orchestrator keeps no state between ticks and can be restarted at any time.
A tick has three phases:

1. advance leased ``running`` jobs by executing their current step;
2. start ``pending`` jobs at their workflow's start step;
3. promote failed jobs whose retry is due back to ``running``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .config import TickflowConfig
from .contracts import (
    AwaitingRetryState,
    Job,
    JobResult,
    JobStatus,
    TickSummary,
    utcnow,
)
from .errors import ClaimError, ConfigurationError, PersistenceError
from .execute import StepExecutor
from .executors import ExecutorBackend
from .paths import map_result
from .persistence import JobStore
from .resolve import StepResolver
from .utils.retry import decide, failure_patch, terminal_failure_patch

logger = logging.getLogger(__name__)

T = TypeVar("T")

SUCCESS_STATUSES = frozenset({"advanced", "completed", "started", "retry_started"})
ERROR_STATUSES = frozenset({"failed", "retrying", "persistence_error", "error"})


class Orchestrator:
    """Drives jobs through their workflows one tick at a time."""

    def __init__(
        self,
        store: JobStore,
        executor_backend: ExecutorBackend,
        config: Optional[TickflowConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or TickflowConfig()
        self.settings = self.config.orchestrator
        self._store = store
        self._resolver = StepResolver(store)
        self._executor = StepExecutor(executor_backend, timeout=self.config.executor.timeout)
        self._clock = clock

    # ------------------------------------------------------------------
    # Store access
    async def _store_call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.settings.store_timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                f"Job store call timed out after {self.settings.store_timeout:g}s"
            ) from e

    async def _update(
        self,
        job_id: str,
        patch: dict[str, Any],
        *,
        expected_status: JobStatus | None = None,
        owner: str | None = None,
    ) -> bool:
        return await self._store_call(
            self._store.update_job(
                job_id,
                patch,
                expected_status=expected_status,
                owner=owner,
                now=self._clock(),
            )
        )

    # ------------------------------------------------------------------
    # Tick
    async def run_tick(self) -> TickSummary:
        """Run one orchestration tick and report what happened.

        Raises:
            ClaimError: If a claim query fails. Nothing has been applied to
                any job when this is raised.
        """
        owner = uuid.uuid4().hex
        now = self._clock()
        batch = self.settings.batch_size
        logger.info(f"Orchestrator tick {owner} started")

        running: list[Job] = []
        try:
            running = await self._store_call(
                self._store.claim_running_jobs(
                    batch,
                    owner=owner,
                    lease_seconds=self.settings.lease_seconds,
                    now=now,
                )
            )
            pending = await self._store_call(self._store.claim_pending_jobs(batch))
            retryable = await self._store_call(
                self._store.claim_retryable_jobs(
                    batch, max_retries=self.settings.max_retries, now=now
                )
            )
        except PersistenceError as e:
            logger.error(f"Tick {owner} aborted, failed to claim jobs: {e}")
            await self._release_leases(running, owner)
            raise ClaimError(f"Failed to claim jobs: {e}") from e

        logger.info(
            f"Tick {owner}: {len(running)} running, {len(pending)} pending, "
            f"{len(retryable)} due for retry"
        )

        results: list[JobResult] = []
        work = [(job, lambda j: self.advance_job(j, owner)) for job in running]
        work += [(job, self.start_job) for job in pending]
        work += [(job, self.promote_job) for job in retryable]

        timed_out = False
        try:
            await asyncio.wait_for(
                self._run_batch(work, results), timeout=self.settings.tick_timeout
            )
        except asyncio.TimeoutError:
            timed_out = True
            logger.error(
                f"Tick {owner} exceeded its {self.settings.tick_timeout:g}s deadline; "
                "unfinished jobs are left for a later tick"
            )
            done = {r.job_id for r in results}
            results.extend(
                JobResult(
                    job_id=job.id,
                    status="abandoned",
                    message="Tick deadline exceeded",
                )
                for job, _ in work
                if job.id not in done
            )

        summary = self._summarize(results, timed_out)
        logger.info(summary.message)
        return summary

    async def _run_batch(
        self,
        work: list[tuple[Job, Callable[[Job], Awaitable[JobResult]]]],
        results: list[JobResult],
    ) -> None:
        await asyncio.gather(*(self._guarded(job, handler, results) for job, handler in work))

    async def _guarded(
        self,
        job: Job,
        handler: Callable[[Job], Awaitable[JobResult]],
        results: list[JobResult],
    ) -> None:
        try:
            result = await handler(job)
        except PersistenceError as e:
            logger.error(f"job={job.id}: job store error: {e}")
            result = JobResult(job_id=job.id, status="persistence_error", message=str(e))
        except Exception as e:
            # one job's failure must not abort the rest of the batch
            logger.exception(f"job={job.id}: unexpected error during processing")
            result = JobResult(
                job_id=job.id, status="error", message=f"Unexpected error: {e}"
            )
        results.append(result)

    async def _release_leases(self, jobs: list[Job], owner: str) -> None:
        for job in jobs:
            try:
                await self._update(
                    job.id, {"locked_by": None, "locked_until": None}, owner=owner
                )
            except PersistenceError as e:
                logger.warning(f"job={job.id}: could not release lease: {e}")

    @staticmethod
    def _summarize(results: list[JobResult], timed_out: bool = False) -> TickSummary:
        processed = len(results)
        succeeded = sum(1 for r in results if r.status in SUCCESS_STATUSES)
        errors = sum(1 for r in results if r.status in ERROR_STATUSES)
        if not results:
            message = "No jobs due for processing."
        else:
            message = (
                f"Orchestration run finished. Processed {processed} job(s): "
                f"{succeeded} succeeded, {errors} failed."
            )
        if timed_out:
            message += " Tick deadline exceeded."
        return TickSummary(
            message=message,
            processed_count=processed,
            succeeded_count=succeeded,
            error_count=errors,
            results=results,
        )

    # ------------------------------------------------------------------
    # Phase 1: running jobs
    async def advance_job(self, job: Job, owner: str) -> JobResult:
        """Execute the current step of a job leased to ``owner``."""
        now = self._clock()
        try:
            resolved = await self._store_call(self._resolver.resolve(job))
        except ConfigurationError as e:
            logger.error(f"job={job.id}: {e}; marking job as failed")
            applied = await self._update(job.id, terminal_failure_patch(str(e), now), owner=owner)
            return self._applied(job, applied, "failed", str(e))

        outcome = await self._executor.execute(job, resolved)
        now = self._clock()

        if outcome.ok:
            base = {
                "step_data": outcome.new_step_data,
                "error_message": None,
                "locked_by": None,
                "locked_until": None,
            }
            if resolved.step.next_step:
                patch = {**base, "current_step_id": resolved.step.next_step}
                status = "advanced"
                message = f"Step '{resolved.step_id}' completed, next step '{resolved.step.next_step}'"
            else:
                output_map = resolved.definition.output_map
                final_result = (
                    map_result(outcome.new_step_data, output_map)
                    if output_map
                    else outcome.output
                )
                patch = {
                    **base,
                    "status": JobStatus.COMPLETED,
                    "current_step_id": None,
                    "final_result": final_result,
                    "next_retry_at": None,
                    "retry_step_id": None,
                    "completed_at": now,
                }
                status = "completed"
                message = f"Workflow completed at step '{resolved.step_id}'"
            applied = await self._update(job.id, patch, owner=owner)
            if not applied:
                logger.error(
                    f"job={job.id}: step '{resolved.step_id}' executed but its result "
                    "was not recorded (lease lost)"
                )
                return JobResult(
                    job_id=job.id,
                    status="persistence_error",
                    message=f"Step '{resolved.step_id}' executed but job update was not applied",
                )
            logger.info(f"job={job.id}: {message}")
            return JobResult(job_id=job.id, status=status, message=message)

        if not outcome.retryable:
            applied = await self._update(
                job.id, terminal_failure_patch(outcome.error or "Step failed", now), owner=owner
            )
            return self._applied(job, applied, "failed", outcome.error or "Step failed")

        return await self._record_failure(job, outcome.error or "Step failed", resolved.step_id, owner)

    async def _record_failure(
        self, job: Job, error: str, step_id: str, owner: str
    ) -> JobResult:
        now = self._clock()
        decision = decide(job.retry_count, self.settings.max_retries, now=now)
        patch = failure_patch(job, error, decision, step_id=step_id, now=now)
        applied = await self._update(job.id, patch, owner=owner)
        if decision.retry:
            logger.info(
                f"job={job.id}: scheduling retry {decision.new_retry_count} "
                f"at {decision.next_retry_at.isoformat()}"
            )
            return self._applied(
                job,
                applied,
                "retrying",
                f"{error} (retry {decision.new_retry_count} at {decision.next_retry_at.isoformat()})",
            )
        logger.warning(
            f"job={job.id}: reached max retry count ({self.settings.max_retries}), "
            "marking as permanently failed"
        )
        return self._applied(job, applied, "failed", f"{error} (retries exhausted)")

    @staticmethod
    def _applied(job: Job, applied: bool, status: str, message: str) -> JobResult:
        if not applied:
            return JobResult(
                job_id=job.id,
                status="skipped",
                message="Job was claimed or changed by another tick",
            )
        return JobResult(job_id=job.id, status=status, message=message)

    # ------------------------------------------------------------------
    # Phase 2: pending jobs
    async def start_job(self, job: Job) -> JobResult:
        """Move a pending job to its workflow's start step."""
        now = self._clock()
        try:
            start_step = await self._store_call(
                self._resolver.resolve_start_step(job.workflow_id)
            )
        except ConfigurationError as e:
            logger.error(f"job={job.id}: cannot start: {e}")
            applied = await self._update(
                job.id,
                terminal_failure_patch(str(e), now),
                expected_status=JobStatus.PENDING,
            )
            return self._applied(job, applied, "failed", str(e))

        applied = await self._update(
            job.id,
            {
                "status": JobStatus.RUNNING,
                "current_step_id": start_step,
                "started_at": job.started_at or now,
                "next_retry_at": None,
            },
            expected_status=JobStatus.PENDING,
        )
        if applied:
            logger.info(f"job={job.id}: marked as running, current step '{start_step}'")
        return self._applied(job, applied, "started", f"Started at step '{start_step}'")

    # ------------------------------------------------------------------
    # Phase 3: retries
    async def promote_job(self, job: Job) -> JobResult:
        """Resume a failed job whose retry is due.

        The job resumes at the step that failed; a job with no recorded step
        goes back to ``pending`` and restarts from the workflow's start step.
        """
        if job.retry_step_id:
            patch = {
                "status": JobStatus.RUNNING,
                "current_step_id": job.retry_step_id,
                "retry_step_id": None,
                "next_retry_at": None,
            }
            message = f"Retry {job.retry_count} resuming at step '{job.retry_step_id}'"
        else:
            patch = {"status": JobStatus.PENDING, "next_retry_at": None}
            message = f"Retry {job.retry_count} queued from the start step"
        applied = await self._update(job.id, patch, expected_status=JobStatus.FAILED)
        if applied:
            logger.info(f"job={job.id}: {message}")
        return self._applied(job, applied, "retry_started", message)

    async def promote_retryable_jobs(self) -> TickSummary:
        """Run only the retry promotion phase."""
        try:
            jobs = await self._store_call(
                self._store.claim_retryable_jobs(
                    self.settings.batch_size,
                    max_retries=self.settings.max_retries,
                    now=self._clock(),
                )
            )
        except PersistenceError as e:
            raise ClaimError(f"Failed to fetch jobs for retry: {e}") from e
        results: list[JobResult] = []
        await self._run_batch([(job, self.promote_job) for job in jobs], results)
        return self._summarize(results)

    # ------------------------------------------------------------------
    # Single job
    async def process_job(self, job_id: str) -> JobResult:
        """Take one job through whatever action is due for it now."""
        job = await self._store_call(self._store.get_job(job_id))
        if job is None:
            return JobResult(job_id=job_id, status="error", message="Job not found")

        now = self._clock()
        if job.status == JobStatus.PENDING:
            handler = self.start_job
        elif job.status == JobStatus.RUNNING:
            owner = uuid.uuid4().hex
            leased = await self._store_call(
                self._store.lease_job(
                    job_id,
                    owner=owner,
                    lease_seconds=self.settings.lease_seconds,
                    now=now,
                )
            )
            if leased is None:
                return JobResult(
                    job_id=job_id, status="skipped", message="Job is leased by another tick"
                )
            job = leased
            handler = lambda j: self.advance_job(j, owner)  # noqa: E731
        else:
            state = job.state
            if isinstance(state, AwaitingRetryState) and state.at <= now:
                handler = self.promote_job
            else:
                return JobResult(
                    job_id=job_id,
                    status="skipped",
                    message=f"Nothing to do for job in state '{state.kind}'",
                )
        results: list[JobResult] = []
        await self._guarded(job, handler, results)
        return results[0]

    # ------------------------------------------------------------------
    async def close(self) -> None:
        """Release the executor backend and the job store."""
        try:
            await self._executor.close()
        finally:
            await self._store.close()

    async def run_forever(
        self,
        interval: Optional[float] = None,
        max_ticks: Optional[int] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        """Run ticks back to back with ``interval`` seconds between them.

        A failing tick is logged and the loop carries on.
        """
        interval = self.settings.interval if interval is None else interval
        stop = stop or asyncio.Event()
        ticks = 0
        while not stop.is_set():
            try:
                await self.run_tick()
            except PersistenceError as e:
                logger.error(f"Tick failed: {e}")
            except Exception:
                logger.exception("Tick failed")
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass


def retry_delay(job: Job, now: Optional[datetime] = None) -> Optional[timedelta]:
    """Time left until ``job``'s scheduled retry, or ``None`` if none is scheduled."""
    state = job.state
    if not isinstance(state, AwaitingRetryState):
        return None
    return max(state.at - (now or utcnow()), timedelta(0))
