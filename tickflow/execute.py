"""Step execution bridge between the orchestrator and executor backends."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .constants import DEFAULT_EXECUTOR_TIMEOUT
from .contracts import Job, StepOutcome
from .errors import ExecutorTimeout, StepFailed
from .executors import ExecutorBackend
from .paths import extract
from .resolve import ResolvedStep

logger = logging.getLogger(__name__)


class StepExecutor:
    """Runs a resolved step through an executor backend.

    Builds the payload from the job with the step's ``input_map``, bounds the
    call with ``timeout`` and folds the ``output_map``-shaped response into the
    job's step data. Failures come back as a ``StepOutcome``; scheduling a
    retry is left to the caller.
    """

    def __init__(
        self, backend: ExecutorBackend, timeout: float = DEFAULT_EXECUTOR_TIMEOUT
    ) -> None:
        self._backend = backend
        self.timeout = timeout

    async def close(self) -> None:
        await self._backend.close()

    def build_payload(self, job: Job, resolved: ResolvedStep) -> dict[str, Any]:
        input_map = resolved.step.input_map
        return {
            "job_id": job.id,
            "job_input": extract(job.input_data, input_map),
            "step_data": extract(job.step_data, input_map),
            "transformer_config": resolved.transformer.config,
            "current_step_id": resolved.step_id,
        }

    async def invoke(self, name: str, payload: dict[str, Any]) -> Any:
        try:
            return await asyncio.wait_for(
                self._backend.invoke(name, payload), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise ExecutorTimeout(name, self.timeout) from e

    async def execute(self, job: Job, resolved: ResolvedStep) -> StepOutcome:
        """Execute ``resolved`` for ``job`` and return the outcome."""
        name = resolved.target_function
        payload = self.build_payload(job, resolved)
        logger.info(
            f"job={job.id}: invoking step '{resolved.step_id}', "
            f"transformer '{resolved.transformer.id}', target function '{name}'"
        )
        try:
            response = await self.invoke(name, payload)
        except StepFailed as e:
            logger.warning(f"job={job.id}: step '{resolved.step_id}' failed: {e}")
            return StepOutcome.failure(str(e), retryable=e.retryable)
        except Exception as e:
            logger.exception(
                f"job={job.id}: step '{resolved.step_id}' raised an unexpected error"
            )
            return StepOutcome.failure(f"Executor '{name}' failed: {e}", retryable=True)

        output = extract(response, resolved.step.output_map)
        new_step_data = dict(job.step_data)
        new_step_data[resolved.step_id] = output
        logger.info(f"job={job.id}: step '{resolved.step_id}' succeeded")
        return StepOutcome.success(output, new_step_data)
