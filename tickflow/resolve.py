"""Resolve a job's current step against its workflow definition."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from .contracts import Job, Transformer, WorkflowDefinition, WorkflowStep
from .errors import (
    InvalidPathMapping,
    PathSyntaxError,
    StepNotFound,
    TransformerNotFound,
    WorkflowNotFound,
)
from .paths import validate_paths
from .persistence import JobStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedStep:
    """Everything needed to execute one step of a job."""

    step_id: str
    step: WorkflowStep
    transformer: Transformer
    definition: WorkflowDefinition

    @property
    def target_function(self) -> str:
        return self.transformer.target_function or ""

    @property
    def is_terminal(self) -> bool:
        return not self.step.next_step


class StepResolver:
    """Loads workflow definitions and transformers from the job store.

    Nothing is cached: each call reads the store again.
    """

    def __init__(self, store: JobStore) -> None:
        self._store = store

    async def load_definition(self, workflow_id: str) -> WorkflowDefinition:
        raw = await self._store.read_workflow_definition(workflow_id)
        if not raw:
            raise WorkflowNotFound(workflow_id)
        try:
            return WorkflowDefinition.model_validate(raw)
        except ValidationError as e:
            logger.error(f"Workflow {workflow_id} definition is malformed: {e}")
            raise WorkflowNotFound(workflow_id, "has a malformed definition") from e

    async def resolve_start_step(self, workflow_id: str) -> str:
        """Return the id of the workflow's first step."""
        definition = await self.load_definition(workflow_id)
        if not definition.start_step:
            raise WorkflowNotFound(workflow_id, "has no start_step")
        return definition.start_step

    async def resolve(
        self, job: Job, step_id: Optional[str] = None
    ) -> ResolvedStep:
        """Return the configuration and executor binding for ``job``'s step.

        Raises a ``ConfigurationError`` subclass when the workflow, the step or
        the transformer cannot be resolved.
        """
        step_id = step_id or job.current_step_id
        definition = await self.load_definition(job.workflow_id)

        step = definition.steps.get(step_id) if step_id else None
        if step is None:
            raise StepNotFound(job.workflow_id, step_id)

        try:
            validate_paths([step.input_map, step.output_map])
            if isinstance(definition.output_map, str):
                validate_paths([definition.output_map])
            elif definition.output_map:
                validate_paths(list(definition.output_map.values()))
        except PathSyntaxError as e:
            raise InvalidPathMapping(step_id, e) from e

        transformer = await self._store.read_transformer(step.transformer_id)
        if transformer is None:
            raise TransformerNotFound(step.transformer_id)
        if not transformer.target_function:
            raise TransformerNotFound(step.transformer_id, "has no target_function")

        return ResolvedStep(
            step_id=step_id,
            step=step,
            transformer=transformer,
            definition=definition,
        )
