"""Core data contracts for the tickflow orchestrator."""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, enum.Enum):
    """Persisted job status values."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStep(BaseModel):
    """Configuration for a single step within a workflow definition."""

    transformer_id: str
    input_map: Optional[str] = None
    output_map: Optional[str] = None
    next_step: Optional[str] = None


class WorkflowDefinition(BaseModel):
    """Static DAG stored in ``workflows.definition``."""

    start_step: Optional[str] = None
    steps: Dict[str, WorkflowStep]
    output_map: Optional[Union[str, Dict[str, str]]] = None


class Transformer(BaseModel):
    """A named, reusable unit of work bound to an executor function."""

    id: str
    target_function: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    type: Optional[str] = None
    description: Optional[str] = None


# ----------------------------------------------------------------------
# Tagged job state. The store keeps a single ``failed`` status for both
# terminal failures and failures awaiting a retry; ``Job.state`` separates them.


class PendingState(BaseModel):
    kind: Literal["pending"] = "pending"


class RunningState(BaseModel):
    kind: Literal["running"] = "running"
    step_id: str


class CompletedState(BaseModel):
    kind: Literal["completed"] = "completed"
    completed_at: Optional[datetime] = None


class AwaitingRetryState(BaseModel):
    kind: Literal["awaiting_retry"] = "awaiting_retry"
    at: datetime
    attempt: int
    step_id: Optional[str] = None


class FailedState(BaseModel):
    kind: Literal["failed"] = "failed"
    error: Optional[str] = None


JobState = Annotated[
    Union[PendingState, RunningState, CompletedState, AwaitingRetryState, FailedState],
    Field(discriminator="kind"),
]


class Job(BaseModel):
    """One execution instance of a workflow."""

    id: str
    workflow_id: str
    status: JobStatus = JobStatus.PENDING
    current_step_id: Optional[str] = None
    input_data: Dict[str, Any] = Field(default_factory=dict)
    step_data: Dict[str, Any] = Field(default_factory=dict)
    final_result: Optional[Any] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    retry_step_id: Optional[str] = None
    locked_by: Optional[str] = None
    locked_until: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_updated_at: datetime = Field(default_factory=utcnow)

    @property
    def state(self) -> JobState:
        """Return the explicit state of the job."""
        if self.status == JobStatus.PENDING:
            return PendingState()
        if self.status == JobStatus.RUNNING:
            return RunningState(step_id=self.current_step_id or "")
        if self.status == JobStatus.COMPLETED:
            return CompletedState(completed_at=self.completed_at)
        if self.next_retry_at is not None:
            return AwaitingRetryState(
                at=self.next_retry_at,
                attempt=self.retry_count,
                step_id=self.retry_step_id,
            )
        return FailedState(error=self.error_message)

    def lease_expired(self, now: datetime) -> bool:
        return self.locked_until is None or self.locked_until <= now


class RetryDecision(BaseModel):
    """Outcome of the retry/backoff engine."""

    retry: bool
    new_retry_count: int
    delay: Optional[timedelta] = None
    next_retry_at: Optional[datetime] = None


class StepOutcome(BaseModel):
    """Structured result of executing one step."""

    ok: bool
    output: Any = None
    new_step_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    retryable: bool = False

    @classmethod
    def success(cls, output: Any, new_step_data: Dict[str, Any]) -> "StepOutcome":
        return cls(ok=True, output=output, new_step_data=new_step_data)

    @classmethod
    def failure(cls, error: str, retryable: bool = True) -> "StepOutcome":
        return cls(ok=False, error=error, retryable=retryable)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobResult(_CamelModel):
    """Per-job entry in a tick summary."""

    job_id: str
    status: str
    message: str


class TickSummary(_CamelModel):
    """Aggregate result of one orchestration tick."""

    message: str
    processed_count: int = 0
    succeeded_count: int = 0
    error_count: int = 0
    results: List[JobResult] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
