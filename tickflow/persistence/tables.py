from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from ..contracts import utcnow


def _timestamp() -> Any:
    return Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))


class JobRow(SQLModel, table=True):
    """A row of the ``jobs`` table."""

    __tablename__ = "jobs"

    id: str = Field(primary_key=True)
    workflow_id: str = Field(index=True)
    status: str = Field(default="pending", index=True)
    current_step_id: Optional[str] = None
    input_data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    step_data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    final_result: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = _timestamp()
    retry_step_id: Optional[str] = None
    locked_by: Optional[str] = None
    locked_until: Optional[datetime] = _timestamp()
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    started_at: Optional[datetime] = _timestamp()
    completed_at: Optional[datetime] = _timestamp()
    last_updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class WorkflowRow(SQLModel, table=True):
    """A workflow definition; read-only to the orchestrator."""

    __tablename__ = "workflows"

    id: str = Field(primary_key=True)
    definition: dict = Field(sa_column=Column(JSON))


class TransformerRow(SQLModel, table=True):
    """A transformer bound to an executor function."""

    __tablename__ = "transformers"

    id: str = Field(primary_key=True)
    type: Optional[str] = None
    description: Optional[str] = None
    target_function: Optional[str] = None
    config: dict = Field(default_factory=dict, sa_column=Column(JSON))
