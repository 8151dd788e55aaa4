"""SQL implementation of the job store (SQLite via aiosqlite, PostgreSQL via asyncpg)."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, col, select

from ..contracts import Job, JobStatus, Transformer, utcnow
from ..errors import PersistenceError
from .repository import JobStore, prepare_patch
from .tables import JobRow, TransformerRow, WorkflowRow

logger = logging.getLogger(__name__)

_TIMESTAMP_FIELDS = (
    "next_retry_at",
    "locked_until",
    "created_at",
    "started_at",
    "completed_at",
    "last_updated_at",
)


def normalize_database_url(database_url: str) -> str:
    """Map plain database URLs onto the async drivers."""
    if database_url.startswith(("sqlite+aiosqlite://", "postgresql+asyncpg://")):
        return database_url
    if database_url.startswith("sqlite:///"):
        return "sqlite+aiosqlite:///" + database_url[len("sqlite:///") :]
    if database_url.startswith("sqlite://"):
        return "sqlite+aiosqlite:///" + database_url[len("sqlite://") :]
    for prefix in ("postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql+asyncpg://" + database_url[len(prefix) :]
    raise ValueError(f"Unsupported database backend: {database_url}")


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_job(row: JobRow) -> Job:
    data = row.model_dump()
    for key in _TIMESTAMP_FIELDS:
        data[key] = _utc(data.get(key))
    data["input_data"] = data.get("input_data") or {}
    data["step_data"] = data.get("step_data") or {}
    return Job.model_validate(data)


def _lease_free(now: datetime) -> Any:
    return or_(col(JobRow.locked_until).is_(None), col(JobRow.locked_until) <= now)


class SQLJobStore(JobStore):
    """Persist jobs using SQLModel tables over an async SQLAlchemy engine."""

    def __init__(self, database_url: str) -> None:
        self.database_url = normalize_database_url(database_url)
        connect_args = (
            {"check_same_thread": False}
            if self.database_url.startswith("sqlite")
            else {}
        )
        self.engine = create_async_engine(
            self.database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False

    # ------------------------------------------------------------------
    # Schema / session management
    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        try:
            if not self._initialized:
                await self.init_db()
            async with AsyncSession(self.engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Job store operation failed: {e}")
            raise PersistenceError(str(e)) from e
        except OSError as e:
            logger.error(f"Job store unreachable: {e}")
            raise PersistenceError(str(e)) from e

    async def close(self) -> None:
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Submission / read paths
    async def create_job(
        self, workflow_id: str, input_data: dict | None = None
    ) -> Job:
        now = utcnow()
        row = JobRow(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            status=JobStatus.PENDING.value,
            input_data=input_data or {},
            step_data={},
            retry_count=0,
            created_at=now,
            last_updated_at=now,
        )
        async with self.session() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return _to_job(row)

    async def get_job(self, job_id: str) -> Job | None:
        async with self.session() as session:
            row = await session.get(JobRow, job_id)
        return _to_job(row) if row else None

    async def list_jobs(
        self, status: JobStatus | None = None, limit: int | None = None
    ) -> list[Job]:
        query = select(JobRow).order_by(col(JobRow.created_at).desc())
        if status is not None:
            query = query.where(JobRow.status == JobStatus(status).value)
        if limit is not None:
            query = query.limit(limit)
        async with self.session() as session:
            rows = (await session.execute(query)).scalars().all()
        return [_to_job(r) for r in rows]

    # ------------------------------------------------------------------
    # Claims
    async def claim_pending_jobs(self, limit: int) -> list[Job]:
        query = (
            select(JobRow)
            .where(JobRow.status == JobStatus.PENDING.value)
            .order_by(col(JobRow.created_at).asc())
            .limit(limit)
        )
        async with self.session() as session:
            rows = (await session.execute(query)).scalars().all()
        return [_to_job(r) for r in rows]

    async def claim_running_jobs(
        self,
        limit: int,
        *,
        owner: str,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> list[Job]:
        now = _utc(now or utcnow())
        locked_until = now + timedelta(seconds=lease_seconds)
        query = (
            select(JobRow)
            .where(JobRow.status == JobStatus.RUNNING.value)
            .where(col(JobRow.current_step_id).is_not(None))
            .where(_lease_free(now))
            .order_by(col(JobRow.last_updated_at).asc())
            .limit(limit)
        )
        claimed: list[Job] = []
        async with self.session() as session:
            candidates = [_to_job(r) for r in (await session.execute(query)).scalars().all()]
            for job in candidates:
                leased = await self._lease(session, job, owner, locked_until, now)
                if leased is not None:
                    claimed.append(leased)
            await session.commit()
        return claimed

    async def lease_job(
        self,
        job_id: str,
        *,
        owner: str,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> Job | None:
        now = _utc(now or utcnow())
        async with self.session() as session:
            row = await session.get(JobRow, job_id)
            if row is None:
                return None
            job = _to_job(row)
            if job.status != JobStatus.RUNNING or job.current_step_id is None:
                return None
            leased = await self._lease(
                session, job, owner, now + timedelta(seconds=lease_seconds), now
            )
            await session.commit()
        return leased

    @staticmethod
    async def _lease(
        session: AsyncSession,
        job: Job,
        owner: str,
        locked_until: datetime,
        now: datetime,
    ) -> Job | None:
        result = await session.execute(
            update(JobRow)
            .where(col(JobRow.id) == job.id)
            .where(JobRow.status == JobStatus.RUNNING.value)
            .where(col(JobRow.current_step_id) == job.current_step_id)
            .where(_lease_free(now))
            .values(locked_by=owner, locked_until=locked_until, last_updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return job.model_copy(
            update={"locked_by": owner, "locked_until": locked_until, "last_updated_at": now}
        )

    async def claim_retryable_jobs(
        self, limit: int, *, max_retries: int, now: Optional[datetime] = None
    ) -> list[Job]:
        now = _utc(now or utcnow())
        query = (
            select(JobRow)
            .where(JobRow.status == JobStatus.FAILED.value)
            .where(col(JobRow.next_retry_at).is_not(None))
            .where(col(JobRow.next_retry_at) <= now)
            .where(col(JobRow.retry_count) <= max_retries)
            .order_by(col(JobRow.next_retry_at).asc())
            .limit(limit)
        )
        async with self.session() as session:
            rows = (await session.execute(query)).scalars().all()
        return [_to_job(r) for r in rows]

    async def update_job(
        self,
        job_id: str,
        patch: dict[str, Any],
        *,
        expected_status: JobStatus | None = None,
        owner: str | None = None,
        now: Optional[datetime] = None,
    ) -> bool:
        values = prepare_patch(patch, _utc(now or utcnow()))
        for key in _TIMESTAMP_FIELDS:
            if key in values:
                values[key] = _utc(values[key])
        stmt = update(JobRow).where(col(JobRow.id) == job_id)
        if expected_status is not None:
            stmt = stmt.where(JobRow.status == JobStatus(expected_status).value)
        if owner is not None:
            stmt = stmt.where(col(JobRow.locked_by) == owner)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        async with self.session() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Definitions
    async def read_workflow_definition(self, workflow_id: str) -> dict | None:
        async with self.session() as session:
            row = await session.get(WorkflowRow, workflow_id)
        return row.definition if row else None

    async def read_transformer(self, transformer_id: str) -> Transformer | None:
        async with self.session() as session:
            row = await session.get(TransformerRow, transformer_id)
        if row is None:
            return None
        return Transformer(
            id=row.id,
            target_function=row.target_function,
            config=row.config or {},
            type=row.type,
            description=row.description,
        )

    async def save_workflow(self, workflow_id: str, definition: dict) -> None:
        async with self.session() as session:
            await session.merge(WorkflowRow(id=workflow_id, definition=definition))
            await session.commit()

    async def save_transformer(self, transformer: Transformer) -> None:
        async with self.session() as session:
            await session.merge(TransformerRow(**transformer.model_dump()))
            await session.commit()
