import json
from datetime import datetime, timedelta, timezone

from tickflow.contracts import (
    AwaitingRetryState,
    CompletedState,
    FailedState,
    Job,
    JobResult,
    JobStatus,
    PendingState,
    RunningState,
    TickSummary,
)
from tickflow.orchestrator import retry_delay

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _job(**kwargs) -> Job:
    return Job(id="j1", workflow_id="wf", **kwargs)


def test_state_reflects_status():
    assert isinstance(_job().state, PendingState)
    running = _job(status=JobStatus.RUNNING, current_step_id="a").state
    assert isinstance(running, RunningState)
    assert running.step_id == "a"
    assert isinstance(_job(status=JobStatus.COMPLETED).state, CompletedState)


def test_failed_with_retry_scheduled_is_awaiting_retry():
    job = _job(
        status=JobStatus.FAILED,
        retry_count=2,
        next_retry_at=NOW,
        retry_step_id="b",
    )
    state = job.state
    assert isinstance(state, AwaitingRetryState)
    assert state.kind == "awaiting_retry"
    assert state.attempt == 2
    assert state.step_id == "b"


def test_failed_without_retry_is_terminal():
    state = _job(status=JobStatus.FAILED, error_message="nope").state
    assert isinstance(state, FailedState)
    assert state.error == "nope"


def test_lease_expired():
    assert _job().lease_expired(NOW)
    assert _job(locked_until=NOW).lease_expired(NOW)
    assert not _job(locked_until=NOW + timedelta(seconds=1)).lease_expired(NOW)


def test_retry_delay():
    job = _job(status=JobStatus.FAILED, retry_count=1, next_retry_at=NOW + timedelta(minutes=1))
    assert retry_delay(job, NOW) == timedelta(minutes=1)
    assert retry_delay(job, NOW + timedelta(hours=1)) == timedelta(0)
    assert retry_delay(_job(status=JobStatus.FAILED), NOW) is None


def test_tick_summary_serializes_camel_case():
    summary = TickSummary(
        message="done",
        processed_count=1,
        succeeded_count=1,
        results=[JobResult(job_id="j1", status="completed", message="ok")],
    )
    data = json.loads(summary.to_json())
    assert data["processedCount"] == 1
    assert data["succeededCount"] == 1
    assert data["errorCount"] == 0
    assert data["results"] == [{"jobId": "j1", "status": "completed", "message": "ok"}]
