from datetime import datetime, timedelta, timezone

import pytest

import tickflow.persistence as persistence
from tickflow.contracts import Transformer
from tickflow.executors import LocalExecutorBackend
from tickflow.persistence import InMemoryJobStore

TWO_STEP_WORKFLOW = {
    "start_step": "fetch",
    "steps": {
        "fetch": {"transformer_id": "t-fetch", "next_step": "shout"},
        "shout": {
            "transformer_id": "t-shout",
            "input_map": "$.fetch",
            "output_map": "$.text",
        },
    },
    "output_map": {"text": "$.shout"},
}

TRANSFORMERS = [
    Transformer(id="t-fetch", target_function="fetch", config={"source": "input"}),
    Transformer(id="t-shout", target_function="shout"),
    Transformer(id="t-echo", target_function="echo"),
    Transformer(id="t-flaky", target_function="flaky"),
]


def fetch(payload: dict) -> dict:
    return {"text": payload["job_input"]["text"]}


async def shout(payload: dict) -> dict:
    return {"text": payload["step_data"]["text"].upper()}


def flaky(payload: dict) -> dict:
    raise RuntimeError("upstream unavailable")


class FakeClock:
    """Deterministic clock for driving retry schedules."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def seed_definitions(store) -> None:
    for transformer in TRANSFORMERS:
        await store.save_transformer(transformer)
    await store.save_workflow("two-step", TWO_STEP_WORKFLOW)
    await store.save_workflow(
        "echo",
        {
            "start_step": "only",
            "steps": {"only": {"transformer_id": "t-echo", "output_map": "$.output"}},
        },
    )
    await store.save_workflow(
        "flaky",
        {"start_step": "call", "steps": {"call": {"transformer_id": "t-flaky"}}},
    )
    await store.save_workflow(
        "broken",
        {"start_step": "call", "steps": {"call": {"transformer_id": "t-missing"}}},
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def backend() -> LocalExecutorBackend:
    return LocalExecutorBackend({"fetch": fetch, "shout": shout, "flaky": flaky})


@pytest.fixture(autouse=True)
def _reset_store_singleton(monkeypatch):
    for name in (
        "TICKFLOW_CONFIG",
        "TICKFLOW_DATABASE_URL",
        "DATABASE_URL",
        "TICKFLOW_ORCHESTRATOR_SECRET",
        "TICKFLOW_EXECUTOR_BACKEND",
        "TICKFLOW_EXECUTOR_URL",
        "TICKFLOW_EXECUTOR_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    persistence._store_instance = None
    yield
    persistence._store_instance = None
