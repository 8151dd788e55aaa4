import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import seed_definitions
from tickflow.api import create_app
from tickflow.config import TickflowConfig
from tickflow.errors import ConfigError, PersistenceError
from tickflow.persistence import InMemoryJobStore

AUTH = {"Authorization": "Bearer s3cret"}


@pytest.fixture
def client(store, backend):
    asyncio.run(seed_definitions(store))
    app = create_app(
        store=store,
        executor_backend=backend,
        config=TickflowConfig(orchestrator_secret="s3cret"),
    )
    with TestClient(app) as client:
        yield client


def test_create_app_requires_secret(store, backend):
    with pytest.raises(ConfigError):
        create_app(store=store, executor_backend=backend, config=TickflowConfig())


def test_health_needs_no_auth(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "s3cret"}])
def test_orchestrate_rejects_bad_credentials(client, headers):
    response = client.post("/orchestrate", headers=headers)
    assert response.status_code == 401


def test_orchestrate_with_no_work(client):
    response = client.post("/orchestrate", headers=AUTH)
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "No jobs due for processing."
    assert body["processedCount"] == 0
    assert body["results"] == []


def test_job_lifecycle_over_http(client):
    created = client.post(
        "/jobs", json={"workflow_id": "two-step", "input_data": {"text": "hey"}}, headers=AUTH
    )
    assert created.status_code == 201
    job_id = created.json()["id"]
    assert created.json()["status"] == "pending"

    for expected in ("started", "advanced", "completed"):
        tick = client.post("/orchestrate", headers=AUTH).json()
        assert tick["processedCount"] == 1
        assert tick["results"][0] == {
            "jobId": job_id,
            "status": expected,
            "message": tick["results"][0]["message"],
        }

    status = client.get(f"/jobs/{job_id}", headers=AUTH)
    assert status.status_code == 200
    body = status.json()
    assert body["status"] == "completed"
    assert body["state"] == "completed"
    assert body["result"] == {"text": "HEY"}
    assert body["error"] is None

    listed = client.get("/jobs", params={"status": "completed"}, headers=AUTH).json()
    assert [j["job_id"] for j in listed["jobs"]] == [job_id]
    assert client.get("/jobs", params={"status": "pending"}, headers=AUTH).json() == {"jobs": []}


def test_start_unknown_workflow(client):
    response = client.post("/jobs", json={"workflow_id": "nope"}, headers=AUTH)
    assert response.status_code == 404


def test_start_requires_workflow_id(client):
    response = client.post("/jobs", json={"input_data": {}}, headers=AUTH)
    assert response.status_code == 422


def test_unknown_job(client):
    assert client.get("/jobs/missing", headers=AUTH).status_code == 404


def test_retry_endpoint(client):
    response = client.post("/retry-failed-jobs", headers=AUTH)
    assert response.status_code == 200
    assert response.json()["processedCount"] == 0


class BrokenStore(InMemoryJobStore):
    async def claim_running_jobs(self, limit, **kwargs):
        raise PersistenceError("database is down")


def test_orchestrate_claim_failure_returns_500(backend):
    app = create_app(
        store=BrokenStore(),
        executor_backend=backend,
        config=TickflowConfig(orchestrator_secret="s3cret"),
    )
    with TestClient(app) as client:
        response = client.post("/orchestrate", headers=AUTH)
    assert response.status_code == 500
    assert "database is down" in response.json()["error"]
