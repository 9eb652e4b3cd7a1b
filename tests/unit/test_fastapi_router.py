"""Unit tests for FastAPI router."""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from generation_jobs.errors import AuthTokenError, DuplicateActiveJobError, JobNotFoundError
from generation_jobs.fastapi_router import check_auth_token, create_jobs_router
from generation_jobs.models import JobStatus
from generation_jobs.service import JobService

OWNER = {"X-Owner-Id": "user-123"}


@pytest.fixture
def mock_job_service():
    """Create a mock job service."""
    service = MagicMock(spec=JobService)
    service.enqueue = AsyncMock()
    service.get_job = AsyncMock()
    service.get_active_job = AsyncMock(return_value=None)
    service.list_jobs = AsyncMock(return_value=[])
    service.cancel = AsyncMock(return_value=True)
    service.reset_if_stuck = AsyncMock(return_value=True)
    return service


def build_client(service, auth_token=None):
    app = FastAPI()
    app.include_router(create_jobs_router(lambda: service, auth_token=auth_token))
    return TestClient(app)


@pytest.fixture
def client(mock_job_service):
    return build_client(mock_job_service)


def test_enqueue_job(client, mock_job_service):
    job_id = uuid4()
    mock_job_service.enqueue.return_value = job_id

    response = client.post(
        "/jobs",
        json={"input_snapshot": {"goal": "5k"}, "max_retries": 2},
        headers=OWNER,
    )

    assert response.status_code == 200
    assert response.json() == {"job_id": str(job_id)}
    mock_job_service.enqueue.assert_called_once_with(
        owner_id="user-123",
        input_snapshot={"goal": "5k"},
        cycle_key=None,
        max_retries=2,
    )


def test_enqueue_requires_owner(client):
    response = client.post("/jobs", json={"input_snapshot": {}})

    assert response.status_code == 401


def test_enqueue_duplicate_returns_409(client, mock_job_service):
    existing = uuid4()
    mock_job_service.enqueue.side_effect = DuplicateActiveJobError(
        "user-123", "2024-03-04", existing
    )

    response = client.post("/jobs", json={"input_snapshot": {}}, headers=OWNER)

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "duplicate_active_job"
    assert detail["existing_job_id"] == str(existing)


def test_enqueue_invalid_body(client):
    response = client.post("/jobs", json={"input_snapshot": {}, "max_retries": -1}, headers=OWNER)

    assert response.status_code == 422


def test_enqueue_internal_error_is_generic(client, mock_job_service):
    mock_job_service.enqueue.side_effect = RuntimeError("connection refused to 10.0.0.5")

    response = client.post("/jobs", json={"input_snapshot": {}}, headers=OWNER)

    assert response.status_code == 500
    assert response.json()["detail"] == "Internal server error"


def test_check_auth_token():
    check_auth_token(None, None)
    check_auth_token("secret", "secret")

    with pytest.raises(AuthTokenError):
        check_auth_token("secret", None)
    with pytest.raises(AuthTokenError):
        check_auth_token("secret", "wrong")


def test_auth_token_required(mock_job_service):
    client = build_client(mock_job_service, auth_token="secret")

    assert client.get("/jobs", headers=OWNER).status_code == 401
    assert (
        client.get("/jobs", headers={**OWNER, "X-Jobs-Token": "wrong"}).status_code == 401
    )
    assert (
        client.get("/jobs", headers={**OWNER, "X-Jobs-Token": "secret"}).status_code == 200
    )


def test_get_job(client, mock_job_service, make_job, sample_job_id):
    mock_job_service.get_job.return_value = make_job(
        status=JobStatus.processing, worker_id="worker-a", checkpoint_phase=1
    )

    response = client.get(f"/jobs/{sample_job_id}", headers=OWNER)

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(sample_job_id)
    assert data["status"] == "processing"
    assert data["checkpoint_phase"] == 1
    assert "worker_id" not in data
    assert "input_snapshot" not in data
    mock_job_service.get_job.assert_called_once_with(sample_job_id, owner_id="user-123")


def test_get_job_not_found(client, mock_job_service):
    job_id = uuid4()
    mock_job_service.get_job.side_effect = JobNotFoundError(job_id)

    response = client.get(f"/jobs/{job_id}", headers=OWNER)

    assert response.status_code == 404


def test_get_job_invalid_id(client):
    response = client.get("/jobs/not-a-uuid", headers=OWNER)

    assert response.status_code == 400


def test_get_active_job(client, mock_job_service, make_job):
    mock_job_service.get_active_job.return_value = make_job().summary()

    response = client.get("/jobs/active", headers=OWNER)

    assert response.status_code == 200
    assert response.json()["status"] == "pending"


def test_get_active_job_none(client):
    response = client.get("/jobs/active", headers=OWNER)

    assert response.status_code == 404


def test_list_jobs(client, mock_job_service, make_job):
    mock_job_service.list_jobs.return_value = [make_job().summary()]

    response = client.get("/jobs?status=pending&limit=5", headers=OWNER)

    assert response.status_code == 200
    assert len(response.json()) == 1
    mock_job_service.list_jobs.assert_called_once_with(
        owner_id="user-123", status="pending", limit=5
    )


def test_cancel_job(client, sample_job_id):
    response = client.post(f"/jobs/{sample_job_id}/cancel", headers=OWNER)

    assert response.status_code == 200
    assert response.json() == {"job_id": str(sample_job_id), "cancelled": True}


def test_cancel_finished_job_conflicts(client, mock_job_service, sample_job_id):
    mock_job_service.cancel.return_value = False

    response = client.post(f"/jobs/{sample_job_id}/cancel", headers=OWNER)

    assert response.status_code == 409


def test_cancel_unknown_job(client, mock_job_service, sample_job_id):
    mock_job_service.cancel.side_effect = JobNotFoundError(sample_job_id)

    response = client.post(f"/jobs/{sample_job_id}/cancel", headers=OWNER)

    assert response.status_code == 404


def test_reset_job(client, mock_job_service, make_job, sample_job_id):
    mock_job_service.get_job.return_value = make_job(status=JobStatus.pending, retry_count=1)

    response = client.post(f"/jobs/{sample_job_id}/reset", headers=OWNER)

    assert response.status_code == 200
    assert response.json() == {"job_id": str(sample_job_id), "reset": True, "status": "pending"}


def test_reset_exhausted_reports_failure(client, mock_job_service, make_job, sample_job_id):
    mock_job_service.reset_if_stuck.return_value = False
    mock_job_service.get_job.return_value = make_job(
        status=JobStatus.failed, retry_count=3, error_code="max_retries_exceeded"
    )

    response = client.post(f"/jobs/{sample_job_id}/reset", headers=OWNER)

    assert response.status_code == 200
    assert response.json()["reset"] is False
    assert response.json()["status"] == "failed"


def test_reset_within_grace_conflicts(client, mock_job_service, make_job, sample_job_id):
    mock_job_service.reset_if_stuck.return_value = False
    mock_job_service.get_job.return_value = make_job(
        status=JobStatus.processing, worker_id="worker-a"
    )

    response = client.post(f"/jobs/{sample_job_id}/reset", headers=OWNER)

    assert response.status_code == 409
