"""Unit tests for service module."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from generation_jobs.errors import DuplicateActiveJobError
from generation_jobs.models import ErrorCode, JobStatus
from generation_jobs.notifications import Notifier
from generation_jobs.service import JobService


@pytest.fixture
def mock_db_pool():
    """Create a mock database pool."""
    return AsyncMock()


@pytest.fixture
def notifier():
    notifier = MagicMock(spec=Notifier)
    notifier.notify = AsyncMock()
    return notifier


@pytest.fixture
def service(config, mock_db_pool, notifier):
    """Create a JobService instance."""
    return JobService(config, mock_db_pool, notifier=notifier)


@pytest.mark.asyncio
async def test_enqueue_defaults(service, make_job, sample_snapshot):
    with patch.object(service.store, "insert_job", return_value=make_job()) as mock_insert:
        with patch(
            "generation_jobs.service.cycle_key_for_snapshot", return_value="2024-03-04"
        ):
            job_id = await service.enqueue(owner_id="user-123", input_snapshot=sample_snapshot)

    kwargs = mock_insert.call_args.kwargs
    assert kwargs["id"] == job_id
    assert kwargs["cycle_key"] == "2024-03-04"
    assert kwargs["max_retries"] == 3
    assert kwargs["input_snapshot"] == sample_snapshot


@pytest.mark.asyncio
async def test_enqueue_explicit_cycle_and_retries(service, make_job):
    with patch.object(service.store, "insert_job", return_value=make_job()) as mock_insert:
        await service.enqueue(
            owner_id="user-123", input_snapshot={}, cycle_key="custom", max_retries=0
        )

    assert mock_insert.call_args.kwargs["cycle_key"] == "custom"
    assert mock_insert.call_args.kwargs["max_retries"] == 0


@pytest.mark.asyncio
async def test_enqueue_validation(service):
    with pytest.raises(ValueError):
        await service.enqueue(owner_id="", input_snapshot={})
    with pytest.raises(ValueError):
        await service.enqueue(owner_id="user-123", input_snapshot=["not", "a", "dict"])
    with pytest.raises(ValueError):
        await service.enqueue(owner_id="user-123", input_snapshot={}, max_retries=-1)


@pytest.mark.asyncio
async def test_enqueue_duplicate_propagates(service):
    error = DuplicateActiveJobError("user-123", "2024-03-04", uuid4())
    with patch.object(service.store, "insert_job", side_effect=error):
        with pytest.raises(DuplicateActiveJobError):
            await service.enqueue(owner_id="user-123", input_snapshot={}, cycle_key="2024-03-04")


@pytest.mark.asyncio
async def test_claim_uses_configured_lease(service, sample_job_id):
    with patch.object(service.store, "claim_next_job", return_value=sample_job_id) as mock_claim:
        result = await service.claim("worker-a")

    assert result == sample_job_id
    mock_claim.assert_called_once_with("worker-a", timedelta(seconds=180))


@pytest.mark.asyncio
async def test_heartbeat_passes_checkpoint(service, sample_job_id):
    with patch.object(service.store, "extend_lease", return_value=True) as mock_extend:
        assert await service.heartbeat(
            sample_job_id, "worker-a", checkpoint_phase=2, checkpoint_data={"x": 1}
        )

    mock_extend.assert_called_once_with(
        sample_job_id,
        "worker-a",
        timedelta(seconds=180),
        checkpoint_phase=2,
        checkpoint_data={"x": 1},
    )


@pytest.mark.asyncio
async def test_complete_notifies(service, notifier, sample_job_id, make_job):
    job = make_job(status=JobStatus.completed, result_reference="plan-1")
    with patch.object(service.store, "complete_job", return_value=job):
        assert await service.complete(sample_job_id, "worker-a", "plan-1") is True

    owner_id, outcome = notifier.notify.call_args[0]
    assert owner_id == "user-123"
    assert outcome.succeeded
    assert outcome.result_reference == "plan-1"


@pytest.mark.asyncio
async def test_complete_not_owner(service, notifier, sample_job_id):
    with patch.object(service.store, "complete_job", return_value=None):
        assert await service.complete(sample_job_id, "worker-b", "plan-1") is False

    notifier.notify.assert_not_called()


@pytest.mark.asyncio
async def test_fail_with_retry_does_not_notify(service, notifier, sample_job_id, make_job):
    job = make_job(status=JobStatus.pending, retry_count=1, error_code="ai_timeout")
    with patch.object(service.store, "fail_job", return_value=job) as mock_fail:
        assert await service.fail(sample_job_id, "worker-a", "ai_timeout", "slow") is True

    assert mock_fail.call_args[0][2] == ErrorCode.ai_timeout
    notifier.notify.assert_not_called()


@pytest.mark.asyncio
async def test_terminal_fail_notifies(service, notifier, sample_job_id, make_job):
    job = make_job(
        status=JobStatus.failed, retry_count=3, error_code="rate_limited", error_message="429"
    )
    with patch.object(service.store, "fail_job", return_value=job):
        assert await service.fail(sample_job_id, "worker-a", ErrorCode.rate_limited, "429")

    outcome = notifier.notify.call_args[0][1]
    assert not outcome.succeeded
    assert outcome.error_code == ErrorCode.rate_limited


@pytest.mark.asyncio
async def test_fail_unknown_code_normalized(service, sample_job_id):
    with patch.object(service.store, "fail_job", return_value=None) as mock_fail:
        assert await service.fail(sample_job_id, "worker-b", "cosmic_ray", "?") is False

    assert mock_fail.call_args[0][2] == ErrorCode.unknown


@pytest.mark.asyncio
async def test_notifier_error_is_swallowed(service, notifier, sample_job_id, make_job):
    notifier.notify.side_effect = RuntimeError("push service down")
    job = make_job(status=JobStatus.completed, result_reference="plan-1")
    with patch.object(service.store, "complete_job", return_value=job):
        assert await service.complete(sample_job_id, "worker-a", "plan-1") is True


@pytest.mark.asyncio
async def test_cancel(service, sample_job_id):
    with patch.object(service.store, "cancel_job", return_value=True) as mock_cancel:
        assert await service.cancel(sample_job_id, "user-123") is True

    mock_cancel.assert_called_once_with(sample_job_id, "user-123")


@pytest.mark.asyncio
async def test_reset_if_stuck_requeued(service, notifier, sample_job_id, make_job):
    job = make_job(status=JobStatus.pending, retry_count=1, error_code="client_reset")
    with patch.object(service.store, "reset_stuck_job", return_value=job) as mock_reset:
        assert await service.reset_if_stuck(sample_job_id, "user-123") is True

    mock_reset.assert_called_once_with(sample_job_id, "user-123", timedelta(seconds=180))
    notifier.notify.assert_not_called()


@pytest.mark.asyncio
async def test_reset_if_stuck_rejected(service, sample_job_id):
    with patch.object(service.store, "reset_stuck_job", return_value=None):
        assert await service.reset_if_stuck(sample_job_id, "user-123") is False


@pytest.mark.asyncio
async def test_reset_if_stuck_exhausted_notifies(service, notifier, sample_job_id, make_job):
    job = make_job(
        status=JobStatus.failed, retry_count=3, error_code="max_retries_exceeded"
    )
    with patch.object(service.store, "reset_stuck_job", return_value=job):
        assert await service.reset_if_stuck(sample_job_id, "user-123") is False

    outcome = notifier.notify.call_args[0][1]
    assert outcome.error_code == ErrorCode.max_retries_exceeded


@pytest.mark.asyncio
async def test_list_jobs_returns_summaries(service, make_job):
    with patch.object(service.store, "list_jobs", return_value=[make_job(), make_job()]):
        summaries = await service.list_jobs(owner_id="user-123")

    assert len(summaries) == 2
    assert "input_snapshot" not in summaries[0].to_dict()


@pytest.mark.asyncio
async def test_list_jobs_requires_owner(service):
    with patch.object(service.store, "list_jobs") as mock_list:
        with pytest.raises(ValueError, match="owner_id is required"):
            await service.list_jobs(owner_id="")

    mock_list.assert_not_called()


@pytest.mark.asyncio
async def test_sweep_uses_retention_window(service):
    with patch.object(service.store, "delete_terminal_jobs", return_value=5) as mock_delete:
        assert await service.sweep() == 5

    mock_delete.assert_called_once_with(timedelta(days=7))
