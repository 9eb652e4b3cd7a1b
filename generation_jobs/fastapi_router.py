"""FastAPI router for the generation jobs HTTP API.

Requester identity arrives in the ``X-Owner-Id`` header, set by the
authenticating gateway in front of this service.
"""

import logging
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field

from generation_jobs.errors import AuthTokenError, DuplicateActiveJobError, JobNotFoundError
from generation_jobs.service import JobService


logger = logging.getLogger(__name__)


def check_auth_token(expected: Optional[str], provided: Optional[str]) -> None:
    """Raise AuthTokenError unless ``provided`` matches ``expected``; no-op when unset."""
    if expected and provided != expected:
        raise AuthTokenError("Invalid or missing auth token")


class EnqueueJobRequest(BaseModel):
    """Request model for enqueueing a job."""

    input_snapshot: Dict[str, Any]
    cycle_key: Optional[str] = None
    max_retries: Optional[int] = Field(default=None, ge=0, le=10)


class EnqueueJobResponse(BaseModel):
    """Response model for enqueueing a job."""

    job_id: str


class JobSummaryResponse(BaseModel):
    """Response model for job status."""

    id: str
    status: str
    cycle_key: Optional[str] = None
    retry_count: int
    max_retries: int
    result_reference: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    lock_expires_at: Optional[str] = None
    checkpoint_phase: int = 0
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class CancelJobResponse(BaseModel):
    job_id: str
    cancelled: bool


class ResetJobResponse(BaseModel):
    job_id: str
    reset: bool
    status: str


def create_jobs_router(
    job_service_factory: Callable[[], JobService],
    auth_token: Optional[str] = None,
) -> APIRouter:
    """
    Create FastAPI router for the generation jobs API.

    Args:
        job_service_factory: Callable that returns a JobService instance
        auth_token: Optional shared token required in ``X-Jobs-Token``

    Returns:
        APIRouter instance
    """
    router = APIRouter()

    async def get_job_service() -> JobService:
        """Dependency to get JobService instance."""
        return job_service_factory()

    async def verify_auth_token(
        x_jobs_token: Optional[str] = Header(None, alias="X-Jobs-Token")
    ) -> None:
        """Verify auth token if configured."""
        try:
            check_auth_token(auth_token, x_jobs_token)
        except AuthTokenError as e:
            raise HTTPException(status_code=401, detail=str(e)) from e

    async def get_owner_id(
        x_owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
        _: None = Depends(verify_auth_token),
    ) -> str:
        if not x_owner_id:
            raise HTTPException(status_code=401, detail="Missing requester identity")
        return x_owner_id

    def parse_job_id(job_id: str) -> UUID:
        try:
            return UUID(job_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Invalid job ID format") from e

    @router.post("/jobs", response_model=EnqueueJobResponse)
    async def enqueue_job(
        request: EnqueueJobRequest,
        owner_id: str = Depends(get_owner_id),
        job_service: JobService = Depends(get_job_service),
    ):
        """Enqueue a new generation job."""
        try:
            job_id = await job_service.enqueue(
                owner_id=owner_id,
                input_snapshot=request.input_snapshot,
                cycle_key=request.cycle_key,
                max_retries=request.max_retries,
            )
            return EnqueueJobResponse(job_id=str(job_id))

        except DuplicateActiveJobError as e:
            detail = {"code": e.code, "message": str(e)}
            if e.existing_job_id is not None:
                detail["existing_job_id"] = str(e.existing_job_id)
            raise HTTPException(status_code=409, detail=detail) from e
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error enqueueing job")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get("/jobs/active", response_model=JobSummaryResponse)
    async def get_active_job(
        owner_id: str = Depends(get_owner_id),
        job_service: JobService = Depends(get_job_service),
    ):
        """Most recent pending or processing job for the requester."""
        try:
            summary = await job_service.get_active_job(owner_id)
        except Exception as e:
            logger.exception("Error getting active job")
            raise HTTPException(status_code=500, detail="Internal server error") from e

        if summary is None:
            raise HTTPException(status_code=404, detail="No active job")
        return JobSummaryResponse(**summary.to_dict())

    @router.get("/jobs", response_model=List[JobSummaryResponse])
    async def list_jobs(
        status: Optional[str] = Query(None),
        limit: int = Query(20, ge=1, le=100),
        owner_id: str = Depends(get_owner_id),
        job_service: JobService = Depends(get_job_service),
    ):
        """List the requester's jobs, newest first."""
        try:
            summaries = await job_service.list_jobs(
                owner_id=owner_id, status=status, limit=limit
            )
            return [JobSummaryResponse(**s.to_dict()) for s in summaries]
        except Exception as e:
            logger.exception("Error listing jobs")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get("/jobs/{job_id}", response_model=JobSummaryResponse)
    async def get_job(
        job_id: str,
        owner_id: str = Depends(get_owner_id),
        job_service: JobService = Depends(get_job_service),
    ):
        """Get job status by ID."""
        job_uuid = parse_job_id(job_id)
        try:
            job = await job_service.get_job(job_uuid, owner_id=owner_id)
            return JobSummaryResponse(**job.summary().to_dict())
        except JobNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error getting job")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.post("/jobs/{job_id}/cancel", response_model=CancelJobResponse)
    async def cancel_job(
        job_id: str,
        owner_id: str = Depends(get_owner_id),
        job_service: JobService = Depends(get_job_service),
    ):
        """Cancel a pending or processing job."""
        job_uuid = parse_job_id(job_id)
        try:
            cancelled = await job_service.cancel(job_uuid, owner_id)
        except JobNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error cancelling job")
            raise HTTPException(status_code=500, detail="Internal server error") from e

        if not cancelled:
            raise HTTPException(status_code=409, detail="Job has already finished")
        return CancelJobResponse(job_id=job_id, cancelled=True)

    @router.post("/jobs/{job_id}/reset", response_model=ResetJobResponse)
    async def reset_job(
        job_id: str,
        owner_id: str = Depends(get_owner_id),
        job_service: JobService = Depends(get_job_service),
    ):
        """Requeue a job that looks stuck in processing."""
        job_uuid = parse_job_id(job_id)
        try:
            reset = await job_service.reset_if_stuck(job_uuid, owner_id)
            job = await job_service.get_job(job_uuid, owner_id=owner_id)
        except JobNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error resetting job")
            raise HTTPException(status_code=500, detail="Internal server error") from e

        if not reset and not job.status.is_terminal:
            raise HTTPException(
                status_code=409,
                detail="Job is not stuck: not processing or still within its grace period",
            )
        return ResetJobResponse(job_id=job_id, reset=reset, status=job.status.value)

    return router
