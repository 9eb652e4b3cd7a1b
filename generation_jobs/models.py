"""Data models for generation jobs."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID


class JobStatus(str, Enum):
    """Job status values."""

    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


TERMINAL_STATUSES = (JobStatus.completed, JobStatus.failed)


class ErrorCode(str, Enum):
    """Error codes recorded on failed or retried jobs."""

    ai_timeout = "ai_timeout"
    rate_limited = "rate_limited"
    validation_failed = "validation_failed"
    storage_error = "storage_error"
    max_retries_exceeded = "max_retries_exceeded"
    user_cancelled = "user_cancelled"
    client_reset = "client_reset"
    unknown = "unknown"

    @classmethod
    def normalize(cls, value: Any) -> "ErrorCode":
        """Map any code (enum, string, or garbage) onto a known code."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.unknown


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Job:
    """Represents a job record."""

    def __init__(
        self,
        id: UUID,
        owner_id: str,
        cycle_key: str,
        status: JobStatus,
        input_snapshot: Dict[str, Any],
        retry_count: int = 0,
        max_retries: int = 3,
        result_reference: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        worker_id: Optional[str] = None,
        lock_expires_at: Optional[datetime] = None,
        checkpoint_phase: int = 0,
        checkpoint_data: Optional[Any] = None,
        created_at: Optional[datetime] = None,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.owner_id = owner_id
        self.cycle_key = cycle_key
        self.status = JobStatus(status) if isinstance(status, str) else status
        self.input_snapshot = input_snapshot
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.result_reference = result_reference
        self.error_code = ErrorCode.normalize(error_code) if error_code else None
        self.error_message = error_message
        self.worker_id = worker_id
        self.lock_expires_at = lock_expires_at
        self.checkpoint_phase = checkpoint_phase or 0
        self.checkpoint_data = checkpoint_data
        self.created_at = created_at
        self.started_at = started_at
        self.completed_at = completed_at
        self.updated_at = updated_at

    @property
    def retries_remaining(self) -> int:
        return max(self.max_retries - self.retry_count, 0)

    def summary(self) -> "JobSummary":
        """Requester-facing view of this job."""
        return JobSummary(
            id=self.id,
            status=self.status,
            cycle_key=self.cycle_key,
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            result_reference=self.result_reference,
            error_code=self.error_code,
            error_message=self.error_message,
            lock_expires_at=self.lock_expires_at,
            checkpoint_phase=self.checkpoint_phase,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


class JobSummary:
    """
    What a requester may see about a job.

    Leaves out the input snapshot, checkpoint payload and worker identity.
    """

    def __init__(
        self,
        id: UUID,
        status: JobStatus,
        cycle_key: Optional[str] = None,
        retry_count: int = 0,
        max_retries: int = 0,
        result_reference: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        error_message: Optional[str] = None,
        lock_expires_at: Optional[datetime] = None,
        checkpoint_phase: int = 0,
        created_at: Optional[datetime] = None,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ):
        self.id = id
        self.status = JobStatus(status) if isinstance(status, str) else status
        self.cycle_key = cycle_key
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.result_reference = result_reference
        self.error_code = ErrorCode.normalize(error_code) if error_code else None
        self.error_message = error_message
        self.lock_expires_at = lock_expires_at
        self.checkpoint_phase = checkpoint_phase or 0
        self.created_at = created_at
        self.started_at = started_at
        self.completed_at = completed_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "status": self.status.value,
            "cycle_key": self.cycle_key,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "result_reference": self.result_reference,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": self.error_message,
            "lock_expires_at": _iso(self.lock_expires_at),
            "checkpoint_phase": self.checkpoint_phase,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }


class JobOutcome:
    """Terminal result handed to notifiers."""

    def __init__(
        self,
        job_id: UUID,
        status: JobStatus,
        result_reference: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        error_message: Optional[str] = None,
    ):
        self.job_id = job_id
        self.status = status
        self.result_reference = result_reference
        self.error_code = error_code
        self.error_message = error_message

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.completed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": str(self.job_id),
            "status": self.status.value,
            "result_reference": self.result_reference,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": self.error_message,
        }
