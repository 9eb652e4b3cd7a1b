"""Exception types for the generation jobs library."""

from generation_jobs.models import ErrorCode


class GenerationJobsError(Exception):
    """Base exception for all generation jobs errors."""

    pass


class JobNotFoundError(GenerationJobsError):
    """Raised when a job is not found or not visible to the caller."""

    def __init__(self, job_id, message: str = None):
        self.job_id = job_id
        if message is None:
            message = f"Job {job_id} not found"
        super().__init__(message)


class DuplicateActiveJobError(GenerationJobsError):
    """Raised when an owner already has a pending or processing job for a cycle."""

    code = "duplicate_active_job"

    def __init__(self, owner_id: str, cycle_key: str, existing_job_id=None):
        self.owner_id = owner_id
        self.cycle_key = cycle_key
        self.existing_job_id = existing_job_id
        super().__init__(
            f"Owner {owner_id} already has an active job for cycle {cycle_key}"
        )


class LeaseLostError(GenerationJobsError):
    """Raised when a worker finds it no longer owns the job it is running."""

    def __init__(self, job_id, worker_id: str):
        self.job_id = job_id
        self.worker_id = worker_id
        super().__init__(f"Worker {worker_id} no longer holds the lease on job {job_id}")


class AuthTokenError(GenerationJobsError):
    """Raised when authentication token is missing or invalid."""

    pass


class RemoteHttpError(GenerationJobsError):
    """Raised when an HTTP request to a remote generation jobs service fails."""

    def __init__(self, status_code: int, message: str, response_body: str = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"HTTP {status_code}: {message}")


class GenerationError(GenerationJobsError):
    """Raised by a generation pipeline; the code decides how the failure is recorded."""

    code = ErrorCode.unknown

    def __init__(self, message: str, code: ErrorCode = None):
        if code is not None:
            self.code = ErrorCode.normalize(code)
        super().__init__(message)


class AiTimeoutError(GenerationError):
    code = ErrorCode.ai_timeout


class RateLimitedError(GenerationError):
    code = ErrorCode.rate_limited


class ValidationFailedError(GenerationError):
    code = ErrorCode.validation_failed


class StorageError(GenerationError):
    code = ErrorCode.storage_error
