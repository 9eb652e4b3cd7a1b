"""Durable, leased generation job queue on Postgres."""

from generation_jobs.config import JobsConfig
from generation_jobs.ddl import JOBS_TABLE_DDL
from generation_jobs.errors import (
    AiTimeoutError,
    AuthTokenError,
    DuplicateActiveJobError,
    GenerationError,
    GenerationJobsError,
    JobNotFoundError,
    LeaseLostError,
    RateLimitedError,
    RemoteHttpError,
    StorageError,
    ValidationFailedError,
)
from generation_jobs.generation import GenerationPipeline, Phase
from generation_jobs.http_client import JobsHttpClient
from generation_jobs.models import ErrorCode, Job, JobOutcome, JobStatus, JobSummary
from generation_jobs.notifications import Notifier, SqsNotifier, WebhookNotifier
from generation_jobs.service import JobService
from generation_jobs.store import JobStore
from generation_jobs.sweeper import run_sweeper_loop
from generation_jobs.worker import process_job, run_worker_loop

__version__ = "0.1.0"

__all__ = [
    "JobsConfig",
    "JOBS_TABLE_DDL",
    "AiTimeoutError",
    "AuthTokenError",
    "DuplicateActiveJobError",
    "GenerationError",
    "GenerationJobsError",
    "JobNotFoundError",
    "LeaseLostError",
    "RateLimitedError",
    "RemoteHttpError",
    "StorageError",
    "ValidationFailedError",
    "GenerationPipeline",
    "Phase",
    "JobsHttpClient",
    "ErrorCode",
    "Job",
    "JobOutcome",
    "JobStatus",
    "JobSummary",
    "Notifier",
    "SqsNotifier",
    "WebhookNotifier",
    "JobService",
    "JobStore",
    "run_sweeper_loop",
    "process_job",
    "run_worker_loop",
]
