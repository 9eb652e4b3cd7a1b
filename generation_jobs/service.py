"""High-level service layer for job operations.

This is the only write path to job rows: workers, the HTTP router and the
sweeper all go through :class:`JobService`.
"""

import logging
from datetime import timedelta
from typing import Any, Optional
from uuid import UUID, uuid4

import asyncpg

from generation_jobs.config import JobsConfig
from generation_jobs.cycles import cycle_key_for_snapshot
from generation_jobs.models import (
    ErrorCode,
    Job,
    JobOutcome,
    JobStatus,
    JobSummary,
)
from generation_jobs.notifications import Notifier
from generation_jobs.store import JobStore


class JobService:
    """High-level API for job operations."""

    def __init__(
        self,
        config: JobsConfig,
        db_pool: asyncpg.Pool,
        logger: Optional[logging.Logger] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.config = config
        self.store = JobStore(db_pool)
        self.logger = logger or logging.getLogger(__name__)
        self.notifier = notifier

    # Requester operations

    async def enqueue(
        self,
        *,
        owner_id: str,
        input_snapshot: dict[str, Any],
        cycle_key: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> UUID:
        """
        Enqueue a new generation job.

        Args:
            owner_id: Requester identifier
            input_snapshot: Payload the worker will generate from, frozen now
            cycle_key: Logical unit of work; defaults to the requester's
                current week
            max_retries: Retry budget (uses the configured default if not provided)

        Returns:
            UUID: The created job ID

        Raises:
            DuplicateActiveJobError: If a pending or processing job already
                exists for (owner_id, cycle_key)
        """
        if not owner_id:
            raise ValueError("owner_id is required")
        if not isinstance(input_snapshot, dict):
            raise ValueError("input_snapshot must be a JSON object")

        if cycle_key is None:
            cycle_key = cycle_key_for_snapshot(input_snapshot)

        if max_retries is None:
            max_retries = self.config.max_retries
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        job_id = uuid4()
        await self.store.insert_job(
            id=job_id,
            owner_id=owner_id,
            cycle_key=cycle_key,
            input_snapshot=input_snapshot,
            max_retries=max_retries,
        )

        self.logger.info(f"Enqueued job {job_id} for owner {owner_id}, cycle {cycle_key}")
        return job_id

    async def get_job(self, job_id: UUID, owner_id: Optional[str] = None) -> Job:
        """Get a job by ID, scoped to ``owner_id`` when given."""
        return await self.store.get_job(job_id, owner_id=owner_id)

    async def list_jobs(
        self,
        *,
        owner_id: str,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> list[JobSummary]:
        """List an owner's jobs, newest first."""
        if not owner_id:
            raise ValueError("owner_id is required")
        jobs = await self.store.list_jobs(owner_id=owner_id, status=status, limit=limit)
        return [job.summary() for job in jobs]

    async def get_active_job(self, owner_id: str) -> Optional[JobSummary]:
        """Most recent pending or processing job for an owner, if any."""
        return await self.store.get_active_job(owner_id)

    async def cancel(self, job_id: UUID, owner_id: str) -> bool:
        """
        Cancel a pending or processing job.

        The job fails immediately with ``user_cancelled`` regardless of its
        retry budget. A worker still running it finds out on its next
        heartbeat.

        Returns:
            False if the job had already finished
        """
        cancelled = await self.store.cancel_job(job_id, owner_id)
        if cancelled:
            self.logger.info(f"Job {job_id} cancelled by owner {owner_id}")
        else:
            self.logger.info(f"Job {job_id} not cancellable, already finished")
        return cancelled

    async def reset_if_stuck(
        self,
        job_id: UUID,
        owner_id: str,
        min_processing_age: Optional[timedelta] = None,
    ) -> bool:
        """
        Requeue a job that has been processing longer than the grace period.

        Counts against the same retry budget as a generation failure. When no
        retries remain the job fails with ``max_retries_exceeded`` instead.

        Returns:
            True if the job went back to pending; False if the reset was
            rejected or the job was failed for good
        """
        if min_processing_age is None:
            min_processing_age = self.config.reset_grace_period

        job = await self.store.reset_stuck_job(job_id, owner_id, min_processing_age)
        if job is None:
            self.logger.info(
                f"Reset of job {job_id} rejected: not processing or younger than "
                f"{min_processing_age}"
            )
            return False

        if job.status == JobStatus.pending:
            self.logger.warning(
                f"Job {job_id} reset by owner {owner_id} "
                f"(retry {job.retry_count}/{job.max_retries})"
            )
            return True

        self.logger.error(f"Job {job_id} failed on reset, retries exhausted")
        await self._notify(job)
        return False

    # Worker operations

    async def claim(self, worker_id: str, lease_seconds: Optional[int] = None) -> Optional[UUID]:
        """Claim the oldest eligible job for ``worker_id``; None if the queue is empty."""
        if lease_seconds is None:
            lease_seconds = self.config.lease_seconds
        job_id = await self.store.claim_next_job(worker_id, timedelta(seconds=lease_seconds))
        if job_id is not None:
            self.logger.info(f"Worker {worker_id} claimed job {job_id} for {lease_seconds}s")
        return job_id

    async def heartbeat(
        self,
        job_id: UUID,
        worker_id: str,
        checkpoint_phase: Optional[int] = None,
        checkpoint_data: Any = None,
        lease_seconds: Optional[int] = None,
    ) -> bool:
        """
        Extend the lease and persist progress.

        Returns:
            False if ``worker_id`` no longer owns the job; nothing is written
        """
        if lease_seconds is None:
            lease_seconds = self.config.lease_seconds
        extended = await self.store.extend_lease(
            job_id,
            worker_id,
            timedelta(seconds=lease_seconds),
            checkpoint_phase=checkpoint_phase,
            checkpoint_data=checkpoint_data,
        )
        if not extended:
            self.logger.warning(f"Heartbeat rejected for job {job_id}, worker {worker_id}")
        elif checkpoint_phase is not None:
            self.logger.info(f"Job {job_id} checkpointed at phase {checkpoint_phase}")
        return extended

    async def release(self, job_id: UUID, worker_id: str) -> bool:
        """Give the lease up so another worker can resume from the checkpoint."""
        released = await self.store.release_lease(job_id, worker_id)
        if released:
            self.logger.info(f"Worker {worker_id} released job {job_id}")
        return released

    async def complete(self, job_id: UUID, worker_id: str, result_reference: str) -> bool:
        """Mark a job completed. False if ``worker_id`` no longer owns it."""
        job = await self.store.complete_job(job_id, worker_id, result_reference)
        if job is None:
            self.logger.warning(
                f"Completion of job {job_id} by worker {worker_id} ignored, not the owner"
            )
            return False

        self.logger.info(f"Job {job_id} completed")
        await self._notify(job)
        return True

    async def fail(
        self,
        job_id: UUID,
        worker_id: str,
        error_code: Any,
        error_message: str,
    ) -> bool:
        """
        Record a failure; the store decides between retry and terminal failure.

        Returns:
            False if ``worker_id`` no longer owns the job
        """
        code = ErrorCode.normalize(error_code)
        job = await self.store.fail_job(job_id, worker_id, code, error_message)
        if job is None:
            self.logger.warning(
                f"Failure of job {job_id} by worker {worker_id} ignored, not the owner"
            )
            return False

        if job.status == JobStatus.pending:
            self.logger.info(
                f"Job {job_id} will retry ({code.value}, "
                f"{job.retries_remaining} of {job.max_retries} retries left)"
            )
        else:
            self.logger.error(f"Job {job_id} failed permanently ({code.value})")
            await self._notify(job)
        return True

    # Housekeeping

    async def sweep(self, retention_window: Optional[timedelta] = None) -> int:
        """Delete terminal jobs older than ``retention_window``. Returns the count."""
        if retention_window is None:
            retention_window = self.config.retention_window
        count = await self.store.delete_terminal_jobs(retention_window)
        if count > 0:
            self.logger.info(f"Swept {count} finished jobs older than {retention_window}")
        return count

    async def _notify(self, job: Job) -> None:
        if self.notifier is None:
            return
        outcome = JobOutcome(
            job_id=job.id,
            status=job.status,
            result_reference=job.result_reference,
            error_code=job.error_code,
            error_message=job.error_message,
        )
        try:
            await self.notifier.notify(job.owner_id, outcome)
        except Exception as e:
            self.logger.warning(f"Notification for job {job.id} failed: {e}")
