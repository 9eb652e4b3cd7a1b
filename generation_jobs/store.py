"""Database store layer for generation jobs.

Every mutation is a single conditional statement. Status (and, for worker
operations, ``worker_id``) is part of each WHERE clause, so a write made on
stale knowledge matches no row instead of overwriting newer state. Lease
arithmetic uses the database clock.
"""

import json
from datetime import timedelta
from typing import Any, Optional
from uuid import UUID

import asyncpg

from generation_jobs.errors import DuplicateActiveJobError, JobNotFoundError
from generation_jobs.models import ErrorCode, Job, JobStatus, JobSummary

CANCELLED_MESSAGE = "Cancelled by user"
CLIENT_RESET_MESSAGE = "Job reset by client after stalling"
RESET_EXHAUSTED_MESSAGE = "Job timed out after all retries"


def _affected_rows(result: Optional[str]) -> int:
    """Extract the row count from a status string like ``UPDATE 1``."""
    if not result:
        return 0
    try:
        return int(result.split()[-1])
    except ValueError:
        return 0


def _load_json(value: Any) -> Any:
    if value is not None and isinstance(value, str):
        return json.loads(value)
    return value


def _dump_json(value: Any) -> Optional[str]:
    return json.dumps(value) if value is not None else None


class JobStore:
    """Database layer for job operations."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def insert_job(
        self,
        id: UUID,
        owner_id: str,
        cycle_key: str,
        input_snapshot: dict[str, Any],
        max_retries: int,
    ) -> Job:
        """
        Insert a new pending job.

        Raises:
            DuplicateActiveJobError: if the owner already has a pending or
                processing job for ``cycle_key``
        """
        async with self.db_pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO generation_jobs (
                        id, owner_id, cycle_key, status, input_snapshot, max_retries
                    ) VALUES ($1, $2, $3, $4, $5, $6)
                    RETURNING *
                    """,
                    id,
                    owner_id,
                    cycle_key,
                    JobStatus.pending.value,
                    json.dumps(input_snapshot),
                    max_retries,
                )
            except asyncpg.UniqueViolationError as e:
                existing_id = await conn.fetchval(
                    """
                    SELECT id FROM generation_jobs
                    WHERE owner_id = $1
                      AND cycle_key = $2
                      AND status IN ('pending', 'processing')
                    """,
                    owner_id,
                    cycle_key,
                )
                raise DuplicateActiveJobError(owner_id, cycle_key, existing_id) from e

        return self._row_to_job(row)

    async def get_job(self, job_id: UUID, owner_id: Optional[str] = None) -> Job:
        """Get a job by ID, optionally scoped to its owner."""
        async with self.db_pool.acquire() as conn:
            if owner_id is None:
                row = await conn.fetchrow(
                    "SELECT * FROM generation_jobs WHERE id = $1", job_id
                )
            else:
                row = await conn.fetchrow(
                    "SELECT * FROM generation_jobs WHERE id = $1 AND owner_id = $2",
                    job_id,
                    owner_id,
                )

        if not row:
            raise JobNotFoundError(job_id)

        return self._row_to_job(row)

    async def list_jobs(
        self,
        owner_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> list[Job]:
        """List jobs, newest first, with optional filters."""
        query = "SELECT * FROM generation_jobs WHERE 1=1"
        params = []
        param_idx = 1

        if owner_id is not None:
            query += f" AND owner_id = ${param_idx}"
            params.append(owner_id)
            param_idx += 1

        if status:
            query += f" AND status = ${param_idx}"
            params.append(status)
            param_idx += 1

        query += f" ORDER BY created_at DESC LIMIT ${param_idx}"
        params.append(limit)

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return [self._row_to_job(row) for row in rows]

    async def get_active_job(self, owner_id: str) -> Optional[JobSummary]:
        """Most recent pending or processing job for an owner."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM generation_jobs
                WHERE owner_id = $1
                  AND status IN ('pending', 'processing')
                ORDER BY created_at DESC
                LIMIT 1
                """,
                owner_id,
            )

        if not row:
            return None
        return self._row_to_job(row).summary()

    async def claim_next_job(self, worker_id: str, lease: timedelta) -> Optional[UUID]:
        """
        Atomically take the oldest eligible job.

        Eligible means pending, or processing with an elapsed lease. The row
        is locked with FOR UPDATE SKIP LOCKED inside the same statement that
        flips it to processing, so concurrent claimers never wait on each
        other and never receive the same job.
        """
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                """
                UPDATE generation_jobs
                SET status = 'processing',
                    worker_id = $1,
                    started_at = now(),
                    lock_expires_at = now() + $2::interval,
                    updated_at = now()
                WHERE id = (
                    SELECT id FROM generation_jobs
                    WHERE status = 'pending'
                       OR (status = 'processing' AND lock_expires_at <= now())
                    ORDER BY created_at ASC
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING id
                """,
                worker_id,
                lease,
            )

    async def extend_lease(
        self,
        job_id: UUID,
        worker_id: str,
        lease: timedelta,
        checkpoint_phase: Optional[int] = None,
        checkpoint_data: Any = None,
    ) -> bool:
        """
        Extend the lease held by ``worker_id`` and optionally store a checkpoint.

        With ``checkpoint_phase`` None only the lease moves. A phase lower
        than the stored one matches no row.
        """
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE generation_jobs
                SET lock_expires_at = now() + $3::interval,
                    checkpoint_phase = COALESCE($4::int, checkpoint_phase),
                    checkpoint_data = CASE
                        WHEN $4::int IS NULL THEN checkpoint_data
                        ELSE $5::jsonb
                    END,
                    updated_at = now()
                WHERE id = $1
                  AND worker_id = $2
                  AND status = 'processing'
                  AND ($4::int IS NULL OR $4::int >= checkpoint_phase)
                """,
                job_id,
                worker_id,
                lease,
                checkpoint_phase,
                _dump_json(checkpoint_data),
            )
        return _affected_rows(result) > 0

    async def release_lease(self, job_id: UUID, worker_id: str) -> bool:
        """Expire the lease now so any worker can reclaim the job."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE generation_jobs
                SET lock_expires_at = now(),
                    updated_at = now()
                WHERE id = $1
                  AND worker_id = $2
                  AND status = 'processing'
                """,
                job_id,
                worker_id,
            )
        return _affected_rows(result) > 0

    async def complete_job(
        self, job_id: UUID, worker_id: str, result_reference: str
    ) -> Optional[Job]:
        """Mark a job completed. Returns the updated job, or None if not owned."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE generation_jobs
                SET status = 'completed',
                    result_reference = $3,
                    completed_at = now(),
                    worker_id = NULL,
                    lock_expires_at = NULL,
                    updated_at = now()
                WHERE id = $1
                  AND worker_id = $2
                  AND status = 'processing'
                RETURNING *
                """,
                job_id,
                worker_id,
                result_reference,
            )
        return self._row_to_job(row) if row else None

    async def fail_job(
        self,
        job_id: UUID,
        worker_id: str,
        error_code: ErrorCode,
        error_message: str,
    ) -> Optional[Job]:
        """
        Record a failure and decide retry vs terminal in one statement.

        While retries remain (and the code is not ``user_cancelled``) the job
        goes back to pending with ``retry_count + 1``; otherwise it fails for
        good. Returns the updated job, or None if the worker no longer owns it.
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE generation_jobs
                SET status = CASE WHEN retry_count < max_retries AND $3::text <> 'user_cancelled'
                                  THEN 'pending' ELSE 'failed' END,
                    retry_count = CASE WHEN retry_count < max_retries AND $3::text <> 'user_cancelled'
                                       THEN retry_count + 1 ELSE retry_count END,
                    started_at = CASE WHEN retry_count < max_retries AND $3::text <> 'user_cancelled'
                                      THEN NULL ELSE started_at END,
                    completed_at = CASE WHEN retry_count < max_retries AND $3::text <> 'user_cancelled'
                                        THEN NULL ELSE now() END,
                    error_code = $3::text,
                    error_message = $4,
                    worker_id = NULL,
                    lock_expires_at = NULL,
                    updated_at = now()
                WHERE id = $1
                  AND worker_id = $2
                  AND status = 'processing'
                RETURNING *
                """,
                job_id,
                worker_id,
                ErrorCode.normalize(error_code).value,
                error_message,
            )
        return self._row_to_job(row) if row else None

    async def cancel_job(self, job_id: UUID, owner_id: str) -> bool:
        """
        Fail a pending or processing job with ``user_cancelled``.

        Returns False for jobs already terminal.

        Raises:
            JobNotFoundError: if the job does not exist for this owner
        """
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE generation_jobs
                SET status = 'failed',
                    completed_at = now(),
                    error_code = $3,
                    error_message = $4,
                    worker_id = NULL,
                    lock_expires_at = NULL,
                    updated_at = now()
                WHERE id = $1
                  AND owner_id = $2
                  AND status IN ('pending', 'processing')
                """,
                job_id,
                owner_id,
                ErrorCode.user_cancelled.value,
                CANCELLED_MESSAGE,
            )
            if _affected_rows(result) > 0:
                return True

            exists = await conn.fetchval(
                "SELECT 1 FROM generation_jobs WHERE id = $1 AND owner_id = $2",
                job_id,
                owner_id,
            )

        if not exists:
            raise JobNotFoundError(job_id)
        return False

    async def reset_stuck_job(
        self, job_id: UUID, owner_id: str, min_processing_age: timedelta
    ) -> Optional[Job]:
        """
        Requeue (or, with no retries left, fail) a job stuck in processing.

        Only matches processing jobs started at least ``min_processing_age``
        ago. Returns the updated job, or None when the reset was rejected.

        Raises:
            JobNotFoundError: if the job does not exist for this owner
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE generation_jobs
                SET status = CASE WHEN retry_count < max_retries
                                  THEN 'pending' ELSE 'failed' END,
                    retry_count = CASE WHEN retry_count < max_retries
                                       THEN retry_count + 1 ELSE retry_count END,
                    started_at = CASE WHEN retry_count < max_retries
                                      THEN NULL ELSE started_at END,
                    completed_at = CASE WHEN retry_count < max_retries
                                        THEN NULL ELSE now() END,
                    error_code = CASE WHEN retry_count < max_retries
                                      THEN $4 ELSE $5 END,
                    error_message = CASE WHEN retry_count < max_retries
                                         THEN $6 ELSE $7 END,
                    worker_id = NULL,
                    lock_expires_at = NULL,
                    updated_at = now()
                WHERE id = $1
                  AND owner_id = $2
                  AND status = 'processing'
                  AND (started_at IS NULL OR started_at <= now() - $3::interval)
                RETURNING *
                """,
                job_id,
                owner_id,
                min_processing_age,
                ErrorCode.client_reset.value,
                ErrorCode.max_retries_exceeded.value,
                CLIENT_RESET_MESSAGE,
                RESET_EXHAUSTED_MESSAGE,
            )
            if row:
                return self._row_to_job(row)

            exists = await conn.fetchval(
                "SELECT 1 FROM generation_jobs WHERE id = $1 AND owner_id = $2",
                job_id,
                owner_id,
            )

        if not exists:
            raise JobNotFoundError(job_id)
        return None

    async def delete_terminal_jobs(self, older_than: timedelta) -> int:
        """Delete completed/failed jobs finished more than ``older_than`` ago."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                DELETE FROM generation_jobs
                WHERE status IN ('completed', 'failed')
                  AND completed_at < now() - $1::interval
                """,
                older_than,
            )
        return _affected_rows(result)

    def _row_to_job(self, row: asyncpg.Record) -> Job:
        """Convert a database row to a Job model."""
        return Job(
            id=row["id"],
            owner_id=row["owner_id"],
            cycle_key=row["cycle_key"],
            status=JobStatus(row["status"]),
            input_snapshot=_load_json(row["input_snapshot"]),
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            result_reference=row["result_reference"],
            error_code=row["error_code"],
            error_message=row["error_message"],
            worker_id=row["worker_id"],
            lock_expires_at=row["lock_expires_at"],
            checkpoint_phase=row["checkpoint_phase"],
            checkpoint_data=_load_json(row["checkpoint_data"]),
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            updated_at=row["updated_at"],
        )
