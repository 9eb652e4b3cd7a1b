"""Worker logic for generation jobs."""

import asyncio
import logging
import os
import socket
from typing import Any, Optional
from uuid import UUID, uuid4

import asyncpg

from generation_jobs.config import JobsConfig
from generation_jobs.errors import GenerationError, LeaseLostError
from generation_jobs.generation import GenerationPipeline
from generation_jobs.models import ErrorCode, JobStatus
from generation_jobs.notifications import Notifier
from generation_jobs.service import JobService

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_LOST = "lost"
OUTCOME_RELEASED = "released"

UNEXPECTED_ERROR_MESSAGE = "Unexpected error during generation"
STORAGE_ERROR_MESSAGE = "Storage error during generation"


def make_worker_id() -> str:
    """Identity unique to this process."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


async def run_worker_loop(
    config: JobsConfig,
    db_pool: asyncpg.Pool,
    pipeline: GenerationPipeline,
    logger: logging.Logger,
    notifier: Optional[Notifier] = None,
    worker_id: Optional[str] = None,
    shutdown_event: asyncio.Event = None,
    max_jobs: Optional[int] = None,
) -> None:
    """
    Run the worker loop that claims and processes jobs.

    Args:
        config: Generation jobs configuration
        db_pool: Database connection pool
        pipeline: Phases and finalizer to run for each job
        logger: Logger instance
        notifier: Optional notifier for terminal outcomes
        worker_id: Identity used for leases (generated if not provided)
        shutdown_event: Optional event to signal shutdown
        max_jobs: Stop after processing this many jobs (None runs forever)
    """
    job_service = JobService(config, db_pool, logger, notifier=notifier)
    worker_id = worker_id or make_worker_id()
    processed = 0

    logger.info(f"Starting worker loop as {worker_id}")

    while True:
        if shutdown_event and shutdown_event.is_set():
            logger.info("Shutdown signal received, exiting worker loop")
            break

        try:
            job_id = await job_service.claim(worker_id)
        except Exception as e:
            logger.error(f"Error claiming job: {str(e)}", exc_info=True)
            await _idle(shutdown_event, config.poll_interval_seconds)
            continue

        if job_id is None:
            logger.debug("No eligible jobs")
            await _idle(shutdown_event, config.poll_interval_seconds)
            continue

        try:
            outcome = await process_job(
                job_service,
                pipeline,
                job_id,
                worker_id,
                config,
                logger,
                shutdown_event=shutdown_event,
            )
            logger.info(f"Job {job_id} finished on this worker: {outcome}")
        except Exception as e:
            # Lease expiry hands the job to another worker
            logger.error(f"Error processing job {job_id}: {str(e)}", exc_info=True)

        processed += 1
        if max_jobs is not None and processed >= max_jobs:
            logger.info(f"Processed {processed} jobs, exiting worker loop")
            break


async def process_job(
    job_service: JobService,
    pipeline: GenerationPipeline,
    job_id: UUID,
    worker_id: str,
    config: JobsConfig,
    logger: logging.Logger,
    shutdown_event: Optional[asyncio.Event] = None,
) -> str:
    """
    Drive one claimed job through the pipeline.

    Resumes after the stored checkpoint phase, checkpoints after every
    phase, and ends in complete, fail, release (shutdown), or nothing at all
    when ownership was lost.

    Returns:
        One of the ``OUTCOME_*`` constants
    """
    job = await job_service.get_job(job_id)
    if job.status != JobStatus.processing or job.worker_id != worker_id:
        logger.warning(f"Job {job_id} is no longer leased to {worker_id}, skipping")
        return OUTCOME_LOST

    data = job.checkpoint_data
    remaining = pipeline.phases_after(job.checkpoint_phase)
    if job.checkpoint_phase > 0:
        logger.info(f"Resuming job {job_id} after checkpoint phase {job.checkpoint_phase}")

    lease_lost = asyncio.Event()
    heartbeat_task = asyncio.create_task(
        _heartbeat_loop(job_service, job_id, worker_id, config, logger, lease_lost)
    )

    try:
        for phase in remaining:
            if shutdown_event and shutdown_event.is_set():
                await job_service.release(job_id, worker_id)
                logger.info(f"Released job {job_id} before phase {phase.number} for shutdown")
                return OUTCOME_RELEASED

            logger.info(f"Job {job_id}: running phase {phase.number} ({phase.name})")
            data = await _run_guarded(
                phase.func(job.input_snapshot, data),
                config.phase_timeout_seconds,
                lease_lost,
                job_id,
                worker_id,
            )

            if not await job_service.heartbeat(
                job_id, worker_id, checkpoint_phase=phase.number, checkpoint_data=data
            ):
                raise LeaseLostError(job_id, worker_id)

        result_reference = await _run_guarded(
            pipeline.finalize(job.input_snapshot, data),
            config.phase_timeout_seconds,
            lease_lost,
            job_id,
            worker_id,
        )

        if await job_service.complete(job_id, worker_id, result_reference):
            return OUTCOME_COMPLETED
        return OUTCOME_LOST

    except LeaseLostError:
        logger.warning(f"Worker {worker_id} lost job {job_id}, abandoning it")
        return OUTCOME_LOST

    except Exception as e:
        code = _error_code_for(e)
        if isinstance(e, GenerationError):
            message = str(e)
        elif code == ErrorCode.ai_timeout:
            message = f"Generation step timed out after {config.phase_timeout_seconds}s"
        elif code == ErrorCode.storage_error:
            logger.error(f"Job {job_id} hit a storage error: {str(e)}", exc_info=True)
            message = STORAGE_ERROR_MESSAGE
        else:
            logger.error(f"Job {job_id} raised unexpectedly: {str(e)}", exc_info=True)
            message = UNEXPECTED_ERROR_MESSAGE

        logger.warning(f"Job {job_id} failed with {code.value}: {message}")
        if await job_service.fail(job_id, worker_id, code, message):
            return OUTCOME_FAILED
        return OUTCOME_LOST

    finally:
        heartbeat_task.cancel()
        await asyncio.gather(heartbeat_task, return_exceptions=True)


async def _run_guarded(
    coro: Any,
    timeout: float,
    lease_lost: asyncio.Event,
    job_id: UUID,
    worker_id: str,
) -> Any:
    """Await ``coro`` with a timeout, abandoning it if the lease is lost meanwhile."""
    work = asyncio.ensure_future(asyncio.wait_for(coro, timeout))
    lost = asyncio.ensure_future(lease_lost.wait())
    try:
        done, _ = await asyncio.wait({work, lost}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        lost.cancel()
        raise

    if work in done:
        lost.cancel()
        return work.result()

    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    raise LeaseLostError(job_id, worker_id)


async def _heartbeat_loop(
    job_service: JobService,
    job_id: UUID,
    worker_id: str,
    config: JobsConfig,
    logger: logging.Logger,
    lease_lost: asyncio.Event,
) -> None:
    """Keep the lease alive while a phase runs; flag lost ownership."""
    while True:
        await asyncio.sleep(config.heartbeat_interval_seconds)
        try:
            extended = await job_service.heartbeat(job_id, worker_id)
        except Exception as e:
            logger.warning(f"Heartbeat for job {job_id} failed: {str(e)}")
            continue

        if not extended:
            lease_lost.set()
            return


def _error_code_for(error: BaseException) -> ErrorCode:
    if isinstance(error, GenerationError):
        return error.code
    if isinstance(error, asyncio.TimeoutError):
        return ErrorCode.ai_timeout
    # TimeoutError subclasses OSError on 3.11+
    if isinstance(error, (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)):
        return ErrorCode.storage_error
    return ErrorCode.unknown


async def _idle(shutdown_event: Optional[asyncio.Event], seconds: float) -> None:
    """Sleep for ``seconds`` or until shutdown is requested."""
    if shutdown_event is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(shutdown_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
