"""Retention sweeper for finished generation jobs."""

import asyncio
import logging

import asyncpg

from generation_jobs.config import JobsConfig
from generation_jobs.service import JobService


async def run_sweeper_loop(
    config: JobsConfig,
    db_pool: asyncpg.Pool,
    logger: logging.Logger,
    shutdown_event: asyncio.Event = None,
) -> None:
    """
    Periodically delete completed and failed jobs past the retention window.

    Args:
        config: Generation jobs configuration
        db_pool: Database connection pool
        logger: Logger instance
        shutdown_event: Optional event to signal shutdown
    """
    job_service = JobService(config, db_pool, logger)

    logger.info(
        f"Starting sweeper loop (retention {config.retention_days} days, "
        f"every {config.sweep_interval_seconds}s)"
    )

    while True:
        if shutdown_event and shutdown_event.is_set():
            logger.info("Shutdown signal received, exiting sweeper loop")
            break

        try:
            await job_service.sweep(config.retention_window)
        except Exception as e:
            logger.error(f"Error in sweeper: {str(e)}", exc_info=True)

        if shutdown_event is None:
            await asyncio.sleep(config.sweep_interval_seconds)
            continue
        try:
            await asyncio.wait_for(
                shutdown_event.wait(), timeout=config.sweep_interval_seconds
            )
        except asyncio.TimeoutError:
            pass
