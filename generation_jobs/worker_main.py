"""CLI entrypoint and programmatic interface for worker."""

import argparse
import asyncio
import importlib
import logging
import os
import signal
import sys
from typing import Optional

import asyncpg
import boto3

from generation_jobs.config import JobsConfig
from generation_jobs.generation import GenerationPipeline
from generation_jobs.notifications import Notifier, SqsNotifier, WebhookNotifier
from generation_jobs.worker import run_worker_loop


def setup_logging():
    """Setup logging configuration."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def create_db_pool(config: JobsConfig):
    """Create database connection pool."""
    return await asyncpg.create_pool(config.db_dsn, min_size=1, max_size=4)


def load_pipeline(path: str) -> GenerationPipeline:
    """
    Import a pipeline from a ``module:attribute`` path.

    Raises:
        ValueError: If the path is malformed or does not name a pipeline
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Pipeline path must look like 'module:attribute', got {path!r}")

    module = importlib.import_module(module_name)
    pipeline = getattr(module, attr, None)
    if not isinstance(pipeline, GenerationPipeline):
        raise ValueError(f"{path} is not a GenerationPipeline")
    return pipeline


def build_notifier(config: JobsConfig, logger: logging.Logger) -> Notifier:
    """Pick the notifier the configuration asks for."""
    if config.notifications_sqs_queue:
        return SqsNotifier(boto3.client("sqs"), config.notifications_sqs_queue, logger)
    if config.notifications_webhook_url:
        return WebhookNotifier(config.notifications_webhook_url, logger=logger)
    return Notifier(logger)


async def run_worker(
    pipeline: GenerationPipeline,
    config: Optional[JobsConfig] = None,
    db_pool=None,
    notifier: Optional[Notifier] = None,
    logger: Optional[logging.Logger] = None,
    shutdown_event: Optional[asyncio.Event] = None,
    worker_id: Optional[str] = None,
):
    """
    Run the worker programmatically.

    Args:
        pipeline: Generation pipeline to run for each claimed job.
        config: JobsConfig instance. If None, will load from environment.
        db_pool: Database connection pool. If None, will create from config.
        notifier: Notifier for finished jobs. If None, built from config.
        logger: Logger instance. If None, will create default logger.
        shutdown_event: Optional asyncio.Event for graceful shutdown.
        worker_id: Lease identity. If None, derived from host and pid.

    Example:
        ```python
        from generation_jobs.worker_main import run_worker
        from myapp.plans import pipeline
        import asyncio

        asyncio.run(run_worker(pipeline))
        ```
    """
    if config is None:
        config = JobsConfig.from_env()

    if logger is None:
        logger = logging.getLogger(__name__)

    if notifier is None:
        notifier = build_notifier(config, logger)

    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    db_pool_provided = db_pool is not None
    if db_pool is None:
        db_pool = await create_db_pool(config)

    try:
        await run_worker_loop(
            config=config,
            db_pool=db_pool,
            pipeline=pipeline,
            logger=logger,
            notifier=notifier,
            worker_id=worker_id,
            shutdown_event=shutdown_event,
        )
    finally:
        if not db_pool_provided and db_pool:
            await db_pool.close()


def main():
    """Main entrypoint for worker."""
    setup_logging()
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(description="Generation Jobs Worker")
    parser.add_argument(
        "--pipeline",
        default=None,
        help="Pipeline to run as module:attribute (default: GENERATION_JOBS_PIPELINE)",
    )
    parser.add_argument(
        "--worker-id",
        default=None,
        help="Lease identity for this worker (default: host-pid-random)",
    )

    args = parser.parse_args()

    try:
        config = JobsConfig.from_env()
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    pipeline_path = args.pipeline or config.pipeline
    if not pipeline_path:
        logger.error("No pipeline given; pass --pipeline or set GENERATION_JOBS_PIPELINE")
        sys.exit(1)

    try:
        pipeline = load_pipeline(pipeline_path)
    except (ImportError, ValueError) as e:
        logger.error(f"Failed to load pipeline {pipeline_path}: {e}")
        sys.exit(1)

    shutdown_event = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    async def run():
        """Async main function."""
        try:
            logger.info(f"Starting worker with pipeline {pipeline_path}...")
            await run_worker(
                pipeline,
                config=config,
                logger=logger,
                shutdown_event=shutdown_event,
                worker_id=args.worker_id,
            )
        except Exception as e:
            logger.error(f"Fatal error in worker: {e}", exc_info=True)
            sys.exit(1)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
