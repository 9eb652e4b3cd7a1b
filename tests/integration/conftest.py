"""Fixtures for tests against a real Postgres (via testcontainers)."""

import logging

import asyncpg
import pytest
from testcontainers.postgres import PostgresContainer

from generation_jobs.config import JobsConfig
from generation_jobs.ddl import JOBS_TABLE_DDL
from generation_jobs.notifications import Notifier
from generation_jobs.service import JobService


class RecordingNotifier(Notifier):
    """Keeps every outcome it is asked to deliver."""

    def __init__(self):
        super().__init__()
        self.sent = []

    async def notify(self, owner_id, outcome):
        self.sent.append((owner_id, outcome))


@pytest.fixture(scope="session")
def postgres_dsn():
    """Start one PostgreSQL container for the session."""
    container = PostgresContainer("postgres:15")
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        url = container.get_connection_url()
        # asyncpg wants a plain libpq URL
        yield url.replace("postgresql+psycopg2://", "postgresql://")
    finally:
        container.stop()


@pytest.fixture
async def db_pool(postgres_dsn):
    """Create a database pool on a freshly created schema."""
    pool = await asyncpg.create_pool(postgres_dsn, min_size=2, max_size=10)

    async with pool.acquire() as conn:
        await conn.execute("DROP TABLE IF EXISTS generation_jobs")
        await conn.execute(JOBS_TABLE_DDL)

    yield pool

    await pool.close()


@pytest.fixture
def config(postgres_dsn):
    return JobsConfig(db_dsn=postgres_dsn, max_retries=3)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(config, db_pool, notifier):
    return JobService(config, db_pool, logging.getLogger("test"), notifier=notifier)


@pytest.fixture
def backdate(db_pool):
    """Move one of a job's timestamps into the past, standing in for elapsed time."""

    async def _backdate(job_id, column, seconds):
        assert column in ("lock_expires_at", "started_at", "completed_at")
        async with db_pool.acquire() as conn:
            await conn.execute(
                f"UPDATE generation_jobs SET {column} = now() - make_interval(secs => $2) "
                "WHERE id = $1",
                job_id,
                float(seconds),
            )

    return _backdate
