"""Configuration for the generation jobs queue."""

import os
from datetime import timedelta
from typing import Optional


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


class JobsConfig:
    """Configuration object for generation jobs."""

    def __init__(
        self,
        db_dsn: str,
        lease_seconds: int = 180,
        heartbeat_interval_seconds: int = 30,
        poll_interval_seconds: int = 5,
        phase_timeout_seconds: int = 100,
        max_retries: int = 3,
        reset_grace_seconds: int = 180,
        retention_days: int = 7,
        sweep_interval_seconds: int = 3600,
        api_auth_token: Optional[str] = None,
        notifications_sqs_queue: Optional[str] = None,
        notifications_webhook_url: Optional[str] = None,
        pipeline: Optional[str] = None,
    ):
        if heartbeat_interval_seconds >= lease_seconds:
            raise ValueError(
                "heartbeat_interval_seconds must be shorter than lease_seconds "
                f"({heartbeat_interval_seconds} >= {lease_seconds})"
            )
        self.db_dsn = db_dsn
        self.lease_seconds = lease_seconds
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.phase_timeout_seconds = phase_timeout_seconds
        self.max_retries = max_retries
        self.reset_grace_seconds = reset_grace_seconds
        self.retention_days = retention_days
        self.sweep_interval_seconds = sweep_interval_seconds
        self.api_auth_token = api_auth_token
        self.notifications_sqs_queue = notifications_sqs_queue
        self.notifications_webhook_url = notifications_webhook_url
        self.pipeline = pipeline

    @classmethod
    def from_env(cls) -> "JobsConfig":
        """Create config from environment variables."""
        db_dsn = os.getenv("GENERATION_JOBS_DB_DSN")
        if not db_dsn:
            raise ValueError("GENERATION_JOBS_DB_DSN environment variable is required")

        return cls(
            db_dsn=db_dsn,
            lease_seconds=_int_env("GENERATION_JOBS_LEASE_SECONDS", 180, minimum=1),
            heartbeat_interval_seconds=_int_env(
                "GENERATION_JOBS_HEARTBEAT_INTERVAL_SECONDS", 30, minimum=1
            ),
            poll_interval_seconds=_int_env(
                "GENERATION_JOBS_POLL_INTERVAL_SECONDS", 5, minimum=1
            ),
            phase_timeout_seconds=_int_env(
                "GENERATION_JOBS_PHASE_TIMEOUT_SECONDS", 100, minimum=1
            ),
            max_retries=_int_env("GENERATION_JOBS_MAX_RETRIES", 3),
            reset_grace_seconds=_int_env("GENERATION_JOBS_RESET_GRACE_SECONDS", 180),
            retention_days=_int_env("GENERATION_JOBS_RETENTION_DAYS", 7, minimum=1),
            sweep_interval_seconds=_int_env(
                "GENERATION_JOBS_SWEEP_INTERVAL_SECONDS", 3600, minimum=1
            ),
            api_auth_token=os.getenv("GENERATION_JOBS_API_AUTH_TOKEN") or None,
            notifications_sqs_queue=(
                os.getenv("GENERATION_JOBS_NOTIFICATIONS_SQS_QUEUE") or None
            ),
            notifications_webhook_url=(
                os.getenv("GENERATION_JOBS_NOTIFICATIONS_WEBHOOK_URL") or None
            ),
            pipeline=os.getenv("GENERATION_JOBS_PIPELINE") or None,
        )

    @property
    def reset_grace_period(self) -> timedelta:
        return timedelta(seconds=self.reset_grace_seconds)

    @property
    def retention_window(self) -> timedelta:
        return timedelta(days=self.retention_days)
