"""Notification senders invoked when a job reaches a terminal state."""

import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from generation_jobs.errors import RemoteHttpError
from generation_jobs.models import JobOutcome


class Notifier:
    """
    Tells a requester that their job finished.

    The base class only logs. Subclasses deliver somewhere real; delivery
    errors propagate to the caller, which logs them and moves on.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    async def notify(self, owner_id: str, outcome: JobOutcome) -> None:
        self.logger.info(
            f"Job {outcome.job_id} for owner {owner_id} finished: {outcome.status.value}"
        )

    @staticmethod
    def build_message(owner_id: str, outcome: JobOutcome) -> dict[str, Any]:
        """Payload shared by every transport."""
        message = {"owner_id": owner_id}
        message.update(outcome.to_dict())
        message["type"] = "generation_ready" if outcome.succeeded else "generation_failed"
        return message


class SqsNotifier(Notifier):
    """Publishes outcomes to an SQS queue consumed by the push service."""

    def __init__(
        self,
        sqs_client: Any,
        queue_url: str,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(logger)
        self.sqs_client = sqs_client
        self.queue_url = queue_url

    async def notify(self, owner_id: str, outcome: JobOutcome) -> None:
        body = json.dumps(self.build_message(owner_id, outcome))
        # boto3 clients are synchronous
        await asyncio.to_thread(
            self.sqs_client.send_message,
            QueueUrl=self.queue_url,
            MessageBody=body,
        )
        self.logger.debug(f"Sent outcome of job {outcome.job_id} to SQS queue {self.queue_url}")


class WebhookNotifier(Notifier):
    """POSTs outcomes as JSON to a push-notification endpoint."""

    def __init__(
        self,
        url: str,
        auth_token: Optional[str] = None,
        timeout: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(logger)
        self.url = url
        self.auth_token = auth_token
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def notify(self, owner_id: str, outcome: JobOutcome) -> None:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(
                self.url, json=self.build_message(owner_id, outcome), headers=headers
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise RemoteHttpError(
                        status_code=resp.status,
                        message="Push endpoint rejected notification",
                        response_body=body,
                    )
        self.logger.debug(f"Posted outcome of job {outcome.job_id} to {self.url}")
