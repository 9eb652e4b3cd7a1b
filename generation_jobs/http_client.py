"""HTTP client for the generation jobs service."""

import asyncio
from typing import Any, Dict, List, Optional
from uuid import UUID

import aiohttp

from generation_jobs.errors import RemoteHttpError
from generation_jobs.models import TERMINAL_STATUSES

_TERMINAL_VALUES = {status.value for status in TERMINAL_STATUSES}


class JobsHttpClient:
    """HTTP client for calling the generation jobs service on behalf of an owner."""

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        timeout: float = 5.0,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Base URL of the service (e.g., "https://generation-jobs.internal")
            auth_token: Optional auth token for the X-Jobs-Token header
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self, owner_id: str) -> Dict[str, str]:
        headers = {"X-Owner-Id": owner_id}
        if self.auth_token:
            headers["X-Jobs-Token"] = self.auth_token
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        owner_id: str,
        action: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.request(
                    method,
                    url,
                    json=json_body,
                    params=params,
                    headers=self._headers(owner_id),
                ) as resp:
                    response_body = await resp.text()

                    if resp.status >= 400:
                        raise RemoteHttpError(
                            status_code=resp.status,
                            message=f"Failed to {action}: {response_body}",
                            response_body=response_body,
                        )

                    return await resp.json()

            except aiohttp.ClientError as e:
                raise RemoteHttpError(
                    status_code=0,
                    message=f"Network error: {str(e)}",
                ) from e

    async def enqueue(
        self,
        *,
        owner_id: str,
        input_snapshot: Dict[str, Any],
        cycle_key: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> UUID:
        """
        Enqueue a job via HTTP API.

        Returns:
            Job ID (UUID)

        Raises:
            RemoteHttpError: If the HTTP request fails; status 409 when the
                owner already has an active job for the cycle
        """
        request_body: Dict[str, Any] = {"input_snapshot": input_snapshot}
        if cycle_key:
            request_body["cycle_key"] = cycle_key
        if max_retries is not None:
            request_body["max_retries"] = max_retries

        data = await self._request(
            "POST", "/jobs", owner_id, "enqueue job", json_body=request_body
        )
        return UUID(data["job_id"])

    async def get_job(self, job_id: UUID, *, owner_id: str) -> Dict[str, Any]:
        """Get a job summary by ID."""
        return await self._request("GET", f"/jobs/{job_id}", owner_id, "get job")

    async def get_active_job(self, *, owner_id: str) -> Optional[Dict[str, Any]]:
        """The owner's active job, or None when there is none."""
        try:
            return await self._request("GET", "/jobs/active", owner_id, "get active job")
        except RemoteHttpError as e:
            if e.status_code == 404:
                return None
            raise

    async def list_jobs(
        self,
        *,
        owner_id: str,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        """List the owner's jobs, newest first."""
        params: Dict[str, Any] = {"limit": limit}
        if status:
            params["status"] = status
        return await self._request("GET", "/jobs", owner_id, "list jobs", params=params)

    async def cancel(self, job_id: UUID, *, owner_id: str) -> bool:
        """
        Cancel a job.

        Returns:
            False if the job had already finished
        """
        try:
            data = await self._request(
                "POST", f"/jobs/{job_id}/cancel", owner_id, "cancel job"
            )
        except RemoteHttpError as e:
            if e.status_code == 409:
                return False
            raise
        return bool(data["cancelled"])

    async def reset(self, job_id: UUID, *, owner_id: str) -> Dict[str, Any]:
        """Ask the service to requeue a stuck job. Raises RemoteHttpError(409) if not stuck."""
        return await self._request("POST", f"/jobs/{job_id}/reset", owner_id, "reset job")

    async def wait_for_job(
        self,
        job_id: UUID,
        *,
        owner_id: str,
        poll_interval: float = 2.0,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Poll a job until it is completed or failed.

        Raises:
            asyncio.TimeoutError: If ``timeout`` seconds pass first
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        while True:
            job = await self.get_job(job_id, owner_id=owner_id)
            if job["status"] in _TERMINAL_VALUES:
                return job

            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError(
                        f"Job {job_id} still {job['status']} after {timeout}s"
                    )
                await asyncio.sleep(min(poll_interval, remaining))
            else:
                await asyncio.sleep(poll_interval)
