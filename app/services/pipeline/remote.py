"""
Client for the remote LLM job service.

The service runs the ingest pipeline on queue workers. Jobs are enqueued
with a shared-secret header and polled until they complete, fail, or the
polling bound elapses. A timeout does not mean the job failed: it may still
finish on the service side.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import Settings
from app.services.llm.http_client import get_llm_http_client
from app.services.pipeline.exceptions import (
    RemoteJobEnqueueError,
    RemoteJobFailedError,
    RemoteJobTimeoutError,
)

logger = logging.getLogger(__name__)

JOB_KIND_INGEST = "ingest"
JOB_KIND_WORKITEM = "workitem"

_ENQUEUE_PATHS = {
    JOB_KIND_INGEST: "/jobs/ingest",
    JOB_KIND_WORKITEM: "/jobs/generate-workitem",
}

POLL_REQUEST_TIMEOUT = 5.0


@dataclass
class RemoteJobHandle:
    job_id: str
    queue: str | None = None
    status: str | None = None


class RemoteJobClient:
    """Enqueue and poll jobs on the remote LLM job service."""

    def __init__(
        self,
        base_url: str,
        secret: str,
        http_client: httpx.AsyncClient | None = None,
        poll_interval: float = 2.0,
        timeout: float = 120.0,
        enqueue_timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self._http = http_client
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.enqueue_timeout = enqueue_timeout
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, config: Settings) -> "RemoteJobClient":
        return cls(
            base_url=config.llm_service_url,
            secret=config.llm_service_secret,
            poll_interval=config.remote_job_poll_interval_seconds,
            timeout=config.remote_job_timeout_seconds,
            enqueue_timeout=config.remote_job_enqueue_timeout_seconds,
        )

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http or get_llm_http_client()

    @property
    def headers(self) -> dict[str, str]:
        return {"X-API-Secret": self.secret, "Content-Type": "application/json"}

    async def enqueue(self, kind: str, payload: dict[str, Any]) -> RemoteJobHandle:
        """Submit a job. Raises RemoteJobEnqueueError when the service does not accept it."""
        url = f"{self.base_url}{_ENQUEUE_PATHS[kind]}"
        try:
            response = await self.http.post(
                url, json=payload, headers=self.headers, timeout=self.enqueue_timeout
            )
        except httpx.TransportError as e:
            raise RemoteJobEnqueueError(
                f"Job service unreachable: {type(e).__name__}", endpoint=url
            ) from e

        if not response.is_success:
            raise RemoteJobEnqueueError(
                f"Job service rejected {kind} job: HTTP {response.status_code} "
                f"{response.text[:200]}",
                endpoint=url,
            )

        try:
            body = response.json()
            handle = RemoteJobHandle(
                job_id=str(body["jobId"]),
                queue=body.get("queue"),
                status=body.get("status"),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteJobEnqueueError(
                "Job service returned no jobId", endpoint=url
            ) from e

        logger.info(f"[remote-job] Enqueued {kind} job {handle.job_id} ({handle.queue})")
        return handle

    async def get_status(self, kind: str, job_id: str) -> dict[str, Any]:
        """Fetch one status snapshot. Raises httpx errors on transport/HTTP failure."""
        response = await self.http.get(
            f"{self.base_url}/jobs/{kind}/{job_id}/status",
            headers=self.headers,
            timeout=POLL_REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        body: dict[str, Any] = response.json()
        return body

    async def wait_for_completion(self, kind: str, job_id: str) -> dict[str, Any]:
        """
        Poll until the job completes.

        Returns:
            The job's result payload

        Raises:
            RemoteJobFailedError: The service reported the job as failed
            RemoteJobTimeoutError: The polling bound elapsed first
        """
        endpoint = f"{self.base_url}/jobs/{kind}/{job_id}/status"
        deadline = self._clock() + self.timeout

        while True:
            try:
                status = await self.get_status(kind, job_id)
            except (httpx.HTTPError, ValueError) as e:
                # Transient: the job keeps running server-side
                logger.warning(f"[remote-job] Poll error for {job_id}, retrying: {e!r}")
                status = {}

            state = status.get("status")
            if state == "completed":
                result: dict[str, Any] = status.get("result") or {}
                return result
            if state == "failed":
                raise RemoteJobFailedError(job_id, status.get("failedReason"), endpoint=endpoint)

            if self._clock() >= deadline:
                raise RemoteJobTimeoutError(job_id, self.timeout, endpoint=endpoint)
            await self._sleep(self.poll_interval)

    async def run(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Enqueue a job and wait for its result."""
        handle = await self.enqueue(kind, payload)
        return await self.wait_for_completion(kind, handle.job_id)
