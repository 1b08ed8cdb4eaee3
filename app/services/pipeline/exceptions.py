"""Exceptions for the ingest pipeline."""


class CoercionError(ValueError):
    """Model output cannot be turned into the domain type."""


class RemoteJobError(Exception):
    """Error talking to the remote LLM job service."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        endpoint: str | None = None,
    ):
        self.message = message
        self.job_id = job_id
        self.endpoint = endpoint
        super().__init__(message)


class RemoteJobEnqueueError(RemoteJobError):
    """The job service rejected or did not answer the enqueue request."""


class RemoteJobFailedError(RemoteJobError):
    """The job service reported the job as failed."""

    def __init__(
        self,
        job_id: str,
        failed_reason: str | None = None,
        endpoint: str | None = None,
    ):
        self.failed_reason = failed_reason or "unknown error"
        super().__init__(
            f"LLM pipeline failed: {self.failed_reason}", job_id=job_id, endpoint=endpoint
        )


class RemoteJobTimeoutError(RemoteJobError):
    """The job did not finish within the polling bound (it may still be running)."""

    def __init__(self, job_id: str, timeout_seconds: float, endpoint: str | None = None):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"LLM pipeline job {job_id} timed out after {timeout_seconds:g}s",
            job_id=job_id,
            endpoint=endpoint,
        )
