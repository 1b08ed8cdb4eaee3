"""Exceptions for the LLM completion client."""


class LlmError(Exception):
    """Base error for LLM endpoint calls."""

    def __init__(self, message: str, endpoint: str | None = None):
        self.message = message
        self.endpoint = endpoint
        super().__init__(message)


class LlmUnavailableError(LlmError):
    """The endpoint could not be reached (refused, DNS, timeout, open circuit).

    Never retried: a dead endpoint will not come back within one request.
    """


class LlmRequestError(LlmError):
    """The endpoint answered with a non-success HTTP status."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message, endpoint=endpoint)
