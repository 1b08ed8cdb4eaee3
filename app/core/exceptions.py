from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )


class ValidationError(HTTPException):
    """Raised when request validation fails."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=message,
        )


class ConflictError(HTTPException):
    """Raised when the resource's current state does not allow the operation."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=message,
        )


class UpstreamError(HTTPException):
    """Raised when an upstream service (LLM endpoint, job service) fails."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=message,
        )


class UpstreamTimeoutError(HTTPException):
    """Raised when an upstream job did not finish in time."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=message,
        )
