"""HTTP-facing exceptions."""

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class TooManyRequestsError(HTTPException):
    """429 carrying the wait time both in the body and the Retry-After header."""

    def __init__(self, retry_after: int, message: str | None = None):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "success": False,
                "message": message or f"Too many requests. Please try again in {retry_after} seconds.",
                "retry_after": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after
