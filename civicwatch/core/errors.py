# File: civicwatch/core/errors.py
"""Domain errors shared by the store, the services and the HTTP layer.

Usage:
    from civicwatch.core.errors import NotFoundError, ConflictError
    raise NotFoundError("Issue not found")
    raise ConflictError("Already upvoted")
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse


class CivicError(Exception):
    """Base class; carries the HTTP status the API layer renders it with."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Bad request"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(CivicError):
    """Missing or malformed input. User-correctable, surfaced verbatim."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Invalid input"


class NotFoundError(CivicError):
    """Stale or unknown id. The UI should refetch."""

    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Issue not found"


class ConflictError(CivicError):
    """Uniqueness violation or a transition that lost a race."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflicting update"


class ForbiddenError(CivicError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "forbidden"


class StoreError(CivicError):
    """Backend unavailable. The operation must not be assumed committed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Service temporarily unavailable, please try again."
    retryable = True


async def civic_error_handler(request: Request, exc: CivicError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
