"""
Error taxonomy for Crewboard.

Every failure that crosses the service boundary is one of these kinds. Each
carries a human-readable message and the HTTP status the API reports.
"""

from fastapi import status


class AppError(Exception):
    """Base application error."""

    code = "internal_failure"
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code or self.default_status
        super().__init__(self.message)


class UnauthorizedError(AppError):
    """No identity, or an identity we cannot resolve."""

    code = "unauthorized"
    default_status = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(AppError):
    """Authenticated, but not the leader/owner of the resource."""

    code = "forbidden"
    default_status = status.HTTP_403_FORBIDDEN


class NotFoundError(AppError):
    code = "not_found"
    default_status = status.HTTP_404_NOT_FOUND


class ValidationFailedError(AppError):
    code = "validation_failed"
    default_status = status.HTTP_400_BAD_REQUEST


class ConflictError(AppError):
    """Duplicate name/membership/invitation, or a full team."""

    code = "conflict"
    default_status = status.HTTP_409_CONFLICT


class CooldownActiveError(AppError):
    """A time-windowed reward was claimed again too early."""

    code = "cooldown_active"
    default_status = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str, retry_at=None):
        self.retry_at = retry_at
        super().__init__(message)


class InternalFailureError(AppError):
    pass
