"""Error taxonomy shared by services and HTTP handlers."""

import enum

from fastapi import status


class ErrorKind(enum.StrEnum):
    """Kinds of failure the core can report."""

    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    PERSISTENCE_ERROR = "persistence_error"
    NOTIFICATION_ERROR = "notification_error"
    PARTIAL_SCHEDULE_FAILURE = "partial_schedule_failure"
    ALREADY_REDEEMED = "already_redeemed"
    EXPIRED = "expired"


HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.PERSISTENCE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.NOTIFICATION_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PARTIAL_SCHEDULE_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.ALREADY_REDEEMED: status.HTTP_409_CONFLICT,
    ErrorKind.EXPIRED: status.HTTP_410_GONE,
}


class StorefrontError(Exception):
    """Base class for failures surfaced to HTTP callers."""

    kind: ErrorKind = ErrorKind.PERSISTENCE_ERROR

    def __init__(self, message: str, *, subject: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.subject = subject

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]


class ValidationError(StorefrontError):
    kind = ErrorKind.VALIDATION_ERROR


class NotFoundError(StorefrontError):
    kind = ErrorKind.NOT_FOUND


class UnauthorizedError(StorefrontError):
    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(StorefrontError):
    kind = ErrorKind.FORBIDDEN


class ConflictError(StorefrontError):
    kind = ErrorKind.CONFLICT


class RateLimitedError(StorefrontError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, *, reset_at: float, subject: str | None = None) -> None:
        super().__init__(message, subject=subject)
        self.reset_at = reset_at


class PersistenceError(StorefrontError):
    kind = ErrorKind.PERSISTENCE_ERROR


class NotificationError(StorefrontError):
    kind = ErrorKind.NOTIFICATION_ERROR


class AlreadyRedeemedError(StorefrontError):
    kind = ErrorKind.ALREADY_REDEEMED


class ExpiredError(StorefrontError):
    kind = ErrorKind.EXPIRED


_ERROR_BY_KIND: dict[ErrorKind, type[StorefrontError]] = {
    cls.kind: cls
    for cls in (
        ValidationError,
        NotFoundError,
        UnauthorizedError,
        ForbiddenError,
        ConflictError,
        PersistenceError,
        NotificationError,
        AlreadyRedeemedError,
        ExpiredError,
    )
}


def error_for(kind: ErrorKind, message: str, *, subject: str | None = None) -> StorefrontError:
    """Build the exception matching an adapter ``Err`` kind."""
    cls = _ERROR_BY_KIND.get(kind, PersistenceError)
    return cls(message, subject=subject)
