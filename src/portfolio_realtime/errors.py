"""Error taxonomy and classification helpers shared across the service."""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RealtimeError(RuntimeError):
    """Base class for change-feed failures."""


class TransientChannelError(RealtimeError):
    """The transport reported a channel error; retried with backoff."""


class ChannelTimeout(RealtimeError):
    """The transport timed out subscribing; retried after a fixed delay."""


class HandlerError(RealtimeError):
    """A subscriber callback raised while handling a change event."""

    def __init__(self, message: str, *, kind: Optional[str] = None) -> None:
        super().__init__(message)
        self.kind = kind


class EnrichmentFetchError(RealtimeError):
    """The joined read for an inserted row failed; the event is dropped."""


class DataAccessError(RuntimeError):
    """Raised (or returned) when the data API rejects a request."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.status_code = status_code


class ValidationError(ValueError):
    """Raised when user supplied content fails validation."""


class AuthRequiredError(RuntimeError):
    """Raised when an operation needs a signed-in user."""


class ErrorType(str, enum.Enum):
    AUTH = "auth"
    DATABASE = "database"
    NETWORK = "network"
    REALTIME = "realtime"
    VALIDATION = "validation"
    PERMISSION = "permission"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AppError:
    """Classified error with a user facing message."""

    type: ErrorType
    message: str
    retryable: bool
    original: Optional[BaseException] = None


_AUTH_MESSAGES = (
    ("invalid login credentials", "Email or password is incorrect"),
    ("email not confirmed", "Please verify your email address first"),
    ("user already registered", "This email is already registered"),
    ("jwt expired", "Session expired, please sign in again"),
    ("session_not_found", "Session expired, please sign in again"),
)


def classify_error(error: BaseException) -> AppError:
    """Map an exception onto an :class:`AppError`."""

    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return AppError(
            ErrorType.NETWORK,
            "Network request failed, check your connection",
            True,
            error,
        )

    if isinstance(error, ValidationError):
        return AppError(ErrorType.VALIDATION, str(error), False, error)

    if isinstance(error, AuthRequiredError):
        return AppError(ErrorType.AUTH, str(error), False, error)

    if isinstance(error, DataAccessError):
        text = (error.message or "").lower()
        for needle, message in _AUTH_MESSAGES:
            if needle in text:
                return AppError(ErrorType.AUTH, message, False, error)
        if error.code == "PGRST301" or "permission denied" in text:
            return AppError(
                ErrorType.PERMISSION,
                "You do not have permission to perform this action",
                False,
                error,
            )
        if "connection" in text or "timeout" in text:
            return AppError(
                ErrorType.DATABASE,
                "Database connection failed, please retry later",
                True,
                error,
            )
        return AppError(
            ErrorType.DATABASE,
            "Database operation failed, please retry later",
            True,
            error,
        )

    if isinstance(error, RealtimeError) or "realtime" in str(error).lower():
        return AppError(
            ErrorType.REALTIME,
            "Realtime connection lost, reconnecting",
            True,
            error,
        )

    return AppError(
        ErrorType.UNKNOWN,
        "An unknown error occurred, please retry later",
        True,
        error,
    )


def retry_with_backoff(
    fn: Callable[[], T],
    *,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds, doubling the delay between attempts.

    Errors classified as non-retryable are re-raised immediately, as is the
    error from the final attempt.
    """

    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")
    for attempt in range(max_retries):
        try:
            return fn()
        except Exception as exc:
            classified = classify_error(exc)
            if not classified.retryable or attempt == max_retries - 1:
                raise
            delay = initial_delay * (2**attempt)
            logger.warning(
                "%s error on attempt %d/%d - retrying in %.2fs: %s",
                classified.type.value,
                attempt + 1,
                max_retries,
                delay,
                exc,
            )
            sleep(delay)
    raise AssertionError("unreachable")


__all__ = [
    "AppError",
    "AuthRequiredError",
    "ChannelTimeout",
    "DataAccessError",
    "EnrichmentFetchError",
    "ErrorType",
    "HandlerError",
    "RealtimeError",
    "TransientChannelError",
    "ValidationError",
    "classify_error",
    "retry_with_backoff",
]
