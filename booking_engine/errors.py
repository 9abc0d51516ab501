"""Error taxonomy for the booking engine.

Every error carries a ``user_message`` that is safe to show to the caller,
so boundaries can degrade to a coherent response without leaking internals.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Upstream failure categories used to decide whether to retry."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVICE_UNAVAILABLE = "service_unavailable"
    AUTH = "auth"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


TRANSIENT_CATEGORIES = frozenset(
    {
        ErrorCategory.NETWORK,
        ErrorCategory.TIMEOUT,
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.SERVICE_UNAVAILABLE,
    }
)


class BookingEngineError(Exception):
    """Base class for all engine errors."""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class InputError(BookingEngineError):
    """Malformed request. Rejected before any side effect."""

    user_message = "Some of the booking details are invalid. Please check them and try again."

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
        user_message: str | None = None,
    ) -> None:
        super().__init__(message, user_message=user_message)
        self.errors = errors or [message]

    @classmethod
    def from_validation_error(cls, exc: Any, message: str = "request failed validation") -> "InputError":
        """Build from a pydantic ``ValidationError``, one line per field problem."""
        errors = [
            f"{'.'.join(str(p) for p in e['loc']) or 'request'}: {e['msg']}"
            for e in exc.errors()
        ]
        return cls(message, errors=errors)


class UpstreamError(BookingEngineError):
    """A calendar or email call failed."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retry_after: float | None = None,
        user_message: str | None = None,
    ) -> None:
        super().__init__(message, user_message=user_message)
        self.category = category
        self.retry_after = retry_after

    @property
    def is_transient(self) -> bool:
        return self.category in TRANSIENT_CATEGORIES


class TransientUpstreamError(UpstreamError):
    """Timeouts, network errors and upstream rate limiting."""

    user_message = "The service is temporarily unavailable. Please try again in a moment."


class PermanentUpstreamError(UpstreamError):
    """Upstream rejected the call for a reason retrying will not fix."""

    user_message = "The request could not be completed. Please contact us directly."


class ConflictError(BookingEngineError):
    """The slot is no longer free, or the caller already has a booking."""

    user_message = "That time is no longer available. Please pick another slot."


class DegradedDependencyError(BookingEngineError):
    """Calendar or persistence store is unreachable."""

    user_message = "Some services are temporarily unavailable."


class ConfigurationError(BookingEngineError):
    """Required configuration is missing or invalid."""

    user_message = "Scheduling is not configured correctly. Please contact us directly."
