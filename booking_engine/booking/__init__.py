"""Booking: orchestration, persistence and confirmation."""

from .confirmation import ConfirmationSummary, present_confirmation
from .orchestrator import (
    BookingAttempt,
    BookingOrchestrator,
    BookingState,
    ExistingBookingResult,
    FailureReason,
    ProcessBookingResult,
    SlotHolds,
)
from .store import BookingStore, SqlBookingStore

__all__ = [
    "BookingAttempt",
    "BookingOrchestrator",
    "BookingState",
    "BookingStore",
    "ConfirmationSummary",
    "ExistingBookingResult",
    "FailureReason",
    "ProcessBookingResult",
    "SlotHolds",
    "SqlBookingStore",
    "present_confirmation",
]
