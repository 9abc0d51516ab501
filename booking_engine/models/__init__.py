"""Data models for the booking engine."""

from .booking import (
    BookingDetails,
    BookingRecord,
    BookingRequest,
    BookingResponse,
    BookingStatus,
    is_valid_email,
)
from .slots import (
    BusinessHoursPolicy,
    BusyInterval,
    SearchWindow,
    TimePreference,
    TimeSlot,
)

__all__ = [
    "BookingDetails",
    "BookingRecord",
    "BookingRequest",
    "BookingResponse",
    "BookingStatus",
    "BusinessHoursPolicy",
    "BusyInterval",
    "SearchWindow",
    "TimePreference",
    "TimeSlot",
    "is_valid_email",
]
