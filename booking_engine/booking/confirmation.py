"""Final confirmation step shown before a booking is created."""

from __future__ import annotations

from typing import Any, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ValidationError

from booking_engine.availability.selector import format_local_time
from booking_engine.errors import InputError
from booking_engine.models.booking import BookingRequest
from booking_engine.models.slots import BusinessHoursPolicy


class ConfirmationSummary(BaseModel):
    duration_minutes: int
    summary: str
    caller_time: str
    business_time: str
    details: BookingRequest


def present_confirmation(
    details: Union[BookingRequest, dict[str, Any]],
    policy: BusinessHoursPolicy,
) -> ConfirmationSummary:
    """Derive the duration and a display-ready summary. No side effects."""
    try:
        request = details if isinstance(details, BookingRequest) else BookingRequest.model_validate(details)
    except ValidationError as exc:
        raise InputError.from_validation_error(exc, "confirmation details failed validation") from exc

    caller_time = format_local_time(request.start_time, ZoneInfo(request.timezone))
    business_time = format_local_time(request.start_time, policy.tz)

    summary = (
        f"{request.duration_minutes}-minute {request.meeting_type} for {request.name} "
        f"({request.email}) on {caller_time}"
    )
    if request.timezone != policy.timezone:
        summary += f" ({business_time} our time)"
    summary += "."

    return ConfirmationSummary(
        duration_minutes=request.duration_minutes,
        summary=summary,
        caller_time=caller_time,
        business_time=business_time,
        details=request,
    )
