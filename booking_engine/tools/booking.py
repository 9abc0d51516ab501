"""Booking tools for the scheduling assistant.

The LLM calls ``book_meeting`` after the caller has confirmed the details
shown by ``show_booking_confirmation``. ``check_existing_booking`` and
``process_booking_request`` guard against a caller booking twice.
"""

from __future__ import annotations

import logging
from typing import Any

from booking_engine.audit import redact_pii
from booking_engine.booking.confirmation import present_confirmation
from booking_engine.booking.orchestrator import BookingOrchestrator
from booking_engine.errors import InputError
from booking_engine.models.slots import BusinessHoursPolicy

from .base import BaseTool

logger = logging.getLogger(__name__)

_BOOKING_PROPERTIES = {
    "name": {"type": "string", "description": "Full name of the caller."},
    "email": {"type": "string", "description": "Email address of the caller."},
    "timezone": {"type": "string", "description": "Caller's IANA timezone."},
    "start_time": {"type": "string", "description": "Slot start, ISO 8601 with offset."},
    "end_time": {"type": "string", "description": "Slot end, ISO 8601 with offset."},
    "meeting_type": {"type": "string", "description": "Kind of meeting. Defaults to consultation."},
    "notes": {"type": "string", "description": "Anything the caller wants to add."},
}

_BOOKING_FIELDS = tuple(_BOOKING_PROPERTIES)


def _booking_args(kwargs: dict[str, Any]) -> dict[str, Any]:
    return {k: kwargs[k] for k in _BOOKING_FIELDS if kwargs.get(k) not in (None, "")}


class BookMeetingTool(BaseTool):
    """Create the meeting on the calendar."""

    def __init__(self, orchestrator: BookingOrchestrator) -> None:
        self._orchestrator = orchestrator

    # ---- BaseTool interface ------------------------------------------------

    @property
    def name(self) -> str:
        return "book_meeting"

    @property
    def description(self) -> str:
        return (
            "Book a meeting in one of the offered slots. Requires the caller's "
            "name, email and the exact slot start and end times."
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": _BOOKING_PROPERTIES,
            "required": ["name", "email", "start_time", "end_time"],
        }

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        """Run the booking and return the response for the LLM."""
        logger.info("book_meeting for %s", redact_pii(str(kwargs.get("email", ""))))
        response = await self._orchestrator.book(_booking_args(kwargs))
        return response.model_dump(mode="json")


class CheckExistingBookingTool(BaseTool):
    """Look up the caller's upcoming booking, if any."""

    def __init__(self, orchestrator: BookingOrchestrator) -> None:
        self._orchestrator = orchestrator

    @property
    def name(self) -> str:
        return "check_existing_booking"

    @property
    def description(self) -> str:
        return "Check whether the caller already has an upcoming meeting booked."

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "email": _BOOKING_PROPERTIES["email"],
                "name": _BOOKING_PROPERTIES["name"],
            },
            "required": ["email"],
        }

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        result = await self._orchestrator.check_existing_booking(
            kwargs.get("email", ""), kwargs.get("name")
        )
        return result.model_dump(mode="json")


class ProcessBookingRequestTool(BaseTool):
    """Start a booking: existing booking, or slots for the picker."""

    def __init__(self, orchestrator: BookingOrchestrator) -> None:
        self._orchestrator = orchestrator

    @property
    def name(self) -> str:
        return "process_booking_request"

    @property
    def description(self) -> str:
        return (
            "Begin booking for a caller. Returns their existing upcoming meeting "
            "if they have one, otherwise available times for the booking form."
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "email": _BOOKING_PROPERTIES["email"],
                "name": _BOOKING_PROPERTIES["name"],
                "timezone": _BOOKING_PROPERTIES["timezone"],
            },
            "required": ["email"],
        }

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        result = await self._orchestrator.process_booking_request(
            kwargs.get("email", ""), kwargs.get("name"), kwargs.get("timezone")
        )
        payload = result.model_dump(mode="json")
        if result.action == "show_booking_modal":
            payload["ui_action"] = "show_booking_modal"
        return payload


class ShowBookingConfirmationTool(BaseTool):
    """Summarise the chosen slot for one last confirmation."""

    def __init__(self, policy: BusinessHoursPolicy) -> None:
        self._policy = policy

    @property
    def name(self) -> str:
        return "show_booking_confirmation"

    @property
    def description(self) -> str:
        return (
            "Show the caller a summary of the meeting they are about to book so "
            "they can confirm it before it is created."
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": _BOOKING_PROPERTIES,
            "required": ["name", "email", "start_time", "end_time"],
        }

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        try:
            summary = present_confirmation(_booking_args(kwargs), self._policy)
        except InputError as exc:
            return {"success": False, "message": exc.user_message, "errors": exc.errors}
        return {
            "success": True,
            "ui_action": "show_booking_confirmation",
            **summary.model_dump(mode="json"),
        }
