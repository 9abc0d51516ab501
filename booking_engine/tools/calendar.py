"""Availability tools for the scheduling assistant.

``get_availability`` answers "when are you free?" style questions with the
nearest (or time-matched) slot. ``show_booking_modal`` returns a capped,
per-day slot list for an interactive picker.
"""

from __future__ import annotations

import logging
from typing import Any

from booking_engine.availability.selector import format_slot_time
from booking_engine.availability.service import (
    AvailabilityMode,
    AvailabilityResult,
    AvailabilityService,
)

from .base import BaseTool

logger = logging.getLogger(__name__)


def _result_payload(result: AvailabilityResult, service: AvailabilityService) -> dict[str, Any]:
    payload = result.model_dump(mode="json")
    payload["slot_labels"] = [
        format_slot_time(slot, service.policy.tz) for slot in result.available_slots
    ]
    return payload


class GetAvailabilityTool(BaseTool):
    """Return open meeting times from the calendar.

    Parameters accepted from the LLM:

    * ``timezone``       -- Caller's IANA timezone. Defaults to the business timezone.
    * ``requested_time`` -- A time the caller asked for (``"2:00 PM"`` or ISO 8601).
    * ``preference``     -- ``morning``, ``afternoon`` or free text such as "next week".
    * ``days``           -- Days ahead to search (1-7).
    """

    def __init__(self, service: AvailabilityService) -> None:
        self._service = service

    # ---- BaseTool interface ------------------------------------------------

    @property
    def name(self) -> str:
        return "get_availability"

    @property
    def description(self) -> str:
        return (
            "Check the calendar for open meeting times. Returns the earliest "
            "available slot, or every slot at the requested time of day."
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "timezone": {
                    "type": "string",
                    "description": "Caller's IANA timezone, e.g. America/Chicago.",
                },
                "requested_time": {
                    "type": "string",
                    "description": "Time the caller asked for, e.g. '2:00 PM'.",
                },
                "preference": {
                    "type": "string",
                    "description": "'morning', 'afternoon', or phrasing like 'next week'.",
                },
                "days": {
                    "type": "integer",
                    "description": "Number of days ahead to search (1-7). Defaults to 7.",
                },
            },
            "required": [],
        }

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        result = await self._service.get_availability(
            timezone=kwargs.get("timezone"),
            lookahead_days=kwargs.get("days"),
            requested_time=kwargs.get("requested_time"),
            preference=kwargs.get("preference"),
            mode=AvailabilityMode.NEAREST,
        )
        return _result_payload(result, self._service)


class ShowBookingModalTool(BaseTool):
    """Open the booking picker with up to two slots per day."""

    def __init__(self, service: AvailabilityService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "show_booking_modal"

    @property
    def description(self) -> str:
        return (
            "Show the caller an interactive booking form listing available "
            "times for the coming days."
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "timezone": {"type": "string", "description": "Caller's IANA timezone."},
                "preference": {"type": "string", "description": "'morning' or 'afternoon'."},
                "days": {"type": "integer", "description": "Days ahead to search (1-7)."},
                "name": {"type": "string", "description": "Caller's name, if known."},
                "email": {"type": "string", "description": "Caller's email, if known."},
            },
            "required": [],
        }

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        result = await self._service.get_availability(
            timezone=kwargs.get("timezone"),
            lookahead_days=kwargs.get("days"),
            preference=kwargs.get("preference"),
            mode=AvailabilityMode.INTERACTIVE,
        )
        logger.info("Booking modal requested with %d slots", len(result.available_slots))
        return {
            "ui_action": "show_booking_modal",
            "prefill": {
                "name": kwargs.get("name", ""),
                "email": kwargs.get("email", ""),
                "timezone": result.timezone,
            },
            **_result_payload(result, self._service),
        }
