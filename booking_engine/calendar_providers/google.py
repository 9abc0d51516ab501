"""Google Calendar provider implementation.

Uses a Google Cloud service account to interact with the Calendar API v3.
The service account JSON key path is read from the ``GOOGLE_SERVICE_ACCOUNT_JSON``
environment variable.

The client library is synchronous, so every call runs in the default thread
pool and is bounded by ``timeout`` seconds. A call that times out is reported
as a transient failure; the worker thread is left to finish on its own.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from functools import partial
from typing import Any

from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from booking_engine.errors import (
    ErrorCategory,
    PermanentUpstreamError,
    TransientUpstreamError,
    UpstreamError,
)
from booking_engine.models.slots import BusyInterval

from .base import CalendarEvent, CalendarProvider, CreatedEvent

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


def _parse_rfc3339(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def classify_http_error(exc: HttpError) -> UpstreamError:
    """Map a Google API HttpError onto the engine's error taxonomy."""
    status = getattr(exc.resp, "status", None)
    try:
        status = int(status)
    except (TypeError, ValueError):
        status = 0

    message = f"Google Calendar API error {status}: {exc}"
    if status == 429:
        return TransientUpstreamError(message, category=ErrorCategory.RATE_LIMIT)
    if status >= 500:
        return TransientUpstreamError(message, category=ErrorCategory.SERVICE_UNAVAILABLE)
    if status in (401, 403):
        return PermanentUpstreamError(message, category=ErrorCategory.AUTH)
    return PermanentUpstreamError(message, category=ErrorCategory.VALIDATION)


class GoogleCalendarProvider(CalendarProvider):
    """CalendarProvider backed by Google Calendar API v3."""

    def __init__(
        self,
        service_account_path: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        sa_path = service_account_path or os.environ.get(
            "GOOGLE_SERVICE_ACCOUNT_JSON", ""
        )
        if not sa_path:
            raise ValueError(
                "Google service account JSON path must be provided via "
                "constructor argument or GOOGLE_SERVICE_ACCOUNT_JSON env var."
            )
        self._timeout = timeout
        self._credentials = Credentials.from_service_account_file(
            sa_path, scopes=SCOPES
        )
        self._service = build(
            "calendar", "v3", credentials=self._credentials, cache_discovery=False
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        """Run a synchronous Google API call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(func, *args, **kwargs)
        )

    async def _call(self, operation: str, func) -> Any:
        """Execute ``func`` with a timeout, translating failures."""
        try:
            return await asyncio.wait_for(self._run_in_executor(func), self._timeout)
        except asyncio.TimeoutError as exc:
            raise TransientUpstreamError(
                f"Google Calendar {operation} timed out after {self._timeout}s",
                category=ErrorCategory.TIMEOUT,
            ) from exc
        except HttpError as exc:
            raise classify_http_error(exc) from exc
        except GoogleAuthError as exc:
            raise PermanentUpstreamError(
                f"Google Calendar credentials rejected: {exc}",
                category=ErrorCategory.AUTH,
            ) from exc
        except OSError as exc:
            raise TransientUpstreamError(
                f"Google Calendar {operation} network error: {exc}",
                category=ErrorCategory.NETWORK,
            ) from exc

    @staticmethod
    def _to_rfc3339(dt: datetime) -> str:
        """Convert a datetime to an RFC 3339 string with timezone."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat()

    # ------------------------------------------------------------------
    # CalendarProvider interface
    # ------------------------------------------------------------------

    async def query_free_busy(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        timezone: str,
    ) -> list[BusyInterval]:
        """Query the Google freebusy API.

        Busy intervals are returned as-is. All-day events show up as
        local-midnight ranges, which the conflict resolver handles by date.
        """
        body = {
            "timeMin": self._to_rfc3339(time_min),
            "timeMax": self._to_rfc3339(time_max),
            "timeZone": timezone,
            "items": [{"id": calendar_id}],
            "groupExpansionMax": 1,
            "calendarExpansionMax": 1,
        }

        response = await self._call(
            "freebusy", self._service.freebusy().query(body=body).execute
        )

        calendar = response.get("calendars", {}).get(calendar_id, {})
        errors = calendar.get("errors") or []
        if errors:
            reasons = ", ".join(e.get("reason", "unknown") for e in errors)
            raise PermanentUpstreamError(
                f"Free/busy query for {calendar_id} failed: {reasons}",
                category=ErrorCategory.VALIDATION,
            )

        busy: list[BusyInterval] = []
        for interval in calendar.get("busy", []):
            try:
                busy.append(
                    BusyInterval(
                        start=_parse_rfc3339(interval["start"]),
                        end=_parse_rfc3339(interval["end"]),
                    )
                )
            except (KeyError, ValueError):
                logger.warning("Skipping malformed busy interval: %s", interval)

        busy.sort(key=lambda b: b.start)
        logger.info(
            "Free/busy for %s: %d busy intervals between %s and %s",
            calendar_id, len(busy), body["timeMin"], body["timeMax"],
        )
        return busy

    async def create_event(
        self, calendar_id: str, event: CalendarEvent
    ) -> CreatedEvent:
        """Insert an event with a Google Meet conference request.

        No attendees are attached and no invitations are sent; the
        confirmation email goes out through the notification dispatcher.
        """
        body: dict[str, Any] = {
            "summary": event.summary,
            "start": {"dateTime": self._to_rfc3339(event.start), "timeZone": event.timezone},
            "end": {"dateTime": self._to_rfc3339(event.end), "timeZone": event.timezone},
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }
        if event.description:
            body["description"] = event.description
        if event.location:
            body["location"] = event.location
        if event.conference_request_id:
            body["conferenceData"] = {
                "createRequest": {
                    "requestId": event.conference_request_id,
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            }
        if event.metadata:
            body["extendedProperties"] = {"private": dict(event.metadata)}

        result = await self._call(
            "events.insert",
            self._service.events()
            .insert(
                calendarId=calendar_id,
                body=body,
                conferenceDataVersion=1,
                sendUpdates="none",
            )
            .execute,
        )

        logger.info("Created event %s on calendar %s", result["id"], calendar_id)

        entry_points = (result.get("conferenceData") or {}).get("entryPoints") or []
        video = next((e for e in entry_points if e.get("entryPointType") == "video"), None)
        meeting_link = (video or {}).get("uri") or result.get("hangoutLink")

        return CreatedEvent(
            id=result["id"],
            html_link=result.get("htmlLink"),
            meeting_link=meeting_link,
        )

    async def cancel_event(
        self, calendar_id: str, event_id: str
    ) -> bool:
        """Delete an event from Google Calendar."""
        try:
            await self._call(
                "events.delete",
                self._service.events()
                .delete(calendarId=calendar_id, eventId=event_id)
                .execute,
            )
            logger.info(
                "Cancelled event %s on calendar %s", event_id, calendar_id
            )
            return True
        except UpstreamError:
            logger.exception(
                "Failed to cancel event %s on calendar %s",
                event_id,
                calendar_id,
            )
            return False
