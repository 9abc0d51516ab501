"""Abstract base class for calendar providers.

Defines the interface the engine consumes: a free/busy query and event
creation. Any calendar backend (Google, a demo data set, etc.) implements
this ABC.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from booking_engine.models.slots import BusyInterval


@dataclass
class CalendarEvent:
    """Represents a calendar event to be created."""

    summary: str
    start: datetime
    end: datetime
    timezone: str
    description: str = ""
    location: str = ""
    # Reused on retried inserts so only one conference link is created.
    conference_request_id: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class CreatedEvent:
    """What the calendar returns after inserting an event."""

    id: str
    html_link: Optional[str] = None
    meeting_link: Optional[str] = None


class CalendarProvider(ABC):
    """Abstract calendar backend.

    Subclasses must implement the free/busy query, event creation and
    event cancellation. ``is_demo`` marks providers that serve synthetic
    data rather than the owner's real calendar.
    """

    is_demo: bool = False

    @abstractmethod
    async def query_free_busy(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        timezone: str,
    ) -> list[BusyInterval]:
        """Return busy intervals within ``[time_min, time_max)``.

        Args:
            calendar_id: The calendar to query.
            time_min: Beginning of the search window.
            time_max: End of the search window.
            timezone: IANA name the calendar should express results in.

        Raises:
            TransientUpstreamError: on timeouts, network errors, 429/5xx.
            PermanentUpstreamError: on auth or request errors.
        """

    @abstractmethod
    async def create_event(
        self, calendar_id: str, event: CalendarEvent
    ) -> CreatedEvent:
        """Create a calendar event.

        Implementations must not add attendees; notification is handled
        separately by the dispatcher.
        """

    @abstractmethod
    async def cancel_event(
        self, calendar_id: str, event_id: str
    ) -> bool:
        """Cancel / delete a calendar event.

        Returns:
            True if the event was successfully cancelled.
        """
