"""In-memory calendar used for demo mode and tests.

Serves whatever busy intervals it was seeded with, and records created
events as new busy intervals so later availability queries see them.
"""

from __future__ import annotations

import itertools
import logging
from datetime import datetime

from booking_engine.models.slots import BusyInterval

from .base import CalendarEvent, CalendarProvider, CreatedEvent

logger = logging.getLogger(__name__)


class MockCalendarProvider(CalendarProvider):
    """CalendarProvider backed by an in-memory list of busy intervals."""

    is_demo = True

    def __init__(
        self,
        busy: list[BusyInterval] | None = None,
        *,
        fail_with: Exception | None = None,
    ) -> None:
        self._busy: list[BusyInterval] = list(busy or [])
        self._events: dict[str, CalendarEvent] = {}
        self._ids = itertools.count(1)
        # When set, every call raises this exception.
        self.fail_with = fail_with
        self.free_busy_calls = 0
        self.create_calls = 0

    @property
    def events(self) -> dict[str, CalendarEvent]:
        return dict(self._events)

    def add_busy(self, start: datetime, end: datetime) -> BusyInterval:
        interval = BusyInterval(start=start, end=end)
        self._busy.append(interval)
        return interval

    async def query_free_busy(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        timezone: str,
    ) -> list[BusyInterval]:
        self.free_busy_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return sorted(
            (b for b in self._busy if b.start < time_max and b.end > time_min),
            key=lambda b: b.start,
        )

    async def create_event(
        self, calendar_id: str, event: CalendarEvent
    ) -> CreatedEvent:
        self.create_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        event_id = f"demo-{next(self._ids)}"
        self._events[event_id] = event
        self._busy.append(BusyInterval(start=event.start, end=event.end))
        logger.info("Demo calendar: created event %s (%s)", event_id, event.summary)
        return CreatedEvent(
            id=event_id,
            html_link=f"https://calendar.example.com/event/{event_id}",
            meeting_link=None,
        )

    async def cancel_event(
        self, calendar_id: str, event_id: str
    ) -> bool:
        event = self._events.pop(event_id, None)
        if event is None:
            return False
        self._busy = [
            b for b in self._busy if not (b.start == event.start and b.end == event.end)
        ]
        return True
