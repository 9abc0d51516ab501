"""Calendar provider abstractions and implementations."""

from .base import CalendarEvent, CalendarProvider, CreatedEvent
from .mock import MockCalendarProvider

__all__ = ["CalendarProvider", "CalendarEvent", "CreatedEvent", "MockCalendarProvider"]
