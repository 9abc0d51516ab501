"""Fakes and constants shared across the test modules."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from booking_engine.calendar_providers.mock import MockCalendarProvider

ET = ZoneInfo("America/New_York")

# Saturday noon, Eastern
NOW = datetime(2024, 6, 8, 12, 0, tzinfo=ET)


class FakeCalendar(MockCalendarProvider):
    """In-memory calendar that reports itself as the live calendar."""

    is_demo = False


class FixedClock:
    """Datetime clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class TickClock:
    """Float (epoch-seconds) clock for the rate limiters."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def all_day(day: datetime, days: int = 1):
    """(start, end) for an all-day event beginning at ``day`` local midnight."""
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=days)


def booking_payload(**overrides):
    payload = {
        "name": "Alice Smith",
        "email": "alice@example.com",
        "timezone": "America/New_York",
        "start_time": "2024-06-11T14:00:00-04:00",
        "end_time": "2024-06-11T14:30:00-04:00",
        "meeting_type": "consultation",
        "notes": "",
    }
    payload.update(overrides)
    return payload
