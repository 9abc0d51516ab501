"""Pydantic models for availability: busy intervals, slots, business hours."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from zoneinfo import ZoneInfo

from pydantic import BaseModel, field_validator, model_validator

_MIDNIGHT = time(0, 0)


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TimePreference(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    ANY = "any"


class BusyInterval(BaseModel):
    """A range reported busy by the calendar service.

    All-day events come back from free/busy as midnight-to-midnight ranges
    in the calendar's local timezone. The end boundary is the exclusive
    start of the following day.
    """

    start: datetime
    end: datetime

    model_config = {"frozen": True}

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return _ensure_aware(v)

    @model_validator(mode="after")
    def _ordered(self) -> "BusyInterval":
        if self.start >= self.end:
            raise ValueError("busy interval start must be before end")
        return self

    def is_all_day(self, tz: ZoneInfo) -> bool:
        return (
            self.start.astimezone(tz).time() == _MIDNIGHT
            and self.end.astimezone(tz).time() == _MIDNIGHT
        )

    def blocked_dates(self, tz: ZoneInfo) -> tuple[date, date]:
        """Inclusive (first, last) local dates covered by an all-day interval."""
        first = self.start.astimezone(tz).date()
        last = self.end.astimezone(tz).date() - timedelta(days=1)
        return first, last


class TimeSlot(BaseModel):
    """A bookable range of one of the configured meeting durations."""

    start: datetime
    end: datetime
    duration_minutes: int

    model_config = {"frozen": True}

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return _ensure_aware(v)

    @model_validator(mode="after")
    def _duration_matches(self) -> "TimeSlot":
        # Compare absolute instants; same-tzinfo subtraction is wall-clock.
        span = self.end.astimezone(timezone.utc) - self.start.astimezone(timezone.utc)
        if span != timedelta(minutes=self.duration_minutes):
            raise ValueError(
                f"slot spans {span} but is tagged {self.duration_minutes} minutes"
            )
        return self

    @property
    def key(self) -> tuple[str, str]:
        """UTC ISO (start, end) pair, stable across display timezones."""
        return (
            self.start.astimezone(timezone.utc).isoformat(),
            self.end.astimezone(timezone.utc).isoformat(),
        )

    def matches(self, start: datetime, end: datetime) -> bool:
        """True when the slot covers exactly [start, end), in any timezone."""
        return self.start == _ensure_aware(start) and self.end == _ensure_aware(end)


class BusinessHoursPolicy(BaseModel):
    """Business hours expressed in the business's own timezone."""

    timezone: str = "America/New_York"
    morning_start: int = 9
    morning_end: int = 12
    afternoon_start: int = 12
    afternoon_end: int = 18

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _ordered(self) -> "BusinessHoursPolicy":
        hours = [self.morning_start, self.morning_end, self.afternoon_start, self.afternoon_end]
        if any(h < 0 or h > 24 for h in hours):
            raise ValueError("business hours must fall within 0..24")
        if not (self.morning_start < self.morning_end <= self.afternoon_start < self.afternoon_end):
            raise ValueError(
                "business hours must satisfy morning_start < morning_end "
                "<= afternoon_start < afternoon_end"
            )
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def periods(self, preference: TimePreference = TimePreference.ANY) -> list[tuple[int, int]]:
        """(start_hour, end_hour) periods to walk for a preference."""
        if preference == TimePreference.MORNING:
            return [(self.morning_start, self.morning_end)]
        if preference == TimePreference.AFTERNOON:
            return [(self.afternoon_start, self.afternoon_end)]
        return [
            (self.morning_start, self.morning_end),
            (self.afternoon_start, self.afternoon_end),
        ]

    def hour_range(self, preference: TimePreference) -> tuple[int, int] | None:
        """Hour-of-day filter for a preference, or None for any time."""
        if preference == TimePreference.ANY:
            return None
        return self.periods(preference)[0]

    def summary(self) -> dict:
        return {
            "timezone": self.timezone,
            "start": self.morning_start,
            "end": self.afternoon_end,
            "morning": [self.morning_start, self.morning_end],
            "afternoon": [self.afternoon_start, self.afternoon_end],
        }


class SearchWindow(BaseModel):
    """Half-open [start, end) range searched for availability."""

    start: datetime
    end: datetime
    lookahead_days: int

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return _ensure_aware(v)

    @model_validator(mode="after")
    def _ordered(self) -> "SearchWindow":
        if self.start >= self.end:
            raise ValueError("search window start must be before end")
        return self
