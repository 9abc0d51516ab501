"""Pydantic models for booking requests, records and responses."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

_ANGLE_RE = re.compile(r"[<>]")


def is_valid_email(value: str | None) -> bool:
    """Syntax check only; no DNS lookups."""
    if not value or not isinstance(value, str):
        return False
    try:
        validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def strip_angle_brackets(value: str) -> str:
    return _ANGLE_RE.sub("", value.strip())


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BookingRequest(BaseModel):
    """Data collected from the caller to book a meeting."""

    name: str
    email: EmailStr
    timezone: str = "America/New_York"
    start_time: datetime
    end_time: datetime
    meeting_type: str = "consultation"
    notes: str = ""

    @field_validator("name")
    @classmethod
    def _clean_name(cls, v: str) -> str:
        v = strip_angle_brackets(v)
        if not 2 <= len(v) <= 100:
            raise ValueError("name must be between 2 and 100 characters")
        return v

    @field_validator("email", mode="before")
    @classmethod
    def _strip_email(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def _lowercase_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {v!r}") from exc
        return v

    @field_validator("meeting_type")
    @classmethod
    def _clean_meeting_type(cls, v: str) -> str:
        return strip_angle_brackets(v) or "consultation"

    @field_validator("notes")
    @classmethod
    def _clean_notes(cls, v: str) -> str:
        v = strip_angle_brackets(v or "")
        if len(v) > 1000:
            raise ValueError("notes must be less than 1000 characters")
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def _ordered(self) -> "BookingRequest":
        if self.end_time <= self.start_time:
            raise ValueError("end time must be after start time")
        return self

    @property
    def duration_minutes(self) -> int:
        span = self.end_time.astimezone(timezone.utc) - self.start_time.astimezone(timezone.utc)
        return int(span.total_seconds() // 60)


class BookingRecord(BaseModel):
    """Persisted projection of a confirmed booking."""

    id: str
    name: str
    email: str
    timezone: str
    start_time: datetime
    end_time: datetime
    meeting_type: str = "consultation"
    notes: str = ""
    external_event_id: str
    status: BookingStatus = BookingStatus.CONFIRMED
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def duration_minutes(self) -> int:
        span = self.end_time.astimezone(timezone.utc) - self.start_time.astimezone(timezone.utc)
        return int(span.total_seconds() // 60)


class BookingDetails(BaseModel):
    """What the caller sees after a successful booking."""

    id: str
    start_time: datetime
    end_time: datetime
    external_event_id: str
    meeting_link: Optional[str] = None
    event_link: Optional[str] = None


class BookingResponse(BaseModel):
    """Result returned after a booking attempt."""

    success: bool
    booking: Optional[BookingDetails] = None
    message: str
    reason: Optional[str] = None
    errors: list[str] = []
    persisted: bool = False
    notified: bool = False
    needs_follow_up: bool = False
