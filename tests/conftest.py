"""Shared fixtures for the booking engine tests."""

from unittest.mock import AsyncMock

import pytest

from booking_engine.audit import AuditLog
from booking_engine.availability.service import AvailabilityService
from booking_engine.booking.orchestrator import BookingOrchestrator
from booking_engine.booking.store import SqlBookingStore
from booking_engine.models.slots import BusinessHoursPolicy
from booking_engine.notifications.dispatcher import NotificationDispatcher, RetryPolicy
from booking_engine.notifications.providers import RecordingEmailProvider
from booking_engine.notifications.rate_limit import RecipientRateLimiter

from .fakes import FakeCalendar, FixedClock


@pytest.fixture
def policy() -> BusinessHoursPolicy:
    return BusinessHoursPolicy()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def audit() -> AuditLog:
    return AuditLog(maxlen=100)


@pytest.fixture
def service(calendar, policy, clock, audit) -> AvailabilityService:
    return AvailabilityService(calendar, policy, [30, 60], clock=clock, audit=audit)


@pytest.fixture
def mailer() -> RecordingEmailProvider:
    return RecordingEmailProvider()


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def dispatcher(mailer, audit, sleep) -> NotificationDispatcher:
    return NotificationDispatcher(
        mailer,
        sender="Bookings <bookings@example.com>",
        owner_email="owner@example.com",
        retry=RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0, max_delay=10.0),
        limiter=RecipientRateLimiter(cooldown_exempt=["owner@example.com"]),
        audit=audit,
        sleep=sleep,
    )


@pytest.fixture
def store() -> SqlBookingStore:
    return SqlBookingStore("sqlite://")


@pytest.fixture
def orchestrator(service, calendar, store, dispatcher, audit) -> BookingOrchestrator:
    return BookingOrchestrator(service, calendar, store, dispatcher, audit=audit)
