"""Tests for calendar providers.

The Google provider is exercised against a mocked API client, so no
credentials or network access are needed.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import httplib2
import pytest
from googleapiclient.errors import HttpError

from booking_engine.calendar_providers.base import CalendarEvent
from booking_engine.calendar_providers.google import GoogleCalendarProvider, classify_http_error
from booking_engine.calendar_providers.mock import MockCalendarProvider
from booking_engine.errors import (
    ErrorCategory,
    PermanentUpstreamError,
    TransientUpstreamError,
)

from .fakes import ET


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b"upstream said no")


def _event(**overrides) -> CalendarEvent:
    fields = dict(
        summary="Consultation with Alice Smith",
        start=datetime(2024, 6, 11, 14, 0, tzinfo=ET),
        end=datetime(2024, 6, 11, 14, 30, tzinfo=ET),
        timezone="America/New_York",
        description="Booked online",
        conference_request_id="req-123",
        metadata={"booking_id": "b-1"},
    )
    fields.update(overrides)
    return CalendarEvent(**fields)


@pytest.fixture
def provider():
    """GoogleCalendarProvider with a mocked API client."""
    with patch("booking_engine.calendar_providers.google.Credentials") as mock_creds, \
         patch("booking_engine.calendar_providers.google.build") as mock_build:
        mock_creds.from_service_account_file.return_value = MagicMock()
        p = GoogleCalendarProvider(service_account_path="/fake/path.json", timeout=5)
        p._service = mock_build.return_value
        yield p


# ── Free/busy ──────────────────────────────────────────────────


class TestQueryFreeBusy:
    @pytest.mark.asyncio
    async def test_parses_busy_intervals(self, provider):
        provider._service.freebusy.return_value.query.return_value.execute.return_value = {
            "calendars": {
                "primary": {
                    "busy": [
                        {"start": "2024-06-11T18:00:00Z", "end": "2024-06-11T19:00:00Z"},
                        {"start": "2024-06-10T04:00:00Z", "end": "2024-06-11T04:00:00Z"},
                    ]
                }
            }
        }
        busy = await provider.query_free_busy(
            "primary",
            datetime(2024, 6, 8, tzinfo=timezone.utc),
            datetime(2024, 6, 15, tzinfo=timezone.utc),
            "America/New_York",
        )
        assert len(busy) == 2
        # Sorted by start
        assert busy[0].start == datetime(2024, 6, 10, 4, 0, tzinfo=timezone.utc)
        assert busy[0].is_all_day(ET)
        assert not busy[1].is_all_day(ET)

        body = provider._service.freebusy.return_value.query.call_args.kwargs["body"]
        assert body["items"] == [{"id": "primary"}]
        assert body["timeZone"] == "America/New_York"
        assert body["timeMin"].startswith("2024-06-08T00:00:00")

    @pytest.mark.asyncio
    async def test_empty_calendar(self, provider):
        provider._service.freebusy.return_value.query.return_value.execute.return_value = {
            "calendars": {"primary": {"busy": []}}
        }
        busy = await provider.query_free_busy(
            "primary",
            datetime(2024, 6, 8, tzinfo=timezone.utc),
            datetime(2024, 6, 9, tzinfo=timezone.utc),
            "America/New_York",
        )
        assert busy == []

    @pytest.mark.asyncio
    async def test_skips_malformed_interval(self, provider):
        provider._service.freebusy.return_value.query.return_value.execute.return_value = {
            "calendars": {"primary": {"busy": [{"start": "garbage"}]}}
        }
        busy = await provider.query_free_busy(
            "primary",
            datetime(2024, 6, 8, tzinfo=timezone.utc),
            datetime(2024, 6, 9, tzinfo=timezone.utc),
            "America/New_York",
        )
        assert busy == []

    @pytest.mark.asyncio
    async def test_calendar_level_error(self, provider):
        provider._service.freebusy.return_value.query.return_value.execute.return_value = {
            "calendars": {"primary": {"errors": [{"reason": "notFound"}]}}
        }
        with pytest.raises(PermanentUpstreamError, match="notFound"):
            await provider.query_free_busy(
                "primary",
                datetime(2024, 6, 8, tzinfo=timezone.utc),
                datetime(2024, 6, 9, tzinfo=timezone.utc),
                "America/New_York",
            )

    @pytest.mark.asyncio
    async def test_rate_limited_is_transient(self, provider):
        provider._service.freebusy.return_value.query.return_value.execute.side_effect = _http_error(429)
        with pytest.raises(TransientUpstreamError) as excinfo:
            await provider.query_free_busy(
                "primary",
                datetime(2024, 6, 8, tzinfo=timezone.utc),
                datetime(2024, 6, 9, tzinfo=timezone.utc),
                "America/New_York",
            )
        assert excinfo.value.category == ErrorCategory.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, provider):
        provider._service.freebusy.return_value.query.return_value.execute.side_effect = ConnectionResetError()
        with pytest.raises(TransientUpstreamError) as excinfo:
            await provider.query_free_busy(
                "primary",
                datetime(2024, 6, 8, tzinfo=timezone.utc),
                datetime(2024, 6, 9, tzinfo=timezone.utc),
                "America/New_York",
            )
        assert excinfo.value.category == ErrorCategory.NETWORK


# ── Event creation ─────────────────────────────────────────────


class TestCreateEvent:
    @pytest.mark.asyncio
    async def test_creates_event_with_meet_link(self, provider):
        provider._service.events.return_value.insert.return_value.execute.return_value = {
            "id": "evt_123",
            "htmlLink": "https://calendar.google.com/event?eid=evt_123",
            "conferenceData": {
                "entryPoints": [
                    {"entryPointType": "phone", "uri": "tel:+1-555-0100"},
                    {"entryPointType": "video", "uri": "https://meet.google.com/abc-defg-hij"},
                ]
            },
        }
        created = await provider.create_event("primary", _event())

        assert created.id == "evt_123"
        assert created.html_link == "https://calendar.google.com/event?eid=evt_123"
        assert created.meeting_link == "https://meet.google.com/abc-defg-hij"

        kwargs = provider._service.events.return_value.insert.call_args.kwargs
        assert kwargs["calendarId"] == "primary"
        assert kwargs["conferenceDataVersion"] == 1
        assert kwargs["sendUpdates"] == "none"
        body = kwargs["body"]
        assert "attendees" not in body
        assert body["summary"] == "Consultation with Alice Smith"
        assert body["start"]["timeZone"] == "America/New_York"
        assert body["conferenceData"]["createRequest"]["requestId"] == "req-123"
        assert body["extendedProperties"]["private"] == {"booking_id": "b-1"}
        assert {"method": "popup", "minutes": 30} in body["reminders"]["overrides"]

    @pytest.mark.asyncio
    async def test_falls_back_to_hangout_link(self, provider):
        provider._service.events.return_value.insert.return_value.execute.return_value = {
            "id": "evt_456",
            "hangoutLink": "https://meet.google.com/xyz",
        }
        created = await provider.create_event("primary", _event(conference_request_id=""))
        assert created.meeting_link == "https://meet.google.com/xyz"
        body = provider._service.events.return_value.insert.call_args.kwargs["body"]
        assert "conferenceData" not in body

    @pytest.mark.asyncio
    async def test_permission_error_is_permanent(self, provider):
        provider._service.events.return_value.insert.return_value.execute.side_effect = _http_error(403)
        with pytest.raises(PermanentUpstreamError) as excinfo:
            await provider.create_event("primary", _event())
        assert excinfo.value.category == ErrorCategory.AUTH


# ── Cancellation ───────────────────────────────────────────────


class TestCancelEvent:
    @pytest.mark.asyncio
    async def test_cancel_success(self, provider):
        provider._service.events.return_value.delete.return_value.execute.return_value = None
        assert await provider.cancel_event("primary", "evt_123") is True
        provider._service.events.return_value.delete.assert_called_with(
            calendarId="primary", eventId="evt_123"
        )

    @pytest.mark.asyncio
    async def test_cancel_failure(self, provider):
        provider._service.events.return_value.delete.return_value.execute.side_effect = _http_error(404)
        assert await provider.cancel_event("primary", "evt_bad") is False


# ── Error classification and construction ─────────────────────


class TestClassifyHttpError:
    @pytest.mark.parametrize(
        "status, kind, category",
        [
            (429, TransientUpstreamError, ErrorCategory.RATE_LIMIT),
            (503, TransientUpstreamError, ErrorCategory.SERVICE_UNAVAILABLE),
            (401, PermanentUpstreamError, ErrorCategory.AUTH),
            (400, PermanentUpstreamError, ErrorCategory.VALIDATION),
        ],
    )
    def test_status_mapping(self, status, kind, category):
        error = classify_http_error(_http_error(status))
        assert isinstance(error, kind)
        assert error.category == category


def test_requires_service_account_path(monkeypatch):
    monkeypatch.delenv("GOOGLE_SERVICE_ACCOUNT_JSON", raising=False)
    with pytest.raises(ValueError):
        GoogleCalendarProvider()


# ── In-memory provider ─────────────────────────────────────────


class TestMockCalendarProvider:
    @pytest.mark.asyncio
    async def test_created_events_become_busy(self):
        calendar = MockCalendarProvider()
        event = _event()
        created = await calendar.create_event("primary", event)
        assert created.id == "demo-1"

        busy = await calendar.query_free_busy(
            "primary", event.start - timedelta(hours=1), event.end + timedelta(hours=1), "UTC",
        )
        assert [(b.start, b.end) for b in busy] == [(event.start, event.end)]

        assert await calendar.cancel_event("primary", "demo-1") is True
        assert await calendar.cancel_event("primary", "demo-1") is False
        assert calendar.events == {}

    @pytest.mark.asyncio
    async def test_only_overlapping_intervals_returned(self):
        calendar = MockCalendarProvider()
        calendar.add_busy(datetime(2024, 6, 10, 9, tzinfo=ET), datetime(2024, 6, 10, 10, tzinfo=ET))
        calendar.add_busy(datetime(2024, 6, 20, 9, tzinfo=ET), datetime(2024, 6, 20, 10, tzinfo=ET))
        busy = await calendar.query_free_busy(
            "primary", datetime(2024, 6, 8, tzinfo=ET), datetime(2024, 6, 15, tzinfo=ET), "UTC",
        )
        assert len(busy) == 1

    @pytest.mark.asyncio
    async def test_injected_failure(self):
        calendar = MockCalendarProvider(fail_with=TransientUpstreamError("down"))
        with pytest.raises(TransientUpstreamError):
            await calendar.query_free_busy(
                "primary", datetime(2024, 6, 8, tzinfo=ET), datetime(2024, 6, 9, tzinfo=ET), "UTC",
            )
        assert calendar.free_busy_calls == 1
