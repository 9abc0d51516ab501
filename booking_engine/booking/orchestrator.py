"""Booking orchestration as an explicit state machine.

Each attempt moves through::

    Requested -> Validated -> EventCreated -> Persisted -> Notified -> Confirmed

and may drop to ``Failed`` from any state before ``Confirmed``. Only the
steps up to event creation fail closed. Once the calendar event exists it
is the source of truth: persistence and notification failures are
recorded on the attempt and surfaced as flags on a successful response.
Those steps are shielded from cancellation: if the caller disconnects
after the event is created, the attempt still runs to ``Confirmed`` in
the background (see :meth:`BookingOrchestrator.drain`).

Concurrent attempts for the same slot are serialised by :class:`SlotHolds`.
The first attempt takes a per-slot lock, and a successful booking keeps a
short hold on the slot so a later attempt is refused even if the calendar's
free/busy view has not caught up yet.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ValidationError

from booking_engine.audit import AuditLog, redact_pii
from booking_engine.availability.selector import format_local_time
from booking_engine.availability.service import (
    AvailabilityMode,
    AvailabilityResult,
    AvailabilityService,
)
from booking_engine.calendar_providers.base import CalendarEvent, CalendarProvider, CreatedEvent
from booking_engine.errors import BookingEngineError, ConflictError, InputError
from booking_engine.models.booking import (
    BookingDetails,
    BookingRecord,
    BookingRequest,
    BookingResponse,
    BookingStatus,
    is_valid_email,
)
from booking_engine.notifications.dispatcher import NotificationDispatcher

from .store import BookingStore

log = logging.getLogger("booking_engine.booking.orchestrator")


class BookingState(str, Enum):
    REQUESTED = "requested"
    VALIDATED = "validated"
    EVENT_CREATED = "event_created"
    PERSISTED = "persisted"
    NOTIFIED = "notified"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class FailureReason(str, Enum):
    INVALID_INPUT = "invalid_input"
    SCHEDULING_DISABLED = "scheduling_disabled"
    EXISTING_BOOKING = "existing_booking"
    SLOT_UNAVAILABLE = "slot_unavailable"
    CALENDAR_UNAVAILABLE = "calendar_unavailable"
    EVENT_CREATION_FAILED = "event_creation_failed"


_NEXT_STATE = {
    BookingState.REQUESTED: BookingState.VALIDATED,
    BookingState.VALIDATED: BookingState.EVENT_CREATED,
    BookingState.EVENT_CREATED: BookingState.PERSISTED,
    BookingState.PERSISTED: BookingState.NOTIFIED,
    BookingState.NOTIFIED: BookingState.CONFIRMED,
}


@dataclass(frozen=True)
class Transition:
    state: BookingState
    at: datetime
    detail: str = ""


@dataclass
class BookingAttempt:
    """One booking attempt and its transition history."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: BookingState = BookingState.REQUESTED
    history: list[Transition] = field(default_factory=list)
    failure_reason: Optional[FailureReason] = None
    external_event_id: Optional[str] = None
    persistence_failed: bool = False
    needs_follow_up: bool = False

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(Transition(self.state, datetime.now(tz=timezone.utc)))

    @property
    def is_terminal(self) -> bool:
        return self.state in (BookingState.CONFIRMED, BookingState.FAILED)

    def advance(self, state: BookingState, detail: str = "") -> None:
        if _NEXT_STATE.get(self.state) != state:
            raise RuntimeError(f"illegal booking transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(Transition(state, datetime.now(tz=timezone.utc), detail))

    def fail(self, reason: FailureReason, detail: str = "") -> None:
        if self.is_terminal:
            raise RuntimeError(f"cannot fail a {self.state.value} booking")
        self.state = BookingState.FAILED
        self.failure_reason = reason
        self.history.append(Transition(BookingState.FAILED, datetime.now(tz=timezone.utc), detail or reason.value))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "external_event_id": self.external_event_id,
            "persistence_failed": self.persistence_failed,
            "needs_follow_up": self.needs_follow_up,
            "history": [
                {"state": t.state.value, "at": t.at.isoformat(), "detail": t.detail}
                for t in self.history
            ],
        }


class SlotHolds:
    """In-process locks and short-lived holds keyed by slot."""

    def __init__(self, hold_seconds: float = 120.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.hold_seconds = hold_seconds
        self._clock = clock
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._holds: dict[tuple[str, str], float] = {}
        self._mutex = threading.Lock()

    @staticmethod
    def key_for(start: datetime, end: datetime) -> tuple[str, str]:
        return (
            start.astimezone(timezone.utc).isoformat(),
            end.astimezone(timezone.utc).isoformat(),
        )

    def lock_for(self, key: tuple[str, str]) -> asyncio.Lock:
        with self._mutex:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = asyncio.Lock()
            return lock

    def discard_lock(self, key: tuple[str, str]) -> None:
        with self._mutex:
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]

    def is_held(self, key: tuple[str, str]) -> bool:
        with self._mutex:
            expires = self._holds.get(key)
            if expires is None:
                return False
            if expires <= self._clock():
                del self._holds[key]
                return False
            return True

    def hold(self, key: tuple[str, str]) -> None:
        with self._mutex:
            self._holds[key] = self._clock() + self.hold_seconds

    def release(self, key: tuple[str, str]) -> None:
        with self._mutex:
            self._holds.pop(key, None)


class ExistingBookingResult(BaseModel):
    has_booking: bool
    checked: bool = True
    booking: Optional[BookingRecord] = None
    message: str


class ProcessBookingResult(BaseModel):
    action: str  # existing_booking | show_booking_modal | invalid_input
    message: str
    existing_booking: Optional[BookingRecord] = None
    availability: Optional[AvailabilityResult] = None


class BookingOrchestrator:
    """Runs booking attempts against the calendar, store and dispatcher."""

    def __init__(
        self,
        availability: AvailabilityService,
        calendar: CalendarProvider,
        store: BookingStore | None = None,
        dispatcher: NotificationDispatcher | None = None,
        *,
        calendar_id: str = "primary",
        holds: SlotHolds | None = None,
        audit: AuditLog | None = None,
        enabled: bool = True,
        history_size: int = 200,
    ) -> None:
        self._availability = availability
        self._calendar = calendar
        self._store = store
        self._dispatcher = dispatcher
        self._calendar_id = calendar_id
        self._holds = holds or SlotHolds()
        self._audit = audit
        self._enabled = enabled
        self._attempts: deque[BookingAttempt] = deque(maxlen=history_size)
        self._pending: set[asyncio.Task] = set()

    @property
    def holds(self) -> SlotHolds:
        return self._holds

    def recent_attempts(self) -> list[BookingAttempt]:
        return list(self._attempts)

    def get_attempt(self, attempt_id: str) -> Optional[BookingAttempt]:
        for attempt in self._attempts:
            if attempt.id == attempt_id:
                return attempt
        return None

    async def drain(self) -> None:
        """Wait for bookings still finishing after their caller went away."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ---- Transition bookkeeping ----------------------------------------

    def _advance(self, attempt: BookingAttempt, state: BookingState, detail: str = "") -> None:
        attempt.advance(state, detail)
        log.info("Booking %s -> %s %s", attempt.id, state.value, detail)
        self._record_transition(attempt, detail)

    def _fail(
        self,
        attempt: BookingAttempt,
        reason: FailureReason,
        message: str,
        errors: list[str] | None = None,
        started: float | None = None,
    ) -> BookingResponse:
        attempt.fail(reason, "; ".join(errors) if errors else "")
        log.warning("Booking %s failed: %s", attempt.id, reason.value)
        self._record_transition(attempt, reason.value, started, success=False)
        return BookingResponse(
            success=False,
            message=message,
            reason=reason.value,
            errors=errors or [],
        )

    def _record_transition(
        self,
        attempt: BookingAttempt,
        detail: str,
        started: float | None = None,
        success: bool | None = None,
    ) -> None:
        if self._audit is None:
            return
        data: dict[str, Any] = {"booking_id": attempt.id, "state": attempt.state.value, "detail": detail}
        if started is not None:
            data["latency_ms"] = round((time.monotonic() - started) * 1000, 1)
        if success is not None:
            data["success"] = success
        self._audit.record("booking_transition", data)

    # ---- Booking -------------------------------------------------------

    async def book(self, request: Union[BookingRequest, dict[str, Any]]) -> BookingResponse:
        """Run one booking attempt to ``Confirmed`` or ``Failed``."""
        started = time.monotonic()
        attempt = BookingAttempt()
        self._attempts.append(attempt)
        self._record_transition(attempt, "received")

        if not self._enabled:
            return self._fail(
                attempt, FailureReason.SCHEDULING_DISABLED,
                "Online booking is currently disabled. Please contact us directly.",
                started=started,
            )

        try:
            request = self._validate_input(request)
        except InputError as exc:
            return self._fail(
                attempt, FailureReason.INVALID_INPUT, exc.user_message, exc.errors, started
            )

        existing = await self._find_existing(request.email)
        if existing is not None:
            return self._fail(
                attempt, FailureReason.EXISTING_BOOKING,
                f"You already have a meeting booked for "
                f"{self._format(existing.start_time)}.",
                started=started,
            )

        key = self._holds.key_for(request.start_time, request.end_time)
        lock = self._holds.lock_for(key)
        if lock.locked() or self._holds.is_held(key):
            return self._fail(
                attempt, FailureReason.SLOT_UNAVAILABLE, ConflictError.user_message, started=started
            )

        try:
            async with lock:
                return await self._book_locked(attempt, request, key, started)
        finally:
            self._holds.discard_lock(key)

    def _validate_input(self, request: Union[BookingRequest, dict[str, Any]]) -> BookingRequest:
        try:
            if isinstance(request, BookingRequest):
                request = BookingRequest.model_validate(request.model_dump())
            else:
                request = BookingRequest.model_validate(request)
        except ValidationError as exc:
            raise InputError.from_validation_error(exc, "booking request failed validation") from exc

        if request.start_time <= self._availability.now():
            raise InputError("start time is in the past", errors=["start_time: must be in the future"])
        if request.duration_minutes not in self._availability.durations:
            allowed = ", ".join(str(d) for d in self._availability.durations)
            raise InputError(
                "unsupported duration",
                errors=[f"duration: must be one of {allowed} minutes"],
            )
        return request

    async def _find_existing(self, email: str) -> Optional[BookingRecord]:
        if self._store is None:
            return None
        try:
            return await self._store.find_upcoming(email, now=self._availability.now())
        except BookingEngineError:
            log.warning("Existing-booking check unavailable for %s", redact_pii(email))
            return None

    async def _book_locked(
        self,
        attempt: BookingAttempt,
        request: BookingRequest,
        key: tuple[str, str],
        started: float,
    ) -> BookingResponse:
        try:
            free = await self._availability.validate_slot(
                request.start_time, request.end_time, request.timezone
            )
        except Exception:
            log.exception("Slot re-validation failed for booking %s", attempt.id)
            return self._fail(
                attempt, FailureReason.CALENDAR_UNAVAILABLE,
                "We could not reach the calendar to confirm that time. "
                "Please try again in a moment.",
                started=started,
            )
        if not free:
            return self._fail(
                attempt, FailureReason.SLOT_UNAVAILABLE, ConflictError.user_message, started=started
            )
        self._advance(attempt, BookingState.VALIDATED)

        event = self._build_event(attempt, request)
        try:
            created = await self._calendar.create_event(self._calendar_id, event)
        except Exception as exc:
            log.exception("Calendar event creation failed for booking %s", attempt.id)
            message = (
                exc.user_message if isinstance(exc, BookingEngineError)
                else "We could not create the booking. Please try again or contact us directly."
            )
            return self._fail(attempt, FailureReason.EVENT_CREATION_FAILED, message, started=started)

        attempt.external_event_id = created.id
        self._holds.hold(key)
        self._advance(attempt, BookingState.EVENT_CREATED, created.id)

        # The event exists, so the remaining steps finish even if the caller leaves.
        tail = asyncio.ensure_future(self._complete(attempt, request, created, started))
        self._pending.add(tail)
        tail.add_done_callback(self._pending.discard)
        try:
            return await asyncio.shield(tail)
        except asyncio.CancelledError:
            log.warning("Caller left after booking %s was created, finishing in background", attempt.id)
            raise

    async def _complete(
        self,
        attempt: BookingAttempt,
        request: BookingRequest,
        created: CreatedEvent,
        started: float,
    ) -> BookingResponse:
        record = BookingRecord(
            id=attempt.id,
            name=request.name,
            email=request.email,
            timezone=request.timezone,
            start_time=request.start_time,
            end_time=request.end_time,
            meeting_type=request.meeting_type,
            notes=request.notes,
            external_event_id=created.id,
            status=BookingStatus.CONFIRMED,
        )
        persisted = await self._persist(attempt, record)
        self._advance(attempt, BookingState.PERSISTED, "" if persisted else "persistence_failed")

        notified = await self._notify(attempt, record, created.meeting_link, created.html_link)
        self._advance(attempt, BookingState.NOTIFIED, "" if notified else "needs_follow_up")

        self._advance(attempt, BookingState.CONFIRMED)
        self._record_transition(attempt, "complete", started, success=True)

        message = f"Your meeting is booked for {self._format(request.start_time)}."
        if notified:
            message += " A confirmation email is on its way."
        elif attempt.needs_follow_up:
            message += " We could not send a confirmation email and will follow up with you directly."

        return BookingResponse(
            success=True,
            booking=BookingDetails(
                id=attempt.id,
                start_time=request.start_time,
                end_time=request.end_time,
                external_event_id=created.id,
                meeting_link=created.meeting_link,
                event_link=created.html_link,
            ),
            message=message,
            persisted=persisted,
            notified=notified,
            needs_follow_up=attempt.needs_follow_up,
        )

    def _build_event(self, attempt: BookingAttempt, request: BookingRequest) -> CalendarEvent:
        lines = [
            f"Booked by {request.name} ({request.email})",
            f"Caller timezone: {request.timezone}",
            f"Meeting type: {request.meeting_type}",
        ]
        if request.notes:
            lines.append(f"Notes: {request.notes}")
        lines.append(f"Booking id: {attempt.id}")
        return CalendarEvent(
            summary=f"{request.meeting_type.title()} with {request.name}",
            start=request.start_time,
            end=request.end_time,
            timezone=self._availability.policy.timezone,
            description="\n".join(lines),
            conference_request_id=attempt.id,
            metadata={"booking_id": attempt.id, "meeting_type": request.meeting_type},
        )

    async def _persist(self, attempt: BookingAttempt, record: BookingRecord) -> bool:
        if self._store is None:
            attempt.persistence_failed = True
            return False
        try:
            await self._store.save(record)
        except Exception:
            log.exception("Booking %s created but not persisted", attempt.id)
            attempt.persistence_failed = True
            return False
        return True

    async def _notify(
        self,
        attempt: BookingAttempt,
        record: BookingRecord,
        meeting_link: str | None,
        event_link: str | None,
    ) -> bool:
        if self._dispatcher is None or not self._dispatcher.enabled:
            log.info("Notifications disabled, booking %s not emailed", attempt.id)
            return False
        try:
            requester = await self._dispatcher.send_booking_confirmation(record, meeting_link)
            owner = await self._dispatcher.send_owner_notification(record, meeting_link, event_link)
        except Exception:
            log.exception("Notification dispatch raised for booking %s", attempt.id)
            attempt.needs_follow_up = True
            return False
        if not (requester.success and owner.success):
            log.warning(
                "Booking %s needs follow-up (requester=%s, owner=%s)",
                attempt.id, requester.error or "ok", owner.error or "ok",
            )
            attempt.needs_follow_up = True
        return requester.success

    def _format(self, start: datetime) -> str:
        return format_local_time(start, self._availability.policy.tz)

    async def cancel(self, booking_id: str) -> BookingResponse:
        """Cancel a persisted booking and its calendar event."""
        if self._store is None:
            return BookingResponse(
                success=False, reason="store_unavailable",
                message="Bookings cannot be cancelled online right now. Please contact us directly.",
            )
        try:
            record = await self._store.get(booking_id)
        except BookingEngineError as exc:
            return BookingResponse(success=False, reason="store_unavailable", message=exc.user_message)
        if record is None or record.status == BookingStatus.CANCELLED:
            return BookingResponse(success=False, reason="not_found", message="No active booking with that reference.")

        cancelled = await self._calendar.cancel_event(self._calendar_id, record.external_event_id)
        if not cancelled:
            log.warning("Calendar event %s for booking %s was not cancelled",
                        record.external_event_id, booking_id)
            return BookingResponse(
                success=False, reason="calendar_unavailable",
                message="We could not cancel the calendar event. Please contact us directly.",
            )

        self._holds.release(self._holds.key_for(record.start_time, record.end_time))
        try:
            persisted = await self._store.update_status(booking_id, BookingStatus.CANCELLED)
        except BookingEngineError:
            persisted = False
        if self._audit is not None:
            self._audit.record("booking_transition", {
                "booking_id": booking_id, "state": BookingStatus.CANCELLED.value, "detail": "cancelled",
            })
        log.info("Booking %s cancelled", booking_id)
        return BookingResponse(
            success=True,
            booking=BookingDetails(
                id=record.id,
                start_time=record.start_time,
                end_time=record.end_time,
                external_event_id=record.external_event_id,
            ),
            message=f"Your meeting on {self._format(record.start_time)} has been cancelled.",
            persisted=persisted,
        )

    # ---- Existing bookings ---------------------------------------------

    async def check_existing_booking(self, email: str, name: str | None = None) -> ExistingBookingResult:
        """Earliest upcoming booking for ``email`` (or ``name``), if any."""
        if not email and not name:
            return ExistingBookingResult(
                has_booking=False, checked=False, message="An email address is required."
            )
        if self._store is None:
            return ExistingBookingResult(
                has_booking=False, checked=False,
                message="Unable to check for existing bookings right now.",
            )
        try:
            record = await self._store.find_upcoming(
                email.strip().lower() if email else None, name, now=self._availability.now()
            )
        except BookingEngineError:
            return ExistingBookingResult(
                has_booking=False, checked=False,
                message="Unable to check for existing bookings right now.",
            )
        if record is None:
            return ExistingBookingResult(has_booking=False, message="No upcoming booking found.")
        return ExistingBookingResult(
            has_booking=True,
            booking=record,
            message=f"You already have a meeting on {self._format(record.start_time)}.",
        )

    async def process_booking_request(
        self,
        email: str,
        name: str | None = None,
        timezone: str | None = None,
    ) -> ProcessBookingResult:
        """Return the caller's existing booking, or slots for the booking modal."""
        if not is_valid_email(email):
            return ProcessBookingResult(
                action="invalid_input",
                message="Please provide a valid email address.",
            )
        existing = await self.check_existing_booking(email, name)
        if existing.has_booking:
            return ProcessBookingResult(
                action="existing_booking",
                message=existing.message,
                existing_booking=existing.booking,
            )
        availability = await self._availability.get_availability(
            timezone=timezone, mode=AvailabilityMode.INTERACTIVE
        )
        return ProcessBookingResult(
            action="show_booking_modal",
            message=availability.message,
            availability=availability,
        )
