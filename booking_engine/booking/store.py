"""Best-effort persistence of confirmed bookings.

The calendar event is the source of truth. The store only exists so the
existing-booking check can find a caller's upcoming meeting, so every
failure here surfaces as :class:`DegradedDependencyError` and callers
decide how to degrade.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import Column, DateTime, String, Text, create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from booking_engine.errors import DegradedDependencyError
from booking_engine.models.booking import BookingRecord, BookingStatus

log = logging.getLogger("booking_engine.booking.store")

Base = declarative_base()

T = TypeVar("T")

_ACTIVE = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class BookingRow(Base):
    """One row per booking; timestamps are stored as naive UTC."""

    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    timezone = Column(String(64), nullable=False)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    meeting_type = Column(String(100), nullable=False, default="consultation")
    notes = Column(Text, nullable=False, default="")
    external_event_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value, index=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_naive_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


def _row_to_record(row: BookingRow) -> BookingRecord:
    return BookingRecord(
        id=row.id,
        name=row.name,
        email=row.email,
        timezone=row.timezone,
        start_time=_from_naive_utc(row.start_time),
        end_time=_from_naive_utc(row.end_time),
        meeting_type=row.meeting_type,
        notes=row.notes,
        external_event_id=row.external_event_id,
        status=BookingStatus(row.status),
        created_at=_from_naive_utc(row.created_at),
        updated_at=_from_naive_utc(row.updated_at),
    )


class BookingStore(ABC):
    """Abstract persistence for booking records."""

    @abstractmethod
    async def save(self, record: BookingRecord) -> None:
        """Insert or replace a record."""

    @abstractmethod
    async def find_upcoming(
        self,
        email: str | None,
        name: str | None = None,
        now: datetime | None = None,
    ) -> Optional[BookingRecord]:
        """Earliest pending/confirmed booking starting after ``now``.

        Matches by email when given, otherwise by name (case-insensitive).
        """

    @abstractmethod
    async def get(self, booking_id: str) -> Optional[BookingRecord]:
        """Fetch a record by id."""

    @abstractmethod
    async def update_status(self, booking_id: str, status: BookingStatus) -> bool:
        """Set a record's status. Returns False if it does not exist."""


class SqlBookingStore(BookingStore):
    """SQLAlchemy-backed store. SQLite by default.

    Sessions are short-lived and run on the default thread pool so the
    event loop never blocks on the database.
    """

    def __init__(self, url: str = "sqlite:///./bookings.db", engine: Engine | None = None) -> None:
        if engine is None:
            kwargs: dict[str, Any] = {}
            if url.startswith("sqlite"):
                kwargs["connect_args"] = {"check_same_thread": False}
                if url in ("sqlite://", "sqlite:///:memory:"):
                    # Single shared connection, or each thread sees an empty DB
                    kwargs["poolclass"] = StaticPool
            engine = create_engine(url, **kwargs)
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        self._ready = False

    def _ensure_schema(self) -> None:
        if not self._ready:
            Base.metadata.create_all(self._engine)
            self._ready = True

    async def _run(self, operation: str, func_: Callable[[Session], T]) -> T:
        def work() -> T:
            self._ensure_schema()
            with self._sessions() as session:
                result = func_(session)
                session.commit()
                return result

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, work)
        except SQLAlchemyError as exc:
            log.exception("Booking store %s failed", operation)
            raise DegradedDependencyError(f"booking store {operation} failed: {exc}") from exc

    async def save(self, record: BookingRecord) -> None:
        def op(session: Session) -> None:
            session.merge(BookingRow(
                id=record.id,
                name=record.name,
                email=record.email.lower(),
                timezone=record.timezone,
                start_time=_to_naive_utc(record.start_time),
                end_time=_to_naive_utc(record.end_time),
                meeting_type=record.meeting_type,
                notes=record.notes,
                external_event_id=record.external_event_id,
                status=record.status.value,
                created_at=_to_naive_utc(record.created_at),
                updated_at=_to_naive_utc(record.updated_at),
            ))

        await self._run("save", op)
        log.info("Booking %s saved", record.id)

    async def find_upcoming(
        self,
        email: str | None,
        name: str | None = None,
        now: datetime | None = None,
    ) -> Optional[BookingRecord]:
        if not email and not name:
            return None
        cutoff = _to_naive_utc(now or datetime.now(tz=timezone.utc))

        def op(session: Session) -> Optional[BookingRecord]:
            stmt = select(BookingRow).where(
                BookingRow.start_time > cutoff,
                BookingRow.status.in_(_ACTIVE),
            )
            if email:
                stmt = stmt.where(BookingRow.email == email.strip().lower())
            else:
                stmt = stmt.where(func.lower(BookingRow.name) == name.strip().lower())
            row = session.execute(stmt.order_by(BookingRow.start_time).limit(1)).scalars().first()
            return _row_to_record(row) if row is not None else None

        return await self._run("find_upcoming", op)

    async def get(self, booking_id: str) -> Optional[BookingRecord]:
        def op(session: Session) -> Optional[BookingRecord]:
            row = session.get(BookingRow, booking_id)
            return _row_to_record(row) if row is not None else None

        return await self._run("get", op)

    async def update_status(self, booking_id: str, status: BookingStatus) -> bool:
        def op(session: Session) -> bool:
            row = session.get(BookingRow, booking_id)
            if row is None:
                return False
            row.status = status.value
            row.updated_at = _to_naive_utc(datetime.now(tz=timezone.utc))
            return True

        return await self._run("update_status", op)
