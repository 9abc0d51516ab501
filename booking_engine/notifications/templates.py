"""Email bodies for booking notifications."""

from __future__ import annotations

from datetime import datetime
from html import escape
from typing import Optional
from zoneinfo import ZoneInfo

from booking_engine.models.booking import BookingRecord


def _when(start: datetime, end: datetime, tz_name: str) -> str:
    tz = ZoneInfo(tz_name)
    s = start.astimezone(tz)
    e = end.astimezone(tz)
    s_hour = s.hour % 12 or 12
    e_hour = e.hour % 12 or 12
    return (
        f"{s.strftime('%A, %B')} {s.day}, {s.year}, "
        f"{s_hour}:{s.minute:02d} {s.strftime('%p')} to "
        f"{e_hour}:{e.minute:02d} {e.strftime('%p')} {e.tzname()}"
    )


def _wrap(title: str, rows: list[tuple[str, str]], footer: str) -> str:
    body = "".join(
        f"<tr><td style=\"padding:4px 12px 4px 0;color:#555\">{escape(k)}</td>"
        f"<td style=\"padding:4px 0\">{v}</td></tr>"
        for k, v in rows
    )
    return (
        "<div style=\"font-family:Arial,sans-serif;max-width:560px\">"
        f"<h2 style=\"color:#222\">{escape(title)}</h2>"
        f"<table>{body}</table>"
        f"<p style=\"color:#777;font-size:13px\">{escape(footer)}</p>"
        "</div>"
    )


def _link(url: Optional[str]) -> str:
    if not url:
        return ""
    safe = escape(url, quote=True)
    return f"<a href=\"{safe}\">{safe}</a>"


def booking_confirmation(
    record: BookingRecord,
    meeting_link: Optional[str] = None,
) -> tuple[str, str, str]:
    """(subject, html, text) for the person who booked."""
    when = _when(record.start_time, record.end_time, record.timezone)
    subject = f"Your {record.meeting_type} is confirmed"
    rows = [
        ("When", escape(when)),
        ("Duration", f"{record.duration_minutes} minutes"),
        ("Type", escape(record.meeting_type)),
    ]
    text_lines = [
        f"Hi {record.name},",
        "",
        f"Your {record.meeting_type} is confirmed for {when}.",
    ]
    if meeting_link:
        rows.append(("Join", _link(meeting_link)))
        text_lines.append(f"Join: {meeting_link}")
    rows.append(("Reference", escape(record.id)))
    text_lines += ["", f"Reference: {record.id}", "Reply to this email if you need to reschedule."]

    html = _wrap(
        f"See you soon, {record.name}",
        rows,
        "Reply to this email if you need to reschedule.",
    )
    return subject, html, "\n".join(text_lines)


def owner_notification(
    record: BookingRecord,
    business_timezone: str,
    meeting_link: Optional[str] = None,
    event_link: Optional[str] = None,
) -> tuple[str, str, str]:
    """(subject, html, text) for the calendar owner."""
    when = _when(record.start_time, record.end_time, business_timezone)
    subject = f"New booking: {record.name} ({record.duration_minutes} min)"
    rows = [
        ("Name", escape(record.name)),
        ("Email", escape(record.email)),
        ("When", escape(when)),
        ("Caller timezone", escape(record.timezone)),
        ("Type", escape(record.meeting_type)),
    ]
    text_lines = [
        f"New booking from {record.name} <{record.email}>",
        f"When: {when}",
        f"Caller timezone: {record.timezone}",
        f"Type: {record.meeting_type}",
    ]
    if record.notes:
        rows.append(("Notes", escape(record.notes)))
        text_lines.append(f"Notes: {record.notes}")
    if meeting_link:
        rows.append(("Meeting link", _link(meeting_link)))
        text_lines.append(f"Meeting link: {meeting_link}")
    if event_link:
        rows.append(("Calendar", _link(event_link)))
        text_lines.append(f"Calendar: {event_link}")
    rows.append(("Booking id", escape(record.id)))
    text_lines.append(f"Booking id: {record.id}")

    html = _wrap("New booking", rows, f"Event id {record.external_event_id}")
    return subject, html, "\n".join(text_lines)
