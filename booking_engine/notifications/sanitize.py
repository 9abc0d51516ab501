"""Structural checks and content scrubbing for outgoing email."""

from __future__ import annotations

import re

import bleach
from bleach.css_sanitizer import CSSSanitizer

from booking_engine.models.booking import is_valid_email

from .providers import EmailMessage

# Everything the booking templates emit, and nothing that can run.
ALLOWED_TAGS = frozenset({
    "a", "b", "blockquote", "br", "code", "div", "em", "h1", "h2", "h3", "h4",
    "hr", "i", "li", "ol", "p", "pre", "span", "strong", "table", "tbody",
    "td", "th", "thead", "tr", "u", "ul",
})
ALLOWED_ATTRIBUTES = {
    "a": ["href", "title", "target"],
    "*": ["style"],
}
ALLOWED_PROTOCOLS = frozenset({"http", "https", "mailto"})

_css_sanitizer = CSSSanitizer(allowed_css_properties=[
    "background-color", "color", "font-family", "font-size", "font-weight",
    "margin", "max-width", "padding", "text-align",
])

MAX_SUBJECT_LENGTH = 200
MAX_RECIPIENTS = 10


def sanitize_content(content: str) -> str:
    """Reduce an HTML body to the allowed tags, attributes and URL schemes."""
    if not content:
        return ""
    return bleach.clean(
        content,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        css_sanitizer=_css_sanitizer,
        strip=True,
        strip_comments=True,
    )


def sanitize_header(value: str) -> str:
    """Headers must be a single line."""
    return re.sub(r"[\r\n]+", " ", value or "").strip()


def validate_message(message: EmailMessage) -> list[str]:
    """Return a list of problems; empty when the message is well-formed."""
    errors: list[str] = []
    if not message.sender:
        errors.append("sender is required")
    if not message.to:
        errors.append("at least one recipient is required")
    elif len(message.to) > MAX_RECIPIENTS:
        errors.append(f"at most {MAX_RECIPIENTS} recipients are allowed")
    for recipient in message.to:
        if not is_valid_email(recipient):
            errors.append(f"invalid recipient address: {recipient!r}")
    if not message.subject or not message.subject.strip():
        errors.append("subject is required")
    elif len(message.subject) > MAX_SUBJECT_LENGTH:
        errors.append(f"subject exceeds {MAX_SUBJECT_LENGTH} characters")
    if not (message.html or message.text):
        errors.append("an html or text body is required")
    if message.reply_to and not is_valid_email(message.reply_to):
        errors.append(f"invalid reply-to address: {message.reply_to!r}")
    return errors


def sanitize_message(message: EmailMessage) -> EmailMessage:
    """Copy with clean headers and HTML. The text part is sent as text/plain."""
    return EmailMessage(
        sender=sanitize_header(message.sender),
        to=[r.strip().lower() for r in message.to],
        subject=sanitize_header(message.subject),
        html=sanitize_content(message.html),
        text=message.text or "",
        reply_to=message.reply_to,
        tags=dict(message.tags),
    )
