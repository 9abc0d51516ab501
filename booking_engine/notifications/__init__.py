"""Outgoing email: providers, limits, templates and the dispatcher."""

from .dispatcher import DeliveryReport, NotificationDispatcher, RetryPolicy
from .providers import EmailMessage, EmailProvider, RecordingEmailProvider, ResendEmailProvider
from .rate_limit import RecipientRateLimiter
from .sanitize import sanitize_content

__all__ = [
    "DeliveryReport",
    "EmailMessage",
    "EmailProvider",
    "NotificationDispatcher",
    "RecipientRateLimiter",
    "RecordingEmailProvider",
    "ResendEmailProvider",
    "RetryPolicy",
    "sanitize_content",
]
