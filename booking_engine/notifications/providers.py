"""Email provider abstractions and implementations.

Providers raise :class:`UpstreamError` subclasses carrying an
:class:`ErrorCategory`; the dispatcher uses the category to decide whether
a failed delivery is worth retrying.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import resend
from resend.exceptions import ResendError

from booking_engine.errors import (
    ErrorCategory,
    PermanentUpstreamError,
    TransientUpstreamError,
    UpstreamError,
)

log = logging.getLogger("booking_engine.notifications.providers")


@dataclass
class EmailMessage:
    """A fully-formed outgoing email."""

    sender: str
    to: list[str]
    subject: str
    html: str = ""
    text: str = ""
    reply_to: Optional[str] = None
    tags: dict[str, str] = field(default_factory=dict)


def _status_code(exc: Exception) -> int | None:
    for attr in ("code", "status_code", "status"):
        value = getattr(exc, attr, None)
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


def classify_email_error(exc: BaseException) -> UpstreamError:
    """Map an exception raised while sending into the error taxonomy."""
    if isinstance(exc, UpstreamError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return TransientUpstreamError("email send timed out", category=ErrorCategory.TIMEOUT)
    if isinstance(exc, ResendError):
        code = _status_code(exc)
        error_type = str(getattr(exc, "error_type", "") or "")
        if code == 429 or "rate_limit" in error_type:
            return TransientUpstreamError(str(exc), category=ErrorCategory.RATE_LIMIT)
        if code is not None and code >= 500:
            return TransientUpstreamError(str(exc), category=ErrorCategory.SERVICE_UNAVAILABLE)
        if code in (401, 403) or "api_key" in error_type:
            return PermanentUpstreamError(str(exc), category=ErrorCategory.AUTH)
        return PermanentUpstreamError(str(exc), category=ErrorCategory.VALIDATION)
    if isinstance(exc, OSError):
        return TransientUpstreamError(str(exc), category=ErrorCategory.NETWORK)
    return PermanentUpstreamError(str(exc) or type(exc).__name__, category=ErrorCategory.UNKNOWN)


class EmailProvider(ABC):
    """Abstract email backend."""

    name: str = "email"

    @abstractmethod
    async def send(self, message: EmailMessage) -> str:
        """Deliver ``message`` and return the provider's message id.

        Raises:
            TransientUpstreamError: network, timeout, 429 or 5xx failures.
            PermanentUpstreamError: anything retrying will not fix.
        """


class ResendEmailProvider(EmailProvider):
    """Sends through the Resend API.

    The Resend SDK is synchronous, so each send runs in the default thread
    pool. The dispatcher applies the timeout.
    """

    name = "resend"

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("Resend API key is required")
        resend.api_key = api_key

    @staticmethod
    def _params(message: EmailMessage) -> dict[str, Any]:
        params: dict[str, Any] = {
            "from": message.sender,
            "to": list(message.to),
            "subject": message.subject,
        }
        if message.html:
            params["html"] = message.html
        if message.text:
            params["text"] = message.text
        if message.reply_to:
            params["reply_to"] = message.reply_to
        if message.tags:
            params["tags"] = [{"name": k, "value": v} for k, v in message.tags.items()]
        return params

    async def send(self, message: EmailMessage) -> str:
        params = self._params(message)
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, resend.Emails.send, params)
        except Exception as exc:
            raise classify_email_error(exc) from exc
        message_id = response.get("id", "") if isinstance(response, dict) else getattr(response, "id", "")
        log.info("Email sent via Resend (id=%s)", message_id)
        return message_id


class RecordingEmailProvider(EmailProvider):
    """Keeps sent messages in memory. Used for dry runs and tests.

    ``failures`` is a queue of exceptions raised by successive sends before
    delivery starts succeeding.
    """

    name = "recording"

    def __init__(self, failures: list[BaseException] | None = None) -> None:
        self.sent: list[EmailMessage] = []
        self.failures = list(failures or [])
        self.calls = 0
        self._ids = itertools.count(1)

    async def send(self, message: EmailMessage) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append(message)
        return f"rec-{next(self._ids)}"
