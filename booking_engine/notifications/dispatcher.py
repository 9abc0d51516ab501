"""Deliver notification emails with validation, limits and bounded retries.

``NotificationDispatcher.send`` never raises on a delivery failure. Every
outcome comes back as a :class:`DeliveryReport`, so a booking that is
already confirmed cannot be unwound by a mail problem.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from booking_engine.audit import AuditLog, redact_pii
from booking_engine.errors import TRANSIENT_CATEGORIES, ErrorCategory, UpstreamError
from booking_engine.models.booking import BookingRecord

from . import templates
from .providers import EmailMessage, EmailProvider, classify_email_error
from .rate_limit import RecipientRateLimiter
from .sanitize import sanitize_message, validate_message

log = logging.getLogger("booking_engine.notifications.dispatcher")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    retryable: frozenset = TRANSIENT_CATEGORIES

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def should_retry(self, error: UpstreamError, attempt: int) -> bool:
        return attempt < self.max_attempts and error.category in self.retryable


@dataclass
class DeliveryReport:
    success: bool
    message_id: Optional[str] = None
    attempts: int = 0
    latency_ms: float = 0.0
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    rate_limited: bool = False
    delays: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message_id": self.message_id,
            "attempts": self.attempts,
            "latency_ms": self.latency_ms,
            "error": self.error,
            "error_category": self.error_category.value if self.error_category else None,
            "rate_limited": self.rate_limited,
        }


class NotificationDispatcher:
    """Sends email through an :class:`EmailProvider`."""

    def __init__(
        self,
        provider: EmailProvider | None,
        *,
        sender: str,
        owner_email: str = "",
        business_timezone: str = "America/New_York",
        retry: RetryPolicy | None = None,
        limiter: RecipientRateLimiter | None = None,
        audit: AuditLog | None = None,
        timeout: float = 15.0,
        enabled: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        history_size: int = 100,
    ) -> None:
        self._provider = provider
        self._sender = sender
        self._owner_email = owner_email
        self._business_tz = business_timezone
        self._retry = retry or RetryPolicy()
        self._limiter = limiter or RecipientRateLimiter(cooldown_exempt=[owner_email])
        self._audit = audit
        self._timeout = timeout
        self._enabled = enabled and provider is not None
        self._sleep = sleep
        self._history: deque[DeliveryReport] = deque(maxlen=history_size)
        self._history_lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    def _remember(self, report: DeliveryReport) -> DeliveryReport:
        with self._history_lock:
            self._history.append(report)
        return report

    def _audit_attempt(self, attempt: int, success: bool, latency_ms: float,
                       category: ErrorCategory | None, recipients: int) -> None:
        if self._audit is None:
            return
        self._audit.record("email_attempt", {
            "provider": getattr(self._provider, "name", "none"),
            "attempt": attempt,
            "success": success,
            "latency_ms": latency_ms,
            "category": category.value if category else None,
            "recipients": recipients,
        })

    async def send(self, message: EmailMessage) -> DeliveryReport:
        """Validate, sanitize, rate-limit and deliver ``message``."""
        if not self._enabled:
            log.info("Notifications disabled, not sending %r", message.subject)
            return DeliveryReport(success=False, error="notifications disabled")

        problems = validate_message(message)
        if problems:
            log.warning("Rejected malformed email: %s", "; ".join(problems))
            return self._remember(DeliveryReport(
                success=False,
                error="; ".join(problems),
                error_category=ErrorCategory.VALIDATION,
            ))

        clean = sanitize_message(message)

        decision = self._limiter.acquire_all(clean.to)
        if not decision.allowed:
            log.warning(
                "Email to %s blocked by %s (retry in %.0fs)",
                redact_pii(decision.recipient), decision.reason, decision.retry_after,
            )
            return self._remember(DeliveryReport(
                success=False,
                error=f"recipient rate limit: {decision.reason}",
                error_category=ErrorCategory.RATE_LIMIT,
                rate_limited=True,
            ))

        return self._remember(await self._deliver(clean))

    async def _deliver(self, message: EmailMessage) -> DeliveryReport:
        started = time.monotonic()
        delays: list[float] = []
        attempt = 0
        while True:
            attempt += 1
            attempt_started = time.monotonic()
            try:
                message_id = await asyncio.wait_for(self._provider.send(message), timeout=self._timeout)
            except Exception as exc:
                error = classify_email_error(exc)
                latency = round((time.monotonic() - attempt_started) * 1000, 1)
                self._audit_attempt(attempt, False, latency, error.category, len(message.to))
                log.warning(
                    "Email attempt %d/%d failed (%s): %s",
                    attempt, self._retry.max_attempts, error.category.value, error,
                )
                if not self._retry.should_retry(error, attempt):
                    return DeliveryReport(
                        success=False,
                        attempts=attempt,
                        latency_ms=round((time.monotonic() - started) * 1000, 1),
                        error=str(error),
                        error_category=error.category,
                        delays=delays,
                    )
                delay = self._retry.delay_for(attempt)
                if error.retry_after:
                    delay = min(max(delay, error.retry_after), self._retry.max_delay)
                delays.append(delay)
                await self._sleep(delay)
                continue

            latency = round((time.monotonic() - attempt_started) * 1000, 1)
            self._audit_attempt(attempt, True, latency, None, len(message.to))
            log.info("Email %r delivered on attempt %d", message.subject, attempt)
            return DeliveryReport(
                success=True,
                message_id=message_id,
                attempts=attempt,
                latency_ms=round((time.monotonic() - started) * 1000, 1),
                delays=delays,
            )

    # ---- Booking notifications ----------------------------------------

    async def send_booking_confirmation(
        self,
        record: BookingRecord,
        meeting_link: str | None = None,
    ) -> DeliveryReport:
        subject, html, text = templates.booking_confirmation(record, meeting_link)
        return await self.send(EmailMessage(
            sender=self._sender,
            to=[record.email],
            subject=subject,
            html=html,
            text=text,
            reply_to=self._owner_email or None,
            tags={"category": "booking_confirmation"},
        ))

    async def send_owner_notification(
        self,
        record: BookingRecord,
        meeting_link: str | None = None,
        event_link: str | None = None,
    ) -> DeliveryReport:
        if not self._owner_email:
            log.info("No owner email configured, skipping owner notification")
            return DeliveryReport(success=True, error="owner email not configured")
        subject, html, text = templates.owner_notification(
            record, self._business_tz, meeting_link, event_link
        )
        return await self.send(EmailMessage(
            sender=self._sender,
            to=[self._owner_email],
            subject=subject,
            html=html,
            text=text,
            reply_to=record.email,
            tags={"category": "owner_notification"},
        ))

    def health(self) -> dict[str, Any]:
        """Summary of recent deliveries for the health endpoint."""
        with self._history_lock:
            history = list(self._history)
        if not self._enabled:
            status = "disabled"
        elif not history:
            status = "idle"
        else:
            status = "healthy"

        delivered = [r for r in history if r.success]
        failed = [r for r in history if not r.success]
        rate = round(len(delivered) / len(history), 3) if history else None
        if history and rate is not None and rate < 0.8:
            status = "degraded"
        return {
            "status": status,
            "provider": getattr(self._provider, "name", None),
            "recent_deliveries": len(history),
            "success_rate": rate,
            "average_latency_ms": (
                round(sum(r.latency_ms for r in delivered) / len(delivered), 1) if delivered else 0.0
            ),
            "rate_limited": sum(1 for r in history if r.rate_limited),
            "last_error": failed[-1].error if failed else None,
        }
