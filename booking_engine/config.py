"""Application configuration via environment variables."""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings

from booking_engine.models.slots import BusinessHoursPolicy

log = logging.getLogger("booking_engine.config")


class Settings(BaseSettings):
    # Google Calendar
    google_service_account_json: str = ""
    google_calendar_id: str = "primary"
    calendar_timeout_seconds: float = 15.0

    # Business hours (always in business_timezone, never the caller's)
    business_timezone: str = "America/New_York"
    morning_start: int = 9
    morning_end: int = 12
    afternoon_start: int = 12
    afternoon_end: int = 18
    meeting_durations: list[int] = [30, 60]
    slot_step_minutes: int = 30
    min_lead_minutes: int = 30
    default_lookahead_days: int = 7

    # Email (Resend)
    resend_api_key: str = ""
    email_from: str = "Bookings <bookings@example.com>"
    owner_email: str = ""
    email_timeout_seconds: float = 15.0
    email_max_attempts: int = 3
    email_retry_base_delay: float = 1.0
    email_retry_multiplier: float = 2.0
    email_retry_max_delay: float = 10.0

    # Per-recipient email limits
    email_hourly_cap: int = 5
    email_daily_cap: int = 20
    email_cooldown_seconds: float = 300.0

    # API rate limiting (per caller IP)
    rate_limit_window_seconds: float = 900.0
    rate_limit_max_requests: int = 100
    # Proxies whose X-Forwarded-For is believed; empty means use the socket peer
    trusted_proxies: list[str] = []

    # Persistence ("" disables it)
    database_url: str = "sqlite:///./bookings.db"

    # Feature toggles
    feature_scheduling: bool = True
    feature_notifications: bool = True

    slot_hold_seconds: float = 120.0
    audit_log_size: int = 1000

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def business_hours(self) -> BusinessHoursPolicy:
        return BusinessHoursPolicy(
            timezone=self.business_timezone,
            morning_start=self.morning_start,
            morning_end=self.morning_end,
            afternoon_start=self.afternoon_start,
            afternoon_end=self.afternoon_end,
        )

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"re_...", "path/to/service-account.json"}

        try:
            ZoneInfo(self.business_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(
                f"BUSINESS_TIMEZONE {self.business_timezone!r} is not a valid IANA timezone."
            ) from exc

        # Raises on inverted periods
        self.business_hours()

        if not self.meeting_durations or any(d <= 0 for d in self.meeting_durations):
            raise ValueError("MEETING_DURATIONS must list at least one positive duration.")

        if self.slot_step_minutes <= 0:
            raise ValueError("SLOT_STEP_MINUTES must be positive.")

        if not self.google_service_account_json or self.google_service_account_json in _placeholders:
            warnings.append(
                "GOOGLE_SERVICE_ACCOUNT_JSON not set. Availability will use demo data "
                "and bookings will not reach a real calendar."
            )

        if self.feature_notifications and (
            not self.resend_api_key or self.resend_api_key in _placeholders
        ):
            warnings.append("RESEND_API_KEY not set. Notification emails are disabled.")

        if not self.owner_email:
            warnings.append("OWNER_EMAIL not set. Owner booking notifications are skipped.")

        if not self.database_url:
            warnings.append("DATABASE_URL empty. Bookings are not persisted locally.")

        if not self.admin_api_key:
            if self.debug:
                warnings.append("ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true).")
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        return warnings


settings = Settings()
