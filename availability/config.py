"""Application configuration via environment variables."""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings

log = logging.getLogger("availability.config")


class Settings(BaseSettings):
    # Calendar defaults
    calendar_timezone: str = "America/Toronto"
    default_meeting_minutes: int = 30

    # Slot search
    business_day_start_hour: int = 9
    business_day_end_hour: int = 20
    slot_increment_minutes: int = 30
    search_horizon_days: int = 3
    search_max_steps: int = 1000
    max_alternatives: int = 3

    # Push-notification subscriptions
    base_url: str = "http://localhost:8080"
    renewal_lead_hours: int = 24
    renewal_interval_minutes: int = 60

    # Google Calendar
    google_service_account_json: str = ""
    google_request_timeout_seconds: float = 30.0

    # Client policies (JSON file loaded into the in-memory directory)
    policies_file: str = ""

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def webhook_url(self) -> str:
        """Callback address handed to the calendar provider for push notifications."""
        return f"{self.base_url.rstrip('/')}/webhook/google-calendar"

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"path/to/service-account.json"}

        try:
            ZoneInfo(self.calendar_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"CALENDAR_TIMEZONE {self.calendar_timezone!r} is not a known IANA zone."
            )

        if not 0 <= self.business_day_start_hour < self.business_day_end_hour <= 24:
            raise ValueError(
                "BUSINESS_DAY_START_HOUR must be before BUSINESS_DAY_END_HOUR "
                f"(got {self.business_day_start_hour} and {self.business_day_end_hour})."
            )

        if self.slot_increment_minutes <= 0 or self.search_max_steps <= 0:
            raise ValueError(
                "SLOT_INCREMENT_MINUTES and SEARCH_MAX_STEPS must be positive."
            )

        # Admin API key, warn if unset
        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        # Google Calendar, warn if missing or placeholder
        if (
            not self.google_service_account_json
            or self.google_service_account_json in _placeholders
        ):
            warnings.append(
                "GOOGLE_SERVICE_ACCOUNT_JSON is not set. The calendar feed cannot start."
            )

        if self.base_url.startswith("http://"):
            warnings.append(
                "BASE_URL is not https. Google will refuse push-notification channels."
            )

        return warnings


settings = Settings()
