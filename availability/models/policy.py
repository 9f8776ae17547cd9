"""Pydantic models describing a client's calendar and blocking policy."""

from __future__ import annotations

import re
from datetime import date
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$|^24:00$")
_MMDD = re.compile(r"^(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")


class BusinessHoursRule(BaseModel):
    """Weekly opening hours, local wall clock, half-open ``[start, end)``.

    ``days`` uses 0 = Sunday through 6 = Saturday.
    """

    days: set[int]
    start: str  # HH:MM
    end: str  # HH:MM

    @field_validator("days")
    @classmethod
    def _check_days(cls, value: set[int]) -> set[int]:
        bad = sorted(d for d in value if not 0 <= d <= 6)
        if bad:
            raise ValueError(f"days must be 0-6 (0=Sunday), got {bad}")
        return value

    @field_validator("start", "end")
    @classmethod
    def _check_clock(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value

    @model_validator(mode="after")
    def _check_order(self) -> "BusinessHoursRule":
        if self.start >= self.end:
            raise ValueError(f"start {self.start} must be before end {self.end}")
        return self

    def covers(self, weekday: int, clock: str) -> bool:
        return weekday in self.days and self.start <= clock < self.end


class DateRange(BaseModel):
    """Inclusive range of calendar dates."""

    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class ClientPolicy(BaseModel):
    """Everything the engine needs to know about one client."""

    client_id: str
    zone: str = "America/Toronto"
    calendar_id: str = "primary"
    calendar_connected: bool = True
    meeting_duration: int = 30  # minutes

    business_hours: list[BusinessHoursRule] = Field(default_factory=list)
    vacations: list[DateRange] = Field(default_factory=list)
    # "YYYY-MM-DD" or "YYYY-MM-DD|YYYY-MM-DD"
    excluded_dates: list[str] = Field(default_factory=list)
    # yearly recurring "MM-DD"
    holidays: list[str] = Field(default_factory=list)

    @field_validator("excluded_dates")
    @classmethod
    def _check_excluded(cls, value: list[str]) -> list[str]:
        for entry in value:
            for part in entry.split("|"):
                date.fromisoformat(part)
            if entry.count("|") > 1:
                raise ValueError(f"excluded date range {entry!r} has too many parts")
        return value

    @field_validator("holidays")
    @classmethod
    def _check_holidays(cls, value: list[str]) -> list[str]:
        for entry in value:
            if not _MMDD.match(entry):
                raise ValueError(f"holiday must be MM-DD, got {entry!r}")
        return value


# ── Client-editable settings ──────────────────────────────────────────


class BusinessHoursSettings(BaseModel):
    rules: list[BusinessHoursRule] = Field(default_factory=list)


class PolicySettings(BaseModel):
    """The client-editable part of a policy, as the settings routes exchange it.

    Every field is optional so the same model serves as a partial update;
    ``None`` means "leave unchanged".
    """

    meeting_length: Optional[int] = Field(default=None, gt=0, le=480)
    business_hours: Optional[BusinessHoursSettings] = None
    excluded_dates: Optional[list[str]] = None
    holidays: Optional[list[str]] = None
    vacations: Optional[list[DateRange]] = None
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {value!r}")
        return value

    @classmethod
    def from_policy(cls, policy: ClientPolicy) -> "PolicySettings":
        return cls(
            meeting_length=policy.meeting_duration,
            business_hours=BusinessHoursSettings(rules=policy.business_hours),
            excluded_dates=policy.excluded_dates,
            holidays=policy.holidays,
            vacations=policy.vacations,
            timezone=policy.zone,
        )

    def updated_fields(self) -> list[str]:
        return [
            name for name in PolicySettings.model_fields
            if getattr(self, name) is not None
        ]

    def apply_to(self, policy: ClientPolicy) -> ClientPolicy:
        """Return ``policy`` with the fields set here replaced, revalidated."""
        data = policy.model_dump()
        if self.meeting_length is not None:
            data["meeting_duration"] = self.meeting_length
        if self.business_hours is not None:
            data["business_hours"] = [r.model_dump() for r in self.business_hours.rules]
        if self.excluded_dates is not None:
            data["excluded_dates"] = self.excluded_dates
        if self.holidays is not None:
            data["holidays"] = self.holidays
        if self.vacations is not None:
            data["vacations"] = [v.model_dump() for v in self.vacations]
        if self.timezone is not None:
            data["zone"] = self.timezone
        return ClientPolicy.model_validate(data)


class SettingsUpdate(PolicySettings):
    """``PATCH /settings`` body: the client id plus any settings to change."""

    client_id: Optional[str] = None
