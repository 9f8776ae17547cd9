"""Natural-language time expression parsing.

Turns what a caller said ("Tuesday at 2pm", "tomorrow morning", "after 4")
into either a fixed slot or an open range, interpreted in the caller's zone.

Recognized forms, in order of precedence:

* ``after H[am|pm]`` / ``before H[am|pm]``  -- open range bounded by the
  business day
* ``morning`` / ``afternoon`` / ``evening`` / ``tonight``  -- fixed ranges
* a date and/or a time: ``today``, ``tomorrow``, weekday names (``next Tuesday``
  is the Tuesday of the following week),
  ``January 30``, ``1/30``, ``2025-01-30``, ``2pm``, ``at 3``, ``14:30``,
  ``noon``

A date without a time becomes an open range over the business day flagged
``needs_time_specified`` so the agent can ask for a time.  Malformed or
ambiguous text never raises; it yields a ``ParseFailure``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from availability.calendar_providers.base import TimeSlot
from availability.timeutil import (
    add_minutes,
    at_local_time,
    format_clock,
    format_date,
    format_human,
    require_aware,
    start_of_day,
    wall_clock,
)

log = logging.getLogger("availability.parser")


@dataclass(frozen=True)
class ParseFailure:
    reason: str


@dataclass(frozen=True)
class FixedSlot:
    slot: TimeSlot
    human_readable: str


@dataclass(frozen=True)
class OpenRange:
    start: datetime
    end: datetime
    needs_time_specified: bool
    human_readable: str


ParseResult = Union[ParseFailure, FixedSlot, OpenRange]


# Time of day ranges (start hour, end hour)
TIME_RANGES = {
    "morning": (9, 12),
    "afternoon": (12, 17),
    "evening": (17, 20),
}

# Monday = 0, as relativedelta expects
_WEEKDAYS = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tues": 1, "tue": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thurs": 3, "thu": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}
_WEEKDAY_ALT = "|".join(sorted(_WEEKDAYS, key=len, reverse=True))
_MONTHS = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_MERIDIEM = r"(a\.?m\.?|p\.?m\.?)"

_WEEKDAY_RE = re.compile(rf"\b(?:(this|next|coming)\s+)?({_WEEKDAY_ALT})\b")
_RELATIVE_RE = re.compile(r"\b(day after tomorrow|today|tonight|tomorrow|tmrw)\b")
_NEXT_WEEK_RE = re.compile(r"\bnext week\b")
_VAGUE_RE = re.compile(r"\b(?:next|this|coming)\s+(week|month|year)\b")
_EXPLICIT_DATE_RES = (
    re.compile(r"\b\d{4}-\d{1,2}-\d{1,2}\b"),
    re.compile(r"(?<![\d:])\d{1,2}/\d{1,2}(?:/\d{2,4})?\b"),
    re.compile(rf"\b{_MONTHS}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?\b"),
    re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTHS}\b\.?(?:,?\s+\d{{4}})?"),
)
_YEAR_RE = re.compile(r"\d{4}|\d{1,2}/\d{1,2}/\d{2,4}")

_AFTER_RE = re.compile(rf"\bafter\s+(\d{{1,2}})(?::([0-5]\d))?\s*{_MERIDIEM}?(?!\w)")
_BEFORE_RE = re.compile(rf"\bbefore\s+(\d{{1,2}})(?::([0-5]\d))?\s*{_MERIDIEM}?(?!\w)")
_TIME_RE = re.compile(
    rf"(?<![\w/:.-])(?:(at|@|around|by)\s*)?(\d{{1,2}})(?::([0-5]\d))?\s*{_MERIDIEM}?(?![\w/:])"
)
_NOON_RE = re.compile(r"\bnoon\b")

_ORDINAL_WEEKDAY_RE = re.compile(
    rf"\b(?:first|second|third|fourth|fifth|last|\d(?:st|nd|rd|th))\s+(?:{_WEEKDAY_ALT})\s+(?:of|in)\b"
)
_ALTERNATIVES_RE = re.compile(r"\bor\b")


class _Unparseable(ValueError):
    """Internal signal turned into a ``ParseFailure`` at the public boundary."""


def _strip(text: str, match: re.Match) -> str:
    return f"{text[:match.start()]} {text[match.end():]}".strip()


class TimeExpressionParser:
    """Parse scheduling phrases relative to a reference instant."""

    def __init__(
        self,
        day_start_hour: int = 9,
        day_end_hour: int = 20,
        time_ranges: Optional[dict[str, tuple[int, int]]] = None,
    ) -> None:
        self.day_start_hour = day_start_hour
        self.day_end_hour = day_end_hour
        self.time_ranges = dict(time_ranges or TIME_RANGES)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def parse(
        self,
        text: str,
        zone: str,
        reference: datetime,
        duration_minutes: int = 30,
    ) -> ParseResult:
        """Parse ``text`` in ``zone``, resolving relative words against ``reference``."""
        require_aware(reference, "reference")
        normalized = " ".join((text or "").lower().replace(",", " ").split())
        if not normalized:
            return ParseFailure("No time was given")

        ambiguity = self._ambiguity(normalized)
        if ambiguity:
            return ParseFailure(ambiguity)

        ref_local = wall_clock(reference, zone)
        try:
            match = _AFTER_RE.search(normalized)
            if match:
                return self._parse_after(normalized, match, zone, ref_local)

            match = _BEFORE_RE.search(normalized)
            if match:
                return self._parse_before(normalized, match, zone, ref_local)

            period = self._find_period(normalized)
            if period:
                return self._parse_period(normalized, period, zone, ref_local)

            return self._parse_general(normalized, zone, ref_local, duration_minutes)
        except _Unparseable as exc:
            log.info("Could not parse %r: %s", text, exc)
            return ParseFailure(str(exc))

    # ------------------------------------------------------------------
    # Range forms
    # ------------------------------------------------------------------

    def _parse_after(
        self, text: str, match: re.Match, zone: str, ref_local: datetime
    ) -> OpenRange:
        hour, minute = self._to_24h(int(match.group(1)), int(match.group(2) or 0), match.group(3))
        if (hour, minute) >= (self.day_end_hour, 0):
            raise _Unparseable(
                f"after {format_clock(hour, minute)} is past the end of the business day"
            )
        day, weekday_only, _ = self._resolve_date(_strip(text, match), ref_local.date())

        def build(d: date) -> tuple[datetime, datetime]:
            return (
                at_local_time(d, hour, minute, zone=zone),
                at_local_time(d, self.day_end_hour, zone=zone),
            )

        start, end = self._roll_range(day, weekday_only, build, ref_local)
        return OpenRange(
            start=start,
            end=end,
            needs_time_specified=False,
            human_readable=f"after {format_clock(hour, minute)} on {format_date(start, zone)}",
        )

    def _parse_before(
        self, text: str, match: re.Match, zone: str, ref_local: datetime
    ) -> OpenRange:
        hour, minute = self._to_24h(int(match.group(1)), int(match.group(2) or 0), match.group(3))
        if (hour, minute) <= (self.day_start_hour, 0):
            raise _Unparseable(
                f"before {format_clock(hour, minute)} is before the business day starts"
            )
        day, weekday_only, _ = self._resolve_date(_strip(text, match), ref_local.date())

        def build(d: date) -> tuple[datetime, datetime]:
            return (
                at_local_time(d, self.day_start_hour, zone=zone),
                at_local_time(d, hour, minute, zone=zone),
            )

        start, end = self._roll_range(day, weekday_only, build, ref_local)
        return OpenRange(
            start=start,
            end=end,
            needs_time_specified=False,
            human_readable=f"before {format_clock(hour, minute)} on {format_date(start, zone)}",
        )

    def _find_period(self, text: str) -> Optional[str]:
        if re.search(r"\btonight\b", text):
            return "evening"
        for period in self.time_ranges:
            if re.search(rf"\b{period}\b", text):
                return period
        return None

    def _parse_period(
        self, text: str, period: str, zone: str, ref_local: datetime
    ) -> OpenRange:
        start_hour, end_hour = self.time_ranges[period]
        remainder = re.sub(rf"\b{period}\b", " ", text).strip()
        day, weekday_only, _ = self._resolve_date(remainder, ref_local.date())

        def build(d: date) -> tuple[datetime, datetime]:
            return (
                at_local_time(d, start_hour, zone=zone),
                at_local_time(d, end_hour, zone=zone),
            )

        start, end = self._roll_range(day, weekday_only, build, ref_local)
        return OpenRange(
            start=start,
            end=end,
            needs_time_specified=False,
            human_readable=f"{period} on {format_date(start, zone)}",
        )

    @staticmethod
    def _roll_range(day, weekday_only, build, ref_local):
        """Build a range, moving it forward when it has already ended.

        A weekday-only range moves a week; an implicit "today" moves a day.
        """
        if day is None:
            start, end = build(ref_local.date())
            if end <= ref_local:
                start, end = build(ref_local.date() + timedelta(days=1))
            return start, end
        start, end = build(day)
        if weekday_only and end <= ref_local:
            start, end = build(day + timedelta(days=7))
        return start, end

    # ------------------------------------------------------------------
    # General date/time grammar
    # ------------------------------------------------------------------

    def _parse_general(
        self, text: str, zone: str, ref_local: datetime, duration_minutes: int
    ) -> ParseResult:
        day, weekday_only, remainder = self._resolve_date(text, ref_local.date())
        clock = self._extract_time(remainder)

        if day is None and clock is None:
            raise _Unparseable(f'Could not parse date/time from: "{text}"')

        if clock is None:
            # Only a day was named; the agent has to ask for a time.
            if weekday_only and start_of_day(day, zone=zone) < ref_local:
                day += timedelta(days=7)
            start = at_local_time(day, self.day_start_hour, zone=zone)
            end = at_local_time(day, self.day_end_hour, zone=zone)
            return OpenRange(
                start=start,
                end=end,
                needs_time_specified=True,
                human_readable=format_date(start, zone),
            )

        hour, minute = clock
        if day is None:
            day = ref_local.date()
            start = at_local_time(day, hour, minute, zone=zone)
            if start < ref_local:
                start = at_local_time(day + timedelta(days=1), hour, minute, zone=zone)
        else:
            start = at_local_time(day, hour, minute, zone=zone)
            if weekday_only and start < ref_local:
                start = at_local_time(day + timedelta(days=7), hour, minute, zone=zone)

        return FixedSlot(
            slot=TimeSlot(start=start, end=add_minutes(start, duration_minutes)),
            human_readable=format_human(start, zone),
        )

    def _resolve_date(
        self, text: str, today: date
    ) -> tuple[Optional[date], bool, str]:
        """Find the date named in ``text``.

        Returns ``(day, weekday_only, remaining_text)``; ``day`` is ``None``
        when no date was named.
        """
        match = _RELATIVE_RE.search(text)
        if match:
            offset = {
                "today": 0, "tonight": 0, "tomorrow": 1, "tmrw": 1,
                "day after tomorrow": 2,
            }[match.group(1)]
            return today + timedelta(days=offset), False, _strip(text, match)

        for pattern in _EXPLICIT_DATE_RES:
            match = pattern.search(text)
            if match:
                return self._explicit_date(match.group(0), today), False, _strip(text, match)

        match = _WEEKDAY_RE.search(text)
        if match:
            weekday = _WEEKDAYS[match.group(2)]
            remainder = _strip(text, match)
            next_monday = today + relativedelta(days=+1, weekday=0)
            if match.group(1) == "next":
                # "next Tuesday" is the Tuesday of the following week
                return next_monday + relativedelta(weekday=weekday), False, remainder
            week = _NEXT_WEEK_RE.search(remainder)
            if week:
                return (
                    next_monday + relativedelta(weekday=weekday),
                    False,
                    _strip(remainder, week),
                )
            return today + relativedelta(weekday=weekday), True, remainder

        vague = _VAGUE_RE.search(text)
        if vague:
            raise _Unparseable(
                f'"{vague.group(0)}" does not name a specific day; which day works?'
            )
        return None, False, text

    @staticmethod
    def _explicit_date(fragment: str, today: date) -> date:
        default = datetime(today.year, today.month, today.day)
        try:
            parsed = date_parser.parse(fragment, default=default)
        except (ValueError, OverflowError):
            raise _Unparseable(f'"{fragment}" is not a valid date')
        day = parsed.date()
        if not _YEAR_RE.search(fragment) and day < today:
            day += relativedelta(years=1)
        return day

    def _extract_time(self, text: str) -> Optional[tuple[int, int]]:
        if _NOON_RE.search(text):
            return 12, 0
        for match in _TIME_RE.finditer(text):
            prefix, hour, minute, meridiem = match.groups()
            if not (prefix or minute or meridiem):
                continue  # a bare number is not a time
            return self._to_24h(int(hour), int(minute or 0), meridiem)
        return None

    def _to_24h(self, hour: int, minute: int, meridiem: Optional[str]) -> tuple[int, int]:
        if meridiem:
            if not 1 <= hour <= 12:
                raise _Unparseable(f"{hour} {meridiem} is not a valid time")
            if meridiem.startswith("p") and hour < 12:
                hour += 12
            elif meridiem.startswith("a") and hour == 12:
                hour = 0
        elif hour < 12 and hour < self.day_start_hour:
            # "at 3" during business hours means 3 PM
            hour += 12
        if hour > 23:
            raise _Unparseable(f"{hour}:{minute:02d} is not a valid time")
        return hour, minute

    # ------------------------------------------------------------------
    # Ambiguity detection
    # ------------------------------------------------------------------

    @staticmethod
    def _ambiguity(text: str) -> Optional[str]:
        if _ORDINAL_WEEKDAY_RE.search(text):
            return (
                f'"{text}" is too ambiguous; please name a specific date '
                "such as January 30"
            )
        if _ALTERNATIVES_RE.search(text):
            return f'"{text}" offers more than one option; please pick one time'
        weekdays = {_WEEKDAYS[m.group(2)] for m in _WEEKDAY_RE.finditer(text)}
        if len(weekdays) > 1:
            return f'"{text}" names more than one day; please pick one'
        return None
