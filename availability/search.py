"""Open-slot search against reported busy periods.

Candidates are generated from an anchor in fixed increments, confined to the
daily search window of the client's zone, and accepted when the blocking
policy allows them and ``[candidate, candidate + duration)`` does not
overlap any busy period.  Intervals are half-open: a slot that ends exactly
when a busy period begins does not conflict with it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

from availability.calendar_providers.base import BusyPeriod, TimeSlot
from availability.models.policy import ClientPolicy
from availability.rules import AvailabilityRules, BlockReason
from availability.timeutil import at_local_time, get_zone, to_utc, wall_clock

log = logging.getLogger("availability.search")


def overlaps(start: datetime, end: datetime, busy: BusyPeriod) -> bool:
    """Half-open overlap test between ``[start, end)`` and a busy period."""
    return start < busy.end and end > busy.start


def conflicts(start: datetime, end: datetime, busy_periods: Sequence[BusyPeriod]) -> bool:
    return any(overlaps(start, end, busy) for busy in busy_periods)


@dataclass
class SlotCheck:
    """Outcome of checking one requested slot."""

    available: bool
    slot: TimeSlot
    reason: Optional[BlockReason] = None  # set when the policy blocked the slot
    busy: bool = False  # set when the slot overlaps a busy period
    alternatives: list[TimeSlot] = field(default_factory=list)


class SlotSearchEngine:
    """Find free meeting slots for a client.

    Args:
        rules: Blocking-policy evaluator.
        increment_minutes: Step between candidate start times.
        horizon: How far past the anchor the search may look.
        max_steps: Hard cap on loop iterations, whatever the other values.
        day_start_hour / day_end_hour: Daily window candidates may start in,
            in the policy zone.  ``None`` disables the window.
    """

    def __init__(
        self,
        rules: Optional[AvailabilityRules] = None,
        increment_minutes: int = 30,
        horizon: timedelta = timedelta(days=3),
        max_steps: int = 1000,
        day_start_hour: Optional[int] = 9,
        day_end_hour: Optional[int] = 20,
    ) -> None:
        if increment_minutes <= 0:
            raise ValueError("increment_minutes must be positive")
        if max_steps <= 0:
            raise ValueError("max_steps must be positive")
        self.rules = rules or AvailabilityRules()
        self.increment = timedelta(minutes=increment_minutes)
        self.horizon = horizon
        self.max_steps = max_steps
        self.day_start_hour = day_start_hour
        self.day_end_hour = day_end_hour

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def check_slot(
        self,
        anchor: datetime,
        duration_minutes: int,
        busy_periods: Sequence[BusyPeriod],
        policy: ClientPolicy,
        zone: str,
        max_alternatives: int = 3,
    ) -> SlotCheck:
        """Check the slot starting at ``anchor``; suggest alternatives if taken."""
        start = wall_clock(anchor, zone)
        end = wall_clock(to_utc(anchor) + timedelta(minutes=duration_minutes), zone)
        slot = TimeSlot(start=start, end=end)

        evaluation = self.rules.evaluate(anchor, policy)
        busy = conflicts(start, end, busy_periods)
        result = SlotCheck(
            available=not evaluation.blocked and not busy,
            slot=slot,
            reason=evaluation.reason,
            busy=busy,
        )
        if not result.available:
            result.alternatives = self.scan_range(
                anchor,
                None,
                duration_minutes,
                busy_periods,
                policy,
                zone,
                max_alternatives,
            )
        return result

    def scan_range(
        self,
        range_start: datetime,
        range_end: Optional[datetime],
        duration_minutes: int,
        busy_periods: Sequence[BusyPeriod],
        policy: ClientPolicy,
        zone: str,
        max_alternatives: int = 3,
    ) -> list[TimeSlot]:
        """Return up to ``max_alternatives`` free slots, earliest first.

        Candidates start at or after ``range_start`` and strictly before
        ``range_end`` (when given) and the search horizon.
        """
        out_zone = get_zone(zone)
        duration = timedelta(minutes=duration_minutes)
        anchor = to_utc(range_start)
        limit = anchor + self.horizon
        if range_end is not None:
            limit = min(limit, to_utc(range_end))

        found: list[TimeSlot] = []
        candidate = anchor
        steps = 0
        while (
            len(found) < max_alternatives
            and candidate < limit
            and steps < self.max_steps
        ):
            steps += 1

            jump = self._window_jump(candidate, policy.zone)
            if jump is not None:
                candidate = jump
                continue

            if not self.rules.evaluate(candidate, policy).blocked:
                end = candidate + duration
                if not conflicts(candidate, end, busy_periods):
                    found.append(
                        TimeSlot(
                            start=candidate.astimezone(out_zone),
                            end=end.astimezone(out_zone),
                        )
                    )

            candidate += self.increment

        if steps >= self.max_steps and len(found) < max_alternatives and candidate < limit:
            log.warning(
                "Slot search for client %s stopped after %d steps",
                policy.client_id, steps,
            )
        return found

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _window_jump(self, candidate: datetime, zone: str) -> Optional[datetime]:
        """Next window opening when ``candidate`` is outside the daily window."""
        if self.day_start_hour is None or self.day_end_hour is None:
            return None
        local = wall_clock(candidate, zone)
        day = local.date()
        opening = at_local_time(day, self.day_start_hour, zone=zone)
        closing = at_local_time(day, self.day_end_hour, zone=zone)
        if local < opening:
            return to_utc(opening)
        if local >= closing:
            return to_utc(at_local_time(day + timedelta(days=1), self.day_start_hour, zone=zone))
        return None
