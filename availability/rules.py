"""Blocking-policy evaluation.

A client's policy is checked as an ordered chain of predicates.  The first
predicate that blocks wins, so a date that is both a vacation day and a
holiday always reports the vacation.  All checks read the wall clock in the
policy's own zone, whatever zone the caller was using.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Callable, Optional, Sequence

from availability.models.policy import ClientPolicy
from availability.timeutil import wall_clock

log = logging.getLogger("availability.rules")


class BlockReason(str, Enum):
    VACATION = "on vacation"
    EXCLUDED_DATE = "date excluded"
    HOLIDAY = "holiday"
    OUTSIDE_HOURS = "outside business hours"


@dataclass(frozen=True)
class Evaluation:
    blocked: bool
    reason: Optional[BlockReason] = None


ALLOWED = Evaluation(blocked=False)

# A predicate sees the instant already rendered in the policy zone.
Predicate = Callable[[datetime, ClientPolicy], Optional[BlockReason]]


def on_vacation(local: datetime, policy: ClientPolicy) -> Optional[BlockReason]:
    day = local.date()
    if any(vacation.contains(day) for vacation in policy.vacations):
        return BlockReason.VACATION
    return None


def on_excluded_date(local: datetime, policy: ClientPolicy) -> Optional[BlockReason]:
    day = local.date()
    for entry in policy.excluded_dates:
        if "|" in entry:
            start, end = entry.split("|", 1)
            if date.fromisoformat(start) <= day <= date.fromisoformat(end):
                return BlockReason.EXCLUDED_DATE
        elif date.fromisoformat(entry) == day:
            return BlockReason.EXCLUDED_DATE
    return None


def on_holiday(local: datetime, policy: ClientPolicy) -> Optional[BlockReason]:
    if f"{local:%m-%d}" in policy.holidays:
        return BlockReason.HOLIDAY
    return None


def outside_business_hours(
    local: datetime, policy: ClientPolicy
) -> Optional[BlockReason]:
    if not policy.business_hours:
        return None
    weekday = (local.weekday() + 1) % 7  # 0 = Sunday
    clock = f"{local:%H:%M}"
    if any(rule.covers(weekday, clock) for rule in policy.business_hours):
        return None
    return BlockReason.OUTSIDE_HOURS


DEFAULT_PREDICATES: tuple[Predicate, ...] = (
    on_vacation,
    on_excluded_date,
    on_holiday,
    outside_business_hours,
)


class AvailabilityRules:
    """Evaluate an instant against a client's blocking policy."""

    def __init__(self, predicates: Sequence[Predicate] = DEFAULT_PREDICATES) -> None:
        self._predicates = tuple(predicates)

    def evaluate(self, instant: datetime, policy: ClientPolicy) -> Evaluation:
        local = wall_clock(instant, policy.zone)
        for predicate in self._predicates:
            reason = predicate(local, policy)
            if reason is not None:
                log.debug(
                    "%s blocked for client %s: %s",
                    local.isoformat(), policy.client_id, reason.value,
                )
                return Evaluation(blocked=True, reason=reason)
        return ALLOWED

