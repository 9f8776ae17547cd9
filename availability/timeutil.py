"""Zone-aware instant helpers.

Every instant handled by the engine is an aware ``datetime``.  Wall-clock
fields are only ever read after converting into an explicit IANA zone, and
instants are only ever built from wall-clock fields through ``ZoneInfo`` so
the offset in effect at that local moment (DST included) is used.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo


@lru_cache(maxsize=64)
def get_zone(zone: str) -> ZoneInfo:
    """Return the cached ``ZoneInfo`` for an IANA zone name."""
    return ZoneInfo(zone)


def require_aware(instant: datetime, name: str = "instant") -> datetime:
    """Reject naive datetimes; an instant without a zone has no meaning here."""
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware, got naive {instant!r}")
    return instant


def zoned(
    year: int,
    month: int,
    day: int,
    hour: int = 0,
    minute: int = 0,
    *,
    zone: str,
) -> datetime:
    """Build the instant for a wall-clock moment in ``zone``.

    Nonexistent local times (inside a spring-forward gap) resolve forward,
    e.g. 02:30 on the US spring-forward date becomes 03:30 daylight time.
    """
    tz = get_zone(zone)
    local = datetime(year, month, day, hour, minute, tzinfo=tz)
    return local.astimezone(timezone.utc).astimezone(tz)


def at_local_time(day: date, hour: int, minute: int = 0, *, zone: str) -> datetime:
    """Instant for ``hour:minute`` on a local calendar ``day`` in ``zone``."""
    if hour == 24:
        return start_of_day(day + timedelta(days=1), zone=zone)
    return zoned(day.year, day.month, day.day, hour, minute, zone=zone)


def start_of_day(day: date, *, zone: str) -> datetime:
    return zoned(day.year, day.month, day.day, zone=zone)


def wall_clock(instant: datetime, zone: str) -> datetime:
    """Render ``instant`` in ``zone``."""
    return require_aware(instant).astimezone(get_zone(zone))


def to_utc(instant: datetime) -> datetime:
    return require_aware(instant).astimezone(timezone.utc)


def add_minutes(instant: datetime, minutes: int) -> datetime:
    """Absolute addition; aware-datetime ``+`` would otherwise move the wall clock."""
    return (to_utc(instant) + timedelta(minutes=minutes)).astimezone(instant.tzinfo)


def round_up(instant: datetime, minutes: int, zone: str | None = None) -> datetime:
    """Round ``instant`` up to the next multiple of ``minutes`` past the hour.

    The multiple is taken on the wall clock of ``zone`` (or of the instant's
    own offset), so zones with :30 or :45 offsets still land on local
    half hours.
    """
    local = wall_clock(instant, zone) if zone else require_aware(instant)
    floored = local.replace(second=0, microsecond=0)
    step = 1 if floored != local else 0
    remainder = (floored.minute + step) % minutes
    if remainder:
        step += minutes - remainder
    return add_minutes(floored, step).astimezone(instant.tzinfo)


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as returned by the Google APIs."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return require_aware(datetime.fromisoformat(value), "timestamp")


def to_rfc3339(instant: datetime, zone: str | None = None) -> str:
    """RFC 3339 string carrying the offset of ``zone`` (or the instant's own)."""
    if zone is not None:
        instant = wall_clock(instant, zone)
    return require_aware(instant).isoformat()


# ── Human-readable formatting ─────────────────────────────────────────


def format_clock(hour: int, minute: int = 0) -> str:
    """12-hour clock text, e.g. ``2:00 PM``."""
    meridiem = "AM" if hour % 24 < 12 else "PM"
    return f"{hour % 12 or 12}:{minute:02d} {meridiem}"


def format_time(instant: datetime, zone: str) -> str:
    local = wall_clock(instant, zone)
    return format_clock(local.hour, local.minute)


def format_date(instant: datetime, zone: str) -> str:
    """e.g. ``Tuesday, Jan 28``."""
    local = wall_clock(instant, zone)
    return f"{local:%A}, {local:%b} {local.day}"


def format_human(instant: datetime, zone: str) -> str:
    """e.g. ``Tuesday, Jan 28, 2:00 PM``."""
    return f"{format_date(instant, zone)}, {format_time(instant, zone)}"
