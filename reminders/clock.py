"""Clock and IANA timezone resolution.

Wall-clock matching always goes through ``zoneinfo`` so DST transitions
are handled by the tz database rather than by fixed UTC offsets.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from reminders.errors import UnknownTimezone


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)


class FixedClock:
    """Clock pinned to one instant (tests, replays of a missed tick)."""

    def __init__(self, instant: datetime):
        self._instant = ensure_aware(instant)

    def now(self) -> datetime:
        return self._instant


@dataclass(frozen=True)
class LocalTime:
    date: date
    hhmm: str


def ensure_aware(now: datetime) -> datetime:
    """Return *now* normalised to UTC; naive datetimes are rejected."""
    if now.tzinfo is None or now.tzinfo.utcoffset(now) is None:
        raise ValueError("now must be a timezone-aware datetime")
    return now.astimezone(timezone.utc)


def resolve_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as exc:
        raise UnknownTimezone(f"timezone '{name}' is not a valid IANA timezone") from exc


def local_now(tz_name: str, now: datetime) -> LocalTime:
    """Resolve the local calendar date and ``HH:MM`` of *now* in *tz_name*."""
    local = ensure_aware(now).astimezone(resolve_zone(tz_name))
    return LocalTime(date=local.date(), hhmm=f"{local.hour:02d}:{local.minute:02d}")
