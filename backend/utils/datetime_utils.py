"""Local calendar day/week boundaries for an IANA timezone.

Every boundary is computed on calendar dates first and only then projected to
UTC, so weeks that span a DST transition still start and end at local midnight.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings

logger = logging.getLogger(__name__)

WEEK_END_PRECISION = timedelta(milliseconds=1)


class InvalidTimezone(ValueError):
    """Raised when a timezone identifier is not a known IANA zone."""

    def __init__(self, tz_name: str | None):
        self.tz_name = tz_name
        super().__init__(f"Unknown timezone: {tz_name!r}")


@dataclass(frozen=True)
class CalendarDate:
    """A local calendar day together with the timezone it was resolved in."""

    value: date
    tz_name: str

    @property
    def year(self) -> int:
        return self.value.year

    @property
    def month(self) -> int:
        return self.value.month

    @property
    def day(self) -> int:
        return self.value.day

    @property
    def weekday(self) -> int:
        # 0 = Sunday ... 6 = Saturday
        return self.value.isoweekday() % 7

    def shift(self, days: int) -> "CalendarDate":
        return CalendarDate(self.value + timedelta(days=days), self.tz_name)

    def isoformat(self) -> str:
        return self.value.isoformat()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Naive datetimes are stored UTC; make them aware. Aware ones are converted."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_zone(tz_name: str | None) -> ZoneInfo:
    candidate = (tz_name or "").strip()
    if not candidate:
        raise InvalidTimezone(tz_name)
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezone(tz_name) from exc


def resolve_timezone(tz_name: str | None, default: str | None = None) -> str:
    """Return a usable timezone name, substituting the configured default."""
    try:
        get_zone(tz_name)
        return tz_name.strip()
    except InvalidTimezone:
        fallback = default or settings.DEFAULT_TIMEZONE
        logger.warning("Invalid timezone %r, falling back to %s", tz_name, fallback)
    try:
        get_zone(fallback)
        return fallback.strip()
    except InvalidTimezone:
        logger.warning("Configured default timezone %r is invalid, using UTC", fallback)
        return "UTC"


def local_today(tz_name: str, now: datetime | None = None) -> CalendarDate:
    """Return the calendar date of ``now`` (default: the current instant) in ``tz_name``."""
    zone = get_zone(tz_name)
    reference = ensure_utc(now) if now is not None else utcnow()
    return CalendarDate(reference.astimezone(zone).date(), tz_name)


def local_midnight(d: date, tz_name: str) -> datetime:
    """UTC instant at which local day ``d`` begins.

    A midnight that falls inside a DST gap resolves to the first valid wall time
    after it (zoneinfo applies the pre-transition offset for fold=0).
    """
    zone = get_zone(tz_name)
    local = datetime(d.year, d.month, d.day, tzinfo=zone)
    return local.astimezone(timezone.utc)


def day_bounds(calendar_date: CalendarDate) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of the local day as UTC instants."""
    start = local_midnight(calendar_date.value, calendar_date.tz_name)
    end = local_midnight(calendar_date.value + timedelta(days=1), calendar_date.tz_name)
    return start, end


def week_start_date(calendar_date: CalendarDate, week_start_day: int) -> CalendarDate:
    if not 0 <= int(week_start_day) <= 6:
        raise ValueError(f"week_start_day must be between 0 and 6, got {week_start_day}")
    offset = (calendar_date.weekday - int(week_start_day) + 7) % 7
    return calendar_date.shift(-offset)


def week_bounds(calendar_date: CalendarDate, week_start_day: int) -> tuple[datetime, datetime]:
    """Return ``[start, end]`` of the local week as UTC instants.

    ``end`` is inclusive: 23:59:59.999 local time on the sixth day after the
    week start.
    """
    first = week_start_date(calendar_date, week_start_day)
    start = local_midnight(first.value, first.tz_name)
    next_week = local_midnight(first.value + timedelta(days=7), first.tz_name)
    return start, next_week - WEEK_END_PRECISION


def month_bounds(calendar_date: CalendarDate) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of the local calendar month."""
    first = calendar_date.value.replace(day=1)
    if first.month == 12:
        following = first.replace(year=first.year + 1, month=1)
    else:
        following = first.replace(month=first.month + 1)
    return local_midnight(first, calendar_date.tz_name), local_midnight(following, calendar_date.tz_name)


def year_bounds(calendar_date: CalendarDate) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of the local calendar year."""
    first = date(calendar_date.year, 1, 1)
    following = date(calendar_date.year + 1, 1, 1)
    return local_midnight(first, calendar_date.tz_name), local_midnight(following, calendar_date.tz_name)


def date_range_bounds(first_date: date, last_date: date, tz_name: str) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` covering every local day from ``first_date`` to ``last_date``."""
    if last_date < first_date:
        raise ValueError("last_date must not be before first_date")
    return local_midnight(first_date, tz_name), local_midnight(last_date + timedelta(days=1), tz_name)
