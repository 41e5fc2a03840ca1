from __future__ import annotations

import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from utils.datetime_utils import (  # noqa: E402
    CalendarDate,
    InvalidTimezone,
    date_range_bounds,
    day_bounds,
    local_today,
    month_bounds,
    resolve_timezone,
    week_bounds,
    year_bounds,
)

NY = "America/New_York"


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_local_today_uses_zone_not_utc_date():
    # 04:30 UTC on the 15th is still 23:30 on Sunday the 14th in New York.
    today = local_today(NY, _utc(2024, 1, 15, 4, 30))
    assert today.value == date(2024, 1, 14)
    assert today.weekday == 0
    assert today.tz_name == NY


def test_local_today_accepts_naive_utc_reference():
    today = local_today("Asia/Tokyo", datetime(2024, 1, 14, 16, 0))
    assert today.value == date(2024, 1, 15)


def test_day_bounds_are_local_midnights_with_exclusive_end():
    start, end = day_bounds(CalendarDate(date(2024, 1, 14), NY))
    assert start == _utc(2024, 1, 14, 5, 0)
    assert end == _utc(2024, 1, 15, 5, 0)


def test_week_bounds_monday_start_from_sunday():
    today = local_today(NY, _utc(2024, 1, 15, 4, 30))
    start, end = week_bounds(today, 1)
    assert start == _utc(2024, 1, 8, 5, 0)
    assert end == _utc(2024, 1, 15, 4, 59, 59, 999000)


def test_week_bounds_sunday_start_from_sunday():
    today = local_today(NY, _utc(2024, 1, 15, 4, 30))
    start, end = week_bounds(today, 0)
    assert start == _utc(2024, 1, 14, 5, 0)
    assert end == _utc(2024, 1, 21, 4, 59, 59, 999000)


def test_week_bounds_follow_calendar_dates_across_spring_forward():
    # Week of Mon 2024-03-04; clocks jump forward on Sun 2024-03-10.
    today = local_today(NY, _utc(2024, 3, 8, 17, 0))
    start, end = week_bounds(today, 1)
    assert start == _utc(2024, 3, 4, 5, 0)
    assert end == _utc(2024, 3, 11, 3, 59, 59, 999000)
    assert end - start == timedelta(days=7, hours=-1, milliseconds=-1)


def test_week_bounds_across_fall_back():
    today = local_today(NY, _utc(2024, 11, 1, 16, 0))
    start, end = week_bounds(today, 1)
    assert start == _utc(2024, 10, 28, 4, 0)
    assert end == _utc(2024, 11, 4, 4, 59, 59, 999000)


def test_week_bounds_rejects_out_of_range_start_day():
    today = CalendarDate(date(2024, 1, 10), NY)
    with pytest.raises(ValueError):
        week_bounds(today, 7)


def test_day_bounds_when_midnight_is_skipped():
    # Santiago springs forward at 00:00 -> 01:00 on 2024-09-08.
    start, end = day_bounds(CalendarDate(date(2024, 9, 8), "America/Santiago"))
    assert start == _utc(2024, 9, 8, 4, 0)
    assert end == _utc(2024, 9, 9, 3, 0)


def test_month_year_and_custom_ranges():
    today = CalendarDate(date(2024, 12, 20), NY)
    assert month_bounds(today) == (_utc(2024, 12, 1, 5, 0), _utc(2025, 1, 1, 5, 0))
    assert year_bounds(today) == (_utc(2024, 1, 1, 5, 0), _utc(2025, 1, 1, 5, 0))
    assert date_range_bounds(date(2024, 7, 1), date(2024, 7, 2), NY) == (
        _utc(2024, 7, 1, 4, 0),
        _utc(2024, 7, 3, 4, 0),
    )
    with pytest.raises(ValueError):
        date_range_bounds(date(2024, 7, 2), date(2024, 7, 1), NY)


def test_invalid_timezone_raises_and_resolves_to_default():
    with pytest.raises(InvalidTimezone):
        local_today("Mars/Olympus_Mons")
    assert resolve_timezone("Mars/Olympus_Mons", default="Europe/Paris") == "Europe/Paris"
    assert resolve_timezone("", default="UTC") == "UTC"
    assert resolve_timezone(" Asia/Tokyo ") == "Asia/Tokyo"


def test_invalid_default_falls_back_to_utc():
    assert resolve_timezone("nope", default="also/nope") == "UTC"
