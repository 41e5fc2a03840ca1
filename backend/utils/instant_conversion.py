"""Convert user-entered local dates and times to canonical UTC instants and back."""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone

from utils.datetime_utils import ensure_utc, get_zone, local_midnight


_DATE_RE = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})\s*$")
_TIME_RE = re.compile(r"^\s*([01]?\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?\s*$")


class AmbiguousOrInvalidLocalTime(Exception):
    """A local wall time could not be mapped to an instant even after fold/gap correction."""

    def __init__(self, local: datetime, tz_name: str, best_effort: datetime):
        self.local = local
        self.tz_name = tz_name
        self.best_effort = best_effort
        super().__init__(
            f"Local time {local.isoformat()} in {tz_name} is unresolvable; best effort {best_effort.isoformat()}"
        )


def parse_date_string(date_string: str) -> date:
    m = _DATE_RE.match(date_string or "")
    if not m:
        raise ValueError(f"Invalid date {date_string!r}, expected YYYY-MM-DD")
    return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def parse_time_string(time_string: str) -> time:
    m = _TIME_RE.match(time_string or "")
    if not m:
        raise ValueError(f"Invalid time {time_string!r}, expected HH:MM or HH:MM:SS")
    return time(int(m.group(1)), int(m.group(2)), int(m.group(3) or 0))


def date_string_to_instant(date_string: str, tz_name: str) -> datetime:
    """UTC instant of local midnight for ``date_string`` in ``tz_name``."""
    return local_midnight(parse_date_string(date_string), tz_name)


def instant_to_local_date_string(instant: datetime, tz_name: str) -> str:
    return ensure_utc(instant).astimezone(get_zone(tz_name)).date().isoformat()


def _candidate_instants(wall: datetime, tz_name: str) -> list[datetime]:
    """UTC instants whose projection into ``tz_name`` reproduces ``wall`` exactly."""
    zone = get_zone(tz_name)
    matches: list[datetime] = []
    for fold in (0, 1):
        candidate = wall.replace(tzinfo=zone, fold=fold).astimezone(timezone.utc)
        projected = candidate.astimezone(zone).replace(tzinfo=None, fold=0)
        if projected == wall and candidate not in matches:
            matches.append(candidate)
    return matches


def local_datetime_to_instant(date_string: str, time_string: str, tz_name: str) -> datetime:
    """Convert a local date and wall time in ``tz_name`` to a UTC instant.

    A repeated wall time (fold) resolves to its standard-time occurrence. A
    skipped wall time (gap) is moved forward by the length of the gap, so the
    resulting local time lies after the transition.
    """
    wall = datetime.combine(parse_date_string(date_string), parse_time_string(time_string))
    zone = get_zone(tz_name)
    matches = _candidate_instants(wall, tz_name)

    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        for candidate in matches:
            if not candidate.astimezone(zone).dst():
                return candidate
        # Both occurrences report DST (offset change without a DST flag): take the later one.
        return max(matches)

    shifted = wall.replace(tzinfo=zone, fold=0).astimezone(timezone.utc)
    local_projection = shifted.astimezone(zone).replace(tzinfo=None)
    if local_projection <= wall or local_projection - wall > timedelta(hours=24):
        raise AmbiguousOrInvalidLocalTime(wall, tz_name, shifted)
    return shifted
