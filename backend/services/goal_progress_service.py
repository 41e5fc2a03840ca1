"""Entry points used by the API layer for calendars, progress and goal boards."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy.orm import Session

from config import settings
from db.models import Homeschool
from services.duplicate_record_service import find_existing_instance
from services.goal_status_service import (
    GoalBoardEntry,
    classify,
    is_all_complete,
    sort_goals_for_display,
    sort_key,
    visible_goals_for_student,
)
from services.progress_service import ProgressSnapshot, aggregate
from services.records import ActivityRecord, GoalRecord, InstanceRecord, PersonRecord
from services.storage_service import list_activities, list_goals, list_instances, list_students
from utils.datetime_utils import (
    day_bounds,
    ensure_utc,
    local_today,
    resolve_timezone,
    utcnow,
    week_bounds,
)
from utils.instant_conversion import (
    AmbiguousOrInvalidLocalTime,
    date_string_to_instant,
    local_datetime_to_instant,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalendarSettings:
    timezone: str
    week_start_day: int
    allow_multiple_records_per_day: bool


def calendar_settings_for(homeschool: Homeschool | None) -> CalendarSettings:
    """Homeschool-level dashboard settings layered over the configured defaults."""
    tz_name = getattr(homeschool, "timezone", None)
    week_start = getattr(homeschool, "week_start_day", None)
    allow_multiple = getattr(homeschool, "allow_multiple_records_per_day", None)
    if week_start is None or not 0 <= int(week_start) <= 6:
        week_start = settings.DEFAULT_WEEK_START_DAY
    if allow_multiple is None:
        allow_multiple = settings.ALLOW_MULTIPLE_RECORDS_PER_DAY
    return CalendarSettings(
        timezone=resolve_timezone(tz_name or settings.DEFAULT_TIMEZONE),
        week_start_day=int(week_start),
        allow_multiple_records_per_day=bool(allow_multiple),
    )


def resolve_calendar(tz_name: str, week_start_day: int, now: datetime | None = None) -> dict:
    tz_name = resolve_timezone(tz_name)
    today = local_today(tz_name, now)
    today_start, today_end = day_bounds(today)
    week_start, week_end = week_bounds(today, week_start_day)
    return {
        "timezone": tz_name,
        "today": today,
        "today_start": today_start,
        "today_end": today_end,
        "week_start": week_start,
        "week_end": week_end,
    }


def compute_progress(
    goal: GoalRecord,
    student_id: int,
    instances: Sequence[InstanceRecord],
    now: datetime,
    tz_name: str,
    week_start_day: int,
) -> ProgressSnapshot:
    return aggregate(goal, student_id, instances, now, resolve_timezone(tz_name), week_start_day)


def classify_goal(goal: GoalRecord, snapshot: ProgressSnapshot) -> dict:
    status = classify(goal, snapshot)
    return {"status": status, "sort_key": sort_key(status)}


def to_canonical_instant(date_string: str, time_string: str | None, tz_name: str) -> datetime:
    """Stored instant for a local date (midnight) or a local date and time.

    DST anomalies never fail the write: an unresolvable wall time is logged and
    its best-effort instant is used.
    """
    tz_name = resolve_timezone(tz_name)
    if not time_string:
        return date_string_to_instant(date_string, tz_name)
    try:
        return local_datetime_to_instant(date_string, time_string, tz_name)
    except AmbiguousOrInvalidLocalTime as exc:
        logger.warning("Using best-effort instant for unresolvable local time: %s", exc)
        return exc.best_effort


def find_duplicate_for_day(
    goal_id: int,
    student_id: int,
    date_string: str,
    tz_name: str,
    instances: Sequence[InstanceRecord],
) -> InstanceRecord | None:
    return find_existing_instance(goal_id, student_id, date_string, resolve_timezone(tz_name), instances)


def build_goal_board(
    goals: Sequence[GoalRecord],
    activities: Sequence[ActivityRecord],
    student_id: int,
    instances: Sequence[InstanceRecord],
    now: datetime,
    calendar: CalendarSettings,
) -> list[GoalBoardEntry]:
    activity_by_id = {activity.id: activity for activity in activities}
    entries: list[GoalBoardEntry] = []
    for goal in visible_goals_for_student(goals, student_id, now):
        snapshot = aggregate(goal, student_id, instances, now, calendar.timezone, calendar.week_start_day)
        entries.append(
            GoalBoardEntry(
                goal=goal,
                activity=activity_by_id.get(goal.activity_id),
                snapshot=snapshot,
                status=classify(goal, snapshot),
            )
        )
    return sort_goals_for_display(entries)


def serialize_board_entry(entry: GoalBoardEntry) -> dict:
    goal = entry.goal
    activity = entry.activity
    return {
        "goal_id": goal.id,
        "name": goal.name or (activity.name if activity else None),
        "activity_id": goal.activity_id,
        "activity_name": activity.name if activity else None,
        "times_per_week": goal.times_per_week,
        "minutes_per_session": goal.minutes_per_session,
        "percentage_goal": goal.percentage_goal,
        "progress_count": goal.progress_count,
        "progress_count_name": activity.progress_count_name if activity else None,
        "status": entry.status.value,
        "sort_key": entry.sort_key[0],
        "progress": entry.snapshot.to_dict(),
    }


def _student_payload(student: PersonRecord, board: list[GoalBoardEntry]) -> dict:
    today_minutes = sum(entry.snapshot.today_minutes for entry in board)
    work_goal_minutes = (
        round(student.daily_work_hours_goal * 60, 1) if student.daily_work_hours_goal else None
    )
    return {
        "student_id": student.id,
        "name": student.name,
        "total_goals": len(board),
        "completed_today": sum(1 for entry in board if entry.snapshot.today_count > 0),
        "all_complete": is_all_complete(entry.status for entry in board),
        "today_minutes": today_minutes,
        "daily_work_goal_minutes": work_goal_minutes,
        "last_activity_at": student.last_activity_at.isoformat() if student.last_activity_at else None,
        "goals": [serialize_board_entry(entry) for entry in board],
    }


def build_student_view(db: Session, homeschool: Homeschool, student: PersonRecord, now: datetime | None = None) -> dict:
    now = ensure_utc(now) if now is not None else utcnow()
    calendar = calendar_settings_for(homeschool)
    goals = [goal for goal in list_goals(db, homeschool.id) if student.id in goal.student_ids]
    activities = list_activities(db, homeschool.id)
    week_start, _ = week_bounds(local_today(calendar.timezone, now), calendar.week_start_day)
    instances = list_instances(
        db,
        student_id=student.id,
        goal_id_in=[goal.id for goal in goals],
        since=week_start,
    )
    board = build_goal_board(goals, activities, student.id, instances, now, calendar)
    payload = _student_payload(student, board)
    payload["calendar"] = serialize_calendar(resolve_calendar(calendar.timezone, calendar.week_start_day, now))
    return payload


def build_homeschool_overview(db: Session, homeschool: Homeschool, now: datetime | None = None) -> dict:
    now = ensure_utc(now) if now is not None else utcnow()
    calendar = calendar_settings_for(homeschool)
    goals = list_goals(db, homeschool.id)
    activities = list_activities(db, homeschool.id)
    students = list_students(db, homeschool.id)
    week_start, _ = week_bounds(local_today(calendar.timezone, now), calendar.week_start_day)
    instances = list_instances(db, goal_id_in=[goal.id for goal in goals], since=week_start)

    student_payloads = []
    for student in students:
        board = build_goal_board(goals, activities, student.id, instances, now, calendar)
        student_payloads.append(_student_payload(student, board))

    return {
        "homeschool_id": homeschool.id,
        "name": homeschool.name,
        "calendar": serialize_calendar(resolve_calendar(calendar.timezone, calendar.week_start_day, now)),
        "cycle_seconds": homeschool.cycle_seconds or settings.DEFAULT_CYCLE_SECONDS,
        "students": student_payloads,
    }


def serialize_calendar(calendar: dict) -> dict:
    return {
        "timezone": calendar["timezone"],
        "today": calendar["today"].isoformat(),
        "today_start": calendar["today_start"].isoformat(),
        "today_end": calendar["today_end"].isoformat(),
        "week_start": calendar["week_start"].isoformat(),
        "week_end": calendar["week_end"].isoformat(),
    }
