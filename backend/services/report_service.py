from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from sqlalchemy.orm import Session

from db.models import Homeschool
from services.goal_progress_service import calendar_settings_for
from services.goal_status_service import display_name
from services.storage_service import list_activities, list_goals, list_instances, list_people
from utils.datetime_utils import (
    WEEK_END_PRECISION,
    date_range_bounds,
    day_bounds,
    ensure_utc,
    local_today,
    month_bounds,
    utcnow,
    week_bounds,
    year_bounds,
)
from utils.instant_conversion import instant_to_local_date_string, parse_date_string

VALID_RANGES = {"today", "week", "month", "year", "custom", "all"}


def resolve_report_window(
    range_name: str,
    tz_name: str,
    week_start_day: int,
    now: datetime,
    start_date: str | None = None,
    end_date: str | None = None,
) -> tuple[datetime | None, datetime | None]:
    """Return the ``[start, end)`` window of a report range; ``(None, None)`` for all time."""
    if range_name not in VALID_RANGES:
        raise ValueError(f"range must be one of {sorted(VALID_RANGES)}")
    today = local_today(tz_name, now)
    if range_name == "today":
        return day_bounds(today)
    if range_name == "week":
        start, last = week_bounds(today, week_start_day)
        return start, last + WEEK_END_PRECISION
    if range_name == "month":
        return month_bounds(today)
    if range_name == "year":
        return year_bounds(today)
    if range_name == "custom":
        if not start_date or not end_date:
            raise ValueError("custom range requires start_date and end_date")
        return date_range_bounds(parse_date_string(start_date), parse_date_string(end_date), tz_name)
    return None, None


def build_report(
    db: Session,
    homeschool: Homeschool,
    range_name: str = "week",
    student_id: int | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = ensure_utc(now) if now is not None else utcnow()
    calendar = calendar_settings_for(homeschool)
    window_start, window_end = resolve_report_window(
        range_name, calendar.timezone, calendar.week_start_day, now, start_date, end_date
    )

    goals = {goal.id: goal for goal in list_goals(db, homeschool.id)}
    activities = {activity.id: activity for activity in list_activities(db, homeschool.id)}
    instances = list_instances(db, goal_id_in=list(goals), student_id=student_id, since=window_start)
    if window_end is not None:
        instances = [inst for inst in instances if inst.date < window_end]
    instances.sort(key=lambda inst: inst.date, reverse=True)

    people = {person.id: person for person in list_people(db, [inst.student_id for inst in instances])}

    totals: dict[tuple[int, int], dict] = defaultdict(
        lambda: {"count": 0, "minutes": 0.0, "latest_percentage": None, "latest_count": None}
    )
    for inst in reversed(instances):
        bucket = totals[(inst.goal_id, inst.student_id)]
        bucket["count"] += 1
        bucket["minutes"] += inst.duration or 0
        percentage = inst.ending_percentage if inst.ending_percentage is not None else inst.percentage_completed
        if percentage is not None:
            bucket["latest_percentage"] = percentage
        if inst.count_completed is not None:
            bucket["latest_count"] = inst.count_completed

    summary = []
    for (goal_id, sid), bucket in totals.items():
        goal = goals[goal_id]
        activity = activities.get(goal.activity_id)
        person = people.get(sid)
        summary.append({
            "goal_id": goal_id,
            "goal_name": display_name(goal, activity),
            "student_id": sid,
            "student_name": person.name if person else None,
            "times_per_week": goal.times_per_week,
            **bucket,
        })
    summary.sort(key=lambda row: ((row["student_name"] or "").casefold(), row["goal_name"].casefold()))

    history = [
        {
            "id": inst.id,
            "goal_id": inst.goal_id,
            "student_id": inst.student_id,
            "date": instant_to_local_date_string(inst.date, calendar.timezone),
            "duration": inst.duration,
            "percentage": inst.ending_percentage if inst.ending_percentage is not None else inst.percentage_completed,
            "count_completed": inst.count_completed,
            "description": inst.description,
        }
        for inst in instances
    ]

    return {
        "range": range_name,
        "timezone": calendar.timezone,
        "start": window_start.isoformat() if window_start else None,
        "end": window_end.isoformat() if window_end else None,
        "summary": summary,
        "history": history,
    }
