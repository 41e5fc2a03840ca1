"""Transient, request-scoped copies of stored rows handed to the progress engine."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from db.models import Activity, ActivityInstance, Goal, Person
from utils.datetime_utils import ensure_utc


def _parse_iso_datetime(raw: Any) -> datetime | None:
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return ensure_utc(datetime.fromisoformat(raw.strip().replace("Z", "+00:00")))
    except ValueError:
        return None


def parse_student_ids(raw: str | None) -> tuple[int, ...]:
    try:
        values = json.loads(raw or "[]")
    except (TypeError, json.JSONDecodeError):
        return ()
    if not isinstance(values, list):
        return ()
    ids: list[int] = []
    for value in values:
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            continue
    return tuple(dict.fromkeys(ids))


@dataclass(frozen=True)
class StudentCompletion:
    completion_date: datetime | None = None
    grade: str | None = None


def parse_completions(raw: str | None) -> dict[int, StudentCompletion]:
    try:
        payload = json.loads(raw or "{}")
    except (TypeError, json.JSONDecodeError):
        return {}
    if not isinstance(payload, dict):
        return {}
    out: dict[int, StudentCompletion] = {}
    for key, value in payload.items():
        if not isinstance(value, dict):
            continue
        try:
            student_id = int(key)
        except (TypeError, ValueError):
            continue
        grade = value.get("grade")
        out[student_id] = StudentCompletion(
            completion_date=_parse_iso_datetime(value.get("completion_date")),
            grade=str(grade) if grade not in (None, "") else None,
        )
    return out


def dump_completions(completions: dict[int, StudentCompletion]) -> str:
    return json.dumps(
        {
            str(student_id): {
                "completion_date": c.completion_date.isoformat() if c.completion_date else None,
                "grade": c.grade,
            }
            for student_id, c in sorted(completions.items())
        }
    )


@dataclass(frozen=True)
class ActivityRecord:
    id: int
    name: str
    tracks_percentage: bool = False
    tracks_time: bool = False
    tracks_count: bool = False
    progress_count_name: str | None = None
    subject: str | None = None

    @classmethod
    def from_model(cls, row: Activity) -> "ActivityRecord":
        return cls(
            id=row.id,
            name=row.name or "",
            tracks_percentage=bool(row.tracks_percentage),
            tracks_time=bool(row.tracks_time),
            tracks_count=bool(row.tracks_count),
            progress_count_name=row.progress_count_name,
            subject=row.subject,
        )


@dataclass(frozen=True)
class GoalRecord:
    id: int
    activity_id: int
    student_ids: tuple[int, ...]
    name: str | None = None
    times_per_week: int | None = None
    minutes_per_session: float | None = None
    daily_percentage_increase: float | None = None
    percentage_goal: float | None = None
    progress_count: int | None = None
    start_date: datetime | None = None
    completions: dict[int, StudentCompletion] = field(default_factory=dict)

    @classmethod
    def from_model(cls, row: Goal) -> "GoalRecord":
        return cls(
            id=row.id,
            activity_id=row.activity_id,
            student_ids=parse_student_ids(row.student_ids_json),
            name=(row.name or "").strip() or None,
            times_per_week=row.times_per_week,
            minutes_per_session=row.minutes_per_session,
            daily_percentage_increase=row.daily_percentage_increase,
            percentage_goal=row.percentage_goal,
            progress_count=row.progress_count,
            start_date=ensure_utc(row.start_date),
            completions=parse_completions(row.completions_json),
        )


@dataclass(frozen=True)
class InstanceRecord:
    id: int | None
    goal_id: int
    student_id: int
    date: datetime
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: float | None = None
    starting_percentage: float | None = None
    ending_percentage: float | None = None
    percentage_completed: float | None = None
    count_completed: int | None = None
    description: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, row: ActivityInstance) -> "InstanceRecord":
        return cls(
            id=row.id,
            goal_id=row.goal_id,
            student_id=row.student_id,
            date=ensure_utc(row.date),
            start_time=ensure_utc(row.start_time),
            end_time=ensure_utc(row.end_time),
            duration=row.duration,
            starting_percentage=row.starting_percentage,
            ending_percentage=row.ending_percentage,
            percentage_completed=row.percentage_completed,
            count_completed=row.count_completed,
            description=row.description,
            created_at=ensure_utc(row.created_at),
        )


@dataclass(frozen=True)
class PersonRecord:
    id: int
    name: str
    role: str = "student"
    daily_work_hours_goal: float | None = None
    last_activity_at: datetime | None = None

    @classmethod
    def from_model(cls, row: Person) -> "PersonRecord":
        return cls(
            id=row.id,
            name=row.name or "",
            role=row.role or "student",
            daily_work_hours_goal=row.daily_work_hours_goal,
            last_activity_at=ensure_utc(row.last_activity_at),
        )
