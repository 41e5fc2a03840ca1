import json
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from db.database import get_db
from db.models import Activity, Goal, Person
from services.records import (
    StudentCompletion,
    dump_completions,
    parse_completions,
    parse_student_ids,
)
from services.storage_service import get_homeschool
from services.goal_progress_service import calendar_settings_for, to_canonical_instant
from utils.datetime_utils import ensure_utc

router = APIRouter(prefix="/goals", tags=["goals"])


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None


def _goal_to_dict(goal: Goal) -> dict:
    completions = parse_completions(goal.completions_json)
    return {
        "id": goal.id,
        "homeschool_id": goal.homeschool_id,
        "activity_id": goal.activity_id,
        "name": goal.name,
        "student_ids": list(parse_student_ids(goal.student_ids_json)),
        "times_per_week": goal.times_per_week,
        "minutes_per_session": goal.minutes_per_session,
        "daily_percentage_increase": goal.daily_percentage_increase,
        "percentage_goal": goal.percentage_goal,
        "progress_count": goal.progress_count,
        "start_date": _iso(goal.start_date),
        "deadline": _iso(goal.deadline),
        "times_done": goal.times_done,
        "completions": {
            str(student_id): {"completion_date": _iso(c.completion_date), "grade": c.grade}
            for student_id, c in completions.items()
        },
        "created_at": _iso(goal.created_at),
        "updated_at": _iso(goal.updated_at),
    }


class GoalCreateRequest(BaseModel):
    homeschool_id: int
    activity_id: int
    student_ids: list[int] = Field(min_length=1)
    name: Optional[str] = Field(default=None, max_length=300)
    times_per_week: Optional[int] = Field(default=None, gt=0)
    minutes_per_session: Optional[float] = Field(default=None, gt=0)
    daily_percentage_increase: Optional[float] = Field(default=None, ge=0)
    percentage_goal: Optional[float] = Field(default=None, ge=0, le=100)
    progress_count: Optional[int] = Field(default=None, gt=0)
    start_date: Optional[date] = None
    deadline: Optional[date] = None
    track_times_done: bool = False


class GoalUpdateRequest(BaseModel):
    student_ids: Optional[list[int]] = Field(default=None, min_length=1)
    name: Optional[str] = Field(default=None, max_length=300)
    times_per_week: Optional[int] = Field(default=None, gt=0)
    minutes_per_session: Optional[float] = Field(default=None, gt=0)
    daily_percentage_increase: Optional[float] = Field(default=None, ge=0)
    percentage_goal: Optional[float] = Field(default=None, ge=0, le=100)
    progress_count: Optional[int] = Field(default=None, gt=0)
    start_date: Optional[date] = None
    deadline: Optional[date] = None


class CompletionRequest(BaseModel):
    completion_date: date
    grade: Optional[str] = Field(default=None, max_length=20)


def _get_goal(db: Session, goal_id: int) -> Goal:
    goal = db.query(Goal).filter(Goal.id == goal_id).first()
    if not goal:
        raise HTTPException(status_code=404, detail="Goal not found")
    return goal


def _validate_students(db: Session, homeschool_id: int, student_ids: list[int]) -> list[int]:
    wanted = list(dict.fromkeys(student_ids))
    found = {
        p.id for p in db.query(Person).filter(
            Person.id.in_(wanted), Person.homeschool_id == homeschool_id, Person.role == "student"
        ).all()
    }
    missing = [sid for sid in wanted if sid not in found]
    if missing:
        raise HTTPException(status_code=422, detail=f"Unknown students for this homeschool: {missing}")
    return wanted


def _local_day_start(db: Session, homeschool_id: int, value: Optional[date]) -> Optional[datetime]:
    if value is None:
        return None
    calendar = calendar_settings_for(get_homeschool(db, homeschool_id))
    return to_canonical_instant(value.isoformat(), None, calendar.timezone)


@router.get("")
def list_goals(
    homeschool_id: int,
    student_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    goals = db.query(Goal).filter(Goal.homeschool_id == homeschool_id).order_by(Goal.id.asc()).all()
    if student_id is not None:
        goals = [g for g in goals if student_id in parse_student_ids(g.student_ids_json)]
    return [_goal_to_dict(g) for g in goals]


@router.get("/{goal_id}")
def get_goal(goal_id: int, db: Session = Depends(get_db)):
    return _goal_to_dict(_get_goal(db, goal_id))


@router.post("", status_code=201)
def create_goal(req: GoalCreateRequest, db: Session = Depends(get_db)):
    if get_homeschool(db, req.homeschool_id) is None:
        raise HTTPException(status_code=404, detail="Homeschool not found")
    activity = db.query(Activity).filter(
        Activity.id == req.activity_id, Activity.homeschool_id == req.homeschool_id
    ).first()
    if not activity:
        raise HTTPException(status_code=422, detail="activity_id does not belong to this homeschool")
    if activity.tracks_time and not req.minutes_per_session:
        raise HTTPException(status_code=422, detail="minutes_per_session is required for time-tracked activities")

    student_ids = _validate_students(db, req.homeschool_id, req.student_ids)
    goal = Goal(
        homeschool_id=req.homeschool_id,
        activity_id=req.activity_id,
        name=(req.name or "").strip() or None,
        student_ids_json=json.dumps(student_ids),
        times_per_week=req.times_per_week,
        minutes_per_session=req.minutes_per_session,
        daily_percentage_increase=req.daily_percentage_increase,
        percentage_goal=req.percentage_goal,
        progress_count=req.progress_count,
        start_date=_local_day_start(db, req.homeschool_id, req.start_date),
        deadline=_local_day_start(db, req.homeschool_id, req.deadline),
        times_done=0 if req.track_times_done else None,
    )
    db.add(goal)
    db.commit()
    db.refresh(goal)
    return _goal_to_dict(goal)


@router.put("/{goal_id}")
def update_goal(goal_id: int, req: GoalUpdateRequest, db: Session = Depends(get_db)):
    goal = _get_goal(db, goal_id)

    if req.student_ids is not None:
        goal.student_ids_json = json.dumps(_validate_students(db, goal.homeschool_id, req.student_ids))
    if req.name is not None:
        goal.name = req.name.strip() or None
    if req.times_per_week is not None:
        goal.times_per_week = req.times_per_week
    if req.minutes_per_session is not None:
        goal.minutes_per_session = req.minutes_per_session
    if req.daily_percentage_increase is not None:
        goal.daily_percentage_increase = req.daily_percentage_increase
    if req.percentage_goal is not None:
        goal.percentage_goal = req.percentage_goal
    if req.progress_count is not None:
        goal.progress_count = req.progress_count
    if req.start_date is not None:
        goal.start_date = _local_day_start(db, goal.homeschool_id, req.start_date)
    if req.deadline is not None:
        goal.deadline = _local_day_start(db, goal.homeschool_id, req.deadline)

    goal.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(goal)
    return _goal_to_dict(goal)


@router.post("/{goal_id}/completions/{student_id}")
def complete_goal_for_student(
    goal_id: int,
    student_id: int,
    req: CompletionRequest,
    db: Session = Depends(get_db),
):
    goal = _get_goal(db, goal_id)
    if student_id not in parse_student_ids(goal.student_ids_json):
        raise HTTPException(status_code=404, detail="Student is not assigned to this goal")
    completions = parse_completions(goal.completions_json)
    completions[student_id] = StudentCompletion(
        completion_date=_local_day_start(db, goal.homeschool_id, req.completion_date),
        grade=(req.grade or "").strip() or None,
    )
    goal.completions_json = dump_completions(completions)
    goal.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(goal)
    return _goal_to_dict(goal)


@router.delete("/{goal_id}/completions/{student_id}")
def reopen_goal_for_student(goal_id: int, student_id: int, db: Session = Depends(get_db)):
    goal = _get_goal(db, goal_id)
    completions = parse_completions(goal.completions_json)
    completions.pop(student_id, None)
    goal.completions_json = dump_completions(completions)
    goal.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(goal)
    return _goal_to_dict(goal)


@router.delete("/{goal_id}")
def delete_goal(goal_id: int, db: Session = Depends(get_db)):
    goal = _get_goal(db, goal_id)
    db.delete(goal)
    db.commit()
    return {"status": "deleted", "id": goal_id}
