import logging
from dataclasses import fields
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.database import get_db
from db.models import ActivityInstance, Goal
from services.goal_progress_service import calendar_settings_for, find_duplicate_for_day
from services.instance_service import (
    InstanceInput,
    RecordConflict,
    delete_activity_instance,
    record_activity_instance,
    update_activity_instance,
)
from services.storage_service import get_homeschool, list_instances
from utils.datetime_utils import ensure_utc
from utils.instant_conversion import instant_to_local_date_string, parse_date_string

router = APIRouter(prefix="/instances", tags=["instances"])
logger = logging.getLogger(__name__)

SAVE_FAILED_DETAIL = "Could not save the activity record. Please try again."


class InstanceFields(BaseModel):
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration: Optional[float] = Field(default=None, ge=0)
    starting_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    ending_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    percentage_completed: Optional[float] = Field(default=None, ge=0, le=100)
    count_completed: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None

    def to_input(self) -> InstanceInput:
        data = self.model_dump()
        return InstanceInput(**{f.name: data[f.name] for f in fields(InstanceInput)})


class InstanceCreateRequest(InstanceFields):
    goal_id: int
    student_id: int
    created_by: Optional[str] = None


def _instance_to_dict(instance: ActivityInstance, tz_name: str) -> dict:
    def _iso(value):
        value = ensure_utc(value)
        return value.isoformat() if value else None

    return {
        "id": instance.id,
        "goal_id": instance.goal_id,
        "student_id": instance.student_id,
        "description": instance.description,
        "date": _iso(instance.date),
        "local_date": instant_to_local_date_string(instance.date, tz_name),
        "start_time": _iso(instance.start_time),
        "end_time": _iso(instance.end_time),
        "duration": instance.duration,
        "starting_percentage": instance.starting_percentage,
        "ending_percentage": instance.ending_percentage,
        "percentage_completed": instance.percentage_completed,
        "count_completed": instance.count_completed,
        "created_by": instance.created_by,
        "created_at": _iso(instance.created_at),
    }


def _get_goal(db: Session, goal_id: int) -> Goal:
    goal = db.query(Goal).filter(Goal.id == goal_id).first()
    if not goal:
        raise HTTPException(status_code=404, detail="Goal not found")
    return goal


def _get_instance(db: Session, instance_id: int) -> ActivityInstance:
    instance = db.query(ActivityInstance).filter(ActivityInstance.id == instance_id).first()
    if not instance:
        raise HTTPException(status_code=404, detail="Activity record not found")
    return instance


@router.get("")
def get_instances(
    goal_id: Optional[int] = None,
    student_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    if goal_id is None and student_id is None:
        raise HTTPException(status_code=422, detail="goal_id or student_id is required")
    query = db.query(ActivityInstance)
    if goal_id is not None:
        query = query.filter(ActivityInstance.goal_id == goal_id)
    if student_id is not None:
        query = query.filter(ActivityInstance.student_id == student_id)
    rows = query.order_by(ActivityInstance.date.desc(), ActivityInstance.id.desc()).all()
    out = []
    for row in rows:
        calendar = calendar_settings_for(row.goal.homeschool)
        out.append(_instance_to_dict(row, calendar.timezone))
    return out


@router.get("/existing")
def get_existing_for_day(
    goal_id: int,
    student_id: int,
    date: str = Query(pattern=r"^\d{4}-\d{2}-\d{2}$"),
    request_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """Record the form should edit instead of creating a new one, if any.

    ``request_id`` is echoed back so a client that changed its selection can
    drop responses to earlier lookups.
    """
    goal = _get_goal(db, goal_id)
    calendar = calendar_settings_for(goal.homeschool)
    if calendar.allow_multiple_records_per_day:
        return {"request_id": request_id, "allow_multiple_records_per_day": True, "existing": None}
    try:
        parse_date_string(date)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    candidates = list_instances(db, goal_id=goal_id, student_id=student_id)
    existing = find_duplicate_for_day(goal_id, student_id, date, calendar.timezone, candidates)
    payload = None
    if existing is not None:
        payload = _instance_to_dict(_get_instance(db, existing.id), calendar.timezone)
    return {"request_id": request_id, "allow_multiple_records_per_day": False, "existing": payload}


@router.post("")
def create_instance(req: InstanceCreateRequest, db: Session = Depends(get_db)):
    goal = _get_goal(db, req.goal_id)
    homeschool = get_homeschool(db, goal.homeschool_id)
    try:
        outcome = record_activity_instance(
            db,
            homeschool,
            goal,
            req.student_id,
            req.to_input(),
            created_by=req.created_by,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except (SQLAlchemyError, LookupError) as exc:
        logger.error(f"Saving activity record failed: {exc}")
        raise HTTPException(status_code=500, detail=SAVE_FAILED_DETAIL)
    calendar = calendar_settings_for(homeschool)
    return {
        "created": outcome.created,
        "instance": _instance_to_dict(outcome.instance, calendar.timezone),
    }


@router.put("/{instance_id}")
def edit_instance(instance_id: int, req: InstanceFields, db: Session = Depends(get_db)):
    instance = _get_instance(db, instance_id)
    homeschool = instance.goal.homeschool
    try:
        instance = update_activity_instance(db, homeschool, instance, req.to_input())
    except RecordConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except SQLAlchemyError as exc:
        logger.error(f"Updating activity record failed: {exc}")
        raise HTTPException(status_code=500, detail=SAVE_FAILED_DETAIL)
    return _instance_to_dict(instance, calendar_settings_for(homeschool).timezone)


@router.delete("/{instance_id}")
def delete_instance(instance_id: int, db: Session = Depends(get_db)):
    instance = _get_instance(db, instance_id)
    try:
        delete_activity_instance(db, instance)
    except SQLAlchemyError as exc:
        logger.error(f"Deleting activity record failed: {exc}")
        raise HTTPException(status_code=500, detail="Could not delete the activity record. Please try again.")
    return {"status": "deleted", "id": instance_id}
