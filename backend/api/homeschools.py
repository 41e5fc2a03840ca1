import logging
import secrets
import string
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config import settings
from db.database import get_db
from db.models import Homeschool, Person
from services.goal_progress_service import calendar_settings_for, resolve_calendar, serialize_calendar
from services.storage_service import get_homeschool, get_homeschool_by_public_id
from utils.datetime_utils import InvalidTimezone, ensure_utc, get_zone

router = APIRouter(prefix="/homeschools", tags=["homeschools"])
logger = logging.getLogger(__name__)

VALID_ROLES = {"parent", "tutor", "observer", "student"}
_PUBLIC_ID_ALPHABET = string.ascii_letters + string.digits


class HomeschoolCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    timezone: Optional[str] = None
    week_start_day: Optional[int] = Field(default=None, ge=0, le=6)
    allow_multiple_records_per_day: Optional[bool] = None


class DashboardSettingsUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    timezone: Optional[str] = None
    week_start_day: Optional[int] = Field(default=None, ge=0, le=6)
    allow_multiple_records_per_day: Optional[bool] = None
    cycle_seconds: Optional[int] = Field(default=None, ge=1, le=3600)


class PersonCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    role: str = "student"
    email: Optional[str] = None
    daily_work_hours_goal: Optional[float] = Field(default=None, gt=0, le=24)


def _homeschool_to_dict(homeschool: Homeschool) -> dict:
    calendar = calendar_settings_for(homeschool)
    return {
        "id": homeschool.id,
        "name": homeschool.name,
        "timezone": calendar.timezone,
        "week_start_day": calendar.week_start_day,
        "allow_multiple_records_per_day": calendar.allow_multiple_records_per_day,
        "cycle_seconds": homeschool.cycle_seconds or settings.DEFAULT_CYCLE_SECONDS,
        "public_dashboard_id": homeschool.public_dashboard_id,
    }


def _person_to_dict(person: Person) -> dict:
    return {
        "id": person.id,
        "homeschool_id": person.homeschool_id,
        "name": person.name,
        "role": person.role,
        "email": person.email,
        "daily_work_hours_goal": person.daily_work_hours_goal,
        "last_activity_at": ensure_utc(person.last_activity_at).isoformat() if person.last_activity_at else None,
    }


def _validated_timezone(tz_name: Optional[str]) -> Optional[str]:
    if tz_name is None:
        return None
    try:
        get_zone(tz_name)
    except InvalidTimezone as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return tz_name.strip()


def _require_homeschool(db: Session, homeschool_id: int) -> Homeschool:
    homeschool = get_homeschool(db, homeschool_id)
    if not homeschool:
        raise HTTPException(status_code=404, detail="Homeschool not found")
    return homeschool


def generate_public_dashboard_id(db: Session) -> str:
    length = settings.PUBLIC_DASHBOARD_ID_LENGTH
    while True:
        candidate = "".join(secrets.choice(_PUBLIC_ID_ALPHABET) for _ in range(length))
        if get_homeschool_by_public_id(db, candidate) is None:
            return candidate


@router.post("", status_code=201)
def create_homeschool(req: HomeschoolCreateRequest, db: Session = Depends(get_db)):
    homeschool = Homeschool(
        name=req.name.strip(),
        timezone=_validated_timezone(req.timezone),
        week_start_day=req.week_start_day,
        allow_multiple_records_per_day=req.allow_multiple_records_per_day,
    )
    db.add(homeschool)
    db.commit()
    db.refresh(homeschool)
    return _homeschool_to_dict(homeschool)


@router.get("/{homeschool_id}")
def get_homeschool_settings(homeschool_id: int, db: Session = Depends(get_db)):
    return _homeschool_to_dict(_require_homeschool(db, homeschool_id))


@router.put("/{homeschool_id}")
def update_homeschool_settings(
    homeschool_id: int,
    req: DashboardSettingsUpdate,
    db: Session = Depends(get_db),
):
    homeschool = _require_homeschool(db, homeschool_id)
    if req.name is not None:
        homeschool.name = req.name.strip()
    if req.timezone is not None:
        homeschool.timezone = _validated_timezone(req.timezone)
    if req.week_start_day is not None:
        homeschool.week_start_day = req.week_start_day
    if req.allow_multiple_records_per_day is not None:
        homeschool.allow_multiple_records_per_day = req.allow_multiple_records_per_day
    if req.cycle_seconds is not None:
        homeschool.cycle_seconds = req.cycle_seconds
    db.commit()
    db.refresh(homeschool)
    return _homeschool_to_dict(homeschool)


@router.get("/{homeschool_id}/calendar")
def get_calendar(homeschool_id: int, now: Optional[datetime] = None, db: Session = Depends(get_db)):
    calendar = calendar_settings_for(_require_homeschool(db, homeschool_id))
    return serialize_calendar(resolve_calendar(calendar.timezone, calendar.week_start_day, now))


@router.post("/{homeschool_id}/public-dashboard")
def enable_public_dashboard(homeschool_id: int, db: Session = Depends(get_db)):
    homeschool = _require_homeschool(db, homeschool_id)
    homeschool.public_dashboard_id = generate_public_dashboard_id(db)
    db.commit()
    db.refresh(homeschool)
    logger.info("Public dashboard enabled for homeschool %s", homeschool.id)
    return _homeschool_to_dict(homeschool)


@router.delete("/{homeschool_id}/public-dashboard")
def disable_public_dashboard(homeschool_id: int, db: Session = Depends(get_db)):
    homeschool = _require_homeschool(db, homeschool_id)
    homeschool.public_dashboard_id = None
    db.commit()
    db.refresh(homeschool)
    return _homeschool_to_dict(homeschool)


@router.get("/{homeschool_id}/people")
def list_people(homeschool_id: int, role: Optional[str] = None, db: Session = Depends(get_db)):
    _require_homeschool(db, homeschool_id)
    query = db.query(Person).filter(Person.homeschool_id == homeschool_id)
    if role:
        query = query.filter(Person.role == role)
    return [_person_to_dict(p) for p in query.order_by(Person.name.asc(), Person.id.asc()).all()]


@router.post("/{homeschool_id}/people", status_code=201)
def create_person(homeschool_id: int, req: PersonCreateRequest, db: Session = Depends(get_db)):
    _require_homeschool(db, homeschool_id)
    if req.role not in VALID_ROLES:
        raise HTTPException(status_code=422, detail=f"role must be one of {sorted(VALID_ROLES)}")
    person = Person(
        homeschool_id=homeschool_id,
        name=req.name.strip(),
        role=req.role,
        email=(req.email or "").strip() or None,
        daily_work_hours_goal=req.daily_work_hours_goal,
    )
    db.add(person)
    db.commit()
    db.refresh(person)
    return _person_to_dict(person)
