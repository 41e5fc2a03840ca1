from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from db.database import get_db
from db.models import Activity, Goal
from services.storage_service import get_homeschool

router = APIRouter(prefix="/activities", tags=["activities"])


class ActivityCreateRequest(BaseModel):
    homeschool_id: int
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    subject: Optional[str] = None
    tracks_percentage: bool = False
    tracks_time: bool = False
    tracks_count: bool = False
    progress_count_name: Optional[str] = None


class ActivityUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    subject: Optional[str] = None
    tracks_percentage: Optional[bool] = None
    tracks_time: Optional[bool] = None
    tracks_count: Optional[bool] = None
    progress_count_name: Optional[str] = None


def _activity_to_dict(activity: Activity) -> dict:
    return {
        "id": activity.id,
        "homeschool_id": activity.homeschool_id,
        "name": activity.name,
        "description": activity.description,
        "subject": activity.subject,
        "progress_reporting_style": {
            "percentage": bool(activity.tracks_percentage),
            "time": bool(activity.tracks_time),
            "count": bool(activity.tracks_count),
        },
        "progress_count_name": activity.progress_count_name,
    }


def _get_activity(db: Session, activity_id: int) -> Activity:
    activity = db.query(Activity).filter(Activity.id == activity_id).first()
    if not activity:
        raise HTTPException(status_code=404, detail="Activity not found")
    return activity


@router.get("")
def list_activities(homeschool_id: int, db: Session = Depends(get_db)):
    rows = db.query(Activity).filter(Activity.homeschool_id == homeschool_id).order_by(Activity.name.asc()).all()
    return [_activity_to_dict(a) for a in rows]


@router.get("/{activity_id}")
def get_activity(activity_id: int, db: Session = Depends(get_db)):
    return _activity_to_dict(_get_activity(db, activity_id))


@router.post("", status_code=201)
def create_activity(req: ActivityCreateRequest, db: Session = Depends(get_db)):
    if get_homeschool(db, req.homeschool_id) is None:
        raise HTTPException(status_code=404, detail="Homeschool not found")
    if req.tracks_count and not (req.progress_count_name or "").strip():
        raise HTTPException(status_code=422, detail="progress_count_name is required when tracking counts")
    activity = Activity(
        homeschool_id=req.homeschool_id,
        name=req.name.strip(),
        description=req.description,
        subject=req.subject,
        tracks_percentage=req.tracks_percentage,
        tracks_time=req.tracks_time,
        tracks_count=req.tracks_count,
        progress_count_name=(req.progress_count_name or "").strip() or None,
    )
    db.add(activity)
    db.commit()
    db.refresh(activity)
    return _activity_to_dict(activity)


@router.put("/{activity_id}")
def update_activity(activity_id: int, req: ActivityUpdateRequest, db: Session = Depends(get_db)):
    activity = _get_activity(db, activity_id)
    if req.name is not None:
        activity.name = req.name.strip()
    if req.description is not None:
        activity.description = req.description
    if req.subject is not None:
        activity.subject = req.subject
    if req.tracks_percentage is not None:
        activity.tracks_percentage = req.tracks_percentage
    if req.tracks_time is not None:
        activity.tracks_time = req.tracks_time
    if req.tracks_count is not None:
        activity.tracks_count = req.tracks_count
    if req.progress_count_name is not None:
        activity.progress_count_name = req.progress_count_name.strip() or None
    db.commit()
    db.refresh(activity)
    return _activity_to_dict(activity)


@router.delete("/{activity_id}")
def delete_activity(activity_id: int, db: Session = Depends(get_db)):
    activity = _get_activity(db, activity_id)
    in_use = db.query(Goal).filter(Goal.activity_id == activity_id).count()
    if in_use:
        raise HTTPException(status_code=409, detail=f"Activity is used by {in_use} goal(s)")
    db.delete(activity)
    db.commit()
    return {"status": "deleted", "id": activity_id}
