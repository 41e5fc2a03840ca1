from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from db.database import get_db
from db.models import Person
from services.goal_progress_service import build_homeschool_overview, build_student_view
from services.records import PersonRecord
from services.storage_service import get_homeschool, get_homeschool_by_public_id

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/public/{public_id}")
def get_public_dashboard(public_id: str, now: Optional[datetime] = None, db: Session = Depends(get_db)):
    """Kiosk display: every student's board, rotated client-side every ``cycle_seconds``."""
    homeschool = get_homeschool_by_public_id(db, public_id.strip())
    if not homeschool:
        raise HTTPException(status_code=404, detail="Public dashboard not found or has been disabled")
    return build_homeschool_overview(db, homeschool, now)


@router.get("/{homeschool_id}")
def get_today_overview(homeschool_id: int, now: Optional[datetime] = None, db: Session = Depends(get_db)):
    homeschool = get_homeschool(db, homeschool_id)
    if not homeschool:
        raise HTTPException(status_code=404, detail="Homeschool not found")
    return build_homeschool_overview(db, homeschool, now)


@router.get("/{homeschool_id}/students/{student_id}")
def get_student_dashboard(
    homeschool_id: int,
    student_id: int,
    now: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    homeschool = get_homeschool(db, homeschool_id)
    if not homeschool:
        raise HTTPException(status_code=404, detail="Homeschool not found")
    student = db.query(Person).filter(
        Person.id == student_id,
        Person.homeschool_id == homeschool_id,
        Person.role == "student",
    ).first()
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return build_student_view(db, homeschool, PersonRecord.from_model(student), now)
