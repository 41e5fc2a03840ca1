from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from db.database import get_db
from services.report_service import build_report
from services.storage_service import get_homeschool

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/{homeschool_id}")
def get_report(
    homeschool_id: int,
    range: str = "week",
    student_id: Optional[int] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    now: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    homeschool = get_homeschool(db, homeschool_id)
    if not homeschool:
        raise HTTPException(status_code=404, detail="Homeschool not found")
    try:
        return build_report(
            db,
            homeschool,
            range_name=range,
            student_id=student_id,
            start_date=start_date,
            end_date=end_date,
            now=now,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
