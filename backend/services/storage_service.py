"""Filter-only reads against the SQLAlchemy store, returned as engine records."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from db.models import Activity, ActivityInstance, Goal, Homeschool, Person
from services.records import ActivityRecord, GoalRecord, InstanceRecord, PersonRecord


def list_instances(
    db: Session,
    *,
    goal_id: int | None = None,
    student_id: int | None = None,
    goal_id_in: Iterable[int] | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> list[InstanceRecord]:
    query = db.query(ActivityInstance)
    if goal_id is not None:
        query = query.filter(ActivityInstance.goal_id == goal_id)
    if student_id is not None:
        query = query.filter(ActivityInstance.student_id == student_id)
    if goal_id_in is not None:
        ids = list(goal_id_in)
        if not ids:
            return []
        query = query.filter(ActivityInstance.goal_id.in_(ids))
    if since is not None:
        query = query.filter(ActivityInstance.date >= since)
    if until is not None:
        query = query.filter(ActivityInstance.date <= until)
    rows = query.order_by(ActivityInstance.created_at.asc(), ActivityInstance.id.asc()).all()
    return [InstanceRecord.from_model(row) for row in rows]


def list_goals(db: Session, homeschool_id: int) -> list[GoalRecord]:
    rows = (
        db.query(Goal)
        .filter(Goal.homeschool_id == homeschool_id)
        .order_by(Goal.id.asc())
        .all()
    )
    goals = [GoalRecord.from_model(row) for row in rows]
    return [goal for goal in goals if goal.student_ids]


def list_activities(db: Session, homeschool_id: int) -> list[ActivityRecord]:
    rows = (
        db.query(Activity)
        .filter(Activity.homeschool_id == homeschool_id)
        .order_by(Activity.id.asc())
        .all()
    )
    return [ActivityRecord.from_model(row) for row in rows]


def list_people(db: Session, ids: Iterable[int]) -> list[PersonRecord]:
    wanted = list(dict.fromkeys(ids))
    if not wanted:
        return []
    rows = db.query(Person).filter(Person.id.in_(wanted)).all()
    by_id = {row.id: row for row in rows}
    return [PersonRecord.from_model(by_id[pid]) for pid in wanted if pid in by_id]


def list_students(db: Session, homeschool_id: int) -> list[PersonRecord]:
    rows = (
        db.query(Person)
        .filter(Person.homeschool_id == homeschool_id, Person.role == "student")
        .order_by(Person.name.asc(), Person.id.asc())
        .all()
    )
    return [PersonRecord.from_model(row) for row in rows]


def get_homeschool(db: Session, homeschool_id: int) -> Homeschool | None:
    return db.query(Homeschool).filter(Homeschool.id == homeschool_id).first()


def get_homeschool_by_public_id(db: Session, public_id: str) -> Homeschool | None:
    return db.query(Homeschool).filter(Homeschool.public_dashboard_id == public_id).first()
