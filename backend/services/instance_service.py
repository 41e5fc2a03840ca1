from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import Activity, ActivityInstance, Goal, Homeschool, Person
from services.goal_progress_service import (
    calendar_settings_for,
    find_duplicate_for_day,
    to_canonical_instant,
)
from services.records import InstanceRecord, parse_student_ids
from services.storage_service import list_instances
from utils.instant_conversion import instant_to_local_date_string

logger = logging.getLogger(__name__)


@dataclass
class InstanceInput:
    date: str
    start_time: str | None = None
    end_time: str | None = None
    duration: float | None = None
    starting_percentage: float | None = None
    ending_percentage: float | None = None
    percentage_completed: float | None = None
    count_completed: int | None = None
    description: str | None = None


@dataclass(frozen=True)
class RecordOutcome:
    instance: ActivityInstance
    created: bool


def _instance_fields(activity: Activity | None, data: InstanceInput, tz_name: str) -> dict:
    fields: dict = {
        "date": to_canonical_instant(data.date, None, tz_name),
        "description": (data.description or "").strip() or None,
        "start_time": None,
        "end_time": None,
        "duration": None,
        "starting_percentage": None,
        "ending_percentage": None,
        "percentage_completed": None,
        "count_completed": None,
    }
    if data.start_time:
        fields["start_time"] = to_canonical_instant(data.date, data.start_time, tz_name)
    if data.end_time:
        fields["end_time"] = to_canonical_instant(data.date, data.end_time, tz_name)

    duration = data.duration
    if fields["start_time"] and fields["end_time"]:
        elapsed = fields["end_time"] - fields["start_time"]
        if elapsed.total_seconds() < 0:
            raise ValueError("end_time must not be before start_time")
        duration = round(elapsed.total_seconds() / 60)
    if duration:
        if duration < 0:
            raise ValueError("duration must not be negative")
        fields["duration"] = float(duration)

    if activity is not None and activity.tracks_percentage:
        fields["starting_percentage"] = data.starting_percentage
        fields["ending_percentage"] = data.ending_percentage
        fields["percentage_completed"] = data.percentage_completed
    if activity is not None and activity.tracks_count:
        fields["count_completed"] = data.count_completed
    return fields


class RecordConflict(Exception):
    """Another record already occupies the goal/student/day under the one-per-day policy."""

    def __init__(self, instance_id: int, existing_id: int, local_date: str):
        self.instance_id = instance_id
        self.existing_id = existing_id
        self.local_date = local_date
        super().__init__(
            f"Activity record {existing_id} already exists on {local_date}; "
            f"record {instance_id} cannot be moved there"
        )


def _existing_for_day(
    db: Session,
    goal_id: int,
    student_id: int,
    date_string: str,
    tz_name: str,
    exclude_id: int | None = None,
) -> InstanceRecord | None:
    candidates = [
        inst for inst in list_instances(db, goal_id=goal_id, student_id=student_id)
        if exclude_id is None or inst.id != exclude_id
    ]
    return find_duplicate_for_day(goal_id, student_id, date_string, tz_name, candidates)


def _touch_student(db: Session, student_id: int, when: datetime) -> None:
    student = db.query(Person).filter(Person.id == student_id).first()
    if student is not None:
        student.last_activity_at = when


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def record_activity_instance(
    db: Session,
    homeschool: Homeschool,
    goal: Goal,
    student_id: int,
    data: InstanceInput,
    created_by: str | None = None,
) -> RecordOutcome:
    """Insert a new instance, or update today's record when only one per day is allowed."""
    if student_id not in parse_student_ids(goal.student_ids_json):
        raise ValueError(f"Student {student_id} is not assigned to goal {goal.id}")

    calendar = calendar_settings_for(homeschool)
    fields = _instance_fields(goal.activity, data, calendar.timezone)
    now = datetime.now(timezone.utc)

    existing: InstanceRecord | None = None
    if not calendar.allow_multiple_records_per_day:
        existing = _existing_for_day(db, goal.id, student_id, data.date, calendar.timezone)

    if existing is None:
        row = ActivityInstance(goal_id=goal.id, student_id=student_id, created_by=created_by, **fields)
        db.add(row)
        try:
            db.flush()
        except SQLAlchemyError:
            db.rollback()
            raise
        if not calendar.allow_multiple_records_per_day:
            # Another writer may have committed between the lookup and the flush.
            existing = _existing_for_day(
                db, goal.id, student_id, data.date, calendar.timezone, exclude_id=row.id
            )
            if existing is not None:
                logger.warning(
                    "Record for goal %s, student %s on %s landed concurrently; updating %s instead",
                    goal.id, student_id, data.date, existing.id,
                )
                db.delete(row)
                db.flush()

    if existing is not None:
        row = db.query(ActivityInstance).filter(ActivityInstance.id == existing.id).first()
        if row is None:
            raise LookupError(f"Activity instance {existing.id} disappeared before update")
        for key, value in fields.items():
            setattr(row, key, value)
        row.updated_at = now
        _touch_student(db, student_id, now)
        _commit(db)
        db.refresh(row)
        logger.info(
            "Updated existing record %s for goal %s, student %s on %s",
            row.id, goal.id, student_id, data.date,
        )
        return RecordOutcome(instance=row, created=False)

    if goal.times_done is not None:
        goal.times_done = goal.times_done + 1
    _touch_student(db, student_id, now)
    _commit(db)
    db.refresh(row)
    logger.info("Recorded activity %s for goal %s, student %s on %s", row.id, goal.id, student_id, data.date)
    return RecordOutcome(instance=row, created=True)


def update_activity_instance(
    db: Session,
    homeschool: Homeschool,
    instance: ActivityInstance,
    data: InstanceInput,
) -> ActivityInstance:
    """Apply an edit; under the one-per-day policy a record cannot move onto an occupied day."""
    calendar = calendar_settings_for(homeschool)
    fields = _instance_fields(instance.goal.activity, data, calendar.timezone)

    if not calendar.allow_multiple_records_per_day:
        current_day = instant_to_local_date_string(instance.date, calendar.timezone)
        new_day = instant_to_local_date_string(fields["date"], calendar.timezone)
        if new_day != current_day:
            other = _existing_for_day(
                db, instance.goal_id, instance.student_id, new_day, calendar.timezone, exclude_id=instance.id
            )
            if other is not None:
                raise RecordConflict(instance.id, other.id, new_day)

    for key, value in fields.items():
        setattr(instance, key, value)
    instance.updated_at = datetime.now(timezone.utc)
    _commit(db)
    db.refresh(instance)
    return instance


def delete_activity_instance(db: Session, instance: ActivityInstance) -> None:
    db.delete(instance)
    _commit(db)
