from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from services.records import GoalRecord, InstanceRecord
from utils.datetime_utils import day_bounds, ensure_utc, local_today, week_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressSnapshot:
    today_count: int = 0
    week_count: int = 0
    today_minutes: float = 0.0
    week_minutes: float = 0.0
    latest_percentage: float | None = None
    latest_count: int | None = None
    total_count: int = 0
    target: int = 0
    today_instance: InstanceRecord | None = None

    def to_dict(self) -> dict:
        return {
            "today_count": self.today_count,
            "week_count": self.week_count,
            "today_minutes": self.today_minutes,
            "week_minutes": self.week_minutes,
            "latest_percentage": self.latest_percentage,
            "latest_count": self.latest_count,
            "total_count": self.total_count,
            "target": self.target,
            "today_instance_id": self.today_instance.id if self.today_instance else None,
        }


def _reported_percentage(instance: InstanceRecord) -> float | None:
    if instance.ending_percentage is not None:
        return instance.ending_percentage
    return instance.percentage_completed


def aggregate(
    goal: GoalRecord,
    student_id: int,
    instances: Sequence[InstanceRecord],
    now: datetime,
    tz_name: str,
    week_start_day: int,
) -> ProgressSnapshot:
    """Bucket a student's instances for one goal into today and this week."""
    if not goal.student_ids:
        logger.debug("Goal %s has no students; skipping aggregation", goal.id)
        return ProgressSnapshot()

    today = local_today(tz_name, now)
    today_start, today_end = day_bounds(today)
    week_start, week_end = week_bounds(today, week_start_day)

    mine = [
        (position, inst)
        for position, inst in enumerate(instances)
        if inst.goal_id == goal.id and inst.student_id == student_id
    ]

    today_items: list[InstanceRecord] = []
    week_items: list[tuple[int, InstanceRecord]] = []
    for position, inst in mine:
        when = ensure_utc(inst.date)
        if today_start <= when < today_end:
            today_items.append(inst)
        if week_start <= when <= week_end:
            week_items.append((position, inst))

    latest_percentage = None
    latest_count = None
    if week_items:
        _, latest = max(week_items, key=lambda item: (ensure_utc(item[1].date), item[0]))
        latest_percentage = _reported_percentage(latest)
        latest_count = latest.count_completed

    return ProgressSnapshot(
        today_count=len(today_items),
        week_count=len(week_items),
        today_minutes=float(sum(inst.duration or 0 for inst in today_items)),
        week_minutes=float(sum(inst.duration or 0 for _, inst in week_items)),
        latest_percentage=latest_percentage,
        latest_count=latest_count,
        total_count=len(mine),
        target=goal.times_per_week or 0,
        today_instance=today_items[0] if today_items else None,
    )
