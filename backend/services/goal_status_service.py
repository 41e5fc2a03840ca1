"""Goal status classification, visibility gate and the shared display ordering.

Every goal listing (today's overview, the student view, the kiosk display)
goes through ``sort_goals_for_display`` so a goal never shows a different
status or position on two screens.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Sequence

from services.progress_service import ProgressSnapshot
from services.records import ActivityRecord, GoalRecord
from utils.datetime_utils import ensure_utc


class GoalStatus(str, Enum):
    PENDING = "pending"
    PROGRESS_WEEK = "progress-week"
    DONE_TODAY = "done-today"
    WEEKLY_COMPLETE = "weekly-complete"


STATUS_ORDER = {
    GoalStatus.PENDING: 1,
    GoalStatus.PROGRESS_WEEK: 2,
    GoalStatus.DONE_TODAY: 3,
    GoalStatus.WEEKLY_COMPLETE: 4,
}

COMPLETE_STATUSES = frozenset({GoalStatus.DONE_TODAY, GoalStatus.WEEKLY_COMPLETE})


def classify(goal: GoalRecord, snapshot: ProgressSnapshot) -> GoalStatus:
    if goal.times_per_week and snapshot.week_count >= goal.times_per_week:
        return GoalStatus.WEEKLY_COMPLETE
    if snapshot.today_count > 0:
        return GoalStatus.DONE_TODAY
    if snapshot.week_count > 0:
        return GoalStatus.PROGRESS_WEEK
    return GoalStatus.PENDING


def sort_key(status: GoalStatus) -> int:
    return STATUS_ORDER[GoalStatus(status)]


def display_name(goal: GoalRecord, activity: ActivityRecord | None) -> str:
    if goal.name:
        return goal.name
    return activity.name if activity else ""


def goal_sort_key(goal: GoalRecord, status: GoalStatus, activity: ActivityRecord | None) -> tuple[int, str]:
    return sort_key(status), display_name(goal, activity).casefold()


@dataclass(frozen=True)
class GoalBoardEntry:
    goal: GoalRecord
    activity: ActivityRecord | None
    snapshot: ProgressSnapshot
    status: GoalStatus

    @property
    def sort_key(self) -> tuple[int, str]:
        return goal_sort_key(self.goal, self.status, self.activity)


def sort_goals_for_display(entries: Iterable[GoalBoardEntry]) -> list[GoalBoardEntry]:
    # sorted() is stable, so equal keys keep their incoming (goal id) order
    return sorted(entries, key=lambda entry: entry.sort_key)


def is_goal_visible(goal: GoalRecord, student_id: int, now: datetime) -> bool:
    current = ensure_utc(now)
    if goal.start_date is not None and current < ensure_utc(goal.start_date):
        return False
    completion = goal.completions.get(student_id)
    if completion is not None and completion.completion_date is not None:
        if current > ensure_utc(completion.completion_date):
            return False
    return True


def visible_goals_for_student(goals: Sequence[GoalRecord], student_id: int, now: datetime) -> list[GoalRecord]:
    return [
        goal for goal in goals
        if student_id in goal.student_ids and is_goal_visible(goal, student_id, now)
    ]


def is_all_complete(statuses: Iterable[GoalStatus]) -> bool:
    statuses = list(statuses)
    return bool(statuses) and all(status in COMPLETE_STATUSES for status in statuses)
