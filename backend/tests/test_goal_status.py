from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.goal_progress_service import (  # noqa: E402
    CalendarSettings,
    build_goal_board,
    classify_goal,
    compute_progress,
)
from services.goal_status_service import (  # noqa: E402
    GoalStatus,
    classify,
    is_all_complete,
    is_goal_visible,
    sort_key,
)
from services.progress_service import ProgressSnapshot, aggregate  # noqa: E402
from services.records import ActivityRecord, GoalRecord, InstanceRecord, StudentCompletion  # noqa: E402

NY = "America/New_York"
STUDENT = 7


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _goal(goal_id=1, times_per_week=3, **kwargs) -> GoalRecord:
    kwargs.setdefault("student_ids", (STUDENT,))
    return GoalRecord(id=goal_id, activity_id=goal_id, times_per_week=times_per_week, **kwargs)


def _instance(instance_id, when, goal_id=1, student_id=STUDENT, **kwargs) -> InstanceRecord:
    return InstanceRecord(id=instance_id, goal_id=goal_id, student_id=student_id, date=when, **kwargs)


def test_three_sessions_by_thursday_complete_the_week():
    goal = _goal(times_per_week=3)
    instances = [
        _instance(1, _utc(2024, 1, 8, 5), duration=30),
        _instance(2, _utc(2024, 1, 9, 5), duration=30),
        _instance(3, _utc(2024, 1, 10, 5), duration=25),
    ]
    snapshot = compute_progress(goal, STUDENT, instances, _utc(2024, 1, 11, 17), NY, 1)
    assert snapshot.week_count == 3
    assert snapshot.today_count == 0
    assert snapshot.week_minutes == 85
    assert classify(goal, snapshot) is GoalStatus.WEEKLY_COMPLETE


def test_week_end_is_inclusive_to_the_millisecond():
    goal = _goal(times_per_week=5)
    now = _utc(2024, 1, 10, 17)
    week_end = _utc(2024, 1, 15, 4, 59, 59, 999000)
    on_edge = aggregate(goal, STUDENT, [_instance(1, week_end)], now, NY, 1)
    past_edge = aggregate(goal, STUDENT, [_instance(1, week_end + timedelta(milliseconds=1))], now, NY, 1)
    assert on_edge.week_count == 1
    assert past_edge.week_count == 0


def test_today_bucket_uses_local_day():
    goal = _goal()
    now = _utc(2024, 1, 15, 4, 30)  # Sunday 23:30 in New York
    snapshot = aggregate(goal, STUDENT, [_instance(1, _utc(2024, 1, 14, 5), duration=20)], now, NY, 1)
    assert snapshot.today_count == 1
    assert snapshot.today_minutes == 20
    assert snapshot.today_instance.id == 1


def test_other_students_and_goals_are_ignored():
    goal = _goal()
    now = _utc(2024, 1, 10, 17)
    instances = [
        _instance(1, _utc(2024, 1, 10, 5), student_id=99),
        _instance(2, _utc(2024, 1, 10, 5), goal_id=2),
    ]
    snapshot = aggregate(goal, STUDENT, instances, now, NY, 1)
    assert snapshot.total_count == 0
    assert classify(goal, snapshot) is GoalStatus.PENDING


def test_latest_percentage_prefers_ending_percentage_of_latest_record():
    goal = _goal(times_per_week=5)
    now = _utc(2024, 1, 12, 17)
    instances = [
        _instance(1, _utc(2024, 1, 11, 5), ending_percentage=70, percentage_completed=5),
        _instance(2, _utc(2024, 1, 9, 5), ending_percentage=40),
        _instance(3, _utc(2024, 1, 10, 5), percentage_completed=55),
    ]
    snapshot = aggregate(goal, STUDENT, instances, now, NY, 1)
    assert snapshot.latest_percentage == 70
    only_completed = aggregate(goal, STUDENT, instances[2:], now, NY, 1)
    assert only_completed.latest_percentage == 55


def test_goal_without_students_yields_empty_snapshot():
    goal = _goal(student_ids=())
    snapshot = aggregate(goal, STUDENT, [_instance(1, _utc(2024, 1, 10, 5))], _utc(2024, 1, 10, 17), NY, 1)
    assert snapshot == ProgressSnapshot()


def test_classification_rules_and_order():
    goal = _goal(times_per_week=3)
    assert classify(goal, ProgressSnapshot(today_count=1, week_count=1)) is GoalStatus.DONE_TODAY
    assert classify(goal, ProgressSnapshot(today_count=0, week_count=2)) is GoalStatus.PROGRESS_WEEK
    assert classify(goal, ProgressSnapshot(today_count=1, week_count=4)) is GoalStatus.WEEKLY_COMPLETE
    assert classify(_goal(times_per_week=None), ProgressSnapshot(week_count=9)) is GoalStatus.PROGRESS_WEEK
    ranks = [sort_key(s) for s in (
        GoalStatus.PENDING, GoalStatus.PROGRESS_WEEK, GoalStatus.DONE_TODAY, GoalStatus.WEEKLY_COMPLETE,
    )]
    assert ranks == [1, 2, 3, 4]


def test_classification_is_idempotent_and_monotonic_within_a_week():
    goal = _goal(times_per_week=2)
    now = _utc(2024, 1, 12, 17)
    instances: list[InstanceRecord] = []
    previous = 0
    for day in (8, 9, 10, 11):
        instances.append(_instance(day, _utc(2024, 1, day, 5)))
        snapshot = aggregate(goal, STUDENT, instances, now, NY, 1)
        first = classify_goal(goal, snapshot)
        assert first == classify_goal(goal, snapshot)
        assert first["sort_key"] >= previous
        previous = first["sort_key"]


def test_visibility_respects_start_date_and_completion():
    goal = _goal(
        start_date=_utc(2024, 1, 10, 5),
        completions={STUDENT: StudentCompletion(completion_date=_utc(2024, 1, 20, 5), grade="A")},
    )
    assert not is_goal_visible(goal, STUDENT, _utc(2024, 1, 9, 12))
    assert is_goal_visible(goal, STUDENT, _utc(2024, 1, 10, 5))
    assert is_goal_visible(goal, STUDENT, _utc(2024, 1, 20, 5))
    assert not is_goal_visible(goal, STUDENT, _utc(2024, 1, 20, 6))
    assert is_goal_visible(goal, 8, _utc(2024, 2, 1))


def test_board_sorts_by_status_then_case_insensitive_name():
    calendar = CalendarSettings(timezone=NY, week_start_day=1, allow_multiple_records_per_day=True)
    now = _utc(2024, 1, 11, 17)
    goals = [
        _goal(1, times_per_week=3, name="reading"),
        _goal(2, times_per_week=3, name="Algebra"),
        _goal(3, times_per_week=1, name="Piano"),
        _goal(4, times_per_week=3, name="art"),
    ]
    activities = [ActivityRecord(id=i, name=f"Activity {i}") for i in range(1, 5)]
    instances = [
        _instance(1, _utc(2024, 1, 11, 5), goal_id=1),
        _instance(2, _utc(2024, 1, 9, 5), goal_id=3),
        _instance(3, _utc(2024, 1, 9, 5), goal_id=4),
    ]
    board = build_goal_board(goals, activities, STUDENT, instances, now, calendar)
    assert [(entry.goal.name, entry.status) for entry in board] == [
        ("Algebra", GoalStatus.PENDING),
        ("art", GoalStatus.PROGRESS_WEEK),
        ("reading", GoalStatus.DONE_TODAY),
        ("Piano", GoalStatus.WEEKLY_COMPLETE),
    ]
    assert not is_all_complete(entry.status for entry in board)
    assert is_all_complete(entry.status for entry in board[2:])
    assert not is_all_complete([])
