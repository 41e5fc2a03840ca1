from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base, get_db  # noqa: E402
from main import app  # noqa: E402

THURSDAY_NOON = "2024-01-11T17:00:00Z"


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def _override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


def _seed_week(client: TestClient) -> dict:
    homeschool = client.post(
        "/api/homeschools",
        json={
            "name": "Maple Room",
            "timezone": "America/New_York",
            "week_start_day": 1,
            "allow_multiple_records_per_day": False,
        },
    )
    assert homeschool.status_code == 201
    hid = homeschool.json()["id"]

    student = client.post(f"/api/homeschools/{hid}/people", json={"name": "Ada", "daily_work_hours_goal": 2})
    assert student.status_code == 201
    sid = student.json()["id"]

    piano = client.post("/api/activities", json={"homeschool_id": hid, "name": "Piano", "tracks_time": True})
    reading = client.post(
        "/api/activities", json={"homeschool_id": hid, "name": "Reading", "tracks_percentage": True}
    )
    assert piano.status_code == 201 and reading.status_code == 201

    piano_goal = client.post(
        "/api/goals",
        json={
            "homeschool_id": hid,
            "activity_id": piano.json()["id"],
            "student_ids": [sid],
            "times_per_week": 3,
            "minutes_per_session": 30,
        },
    )
    reading_goal = client.post(
        "/api/goals",
        json={
            "homeschool_id": hid,
            "activity_id": reading.json()["id"],
            "student_ids": [sid],
            "times_per_week": 5,
        },
    )
    assert piano_goal.status_code == 201 and reading_goal.status_code == 201

    for day in ("2024-01-08", "2024-01-09", "2024-01-10"):
        resp = client.post(
            "/api/instances",
            json={"goal_id": piano_goal.json()["id"], "student_id": sid, "date": day, "duration": 30},
        )
        assert resp.status_code == 200
        assert resp.json()["created"] is True

    resp = client.post(
        "/api/instances",
        json={
            "goal_id": reading_goal.json()["id"],
            "student_id": sid,
            "date": "2024-01-11",
            "ending_percentage": 40,
        },
    )
    assert resp.status_code == 200

    return {
        "homeschool_id": hid,
        "student_id": sid,
        "piano_goal_id": piano_goal.json()["id"],
        "reading_goal_id": reading_goal.json()["id"],
    }


def test_student_view_orders_goals_by_status(client):
    ids = _seed_week(client)
    resp = client.get(
        f"/api/dashboard/{ids['homeschool_id']}/students/{ids['student_id']}",
        params={"now": THURSDAY_NOON},
    )
    assert resp.status_code == 200
    body = resp.json()

    assert [(g["name"], g["status"]) for g in body["goals"]] == [
        ("Reading", "done-today"),
        ("Piano", "weekly-complete"),
    ]
    assert body["goals"][1]["progress"]["week_count"] == 3
    assert body["goals"][1]["progress"]["today_count"] == 0
    assert body["goals"][0]["progress"]["latest_percentage"] == 40
    assert body["all_complete"] is True
    assert body["completed_today"] == 1
    assert body["daily_work_goal_minutes"] == 120
    assert body["calendar"]["today"] == "2024-01-11"
    assert body["calendar"]["week_start"] == "2024-01-08T05:00:00+00:00"


def test_second_record_same_day_updates_existing(client):
    ids = _seed_week(client)
    resp = client.post(
        "/api/instances",
        json={
            "goal_id": ids["reading_goal_id"],
            "student_id": ids["student_id"],
            "date": "2024-01-11",
            "ending_percentage": 55,
        },
    )
    assert resp.status_code == 200
    assert resp.json()["created"] is False
    assert resp.json()["instance"]["ending_percentage"] == 55

    existing = client.get(
        "/api/instances/existing",
        params={"goal_id": ids["reading_goal_id"], "student_id": ids["student_id"], "date": "2024-01-11"},
    )
    assert existing.status_code == 200
    body = existing.json()
    assert body["allow_multiple_records_per_day"] is False
    assert body["existing"]["id"] == resp.json()["instance"]["id"]
    assert body["existing"]["local_date"] == "2024-01-11"

    listed = client.get("/api/instances", params={"goal_id": ids["reading_goal_id"]})
    assert len(listed.json()) == 1


def test_public_dashboard_serves_overview(client):
    ids = _seed_week(client)
    enabled = client.post(f"/api/homeschools/{ids['homeschool_id']}/public-dashboard")
    assert enabled.status_code == 200
    public_id = enabled.json()["public_dashboard_id"]
    assert len(public_id) == 8

    resp = client.get(f"/api/dashboard/public/{public_id}", params={"now": THURSDAY_NOON})
    assert resp.status_code == 200
    body = resp.json()
    assert body["cycle_seconds"] == 10
    assert body["students"][0]["name"] == "Ada"
    assert body["students"][0]["all_complete"] is True

    client.delete(f"/api/homeschools/{ids['homeschool_id']}/public-dashboard")
    assert client.get(f"/api/dashboard/public/{public_id}").status_code == 404


def test_week_report_totals(client):
    ids = _seed_week(client)
    resp = client.get(
        f"/api/reports/{ids['homeschool_id']}",
        params={"range": "week", "now": THURSDAY_NOON},
    )
    assert resp.status_code == 200
    body = resp.json()
    piano = next(row for row in body["summary"] if row["goal_id"] == ids["piano_goal_id"])
    assert piano["count"] == 3
    assert piano["minutes"] == 90
    assert len(body["history"]) == 4
    assert body["history"][0]["date"] == "2024-01-11"

    bad = client.get(f"/api/reports/{ids['homeschool_id']}", params={"range": "fortnight"})
    assert bad.status_code == 422


def test_completed_goal_drops_off_the_board(client):
    ids = _seed_week(client)
    resp = client.post(
        f"/api/goals/{ids['piano_goal_id']}/completions/{ids['student_id']}",
        json={"completion_date": "2024-01-10", "grade": "A"},
    )
    assert resp.status_code == 200
    view = client.get(
        f"/api/dashboard/{ids['homeschool_id']}/students/{ids['student_id']}",
        params={"now": THURSDAY_NOON},
    )
    assert [g["name"] for g in view.json()["goals"]] == ["Reading"]


def test_invalid_inputs_are_rejected(client):
    ids = _seed_week(client)
    bad_tz = client.put(f"/api/homeschools/{ids['homeschool_id']}", json={"timezone": "Mars/Base"})
    assert bad_tz.status_code == 422

    bad_date = client.post(
        "/api/instances",
        json={"goal_id": ids["piano_goal_id"], "student_id": ids["student_id"], "date": "01/11/2024"},
    )
    assert bad_date.status_code == 422


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_moving_a_record_onto_an_occupied_day_is_a_conflict(client):
    ids = _seed_week(client)
    listed = client.get("/api/instances", params={"goal_id": ids["piano_goal_id"]}).json()
    tuesday = next(row for row in listed if row["local_date"] == "2024-01-09")

    moved = client.put(f"/api/instances/{tuesday['id']}", json={"date": "2024-01-08", "duration": 30})
    assert moved.status_code == 409

    still = client.get("/api/instances", params={"goal_id": ids["piano_goal_id"]}).json()
    assert sorted(row["local_date"] for row in still) == ["2024-01-08", "2024-01-09", "2024-01-10"]

    free_day = client.put(f"/api/instances/{tuesday['id']}", json={"date": "2024-01-12", "duration": 30})
    assert free_day.status_code == 200
    assert free_day.json()["local_date"] == "2024-01-12"


def test_existing_lookup_echoes_request_id(client):
    ids = _seed_week(client)
    resp = client.get(
        "/api/instances/existing",
        params={
            "goal_id": ids["piano_goal_id"],
            "student_id": ids["student_id"],
            "date": "2024-01-09",
            "request_id": 7,
        },
    )
    assert resp.status_code == 200
    assert resp.json()["request_id"] == 7
    assert resp.json()["existing"]["local_date"] == "2024-01-09"


def test_student_view_reports_last_activity(client):
    ids = _seed_week(client)
    view = client.get(
        f"/api/dashboard/{ids['homeschool_id']}/students/{ids['student_id']}",
        params={"now": THURSDAY_NOON},
    ).json()
    assert view["last_activity_at"] is not None

    people = client.get(f"/api/homeschools/{ids['homeschool_id']}/people").json()
    assert people[0]["last_activity_at"] == view["last_activity_at"]
