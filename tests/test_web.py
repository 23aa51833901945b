import pytest
from fastapi.testclient import TestClient

from smart_break.services.signals import AppInfo
from smart_break.web.app import app, get_runner


@pytest.fixture
def client(runner):
    app.dependency_overrides[get_runner] = lambda: runner
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_initial_state(client):
    response = client.get("/api/state")
    assert response.status_code == 200
    data = response.json()
    assert data["timer"]["state"] == "idle"
    assert data["decision"]["should_pause"] is False
    assert data["daily_score"] == 100.0
    assert data["goal"]["goal"] == 6
    assert data["monitoring"] is False


def test_timer_actions(client, runner):
    response = client.post("/api/timer/start")
    assert response.json()["ok"] is True
    assert response.json()["timer"]["state"] == "running"
    assert runner.ledger.active_session is not None

    assert client.post("/api/timer/start").json()["ok"] is False
    assert client.post("/api/timer/pause").json()["timer"]["state"] == "externally_paused"
    assert client.post("/api/timer/resume").json()["timer"]["state"] == "running"
    assert client.post("/api/timer/break-now").json()["timer"]["state"] == "on_break"


def test_unknown_timer_action(client):
    assert client.post("/api/timer/explode").status_code == 400


def test_recording_breaks_moves_score(client):
    client.post("/api/breaks", json={"completed": True, "duration_seconds": 30})
    response = client.post("/api/breaks", json={"completed": False})
    assert response.json()["daily_score"] == 50.0


def test_stats_periods(client):
    client.post("/api/breaks", json={"completed": True, "duration_seconds": 30})

    week = client.get("/api/stats/week").json()
    assert week["days_tracked"] == 1
    assert week["breaks_completed"] == 1

    today = client.get("/api/stats/today").json()
    assert "pause_breakdown" in today

    assert client.get("/api/stats/year").status_code == 400


def test_session_and_pause_endpoints(client):
    assert client.post("/api/sessions/start").json()["ok"] is True
    assert client.post("/api/sessions/start").json()["ok"] is False

    pause = client.post("/api/pauses/start", json={"reason": "meeting", "related_app": "us.zoom.xos"})
    assert pause.json()["ok"] is True
    assert client.post("/api/pauses/end").json()["ok"] is True
    assert client.post("/api/pauses/end").json()["ok"] is False

    breakdown = client.get("/api/stats/today").json()["pause_breakdown"]
    assert breakdown["meeting"]["count"] == 1

    assert client.post("/api/sessions/end").json()["ok"] is True


def test_nudge_endpoint(client, runner):
    client.post("/api/nudges", json={"followed": True, "kind": "blink"})
    assert runner.ledger.today_stats().blink_nudges_followed == 1
    assert client.post("/api/nudges", json={"followed": True, "kind": "wink"}).status_code == 422


def test_insights_endpoint(client):
    for completed in (True, False, True, False):
        client.post("/api/breaks", json={"completed": completed, "duration_seconds": 20})

    insights = client.get("/api/insights").json()

    interval = [i for i in insights if i["kind"] == "recommended_break_interval"]
    assert interval[0]["minutes"] == 20
    assert interval[0]["title"] == "Try 20 min intervals"


def test_exports(client):
    client.post("/api/breaks", json={"completed": True, "duration_seconds": 30})

    csv_response = client.get("/api/export/csv")
    assert csv_response.headers["content-type"].startswith("text/csv")
    assert csv_response.text.splitlines()[0] == "date,breaks_completed,breaks_skipped,total_break_minutes,daily_score"

    data = client.get("/api/export/json").json()
    assert data["version"] == 1
    assert data["days"][-1]["breaks_completed"] == 1


def test_config_update_changes_decision(client, sources):
    sources.focus = True
    assert client.post("/api/refresh").json()["should_pause"] is True

    response = client.post("/api/config", json={"pause_threshold": 61})
    assert response.json()["decision"]["should_pause"] is False

    config = client.get("/api/config").json()
    assert config["pause_threshold"] == 61
    assert config["threshold_reachable"] is True


def test_invalid_config_rejected(client, runner):
    response = client.post("/api/config", json={"pause_threshold": "lots"})
    assert response.status_code == 400
    assert runner.engine.config.pause_threshold == 60


def test_refresh_reports_meeting(client, sources):
    sources.app = AppInfo("us.zoom.xos", "zoom.us")
    data = client.post("/api/refresh").json()
    assert data["should_pause"] is True
    assert data["active_signals"][0]["signal"] == "meeting_app_active"


def test_reset(client, runner):
    client.post("/api/breaks", json={"completed": True, "duration_seconds": 30})
    assert client.post("/api/reset").json()["ok"] is True
    assert runner.ledger.today_stats().breaks_completed == 0


def test_unknown_route(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.json() == {"detail": "Not found"}
