from datetime import timedelta

import pytest

from conftest import MIDNIGHT, local, minutes
from config import Settings
from deps import get_settings

HEADERS = {"X-User-Id": "user-1"}
NOON = local(2026, 3, 20, 12, 0)
CRON_AUTH = {"Authorization": "Bearer test-secret"}


@pytest.fixture
def frozen(monkeypatch):
    """Pin the routers' clock."""

    def _freeze(now):
        monkeypatch.setattr("routers.sessions.utc_now", lambda: now)
        monkeypatch.setattr("routers.cron.utc_now", lambda: now)

    return _freeze


def test_health(client) -> None:
    assert client.get("/health").json()["status"] == "ok"


def test_missing_user_header(client) -> None:
    resp = client.post("/api/sessions", json={"task_title": "Read"})

    assert resp.status_code == 400


def test_punch_in_pause_resume_punch_out(client, frozen) -> None:
    frozen(NOON)
    started = client.post("/api/sessions", json={"task_title": "Read", "mode": "stopwatch"}, headers=HEADERS)
    assert started.status_code == 201
    session_id = started.json()["id"]
    assert started.json()["status"] == "active"

    frozen(NOON + timedelta(seconds=125))
    paused = client.post(f"/api/sessions/{session_id}/pause", headers=HEADERS).json()
    assert paused["status"] == "paused"
    assert paused["accumulated_seconds"] == 125
    assert paused["display"] == "02:05"

    frozen(NOON + timedelta(seconds=500))
    resumed = client.post(f"/api/sessions/{session_id}/resume", headers=HEADERS).json()
    assert resumed["status"] == "active"

    frozen(NOON + timedelta(seconds=520))
    current = client.get("/api/sessions/current", headers=HEADERS).json()
    assert current["elapsed_seconds"] == 145
    assert current["remaining_seconds"] is None

    frozen(NOON + timedelta(seconds=560))
    stopped = client.post(f"/api/sessions/{session_id}/stop", headers=HEADERS).json()
    assert stopped["status"] == "completed"
    assert stopped["duration_seconds"] == 185

    assert client.get("/api/sessions/current", headers=HEADERS).json() is None
    assert [s["id"] for s in client.get("/api/sessions", headers=HEADERS).json()] == [session_id]


def test_errors_are_structured(client, frozen) -> None:
    frozen(NOON)
    empty = client.post("/api/sessions", json={"task_title": "  "}, headers=HEADERS)
    assert empty.status_code == 422
    assert empty.json()["error"] == "validation_error"

    client.post("/api/sessions", json={"task_title": "Read"}, headers=HEADERS)
    again = client.post("/api/sessions", json={"task_title": "Write"}, headers=HEADERS)
    assert again.status_code == 409
    assert again.json() == {"error": "invalid_state", "detail": "A session is already in progress"}

    missing = client.post("/api/sessions/nope/stop", headers=HEADERS)
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


def test_pomodoro_complete_starts_break(client, frozen) -> None:
    frozen(NOON)
    pomo = client.post("/api/sessions", json={"task_title": "Thesis", "mode": "pomo"}, headers=HEADERS).json()
    assert pomo["remaining_seconds"] == 25 * 60
    assert pomo["display"] == "25:00"

    frozen(NOON + minutes(25))
    resp = client.post(f"/api/sessions/{pomo['id']}/complete", headers=HEADERS)

    body = resp.json()
    assert resp.status_code == 200
    assert body["stopped"] is False
    assert body["pomo_session_count"] == 1
    assert body["session"]["mode"] == "short-break"
    assert body["ended"]["duration_seconds"] == 25 * 60


def test_pomodoro_complete_honours_client_length(client, frozen) -> None:
    frozen(NOON)
    pomo = client.post("/api/sessions", json={"task_title": "Sprint", "mode": "pomo"}, headers=HEADERS).json()

    frozen(NOON + minutes(15))
    resp = client.post(f"/api/sessions/{pomo['id']}/complete", headers=HEADERS)

    assert resp.status_code == 200
    assert resp.json()["session"]["mode"] == "short-break"
    assert resp.json()["ended"]["duration_seconds"] == 15 * 60


def test_rename_and_amend_end_time(client, frozen) -> None:
    frozen(NOON)
    sid = client.post("/api/sessions", json={"task_title": "Draft"}, headers=HEADERS).json()["id"]
    frozen(NOON + timedelta(hours=2))
    client.post(f"/api/sessions/{sid}/stop", headers=HEADERS)

    renamed = client.patch(f"/api/sessions/{sid}", json={"task_title": "Final"}, headers=HEADERS).json()
    assert renamed["task_title"] == "Final"

    new_end = (NOON + timedelta(hours=1)).isoformat()
    amended = client.patch(f"/api/sessions/{sid}/end-time", json={"ended_at": new_end}, headers=HEADERS)
    assert amended.status_code == 200
    assert amended.json()["duration_seconds"] == 3600


def test_heartbeat_rolls_over_stale_session(client, frozen, seed) -> None:
    old = seed("user-1", "Late night", started_at=local(2026, 3, 19, 23, 0))
    now = MIDNIGHT + minutes(2)
    frozen(now)

    body = client.post("/api/sessions/heartbeat", headers=HEADERS).json()

    assert body["rolled_over"] is True
    assert body["session"]["id"] != old.id
    assert body["session"]["task_title"] == "Late night"
    assert len(body["notices"]) == 1
    assert body["next_check_in"] == 60

    again = client.post("/api/sessions/heartbeat", headers=HEADERS).json()
    assert again["rolled_over"] is False
    assert again["notices"] == []


def test_heartbeat_auto_ends_long_pause(client, frozen, seed) -> None:
    seed("user-1", status="paused", started_at=NOON - minutes(120), accumulated=600, last_paused_at=NOON - minutes(90))
    frozen(NOON)

    body = client.post("/api/sessions/heartbeat", headers=HEADERS).json()

    assert body["auto_ended"] is True
    assert body["session"] is None
    assert body["next_check_in"] == 300
    assert "automatically ended" in body["notices"][0]


def test_cron_requires_secret(client) -> None:
    assert client.post("/api/cron/midnight-rollover").status_code == 401
    wrong = client.post("/api/cron/midnight-rollover", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401


def test_cron_refuses_when_secret_unset(client) -> None:
    from main import app

    app.dependency_overrides[get_settings] = lambda: Settings(cron_secret=None)

    resp = client.post("/api/cron/midnight-rollover", headers=CRON_AUTH)

    assert resp.status_code == 503


def test_cron_skips_outside_window(client, frozen, seed, store) -> None:
    row = seed("user-1", started_at=local(2026, 3, 19, 22, 0))
    frozen(NOON)

    body = client.post("/api/cron/midnight-rollover", headers=CRON_AUTH).json()

    assert body == {"ok": True, "skipped": True, "reason": "outside_midnight_window"}
    assert store.get_session(row.id).status == "active"


def test_cron_rolls_inside_window(client, frozen, seed) -> None:
    seed("user-1", started_at=local(2026, 3, 19, 22, 0))
    seed("user-2", status="paused", started_at=local(2026, 3, 19, 21, 0), accumulated=120)
    frozen(MIDNIGHT + minutes(1))

    body = client.post("/api/cron/midnight-rollover", headers=CRON_AUTH).json()
    assert body == {"ok": True, "rolled": 2, "continued": 1, "failed": 0}

    repeat = client.post("/api/cron/midnight-rollover", headers=CRON_AUTH).json()
    assert repeat["rolled"] == 0


def test_offline_keeps_status_during_open_session(client, frozen) -> None:
    frozen(NOON)
    client.post("/api/sessions", json={"task_title": "Read"}, headers=HEADERS)

    assert client.post("/api/status/offline", headers=HEADERS).json() == {"ok": True, "changed": False}
    assert client.post("/api/status/offline", headers={"X-User-Id": "idle"}).json() == {"ok": True, "changed": True}
