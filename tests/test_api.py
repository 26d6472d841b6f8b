import pytest
from fastapi.testclient import TestClient

import api.sessions
import api.triggers
from alerts.dispatcher import AlertDispatcher
from alerts.manager import TriggerManager
from alerts.monitor import ThresholdMonitor
from core.models import HistoryBlock
from main import app
from services.session import SessionManager

from fakes import KL, FakeEmsClient, make_block


@pytest.fixture
def client(storage, messenger, monkeypatch) -> TestClient:
    manager = TriggerManager(storage)
    sessions = SessionManager(
        FakeEmsClient(make_block(42), history=[HistoryBlock(window_start="2024-01-01T05:30:00Z",
                                                            target_energy=100, accumulated_energy=97,
                                                            percent_of_target=97)]),
        ThresholdMonitor(storage),
        AlertDispatcher(storage, messenger, tz=KL),
        tz=KL,
        poll_interval_sec=0,
    )
    monkeypatch.setattr(api.triggers, "get_trigger_manager", lambda: manager)
    monkeypatch.setattr(api.sessions, "get_session_manager", lambda: sessions)
    return TestClient(app)


def create(client, **overrides):
    body = {"simulator_id": "sim-1", "phone_number": "+60 12-345 6789", "threshold_percent": 80}
    body.update(overrides)
    return client.post("/api/notifications/triggers", json=body)


# ==================== Triggers ====================

def test_create_and_fetch_trigger(client):
    resp = create(client)
    assert resp.status_code == 200
    trigger = resp.json()["trigger"]
    assert trigger["phone_number"] == "60123456789"

    detail = client.get(f"/api/notifications/triggers/{trigger['id']}").json()
    assert detail["trigger"]["threshold_percent"] == 80
    assert detail["state"]["state"] == "armed"

    listed = client.get("/api/notifications/triggers", params={"simulator_id": "sim-1"}).json()
    assert listed["count"] == 1


def test_validation_errors_are_400_with_code(client):
    create(client)

    duplicate = create(client, phone_number="60123456789")
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"]["code"] == "DUPLICATE_TRIGGER"

    bad_phone = create(client, phone_number="123")
    assert bad_phone.status_code == 400
    assert bad_phone.json()["detail"]["field"] == "phone_number"

    assert create(client, threshold_percent=250).status_code == 400


def test_update_toggle_and_delete(client):
    trigger_id = create(client).json()["trigger"]["id"]

    patched = client.patch(f"/api/notifications/triggers/{trigger_id}", json={"threshold_percent": 90})
    assert patched.json()["trigger"]["threshold_percent"] == 90

    toggled = client.post(f"/api/notifications/triggers/{trigger_id}/toggle", json={"is_active": False})
    assert toggled.json()["trigger"]["is_active"] is False

    bulk = client.post("/api/notifications/triggers/bulk-toggle",
                       json={"simulator_id": "sim-1", "is_active": True})
    assert bulk.json()["count"] == 1

    assert client.delete(f"/api/notifications/triggers/{trigger_id}").status_code == 200
    assert client.delete(f"/api/notifications/triggers/{trigger_id}").status_code == 404
    assert client.get(f"/api/notifications/triggers/{trigger_id}").status_code == 404
    assert client.patch(f"/api/notifications/triggers/{trigger_id}", json={}).status_code == 404


# ==================== Settings, History, Status ====================

def test_settings_round_trip_and_validation(client):
    assert client.get("/api/notifications/settings").json() == {
        "cooldown_minutes": 15,
        "max_daily_notifications_per_trigger": 10,
        "enabled_globally": True,
    }

    updated = client.put("/api/notifications/settings", json={"cooldown_minutes": 5})
    assert updated.json()["cooldown_minutes"] == 5

    assert client.put("/api/notifications/settings", json={"cooldown_minutes": 0}).status_code == 400


def test_history_limit_is_bounded(client):
    assert client.get("/api/notifications/history").json() == {"count": 0, "history": []}
    assert client.get("/api/notifications/history", params={"limit": 0}).status_code == 422
    assert client.delete("/api/notifications/history").json()["removed"] == 0


def test_status(client):
    create(client)
    status = client.get("/api/notifications/status").json()
    assert status["whatsapp_ready"] is False
    assert status["active_triggers"] == 1
    assert status["notifications_enabled"] is True


# ==================== Sessions & Windows ====================

def test_session_lifecycle(client):
    started = client.post("/api/sessions/sim-1")
    assert started.status_code == 200
    assert started.json()["block"]["accumulated_kwh"] == 42

    assert client.get("/api/sessions").json()["count"] == 1
    assert client.get("/api/sessions/sim-1").json()["current_window"] == "14:00 – 14:30"
    assert client.post("/api/sessions/sim-1/refresh").json()["block"]["percent_of_target"] == 42

    history = client.get("/api/sessions/sim-1/history").json()
    assert history["blocks"][0]["accumulated_energy"] == 97

    assert client.delete("/api/sessions/sim-1").status_code == 200
    assert client.get("/api/sessions/sim-1").status_code == 404
    assert client.delete("/api/sessions/sim-1").status_code == 404


def test_emitter_endpoints_404_without_emitter(client):
    assert client.get("/api/emitters/sim-1").status_code == 404
    assert client.post("/api/emitters/sim-1/power", json={"power_kw": 5}).status_code == 404
    assert client.post("/api/emitters/sim-1/stop").json() == {"status": "not_running"}
    assert client.post("/api/emitters/sim-1/start", json={"mode": "turbo"}).status_code == 422


def test_block_window_lookup(client):
    body = client.get("/api/blocks/window",
                      params={"ts": "2024-01-01T06:30:00Z", "tz": "Asia/Kuala_Lumpur"}).json()
    assert body["window_start"] == "2024-01-01T06:30:00+00:00"
    assert body["window_end"] == "2024-01-01T07:00:00+00:00"
    assert body["label"] == "14:30 – 15:00"


@pytest.mark.parametrize("params", [
    {"ts": "yesterday", "tz": "UTC"},
    {"ts": "2024-01-01T06:30:00Z", "tz": "Nowhere/City"},
])
def test_block_window_rejects_bad_input(client, params):
    assert client.get("/api/blocks/window", params=params).status_code == 400


def test_root(client):
    assert client.get("/").json()["name"] == "EMS Block & Alert API"
