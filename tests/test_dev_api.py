from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api import DevBackendAPI
from backend_double import SyntheticBackend, SyntheticBackendConfig
from config_loader import build_config


@pytest.fixture
def api() -> DevBackendAPI:
    return DevBackendAPI(build_config({"discovery": {}}))


@pytest.fixture
def client(api):
    with TestClient(api.app) as test_client:
        yield test_client


def test_health_reports_service_fingerprint(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["service"] == "elixir-backend"
    assert body["data"]["version"] == "1.2.3"


def test_system_status(client) -> None:
    body = client.get("/api/status/system").json()

    assert body["data"]["control_panel"]["ac_state"] is False
    assert body["data"]["pressure"]["setpoint"] == 1.0


def test_toggle_changes_state(client, api) -> None:
    body = client.post("/api/control/lights/door/toggle").json()

    assert body["success"] is True
    assert body["data"]["door_lights_state"] is True
    assert api.backend.state.current()["control_panel"]["door_lights_state"] is True


def test_pressure_buttons(client) -> None:
    client.post("/api/pressure/add")
    body = client.post("/api/pressure/add").json()

    assert body["data"]["pressure_setpoint"] == 1.2
    assert client.post("/api/pressure/subtract").json()["data"]["pressure_setpoint"] == 1.1


def test_setpoint_validation(client) -> None:
    ok = client.post("/api/pressure/setpoint", json={"setpoint": 2.5})
    assert ok.status_code == 200
    assert ok.json()["data"]["pressure_setpoint"] == 2.5

    too_high = client.post("/api/pressure/setpoint", json={"setpoint": 9})
    assert too_high.status_code == 400
    assert "Invalid pressure setpoint" in too_high.json()["detail"]

    missing = client.post("/api/pressure/setpoint", json={})
    assert missing.status_code == 422


def test_session_start_and_end(client, api) -> None:
    assert client.post("/api/session/start").json()["data"]["running_state"] is True
    assert api.backend.state.current()["session"]["running_state"] is True

    assert client.post("/api/session/end").json()["data"]["running_state"] is False


def test_simulated_failure_is_reported_in_body() -> None:
    backend = SyntheticBackend(SyntheticBackendConfig(error_rate=1.0))
    api = DevBackendAPI(build_config({"discovery": {}}), backend=backend)

    with TestClient(api.app) as client:
        body = client.post("/api/control/ac/toggle").json()

    assert body["success"] is False
    assert "Simulated failure" in body["message"]


def test_status_stream_sends_current_state_then_changes(client) -> None:
    with client.websocket_connect("/ws/system-status") as ws:
        first = ws.receive_json()
        assert first["type"] == "status_update"
        assert first["data"]["control_panel"]["ac_state"] is False

        client.post("/api/control/ac/toggle")
        second = ws.receive_json()
        assert second["data"]["control_panel"]["ac_state"] is True
