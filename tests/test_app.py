import pytest
from conftest import Harness
from fastapi.testclient import TestClient

from barleybox.app import create_app


@pytest.fixture
def client(harness: Harness) -> TestClient:
    return TestClient(create_app(harness.session))


def _connect(client: TestClient, harness: Harness) -> None:
    res = client.post("/connect", json={"device_id": "box1", "broker": "broker.example.com"})
    assert res.status_code == 200
    harness.transport.fire_connect()


def test_connect_requires_identity_and_broker(client):
    res = client.post("/connect", json={"device_id": "  ", "broker": "broker.example.com"})
    assert res.status_code == 400
    assert "required" in res.json()["detail"]


def test_commands_while_disconnected_are_conflicts(client, harness):
    assert client.post("/feed").status_code == 409
    assert client.post("/control/heater/ON").status_code == 409
    assert client.post("/diagnostics/test").status_code == 409
    assert harness.factory.created == []


def test_state_reports_session_and_snapshot(client, harness):
    _connect(client, harness)
    harness.transport.fire_message("farm/telemetry/box1", b'{"temp_env": 24.5}')
    harness.transport.fire_message("farm/config/box1/current", b'{"feed_duration_ms": 4500}')

    body = client.get("/state").json()

    assert body["session"] == "connected"
    assert body["device_id"] == "box1"
    assert body["broker"] == "broker.example.com"
    assert body["transport_connected"] is True
    assert body["topics"][0] == "farm/telemetry/box1"
    assert "farm/control/box1/mode" in body["topics"]
    assert body["snapshot"]["telemetry"]["temp_env"] == 24.5
    assert body["snapshot"]["telemetry"]["hum_env"] is None
    assert body["config_form"] == {"feed_duration_s": 4.5}


def test_control_and_feed_publish(client, harness):
    _connect(client, harness)

    assert client.post("/control/mist/off").json() == {"ok": True}
    assert client.post("/mode/MANUAL").status_code == 200
    assert client.post("/feed").status_code == 200

    assert harness.transport.published == [
        ("farm/control/box1/mist", b"OFF"),
        ("farm/control/box1/mode", b"MANUAL"),
        ("farm/control/box1/feed", b"TRIGGER"),
    ]


def test_invalid_action_and_channel(client, harness):
    _connect(client, harness)

    assert client.post("/control/heater/TRIGGER").status_code == 400
    assert client.post("/control/fan/ON").status_code == 422
    assert harness.transport.published == []


def test_config_endpoints(client, harness):
    _connect(client, harness)

    assert client.post("/config", json={"T_heat_on": "18.5", "upload_interval_minutes": "10"}).status_code == 200
    assert client.post("/config/fetch").status_code == 200

    assert harness.transport.published == [
        ("farm/config/box1", b'{"T_heat_on":18.5,"upload_interval_seconds":600}'),
        ("farm/command/box1", b"publish_config"),
    ]


def test_failed_publish_is_bad_gateway(client, harness):
    _connect(client, harness)
    harness.transport.fail_publish = True

    res = client.post("/feed")
    assert res.status_code == 502
    assert "queue full" in res.json()["detail"]


def test_log_and_disconnect(client, harness):
    _connect(client, harness)
    assert client.post("/disconnect").status_code == 200

    entries = client.get("/log").json()
    assert entries[-1]["message"] == "Disconnected from broker"
    assert set(entries[0]) == {"ts", "time", "kind", "message"}
    assert client.get("/state").json()["session"] == "disconnected"


def test_state_before_connect_has_no_topics(client):
    body = client.get("/state").json()
    assert body["topics"] == []
    assert body["transport_connected"] is False
    assert body["session"] == "disconnected"
