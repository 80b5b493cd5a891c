"""
Tests for the bridge server: websocket session and HTTP endpoints.
"""

import json

import numpy as np
import pytest
from fastapi.testclient import TestClient

from bridge.protocol import MANUAL_MESSAGE
from bridge.server import create_app, handle_message
from mpc_stack import MPCStack


def _telemetry_data():
    xs = np.arange(0.0, 60.0, 10.0)
    return {
        "ptsx": xs.tolist(),
        "ptsy": [0.0] * len(xs),
        "x": 0.0,
        "y": 0.0,
        "psi": 0.0,
        "speed": 20.0,
        "steering_angle": 0.0,
        "throttle": 0.0,
    }


@pytest.fixture(scope="module")
def stack():
    return MPCStack(config={"bridge": {"emit_delay_s": 0.0}})


@pytest.fixture(scope="module")
def client(stack):
    return TestClient(create_app(stack))


class TestHandleMessage:

    def test_non_event_frames_are_ignored(self, stack):
        assert handle_message(stack, "2") is None
        assert handle_message(stack, "40") is None

    def test_null_payload_gets_manual_reply(self, stack):
        assert handle_message(stack, '42["telemetry",null]') == MANUAL_MESSAGE

    def test_other_events_are_ignored(self, stack):
        assert handle_message(stack, '42["reset",{}]') is None

    def test_telemetry_gets_steer_reply(self, stack):
        reply = handle_message(stack, "42" + json.dumps(["telemetry", _telemetry_data()]))

        name, payload = json.loads(reply[2:])
        assert name == "steer"
        assert set(payload) == {"steering_angle", "throttle", "mpc_x", "mpc_y", "next_x", "next_y"}
        assert payload["steering_angle"] == pytest.approx(0.0, abs=1e-3)

    def test_invalid_telemetry_still_replies(self, stack):
        data = _telemetry_data()
        del data["speed"]
        reply = handle_message(stack, "42" + json.dumps(["telemetry", data]))

        _, payload = json.loads(reply[2:])
        assert payload["steering_angle"] == 0.0
        assert payload["throttle"] == 0.0


class TestHttpEndpoints:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["backend"] == "ipopt"

    def test_post_telemetry(self, client):
        response = client.post("/api/telemetry", json=_telemetry_data())
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert len(body["mpc_x"]) == 10
        assert len(body["next_x"]) == 50

    def test_post_invalid_telemetry(self, client):
        response = client.post("/api/telemetry", json={"ptsx": [0.0, 1.0]})
        assert response.status_code == 200
        assert response.json()["status"] == "validation_error"

    def test_reset_session(self, client, stack):
        client.post("/api/telemetry", json=_telemetry_data())
        response = client.post("/api/session/reset")
        assert response.json()["status"] == "reset"
        assert stack.last_command is None


class TestWebSocketSession:

    def test_manual_then_telemetry(self, client):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text('42["telemetry",null]')
            assert websocket.receive_text() == MANUAL_MESSAGE

            websocket.send_text("42" + json.dumps(["telemetry", _telemetry_data()]))
            name, payload = json.loads(websocket.receive_text()[2:])

        assert name == "steer"
        assert len(payload["mpc_x"]) == 10
