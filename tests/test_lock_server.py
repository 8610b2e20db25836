"""
Tests for the reference lock's HTTP surface (app.lock.server).
"""

import pytest
from fastapi.testclient import TestClient

from app.lock.server import app, build_machine

client = TestClient(app)

AUTO_ARM = {
    "triggerStrategy": "autoCountdown",
    "lockDurationSeconds": 10,
    "penaltyDurationSeconds": 30,
    "channelDelaysSeconds": {"ch1": 0, "ch2": 0, "ch3": 0, "ch4": 0},
}

BUTTON_ARM = {
    "triggerStrategy": "buttonTrigger",
    "lockDurationSeconds": 60,
    "penaltyDurationSeconds": 30,
}


@pytest.fixture(autouse=True)
def fresh_machine():
    """Every test starts from a freshly booted device."""
    app.state.machine = build_machine()
    yield
    app.state.machine.timers.cancel_all()


def _arm(body: dict = AUTO_ARM):
    return client.post("/arm", json=body)


# ── Info ──────────────────────────────────────────────────────────────────────


def test_root_lists_endpoints():
    response = client.get("/")
    assert response.status_code == 200
    assert "GET /status" in response.text


def test_status_when_ready():
    response = client.get("/status")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ready"
    assert "triggerStrategy" not in body
    assert body["channelDelaysRemainingSeconds"] == {"ch1": 0, "ch2": 0, "ch3": 0, "ch4": 0}
    assert set(body["stats"]) == {
        "streaks",
        "aborted",
        "completed",
        "totalTimeLockedSeconds",
        "pendingPaybackSeconds",
    }


def test_details_are_camel_case():
    body = client.get("/details").json()

    assert body["numberOfChannels"] == 4
    assert body["buildType"] == "mock"
    assert body["channels"] == {"ch1": True, "ch2": True, "ch3": True, "ch4": True}
    assert body["deterrents"]["enablePaybackTime"] is True
    assert body["deterrents"]["paybackDurationSeconds"] == 600


# ── Arm ───────────────────────────────────────────────────────────────────────


class TestArm:
    def test_auto_with_zero_delays_locks(self):
        response = _arm()

        assert response.status_code == 200
        assert response.json() == {"status": "locked", "triggerStrategy": "autoCountdown"}
        status = client.get("/status").json()
        assert status["status"] == "locked"
        assert status["lockSecondsRemaining"] == 10

    def test_auto_with_delays_is_armed(self):
        body = {**AUTO_ARM, "channelDelaysSeconds": {"ch1": 5}}
        response = _arm(body)

        assert response.json()["status"] == "armed"
        status = client.get("/status").json()
        assert status["triggerStrategy"] == "autoCountdown"
        assert status["channelDelaysRemainingSeconds"]["ch1"] == 5
        assert "triggerTimeoutRemainingSeconds" not in status

    def test_button_trigger_waits(self):
        response = _arm(BUTTON_ARM)

        assert response.json() == {"status": "armed", "triggerStrategy": "buttonTrigger"}
        status = client.get("/status").json()
        assert status["triggerTimeoutRemainingSeconds"] == 600

        client.post("/debug/button-press")
        assert client.get("/status").json()["status"] == "locked"

    def test_second_arm_is_busy(self):
        _arm()
        response = _arm()

        assert response.status_code == 409
        assert response.json()["detail"] == {
            "status": "error",
            "message": "Device is not ready. Cannot arm.",
        }

    def test_out_of_range_duration_is_400(self):
        response = _arm({**AUTO_ARM, "lockDurationSeconds": 0})
        assert response.status_code == 400
        assert response.json()["detail"]["status"] == "error"

    def test_unknown_strategy_is_400(self):
        response = _arm({**AUTO_ARM, "triggerStrategy": "whenever"})
        assert response.status_code == 400

    def test_missing_fields_are_listed(self):
        response = _arm({"triggerStrategy": "autoCountdown"})

        assert response.status_code == 400
        message = response.json()["detail"]["message"]
        assert "lockDurationSeconds" in message
        assert "penaltyDurationSeconds" in message


# ── Abort / test / keepalive ─────────────────────────────────────────────────


class TestSessionControl:
    def test_abort_locked_session(self):
        _arm()
        response = client.post("/abort")

        assert response.status_code == 200
        assert response.json() == {"status": "aborted"}
        stats = client.get("/status").json()["stats"]
        assert stats["aborted"] == 1
        assert stats["pendingPaybackSeconds"] == 600

    def test_abort_armed_returns_ready(self):
        _arm(BUTTON_ARM)
        assert client.post("/abort").json() == {"status": "ready"}

    def test_abort_when_ready_is_busy(self):
        assert client.post("/abort").status_code == 409

    def test_start_test(self):
        response = client.post("/start-test")

        assert response.status_code == 200
        assert response.json() == {"status": "testing", "testSecondsRemaining": 60}
        assert client.post("/start-test").status_code == 409

    def test_keepalive_always_200(self):
        assert client.post("/keepalive").status_code == 200
        _arm()
        response = client.post("/keepalive")
        assert response.status_code == 200
        assert response.json()["message"] == "Watchdog petted."

    def test_button_press_aborts_locked(self):
        _arm()
        client.post("/debug/button-press")
        assert client.get("/status").json()["status"] == "aborted"


# ── Reward / log ──────────────────────────────────────────────────────────────


class TestReward:
    def test_history_when_ready(self):
        response = client.get("/reward")

        assert response.status_code == 200
        history = response.json()
        assert len(history) == 5
        assert set(history[0]) == {"code", "checksum"}
        assert len(history[0]["code"]) == 32

    def test_forbidden_during_session(self):
        _arm()
        response = client.get("/reward")

        assert response.status_code == 403
        assert response.json()["detail"]["message"] == "Reward is not yet available."


def test_log_tail_contains_recent_events():
    _arm()
    response = client.get("/log")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "Armed" in response.text


# ── Maintenance ───────────────────────────────────────────────────────────────


class TestMaintenance:
    def test_update_wifi(self):
        response = client.post("/update-wifi", json={"ssid": "HomeNet", "pass": "secret"})

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        assert app.state.machine.wifi_ssid == "HomeNet"

    def test_update_wifi_missing_pass(self):
        response = client.post("/update-wifi", json={"ssid": "HomeNet"})
        assert response.status_code == 400
        assert "pass" in response.json()["detail"]["message"]

    def test_update_wifi_while_locked(self):
        _arm()
        response = client.post("/update-wifi", json={"ssid": "HomeNet", "pass": "secret"})
        assert response.status_code == 409

    def test_factory_reset_reboots(self):
        _arm(BUTTON_ARM)
        client.post("/abort")
        response = client.post("/factory-reset")

        assert response.status_code == 200
        assert response.json()["status"] == "resetting"
        assert client.get("/status").json()["status"] == "ready"

    def test_factory_reset_refused_while_locked(self):
        _arm()
        assert client.post("/factory-reset").status_code == 409
        assert client.get("/status").json()["status"] == "locked"
