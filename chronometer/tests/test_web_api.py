"""Tests for the countdown REST API and event stream."""

import logging

import pytest

# Skip tests if fastapi not installed
pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from chronometer.core.clock import ManualClock
from chronometer.core.scheduler import ManualScheduler
from chronometer.core.timer_manager import TimerManager

START = 1_000_000
VERBOSE = "%1$02d days, %2$02d hours, %3$02d minutes and %4$02d seconds remaining"


@pytest.fixture
def timers():
    """Fresh timer manager on virtual time."""
    TimerManager._instance = None
    clock = ManualClock(START)
    manager = TimerManager(clock=clock, scheduler=ManualScheduler(clock))
    yield manager
    manager.stop_all()
    TimerManager._instance = None


class TestCountdownsAPI:
    """Test /api/countdowns endpoints."""

    @pytest.fixture(autouse=True)
    def setup(self, timers):
        """Set up test client (lifespan included) on virtual time."""
        from chronometer.web.server import create_app

        self.timers = timers
        self.scheduler = timers._scheduler
        with TestClient(create_app()) as client:
            self.client = client
            yield

    def create(self, **body):
        return self.client.post("/api/countdowns", json=body)

    def test_list_empty(self):
        """Should return no countdowns initially."""
        response = self.client.get("/api/countdowns")
        assert response.status_code == 200
        assert response.json() == []

    def test_create_relative(self):
        """Should create and start a countdown from seconds."""
        response = self.create(name="launch", seconds=65)
        assert response.status_code == 201

        data = response.json()
        assert data["name"] == "launch"
        assert data["base"] == START + 65_000
        assert data["remaining"] == 65
        assert data["text"] == "01:05"
        assert data["state"] == "running"
        assert self.timers.is_running("launch")

    def test_create_absolute_without_autostart(self):
        response = self.create(name="deadline", target=START + 3_600_000, autostart=False)
        assert response.status_code == 201

        data = response.json()
        assert data["state"] == "stopped"
        assert data["started"] is False
        assert data["text"] == "1:00:00"

    def test_create_with_formats(self):
        response = self.create(
            name="verbose",
            seconds=90061,
            format="Formatted time (%s)",
            custom_format=VERBOSE,
        )
        assert response.json()["text"] == (
            "Formatted time (01 days, 01 hours, 01 minutes and 01 seconds remaining)"
        )

    def test_create_needs_exactly_one_target(self):
        assert self.create(name="a").status_code == 400
        assert self.create(name="a", seconds=5, target=START).status_code == 400

    def test_create_validates_fields(self):
        assert self.create(name="", seconds=5).status_code == 422
        assert self.create(name="a", seconds=0).status_code == 422
        assert self.create(name="a", target=-1).status_code == 422

    def test_create_duplicate(self):
        """Should refuse an existing name unless replace is set."""
        assert self.create(name="a", seconds=5).status_code == 201
        assert self.create(name="a", seconds=10).status_code == 409

        response = self.create(name="a", seconds=10, replace=True)
        assert response.status_code == 201
        assert response.json()["remaining"] == 10
        assert self.scheduler.pending_count == 1

    def test_get_one(self):
        self.create(name="a", seconds=5)
        response = self.client.get("/api/countdowns/a")
        assert response.status_code == 200
        assert response.json()["remaining"] == 5

    def test_get_missing(self):
        response = self.client.get("/api/countdowns/nope")
        assert response.status_code == 404

    def test_list(self):
        self.create(name="a", seconds=5)
        self.create(name="b", seconds=10, autostart=False)
        names = {c["name"]: c["state"] for c in self.client.get("/api/countdowns").json()}
        assert names == {"a": "running", "b": "stopped"}

    def test_stop_and_start(self):
        self.create(name="a", seconds=10)

        response = self.client.post("/api/countdowns/a/stop")
        assert response.status_code == 200
        assert response.json()["state"] == "stopped"

        self.scheduler.advance(4000)
        response = self.client.post("/api/countdowns/a/start")
        assert response.json()["state"] == "running"
        assert response.json()["remaining"] == 6

    def test_start_missing(self):
        assert self.client.post("/api/countdowns/nope/start").status_code == 404
        assert self.client.post("/api/countdowns/nope/stop").status_code == 404

    def test_start_expired_completes(self):
        self.create(name="a", target=START - 1000, autostart=False)
        response = self.client.post("/api/countdowns/a/start")
        assert response.json()["state"] == "completed"
        assert response.json()["text"] == "00"

    def test_countdown_completes(self):
        self.create(name="a", seconds=2)
        self.scheduler.advance(2000)

        data = self.client.get("/api/countdowns/a").json()
        assert data["state"] == "completed"
        assert data["remaining"] == 0
        assert data["text"] == "00"
        assert data["started"] is True

    def test_set_base(self):
        self.create(name="a", seconds=10)

        response = self.client.put("/api/countdowns/a/base", json={"target": START + 65_000})
        assert response.status_code == 200
        assert response.json()["text"] == "01:05"

        response = self.client.put("/api/countdowns/a/base", json={"seconds": 3})
        assert response.json()["remaining"] == 3

    def test_set_base_restarts_completed(self):
        self.create(name="a", seconds=1)
        self.scheduler.advance(1000)
        assert self.client.get("/api/countdowns/a").json()["state"] == "completed"

        response = self.client.put("/api/countdowns/a/base", json={"seconds": 5})
        assert response.json()["state"] == "running"

    def test_set_base_validation(self):
        self.create(name="a", seconds=10)
        assert self.client.put("/api/countdowns/a/base", json={}).status_code == 400
        assert self.client.put("/api/countdowns/nope/base", json={"seconds": 1}).status_code == 404

    def test_set_format(self):
        """Formats apply from the next render."""
        self.create(name="a", seconds=66)

        response = self.client.put(
            "/api/countdowns/a/format", json={"format": "Time left: %s"}
        )
        assert response.status_code == 200
        assert response.json()["format"] == "Time left: %s"
        assert response.json()["text"] == "01:06"

        self.scheduler.advance(1000)
        assert self.client.get("/api/countdowns/a").json()["text"] == "Time left: 01:05"

    def test_clear_format(self):
        self.create(name="a", seconds=66, format="T-%s")
        response = self.client.put("/api/countdowns/a/format", json={})
        assert response.json()["format"] is None

        self.scheduler.advance(1000)
        assert self.client.get("/api/countdowns/a").json()["text"] == "01:05"

    def test_delete(self):
        self.create(name="a", seconds=10)

        response = self.client.delete("/api/countdowns/a")
        assert response.status_code == 200
        assert response.json() == {"message": "Countdown 'a' deleted"}
        assert self.timers.get("a") is None
        assert self.scheduler.pending_count == 0

        assert self.client.delete("/api/countdowns/a").status_code == 404


class TestPreviewAPI:
    """Test /api/countdowns/preview."""

    @pytest.fixture(autouse=True)
    def setup(self, timers):
        from chronometer.web.server import create_app

        with TestClient(create_app()) as client:
            self.client = client
            yield

    def test_preview_fast_path(self):
        response = self.client.post("/api/countdowns/preview", json={"seconds": 3661})
        assert response.status_code == 200
        assert response.json() == {"text": "1:01:01", "valid": True, "error": None}

    def test_preview_custom(self):
        response = self.client.post(
            "/api/countdowns/preview",
            json={"seconds": 90061, "format": "Formatted time (%s)", "custom_format": VERBOSE},
        )
        assert response.json()["text"] == (
            "Formatted time (01 days, 01 hours, 01 minutes and 01 seconds remaining)"
        )

    def test_preview_invalid_format(self):
        """A bad format reports the error along with the fallback text."""
        response = self.client.post(
            "/api/countdowns/preview", json={"seconds": 65, "format": "Left: %q"}
        )
        data = response.json()
        assert data["valid"] is False
        assert data["error"]
        assert data["text"] == "01:05"

    def test_preview_negative_rejected(self):
        response = self.client.post("/api/countdowns/preview", json={"seconds": -1})
        assert response.status_code == 422


class TestEventStream:
    """Test /ws/events."""

    @pytest.fixture(autouse=True)
    def setup(self, timers):
        from chronometer.web.server import create_app

        self.timers = timers
        with TestClient(create_app()) as client:
            self.client = client
            yield

    def test_state_on_connect(self):
        self.timers.create_timer("a", START + 5000)
        with self.client.websocket_connect("/ws/events") as ws:
            message = ws.receive_json()

        assert message["type"] == "countdown_state"
        assert [c["name"] for c in message["data"]["countdowns"]] == ["a"]

    def test_start_command_broadcasts_tick(self):
        self.timers.create_timer("a", START + 5000)
        with self.client.websocket_connect("/ws/events") as ws:
            ws.receive_json()
            ws.send_json({"type": "start", "data": {"name": "a"}})
            message = ws.receive_json()

        assert message["type"] == "countdown_tick"
        assert message["data"]["name"] == "a"
        assert message["data"]["remaining"] == 5
        assert self.timers.is_running("a")

    def test_set_base_command(self):
        self.timers.create_timer("a", START + 5000)
        with self.client.websocket_connect("/ws/events") as ws:
            ws.receive_json()
            ws.send_json({"type": "set_base", "data": {"name": "a", "target": START + 65_000}})
            message = ws.receive_json()

        assert message["type"] == "countdown_tick"
        assert message["data"]["text"] == "01:05"

    def test_subscribe_filters_ticks(self):
        """A subscribed client only hears about the countdowns it named."""
        self.timers.create_timer("a", START + 5000)
        self.timers.create_timer("b", START + 7000)
        with self.client.websocket_connect("/ws/events") as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "data": {"names": ["b"]}})
            ws.send_json({"type": "start", "data": {"name": "a"}})
            ws.send_json({"type": "start", "data": {"name": "b"}})
            message = ws.receive_json()

        assert message["type"] == "countdown_tick"
        assert message["data"]["name"] == "b"
        assert self.timers.is_running("a")

    def test_invalid_subscription_ignored(self, caplog):
        self.timers.create_timer("a", START + 5000)
        with caplog.at_level(logging.WARNING, logger="chronometer.web.server"):
            with self.client.websocket_connect("/ws/events") as ws:
                ws.receive_json()
                ws.send_json({"type": "subscribe", "data": {"names": "a"}})
                ws.send_json({"type": "start", "data": {"name": "a"}})
                message = ws.receive_json()

        assert message["data"]["name"] == "a"
        assert "Invalid subscription" in caplog.text


class TestHandleClientMessage:
    """Test WebSocket command dispatch."""

    @pytest.fixture(autouse=True)
    def setup(self, timers):
        self.timers = timers

    def test_start_and_stop(self):
        from chronometer.web.server import handle_client_message

        self.timers.create_timer("a", START + 5000)
        handle_client_message({"type": "start", "data": {"name": "a"}})
        assert self.timers.is_running("a")
        handle_client_message({"type": "stop", "data": {"name": "a"}})
        assert not self.timers.is_running("a")

    def test_set_base(self):
        from chronometer.web.server import handle_client_message

        self.timers.create_timer("a", START + 5000)
        handle_client_message({"type": "set_base", "data": {"name": "a", "target": START + 9000}})
        assert self.timers.get_remaining("a") == 9

    @pytest.mark.parametrize(
        "message",
        [
            {"type": "start", "data": {"name": "nope"}},
            {"type": "stop", "data": {"name": "nope"}},
            {"type": "set_base", "data": {"name": "a", "target": "soon"}},
            {"type": "set_base", "data": {"name": "nope", "target": 5}},
            {"type": "explode"},
        ],
    )
    def test_bad_messages_warn(self, message, caplog):
        from chronometer.web.server import handle_client_message

        self.timers.create_timer("a", START + 5000)
        with caplog.at_level(logging.WARNING, logger="chronometer.web.server"):
            handle_client_message(message)
        assert "WebSocket:" in caplog.text
        assert self.timers.get_remaining("a") == 5
