"""Tests for chronometer.web.websocket.manager - event stream."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

pytest.importorskip("fastapi")

import chronometer.web.websocket.manager as stream
from chronometer.web.websocket.manager import (
    ConnectionManager,
    EventType,
    WebSocketEvent,
    broadcast_countdown_complete,
    broadcast_countdown_removed,
    broadcast_countdown_tick,
    broadcast_sync,
    get_connection_manager,
    send_countdown_state,
    set_server_loop,
)


def snapshot(name="launch", **overrides):
    status = {
        "name": name,
        "base": 1_060_000,
        "remaining": 59,
        "text": "59",
        "state": "running",
        "started": True,
        "visible": True,
        "format": None,
        "custom_format": None,
    }
    status.update(overrides)
    return status


def tick(name="launch"):
    return WebSocketEvent(EventType.COUNTDOWN_TICK, snapshot(name))


def sent(ws):
    """Decoded messages a mock socket was sent."""
    return [json.loads(c.args[0]) for c in ws.send_text.call_args_list]


class TestWebSocketEvent:
    def test_wire_names(self):
        """Event type values are the strings clients see."""
        assert [e.value for e in EventType] == [
            "countdown_tick",
            "countdown_complete",
            "countdown_removed",
            "countdown_state",
            "start",
            "stop",
            "set_base",
            "subscribe",
        ]

    def test_to_json(self):
        message = json.loads(tick().to_json())
        assert message["type"] == "countdown_tick"
        assert message["data"]["remaining"] == 59

    def test_countdown_name(self):
        assert tick("a").countdown == "a"
        assert WebSocketEvent(EventType.COUNTDOWN_STATE, {"countdowns": []}).countdown is None


class TestConnectionManager:
    @pytest.fixture
    def manager(self):
        return ConnectionManager()

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, manager):
        """Connected sockets are accepted and tracked until disconnect."""
        ws = AsyncMock()
        await manager.connect(ws)
        ws.accept.assert_awaited_once()
        assert manager.active_connections == [ws]

        await manager.disconnect(ws)
        assert manager.connection_count == 0

    @pytest.mark.asyncio
    async def test_disconnect_unknown_socket(self, manager):
        await manager.disconnect(AsyncMock())
        assert manager.connection_count == 0

    @pytest.mark.asyncio
    async def test_broadcast_reaches_everyone(self, manager):
        sockets = [AsyncMock() for _ in range(3)]
        for ws in sockets:
            await manager.connect(ws)

        await manager.broadcast(tick())

        for ws in sockets:
            assert [m["type"] for m in sent(ws)] == ["countdown_tick"]

    @pytest.mark.asyncio
    async def test_broadcast_without_clients(self, manager):
        await manager.broadcast(tick())

    @pytest.mark.asyncio
    async def test_failed_socket_dropped(self, manager):
        """A socket whose send fails is removed; others still receive."""
        good, bad = AsyncMock(), AsyncMock()
        bad.send_text.side_effect = RuntimeError("closed")
        await manager.connect(good)
        await manager.connect(bad)

        await manager.broadcast(tick())
        assert manager.active_connections == [good]

        await manager.broadcast(tick())
        assert len(sent(good)) == 2
        assert bad.send_text.await_count == 1

    @pytest.mark.asyncio
    async def test_subscription_filters_countdown_events(self, manager):
        follower, everyone = AsyncMock(), AsyncMock()
        await manager.connect(follower)
        await manager.connect(everyone)
        assert await manager.subscribe(follower, ["a"]) is True

        await manager.broadcast(tick("a"))
        await manager.broadcast(tick("b"))
        await manager.broadcast(WebSocketEvent(EventType.COUNTDOWN_STATE, {"countdowns": []}))

        assert [(m["type"], m["data"].get("name")) for m in sent(follower)] == [
            ("countdown_tick", "a"),
            ("countdown_state", None),
        ]
        assert len(sent(everyone)) == 3

    @pytest.mark.asyncio
    async def test_subscribe_none_restores_all(self, manager):
        ws = AsyncMock()
        await manager.connect(ws)
        await manager.subscribe(ws, [])
        await manager.broadcast(tick("a"))
        assert sent(ws) == []

        await manager.subscribe(ws, None)
        await manager.broadcast(tick("a"))
        assert len(sent(ws)) == 1

    @pytest.mark.asyncio
    async def test_subscribe_unknown_socket(self, manager):
        assert await manager.subscribe(AsyncMock(), ["a"]) is False

    @pytest.mark.asyncio
    async def test_send_personal_ignores_filter(self, manager):
        ws = AsyncMock()
        await manager.connect(ws)
        await manager.subscribe(ws, [])
        await manager.send_personal(ws, tick("a"))
        assert len(sent(ws)) == 1

    @pytest.mark.asyncio
    async def test_send_personal_error_swallowed(self, manager):
        ws = AsyncMock()
        ws.send_text.side_effect = RuntimeError("closed")
        await manager.send_personal(ws, tick())


class TestServerLoopBridge:
    def setup_method(self):
        self._saved = (stream._manager, stream._server_loop)

    def teardown_method(self):
        stream._manager, stream._server_loop = self._saved

    def test_connection_manager_is_shared(self):
        stream._manager = None
        assert get_connection_manager() is get_connection_manager()

    def test_set_and_clear_loop(self):
        loop = MagicMock()
        set_server_loop(loop)
        assert stream._server_loop is loop
        set_server_loop(None)
        assert stream._server_loop is None

    def test_no_loop_is_noop(self):
        stream._server_loop = None
        with patch("asyncio.run_coroutine_threadsafe") as run:
            broadcast_sync(tick())
        run.assert_not_called()

    def test_stopped_loop_is_noop(self):
        loop = MagicMock()
        loop.is_running.return_value = False
        stream._server_loop = loop
        with patch("asyncio.run_coroutine_threadsafe") as run:
            broadcast_sync(tick())
        run.assert_not_called()

    def test_closed_loop_logged(self):
        loop = MagicMock()
        loop.is_running.return_value = True
        stream._server_loop = loop

        def refuse(coro, target):
            coro.close()
            raise RuntimeError("Event loop is closed")

        with patch("asyncio.run_coroutine_threadsafe", side_effect=refuse):
            broadcast_sync(tick())

    def test_broadcast_from_thread_reaches_socket(self):
        """End to end: a timer-thread broadcast lands on the loop's sockets."""
        loop = asyncio.new_event_loop()
        try:
            stream._manager = ConnectionManager()
            ws = AsyncMock()

            async def scenario():
                set_server_loop(asyncio.get_running_loop())
                await stream._manager.connect(ws)
                await asyncio.get_running_loop().run_in_executor(None, broadcast_sync, tick())
                for _ in range(50):
                    if ws.send_text.await_count:
                        break
                    await asyncio.sleep(0.01)

            loop.run_until_complete(scenario())
        finally:
            loop.close()

        assert sent(ws)[0]["data"]["name"] == "launch"


class TestBroadcastHelpers:
    @patch("chronometer.web.websocket.manager.broadcast_sync")
    def test_tick(self, mock_sync):
        broadcast_countdown_tick(snapshot())
        event = mock_sync.call_args.args[0]
        assert event.type == EventType.COUNTDOWN_TICK
        assert event.data["text"] == "59"

    @patch("chronometer.web.websocket.manager.broadcast_sync")
    def test_complete(self, mock_sync):
        broadcast_countdown_complete(snapshot(remaining=0, state="completed"))
        event = mock_sync.call_args.args[0]
        assert event.type == EventType.COUNTDOWN_COMPLETE
        assert event.data["state"] == "completed"

    @patch("chronometer.web.websocket.manager.broadcast_sync")
    def test_removed(self, mock_sync):
        broadcast_countdown_removed("launch")
        event = mock_sync.call_args.args[0]
        assert event.type == EventType.COUNTDOWN_REMOVED
        assert event.data == {"name": "launch"}

    @pytest.mark.asyncio
    async def test_state_for_new_client(self):
        ws = AsyncMock()
        await send_countdown_state(ws, {"a": snapshot("a"), "b": snapshot("b")})

        (message,) = sent(ws)
        assert message["type"] == "countdown_state"
        assert [c["name"] for c in message["data"]["countdowns"]] == ["a", "b"]
