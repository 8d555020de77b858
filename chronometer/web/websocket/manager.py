"""Event Stream - Pushes countdown events to WebSocket clients.

Countdown callbacks run on timer threads, so events are handed to the
server's event loop through broadcast_sync(). Clients receive every
countdown by default, or only the names they subscribed to.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Message types on /ws/events."""

    # Server -> Client
    COUNTDOWN_TICK = "countdown_tick"
    COUNTDOWN_COMPLETE = "countdown_complete"
    COUNTDOWN_REMOVED = "countdown_removed"
    COUNTDOWN_STATE = "countdown_state"

    # Client -> Server
    START = "start"
    STOP = "stop"
    SET_BASE = "set_base"
    SUBSCRIBE = "subscribe"


@dataclass
class WebSocketEvent:
    """One message: {"type": ..., "data": {...}}."""

    type: EventType
    data: dict[str, Any]

    @property
    def countdown(self) -> str | None:
        """Name of the countdown the event is about, if any."""
        return self.data.get("name")

    def to_json(self) -> str:
        return json.dumps({"type": self.type.value, "data": self.data})


@dataclass(eq=False)
class Client:
    """A connected socket and the countdowns it follows (None: all)."""

    websocket: WebSocket
    names: set[str] | None = None

    def wants(self, event: WebSocketEvent) -> bool:
        """Whether the filter lets an event through."""
        return self.names is None or event.countdown is None or event.countdown in self.names


@dataclass
class ConnectionManager:
    """Open event-stream sockets and their countdown filters.

    Sockets whose send fails are dropped during the broadcast.
    """

    clients: list[Client] = field(default_factory=list)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def active_connections(self) -> list[WebSocket]:
        return [client.websocket for client in self.clients]

    @property
    def connection_count(self) -> int:
        return len(self.clients)

    def _find(self, websocket: WebSocket) -> Client | None:
        # Identity match: starlette sockets compare by scope, not object
        for client in self.clients:
            if client.websocket is websocket:
                return client
        return None

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a socket, subscribed to every countdown."""
        await websocket.accept()
        async with self._lock:
            self.clients.append(Client(websocket))
        logger.info("Event stream client connected (%d open)", self.connection_count)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            client = self._find(websocket)
            if client is not None:
                self.clients.remove(client)
        logger.info("Event stream client disconnected (%d open)", self.connection_count)

    async def subscribe(self, websocket: WebSocket, names: list[str] | None) -> bool:
        """Restrict a socket to some countdowns.

        Args:
            websocket: A connected socket.
            names: Countdown names to receive, or None for all of them.

        Returns:
            True if the socket is connected.
        """
        async with self._lock:
            client = self._find(websocket)
            if client is None:
                return False
            client.names = set(names) if names is not None else None
        logger.debug("Event stream client follows %s", "all" if names is None else sorted(names))
        return True

    async def broadcast(self, event: WebSocketEvent) -> None:
        """Send an event to every interested socket, concurrently.

        Args:
            event: The event to send.
        """
        async with self._lock:
            targets = [client for client in self.clients if client.wants(event)]
            if not targets:
                return

            message = event.to_json()
            results = await asyncio.gather(
                *(client.websocket.send_text(message) for client in targets),
                return_exceptions=True,
            )
            for client, result in zip(targets, results):
                if isinstance(result, Exception):
                    logger.warning("Dropping event stream client: %s", result)
                    self.clients.remove(client)

    async def send_personal(self, websocket: WebSocket, event: WebSocketEvent) -> None:
        """Send an event to one socket, ignoring its filter."""
        try:
            await websocket.send_text(event.to_json())
        except Exception as e:
            logger.warning("Failed to send %s: %s", event.type.value, e)


_manager: ConnectionManager | None = None
# Loop that owns the sockets; None while the server is down
_server_loop: asyncio.AbstractEventLoop | None = None


def get_connection_manager() -> ConnectionManager:
    """Get the process-wide connection manager."""
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager


def set_server_loop(loop: asyncio.AbstractEventLoop | None) -> None:
    """Register the server loop on startup, or clear it (None) on shutdown."""
    global _server_loop
    _server_loop = loop
    logger.debug("Event stream loop %s", "registered" if loop else "cleared")


def broadcast_sync(event: WebSocketEvent) -> None:
    """Queue a broadcast on the server loop from any thread.

    Does nothing while no server loop is registered or running, so
    countdowns work the same without a web host.

    Args:
        event: The event to send.
    """
    loop = _server_loop
    if loop is None or not loop.is_running():
        logger.debug("Event %s not sent: no running server loop", event.type.value)
        return

    try:
        future = asyncio.run_coroutine_threadsafe(
            get_connection_manager().broadcast(event), loop
        )
    except RuntimeError as e:
        # Loop closed between the check and the call
        logger.warning("Could not queue %s: %s", event.type.value, e)
        return
    future.add_done_callback(_broadcast_error_handler)


def _broadcast_error_handler(future: "asyncio.Future[None]") -> None:
    try:
        future.result()
    except Exception as e:
        logger.warning("Event broadcast failed: %s", e)


def broadcast_countdown_tick(status: dict[str, Any]) -> None:
    """Send a tick with the countdown's snapshot."""
    broadcast_sync(WebSocketEvent(EventType.COUNTDOWN_TICK, status))


def broadcast_countdown_complete(status: dict[str, Any]) -> None:
    """Send a completion with the countdown's final snapshot."""
    broadcast_sync(WebSocketEvent(EventType.COUNTDOWN_COMPLETE, status))


def broadcast_countdown_removed(name: str) -> None:
    """Announce a deleted countdown."""
    broadcast_sync(WebSocketEvent(EventType.COUNTDOWN_REMOVED, {"name": name}))


async def send_countdown_state(
    websocket: WebSocket, countdowns: dict[str, dict[str, Any]]
) -> None:
    """Send every countdown's snapshot to a newly connected socket.

    Args:
        websocket: The new socket.
        countdowns: Name -> snapshot, as returned by TimerManager.get_all().
    """
    event = WebSocketEvent(
        EventType.COUNTDOWN_STATE, {"countdowns": list(countdowns.values())}
    )
    await get_connection_manager().send_personal(websocket, event)
