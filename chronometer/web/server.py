"""FastAPI Web Server - Countdown API and live tick stream.

Provides REST API and WebSocket endpoints for hosting countdowns.
Listens only on localhost (127.0.0.1) for security.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from chronometer.core.timer_manager import get_timer_manager
from chronometer.web.routes import countdowns
from chronometer.web.websocket.manager import (
    EventType,
    broadcast_countdown_complete,
    broadcast_countdown_removed,
    broadcast_countdown_tick,
    get_connection_manager,
    send_countdown_state,
    set_server_loop,
)

if TYPE_CHECKING:
    from chronometer.core.controller import CountdownController

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8430


def _on_tick(controller: "CountdownController") -> None:
    broadcast_countdown_tick(controller.snapshot())


def _on_complete(controller: "CountdownController") -> None:
    broadcast_countdown_complete(controller.snapshot())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Startup:
    - Register server's event loop for thread-safe WebSocket broadcasts
    - Forward countdown ticks/completions/removals to WebSocket clients

    Shutdown:
    - Unhook the timer manager
    """
    logger.info("Chronometer Web API starting...")

    # Ticks arrive on timer threads; broadcasts are marshalled onto this loop
    set_server_loop(asyncio.get_running_loop())

    manager = get_timer_manager()
    manager.add_tick_listener(_on_tick)
    manager.add_complete_listener(_on_complete)
    manager.add_remove_listener(broadcast_countdown_removed)

    yield

    manager.clear_listeners()
    set_server_loop(None)
    logger.info("Chronometer Web API stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance.
    """
    app = FastAPI(
        title="Chronometer",
        description="Countdown timer API",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS - allow localhost only
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"^http://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(countdowns.router, prefix="/api/countdowns", tags=["countdowns"])

    @app.websocket("/ws/events")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """WebSocket endpoint for real-time countdown events.

        Sends:
        - countdown_state: all countdowns, on connect
        - countdown_tick: once per second per running countdown
        - countdown_complete: when a countdown reaches zero
        - countdown_removed: when a countdown is deleted

        Receives:
        - start / stop: {"name": ...}
        - set_base: {"name": ..., "target": epoch_ms}
        - subscribe: {"names": [...]} or {"names": null} for all countdowns
        """
        manager = get_connection_manager()
        await manager.connect(websocket)

        try:
            await send_countdown_state(websocket, get_timer_manager().get_all())

            # Listen for client messages
            while True:
                data = await websocket.receive_json()
                if data.get("type") == EventType.SUBSCRIBE.value:
                    names = (data.get("data") or {}).get("names")
                    if names is not None and not (
                        isinstance(names, list) and all(isinstance(n, str) for n in names)
                    ):
                        logger.warning("WebSocket: Invalid subscription: %r", names)
                        continue
                    await manager.subscribe(websocket, names)
                else:
                    handle_client_message(data)

        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error("WebSocket error: %s", e)
        finally:
            await manager.disconnect(websocket)

    return app


def handle_client_message(data: dict) -> None:
    """Handle incoming WebSocket message from client.

    Args:
        data: Parsed JSON message {"type": ..., "data": {...}}.
    """
    event_type = data.get("type")
    event_data = data.get("data") or {}
    name = event_data.get("name")
    timers = get_timer_manager()

    if event_type == EventType.START.value:
        if not timers.resume_timer(name):
            logger.warning("WebSocket: Unknown countdown %s", name)

    elif event_type == EventType.STOP.value:
        controller = timers.get(name)
        if controller is None:
            logger.warning("WebSocket: Unknown countdown %s", name)
        else:
            controller.stop()

    elif event_type == EventType.SET_BASE.value:
        target = event_data.get("target")
        if not isinstance(target, int) or isinstance(target, bool):
            logger.warning("WebSocket: Invalid target for %s: %r", name, target)
        elif not timers.set_target(name, target):
            logger.warning("WebSocket: Unknown countdown %s", name)

    else:
        logger.warning("WebSocket: Unknown message type: %s", event_type)


# Create the app instance
app = create_app()


def run_server(host: str = "127.0.0.1", port: int = DEFAULT_PORT) -> None:
    """Run the web server.

    Args:
        host: Host to bind to (default: localhost only).
        port: Port to listen on (default: 8430).
    """
    import uvicorn

    logger.info("Starting Chronometer Web API on http://%s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_level="info")
