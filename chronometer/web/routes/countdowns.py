"""Countdown API Routes.

Endpoints:
- GET    /api/countdowns                 - All countdowns
- POST   /api/countdowns                 - Create a countdown
- POST   /api/countdowns/preview         - Render seconds with formats
- GET    /api/countdowns/{name}          - One countdown
- POST   /api/countdowns/{name}/start    - Start (resume) counting down
- POST   /api/countdowns/{name}/stop     - Stop counting down
- PUT    /api/countdowns/{name}/base     - Move the target instant
- PUT    /api/countdowns/{name}/format   - Set or clear formats
- DELETE /api/countdowns/{name}          - Stop and remove
"""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from chronometer.core.controller import CountdownController
from chronometer.core.formatter import FormatSpec, render
from chronometer.core.timer_manager import get_timer_manager

logger = logging.getLogger(__name__)

router = APIRouter()


class CountdownCreate(BaseModel):
    """Request body for creating a countdown."""

    name: str = Field(min_length=1, max_length=64)
    seconds: float | None = Field(default=None, gt=0)
    target: int | None = Field(default=None, ge=0)
    format: str | None = None
    custom_format: str | None = None
    autostart: bool = True
    replace: bool = False


class BaseUpdate(BaseModel):
    """Request body for moving the target instant."""

    target: int | None = Field(default=None, ge=0)
    seconds: float | None = Field(default=None, gt=0)


class FormatUpdate(BaseModel):
    """Request body for formats. Null clears a format."""

    format: str | None = None
    custom_format: str | None = None


class PreviewRequest(BaseModel):
    """Request body for rendering without a countdown."""

    seconds: int = Field(ge=0)
    format: str | None = None
    custom_format: str | None = None


class PreviewResult(BaseModel):
    """Rendered preview."""

    text: str
    valid: bool
    error: str | None = None


class CountdownStatus(BaseModel):
    """Countdown snapshot."""

    name: str
    base: int
    remaining: int
    text: str
    state: str
    started: bool
    visible: bool
    format: str | None = None
    custom_format: str | None = None


def _require_one(seconds: float | None, target: int | None) -> None:
    if (seconds is None) == (target is None):
        raise HTTPException(
            status_code=400, detail="Provide exactly one of 'seconds' or 'target'"
        )


def _get_or_404(name: str) -> CountdownController:
    controller = get_timer_manager().get(name)
    if controller is None:
        raise HTTPException(status_code=404, detail=f"Countdown not found: {name}")
    return controller


@router.get("")
async def list_countdowns() -> list[CountdownStatus]:
    """Get all countdowns.

    Returns:
        Snapshots of every countdown.
    """
    return [CountdownStatus(**status) for status in get_timer_manager().get_all().values()]


@router.post("", status_code=201)
async def create_countdown(body: CountdownCreate) -> CountdownStatus:
    """Create a countdown.

    Args:
        body: Name, target (absolute `target` or relative `seconds`) and formats.

    Returns:
        Snapshot of the new countdown.

    Raises:
        HTTPException: 400 on conflicting target fields, 409 if the name exists.
    """
    _require_one(body.seconds, body.target)
    manager = get_timer_manager()

    if manager.get(body.name) is not None and not body.replace:
        raise HTTPException(
            status_code=409, detail=f"Countdown already exists: {body.name}"
        )

    if body.target is not None:
        base = body.target
    else:
        base = manager.clock.now_ms() + int(body.seconds * 1000)

    controller = manager.create_timer(
        body.name, base, fmt=body.format, custom_format=body.custom_format
    )
    if body.autostart:
        controller.start()

    logger.info("Created countdown '%s' (autostart=%s)", body.name, body.autostart)
    return CountdownStatus(**controller.snapshot())


@router.post("/preview")
async def preview(body: PreviewRequest) -> PreviewResult:
    """Render a duration with the given formats.

    Useful for checking a format before applying it; a bad format yields
    valid=false with the fallback text.
    """
    rendered = render(body.seconds, FormatSpec(body.format, body.custom_format))
    return PreviewResult(
        text=rendered.text,
        valid=rendered.ok,
        error=rendered.error.reason if rendered.error else None,
    )


@router.get("/{name}")
async def get_countdown(name: str) -> CountdownStatus:
    """Get one countdown."""
    return CountdownStatus(**_get_or_404(name).snapshot())


@router.post("/{name}/start")
async def start_countdown(name: str) -> CountdownStatus:
    """Start counting down. Starting an expired countdown completes it silently."""
    controller = _get_or_404(name)
    controller.start()
    return CountdownStatus(**controller.snapshot())


@router.post("/{name}/stop")
async def stop_countdown(name: str) -> CountdownStatus:
    """Stop counting down."""
    controller = _get_or_404(name)
    controller.stop()
    return CountdownStatus(**controller.snapshot())


@router.put("/{name}/base")
async def set_countdown_base(name: str, body: BaseUpdate) -> CountdownStatus:
    """Move the target instant.

    Fires a tick, and restarts a completed countdown that is still started.
    """
    _require_one(body.seconds, body.target)
    controller = _get_or_404(name)

    if body.target is not None:
        base = body.target
    else:
        base = get_timer_manager().clock.now_ms() + int(body.seconds * 1000)

    controller.set_base(base)
    return CountdownStatus(**controller.snapshot())


@router.put("/{name}/format")
async def set_countdown_format(name: str, body: FormatUpdate) -> CountdownStatus:
    """Set both formats (null clears). Applies from the next render."""
    controller = _get_or_404(name)
    controller.set_format(body.format)
    controller.set_custom_chrono_format(body.custom_format)
    return CountdownStatus(**controller.snapshot())


@router.delete("/{name}")
async def delete_countdown(name: str) -> dict[str, str]:
    """Stop and remove a countdown."""
    if not get_timer_manager().remove_timer(name):
        raise HTTPException(status_code=404, detail=f"Countdown not found: {name}")
    return {"message": f"Countdown '{name}' deleted"}
