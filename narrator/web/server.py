"""Starlette app — health/state routes + WebSocket bridge to the read-along engine."""
import asyncio
import contextlib
import logging
import uuid
from typing import Optional

from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from ..config import APP_VERSION, TTS_HOST
from ..engine import ReaderEngine
from ..errors import NotReadyError
from ..tts import check_server
from .state import ReaderState

logger = logging.getLogger(__name__)

# Shared state
_state = ReaderState()
_engine: Optional[ReaderEngine] = None

# Strong refs for fire-and-forget command tasks
_command_tasks: set[asyncio.Task] = set()


# ── HTTP ─────────────────────────────────────────────────────────────────────

async def health(request):
    backend_ok = await check_server(TTS_HOST)
    return JSONResponse({
        "status": "ok" if backend_ok else "degraded",
        "version": APP_VERSION,
        "checks": {"tts_backend": {"ok": backend_ok, "host": TTS_HOST}},
        "clients": _state.client_count,
    })


async def engine_state(request):
    if not _engine:
        return JSONResponse({"error": "engine not running"}, status_code=503)
    return JSONResponse(_engine.snapshot())


# ── WebSocket ────────────────────────────────────────────────────────────────

async def _pump_in(websocket: WebSocket):
    """Client → engine until the socket closes."""
    try:
        while True:
            await _handle_ws_message(await websocket.receive_json())
    except WebSocketDisconnect:
        return
    except (ValueError, KeyError, AttributeError) as e:
        logger.error("Bad WS message, closing: %s", e)


async def _pump_out(websocket: WebSocket, queue: asyncio.Queue):
    """Engine events → client until sending fails."""
    while True:
        event, data = await queue.get()
        try:
            await websocket.send_json({"type": event, "data": data})
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("WS send failed: %s", e)
            return


async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    client_id = uuid.uuid4().hex[:8]
    queue = _state.subscribe(client_id)
    logger.info("WS client %s connected (%d total)", client_id, _state.client_count)

    try:
        if _engine:
            await websocket.send_json({"type": "sync", "data": _engine.snapshot()})
        pumps = [
            asyncio.create_task(_pump_in(websocket)),
            asyncio.create_task(_pump_out(websocket, queue)),
        ]
        # Either side finishing ends the session
        _, still_running = await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
        for task in still_running:
            task.cancel()
    finally:
        _state.unsubscribe(client_id)
        logger.info("WS client %s disconnected", client_id)


def _spawn(coro):
    """Run an engine command that may wait on generation in its own task."""
    async def _run():
        try:
            await coro
        except NotReadyError as e:
            logger.warning("Ignoring command: %s", e)
            _state.publish("error", {"kind": "not_ready", "message": str(e), "retryable": False})

    task = asyncio.create_task(_run())
    _command_tasks.add(task)
    task.add_done_callback(_command_tasks.discard)
    return task


async def _handle_ws_message(data: dict):
    """Route incoming WebSocket messages to engine methods."""
    if not _engine:
        return

    msg_type = data.get("type", "")

    if msg_type == "attach":
        lesson_id = str(data.get("lesson_id", "")).strip()
        if lesson_id:
            _engine.attach(lesson_id, data.get("text", "") or "")

    elif msg_type == "play":
        _spawn(_engine.play())

    elif msg_type == "pause":
        _engine.pause()

    elif msg_type == "toggle":
        _spawn(_engine.toggle())

    elif msg_type == "set_rate":
        try:
            _engine.set_rate(data.get("rate", 1))
        except ValueError as e:
            _state.publish("error", {"kind": "invalid_rate", "message": str(e), "retryable": False})

    elif msg_type == "detach":
        _engine.detach()

    else:
        logger.warning("Unknown WS message type: %s", msg_type)


async def _tick_loop():
    """Send elapsed/duration tick to clients every second."""
    while True:
        await asyncio.sleep(1)
        if _engine and _engine.player.is_playing():
            _state.publish("tick", {
                "elapsed": round(_engine.player.current_time, 1),
                "duration": _engine.player.duration,
            })


# ── App factory ──────────────────────────────────────────────────────────────

@contextlib.asynccontextmanager
async def _lifespan(app):
    _state.bind(_engine)
    tick_task = asyncio.create_task(_tick_loop())
    logger.info("Reader engine ready")
    try:
        yield
    finally:
        tick_task.cancel()
        for task in list(_command_tasks):
            task.cancel()
        await _engine.aclose()
        _state.unbind()
        logger.info("Reader engine stopped")


def create_app(engine: Optional[ReaderEngine] = None) -> Starlette:
    global _engine

    _engine = engine or ReaderEngine()

    routes = [
        Route("/api/health", health),
        Route("/api/state", engine_state),
        WebSocketRoute("/ws", websocket_endpoint),
    ]

    return Starlette(routes=routes, lifespan=_lifespan)
