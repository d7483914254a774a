"""
echovoice/ui/web_app.py — FastAPI server for EchoVoice.

REST endpoints
--------------
GET  /health                 JSON health check
GET  /state                  Full runtime snapshot
POST /person                 {"name": "Sarah"} or {"name": null} to clear
POST /location               {"name": "Kitchen"} or {"name": null} to clear
POST /tone                   {"tone": "formal" | "friendly" | "neutral"}
POST /suggestions/refresh    Recompute and return the ranked suggestions
POST /speak                  {"phrase": "..."}
POST /emergency/press        Pointer down on the emergency surface
POST /emergency/release      Pointer up
POST /emergency/leave        Pointer left the surface
POST /emergency/confirm      Confirm the pending emergency now
POST /emergency/cancel       Cancel the pending emergency

WebSocket
---------
ws://<host>:<port>/ws

Messages pushed by server (JSON):
  {"type": "snapshot",    ...}                         ← on connect
  {"type": "context",     "emotion": ..., ...}
  {"type": "suggestions", "suggestions": [...], "source": "model"}
  {"type": "speaking",    "text": "..."}
  {"type": "detector_error", "detector": "...", "kind": "PERMISSION_DENIED"}
  {"type": "emergency_armed", "trigger_kind": "RAPID_TAP", ...}
  {"type": "countdown",   "seconds_remaining": 7}
  {"type": "emergency_cancelled"}
  {"type": "escalated",   "outcome": "DEGRADED", "delivery": "PARTIAL", "success_count": 2, ...}
  {"type": "tick",        "timestamp_ms": ...}         ← heartbeat every second

Clients may send {"action": "press" | "release" | "leave" | "confirm" | "cancel"}.
"""

from __future__ import annotations

import asyncio
import json
import threading
import time
from typing import Any, Dict, List, Literal, Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from echovoice.core.logger import get_logger
from echovoice.pipeline.controller import (
    ON_CONTEXT,
    ON_COUNTDOWN,
    ON_DETECTOR_ERROR,
    ON_EMERGENCY_ARMED,
    ON_EMERGENCY_CANCELLED,
    ON_ESCALATED,
    ON_SPEAKING,
    ON_SUGGESTIONS,
    EchoController,
)

_log = get_logger()

# ── FastAPI app ───────────────────────────────────────────────────────────────
app = FastAPI(title="EchoVoice", version="1.0")

# ── Shared state ──────────────────────────────────────────────────────────────
_controller: Optional[EchoController] = None
_connected_clients: Set[WebSocket] = set()
_clients_lock = threading.Lock()

# asyncio event loop running in the uvicorn thread
_loop: Optional[asyncio.AbstractEventLoop] = None
_heartbeat_task: Optional[asyncio.Task] = None

# Bus event → WebSocket message type
_EVENT_TYPES: Dict[str, str] = {
    ON_CONTEXT: "context",
    ON_SUGGESTIONS: "suggestions",
    ON_SPEAKING: "speaking",
    ON_DETECTOR_ERROR: "detector_error",
    ON_EMERGENCY_ARMED: "emergency_armed",
    ON_COUNTDOWN: "countdown",
    ON_EMERGENCY_CANCELLED: "emergency_cancelled",
    ON_ESCALATED: "escalated",
}


# ── Request bodies ────────────────────────────────────────────────────────────

class NameBody(BaseModel):
    name: Optional[str] = None


class ToneBody(BaseModel):
    tone: Literal["formal", "friendly", "neutral"]


class SpeakBody(BaseModel):
    phrase: str


# ── WebSocket helpers ─────────────────────────────────────────────────────────

def _push(msg: Dict[str, Any]) -> None:
    """Thread-safe push of a JSON message to every connected WebSocket client."""
    if _loop is None or not _connected_clients:
        return
    asyncio.run_coroutine_threadsafe(_broadcast(msg), _loop)


async def _broadcast(msg: Dict[str, Any]) -> None:
    text = json.dumps(msg, default=str)
    with _clients_lock:
        clients = list(_connected_clients)
    dead: List[WebSocket] = []
    for ws in clients:
        try:
            await ws.send_text(text)
        except (WebSocketDisconnect, RuntimeError):
            dead.append(ws)
    if dead:
        with _clients_lock:
            for ws in dead:
                _connected_clients.discard(ws)


# ── EventBus → WebSocket bridge ───────────────────────────────────────────────

def attach_controller(ctrl: EchoController) -> None:
    """Make *ctrl* the controller served by :data:`app` and forward its events."""
    global _controller
    _controller = ctrl
    for event, msg_type in _EVENT_TYPES.items():
        ctrl.subscribe(event, lambda data, t=msg_type: _push({"type": t, **data}))


def _require_controller() -> EchoController:
    if _controller is None:
        raise HTTPException(status_code=503, detail="controller not ready")
    return _controller


# ── Heartbeat ─────────────────────────────────────────────────────────────────

async def _heartbeat() -> None:
    """Push a tick message every second so the client can detect disconnects."""
    while True:
        await asyncio.sleep(1.0)
        state = _controller.trigger.state.value if _controller else None
        _push({"type": "tick", "timestamp_ms": round(time.time() * 1000), "emergency_state": state})


# ── App lifecycle ─────────────────────────────────────────────────────────────

@app.on_event("startup")
async def _on_startup() -> None:
    global _loop, _heartbeat_task
    _loop = asyncio.get_running_loop()
    _heartbeat_task = asyncio.create_task(_heartbeat())
    if _controller is not None:
        await _controller.start()
    _log.info("web_app", "startup", {})


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    global _loop, _heartbeat_task
    if _heartbeat_task is not None:
        _heartbeat_task.cancel()
        _heartbeat_task = None
    if _controller is not None:
        await _controller.shutdown()
    _loop = None
    _log.info("web_app", "shutdown", {})


# ── Routes ────────────────────────────────────────────────────────────────────

@app.get("/health")
async def health() -> JSONResponse:
    ctrl_ok = _controller is not None
    return JSONResponse({
        "status": "ok" if ctrl_ok else "controller_not_ready",
        "emergency_state": _controller.trigger.state.value if ctrl_ok else None,
        "clients": len(_connected_clients),
    })


@app.get("/state")
async def state() -> JSONResponse:
    return JSONResponse(_require_controller().snapshot())


@app.post("/person")
async def person(body: NameBody) -> JSONResponse:
    ctrl = _require_controller()
    if body.name:
        ctrl.select_person(body.name)
    else:
        ctrl.clear_person()
    return JSONResponse({"ok": True, "context": ctrl.context.to_dict()})


@app.post("/location")
async def location(body: NameBody) -> JSONResponse:
    ctrl = _require_controller()
    if body.name:
        ctrl.select_location(body.name)
    else:
        ctrl.clear_location()
    return JSONResponse({"ok": True, "context": ctrl.context.to_dict()})


@app.post("/tone")
async def tone(body: ToneBody) -> JSONResponse:
    ctrl = _require_controller()
    ctrl.set_tone(body.tone)
    return JSONResponse({"ok": True, "tone": body.tone})


@app.post("/suggestions/refresh")
async def refresh_suggestions() -> JSONResponse:
    ctrl = _require_controller()
    suggestions = await ctrl.refresh_suggestions()
    return JSONResponse({
        "suggestions": [s.to_dict() for s in suggestions],
        "source": ctrl.engine.last_source,
    })


@app.post("/speak")
async def speak(body: SpeakBody) -> JSONResponse:
    ok = _require_controller().speak_phrase(body.phrase)
    return JSONResponse({"ok": ok}, status_code=200 if ok else 503)


_EMERGENCY_ACTIONS = {
    "press": lambda c: c.press(),
    "release": lambda c: c.release(),
    "leave": lambda c: c.cancel_press(),
    "confirm": lambda c: c.confirm_emergency(),
    "cancel": lambda c: c.cancel_emergency(),
}


@app.post("/emergency/{action}")
async def emergency(action: str) -> JSONResponse:
    ctrl = _require_controller()
    handler = _EMERGENCY_ACTIONS.get(action)
    if handler is None:
        raise HTTPException(status_code=404, detail=f"unknown emergency action: {action}")
    result = handler(ctrl)
    return JSONResponse({
        "ok": True if result is None else bool(result),
        "state": ctrl.trigger.state.value,
        "tap_count": ctrl.trigger.tap_count,
    })


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket) -> None:
    await ws.accept()
    with _clients_lock:
        _connected_clients.add(ws)

    # Send current snapshot on connect
    snapshot = _controller.snapshot() if _controller else {}
    await ws.send_text(json.dumps({"type": "snapshot", **snapshot}, default=str))
    _log.info("web_app", "ws_connected", {"total": len(_connected_clients)})

    try:
        while True:
            msg = await ws.receive_text()
            try:
                data = json.loads(msg)
            except json.JSONDecodeError:
                _log.warn("web_app", "ws_bad_message", {"raw": msg[:200]})
                continue
            _handle_client_msg(data)
    except WebSocketDisconnect:
        pass
    finally:
        with _clients_lock:
            _connected_clients.discard(ws)
        _log.info("web_app", "ws_disconnected", {"total": len(_connected_clients)})


def _handle_client_msg(data: Any) -> None:
    """Emergency gestures sent over the socket."""
    if not isinstance(data, dict) or _controller is None:
        return
    handler = _EMERGENCY_ACTIONS.get(str(data.get("action")))
    if handler is not None:
        handler(_controller)


# ── Public launcher ───────────────────────────────────────────────────────────

def start_web_server(
    controller: EchoController,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    """
    Attach *controller* and run uvicorn in the current thread (blocking).

    The controller is started and shut down with the server.
    """
    attach_controller(controller)

    import uvicorn  # type: ignore
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)
    _log.info("web_app", "server_start", {"host": host, "port": port})
    server.run()
