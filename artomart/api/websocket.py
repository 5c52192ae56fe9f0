"""Realtime transports: a persistent WebSocket and an HTTP polling fallback.

Both read from the same per-session event log, so clients receive identical
envelopes whichever transport they use.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from artomart.api.deps import get_runtime, parse_body, resolve_session_id, sanitize
from artomart.api.middleware import bearer_token, origin_allowed
from artomart.core.errors import OrchestrationError
from artomart.core.models import iso_timestamp
from artomart.realtime.channel import OutboundBuffer
from artomart.runtime import Runtime

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["realtime"])

POLICY_VIOLATION = 1008


class ChannelRequest(BaseModel):
    type: str = "connect"
    data: Dict[str, Any] = Field(default_factory=dict)
    sessionId: Optional[str] = None


@router.get("/websocket")
async def channel_info(request: Request, runtime: Runtime = Depends(get_runtime)) -> dict:
    session_id = resolve_session_id(request, runtime)
    return {
        "type": "info",
        "status": "Realtime channel active",
        "message": "Connect to /api/ws for push delivery or POST here with type=poll",
        "timestamp": iso_timestamp(),
        "sessionId": session_id,
        "cursor": runtime.channel.latest_cursor(session_id),
        "features": [
            "Task progress events",
            "Typing indicators",
            "Connection status",
            "Polling fallback",
        ],
        "endpoints": {"websocket": "/api/ws", "poll": "/api/websocket"},
    }


@router.post("/websocket")
async def channel_message(request: Request, runtime: Runtime = Depends(get_runtime)) -> dict:
    body = await parse_body(request, ChannelRequest)
    session_id = resolve_session_id(request, runtime, body.sessionId)
    channel = runtime.channel

    if body.type == "poll":
        since = _as_int(body.data.get("sinceCursor"), 0)
        limit = max(1, min(_as_int(body.data.get("limit"), 100), 500))
        events, cursor = channel.poll(session_id, since, limit)
        return {
            "type": "poll",
            "status": "ok",
            "sessionId": session_id,
            "events": [envelope.to_dict() for envelope in events],
            "cursor": cursor,
        }
    if body.type == "message":
        return {
            "type": "message",
            "status": "received",
            "sessionId": session_id,
            "echo": body.data,
            "timestamp": iso_timestamp(),
        }
    if body.type == "typing":
        return {
            "type": "typing",
            "status": "typing_indicator",
            "sessionId": session_id,
            "message": "AI agent is thinking...",
        }

    channel.session(session_id)
    return {
        "type": "connect",
        "status": "connected",
        "sessionId": session_id,
        "connectionId": f"ws_{session_id}",
        "cursor": channel.latest_cursor(session_id),
        "message": "Polling channel ready",
    }


@router.websocket("/ws")
async def realtime(websocket: WebSocket) -> None:
    runtime: Runtime = websocket.app.state.runtime
    rejection = _handshake_rejection(runtime, websocket)
    if rejection is not None:
        if runtime.config.security_logging:
            client = websocket.client.host if websocket.client else None
            log.warning(rejection, path="/api/ws", client=client, origin=websocket.headers.get("origin"))
        await websocket.close(code=POLICY_VIOLATION)
        return

    session_id = websocket.query_params.get("sessionId") or runtime.channel.new_session_id()
    await websocket.accept()
    buffer = runtime.channel.connect(session_id)
    await websocket.send_json({"type": "connected", "sessionId": session_id})
    writer = asyncio.create_task(_pump(websocket, buffer))
    try:
        while True:
            frame = await websocket.receive_text()
            reply = _handle_frame(runtime, session_id, frame)
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        pass
    finally:
        # tasks keep running; only this connection goes away
        runtime.channel.disconnect(session_id, buffer)
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)


def _handshake_rejection(runtime: Runtime, websocket: WebSocket) -> Optional[str]:
    """Apply the gateway checks to a WebSocket upgrade.

    HTTP middleware never sees upgrades, so origin, rate limit and bearer
    token are checked here. Browsers cannot set headers on a WebSocket, so
    the token may also arrive as the ``token`` query parameter. Returns the
    security event name on rejection.
    """
    gateway = runtime.config.gateway
    if not origin_allowed(websocket.headers.get("origin"), gateway.allowed_origins):
        return "gateway.origin.rejected"
    client_key = websocket.client.host if websocket.client else "unknown"
    allowed, _ = runtime.limiter.check(client_key)
    if not allowed:
        return "gateway.rate_limit.exceeded"
    if gateway.auth_required:
        token = bearer_token(websocket.headers.get("authorization", "")) or websocket.query_params.get("token", "")
        if not runtime.token_verifier(token):
            return "gateway.auth.rejected"
    return None


async def _pump(websocket: WebSocket, buffer: OutboundBuffer) -> None:
    while True:
        envelope = await buffer.get()
        if envelope is None:
            return
        await websocket.send_json(envelope.to_dict())


def _handle_frame(runtime: Runtime, session_id: str, frame: str) -> Optional[Dict[str, Any]]:
    try:
        message = sanitize(json.loads(frame))
    except ValueError:
        return {"type": "error", "error": "Frames must be JSON objects", "kind": "validationError"}
    if not isinstance(message, dict):
        return {"type": "error", "error": "Frames must be JSON objects", "kind": "validationError"}

    kind = message.get("type")
    task_id = message.get("taskId")
    if kind == "ping":
        return {"type": "pong", "timestamp": iso_timestamp()}
    if kind == "subscribe" and isinstance(task_id, str):
        replayed = runtime.channel.subscribe(session_id, task_id)
        return {"type": "subscribed", "taskId": task_id, "replayed": replayed is not None}
    if kind == "cancel" and isinstance(task_id, str):
        try:
            task = runtime.dispatcher.cancel(task_id, session_id)
        except OrchestrationError as exc:
            return {"type": "error", "taskId": task_id, "error": exc.message, "kind": exc.kind.value}
        return {"type": "cancelled", "taskId": task_id, "state": task.state.name.lower()}
    return {"type": "error", "error": f"Unsupported frame type: {kind}", "kind": "validationError"}


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
