"""Read-only health probes."""
from __future__ import annotations

import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from artomart.api.deps import get_runtime
from artomart.core.models import iso_timestamp
from artomart.runtime import Runtime

router = APIRouter(prefix="/api/health", tags=["health"])

ENDPOINTS = {
    "chat": "/api/chat",
    "health": "/api/health",
    "websocket": "/api/websocket",
    "realtime": "/api/ws",
    "tasks": "/api/agents/{archetype}/task",
    "agents": "/api/agents",
}


@router.get("")
async def health(runtime: Runtime = Depends(get_runtime)) -> dict:
    config = runtime.config
    return {
        "status": "ok",
        "timestamp": iso_timestamp(),
        "service": config.service_name,
        "version": config.version,
        "environment": config.environment,
        "uptimeSeconds": round(time.time() - runtime.started_at, 1),
        "features": {
            "ai_chat": "enabled",
            "model_provider": "configured" if config.provider.api_key else "fallback-only",
            "realtime_channel": "enabled",
            "polling_fallback": "enabled",
            "cors": "enabled",
            "auth_required": config.gateway.auth_required,
        },
        "endpoints": ENDPOINTS,
    }


@router.get("/agents")
async def agents_health(runtime: Runtime = Depends(get_runtime)) -> JSONResponse:
    statuses = runtime.registry.snapshot_all()
    degraded = any(status.quarantined or not status.running for status in statuses.values())
    body = {
        "status": "degraded" if degraded else "healthy",
        "timestamp": iso_timestamp(),
        "agents": {name: status.to_dict() for name, status in statuses.items()},
        "tasks": runtime.dispatcher.stats(),
        "channel": runtime.channel.stats(),
        "modelInFlight": runtime.pool.in_flight,
    }
    return JSONResponse(status_code=503 if degraded else 200, content=body)
