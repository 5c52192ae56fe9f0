"""FastAPI dependencies and request helpers shared by the routers."""
from __future__ import annotations

import json
import re
from typing import Any, Optional, Type, TypeVar

import pydantic
from fastapi import Depends, Request

from artomart.core.errors import ValidationFailed
from artomart.orchestration.dispatcher import TaskDispatcher
from artomart.orchestration.registry import AgentRegistry
from artomart.realtime.channel import RealtimeChannel
from artomart.runtime import Runtime

M = TypeVar("M", bound=pydantic.BaseModel)

SESSION_HEADER = "X-Session-Id"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_INJECTION_PATTERNS = (
    re.compile(r"<\s*script\b[^>]*>.*?<\s*/\s*script\s*>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<\s*/?\s*(script|iframe|object|embed|style)\b[^>]*>", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE),
)


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_dispatcher(runtime: Runtime = Depends(get_runtime)) -> TaskDispatcher:
    return runtime.dispatcher


def get_registry(runtime: Runtime = Depends(get_runtime)) -> AgentRegistry:
    return runtime.registry


def get_channel(runtime: Runtime = Depends(get_runtime)) -> RealtimeChannel:
    return runtime.channel


def sanitize_text(value: str) -> str:
    """Strip control characters and markup that could be replayed into a page."""
    cleaned = _CONTROL_CHARS.sub("", value)
    for pattern in _INJECTION_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned


def sanitize(data: Any) -> Any:
    if isinstance(data, str):
        return sanitize_text(data)
    if isinstance(data, dict):
        return {key: sanitize(value) for key, value in data.items()}
    if isinstance(data, list):
        return [sanitize(item) for item in data]
    return data


async def parse_body(request: Request, model: Type[M]) -> M:
    """Read, sanitize and validate a JSON object body."""
    raw = await request.body()
    try:
        data = json.loads(raw) if raw else {}
    except ValueError:
        raise ValidationFailed("Request body must be valid JSON") from None
    if not isinstance(data, dict):
        raise ValidationFailed("Request body must be a JSON object")
    try:
        return model.model_validate(sanitize(data))
    except pydantic.ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in error['loc']) or 'body'}: {error['msg']}" for error in exc.errors()
        ]
        raise ValidationFailed("Invalid request body", details={"problems": problems}) from exc


def requested_session_id(request: Request, body_value: Optional[str] = None) -> Optional[str]:
    return request.headers.get(SESSION_HEADER) or request.query_params.get("sessionId") or body_value or None


def resolve_session_id(request: Request, runtime: Runtime, body_value: Optional[str] = None) -> str:
    """Session from header, query or body, generated when the client sent none."""
    return requested_session_id(request, body_value) or runtime.channel.new_session_id()
