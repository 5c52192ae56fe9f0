"""Synchronous chat endpoint backed by the archetype agents."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from artomart.agents.archetypes import DEFAULT_ARCHETYPE
from artomart.api.deps import get_runtime, parse_body, resolve_session_id
from artomart.core.errors import OrchestrationError, ValidationFailed
from artomart.core.models import TaskState, iso_timestamp
from artomart.runtime import Runtime

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

# extra time for the agent to report back after the task deadline
_WAIT_GRACE_SECONDS = 1.0


class ChatRequest(BaseModel):
    message: Optional[str] = None
    agentType: Optional[str] = None
    userId: Optional[str] = None
    sessionId: Optional[str] = None


class ChatResponse(BaseModel):
    response: str
    agentType: str
    timestamp: str
    userId: str
    sessionId: str
    conversationId: str
    suggestions: List[str]
    metadata: Dict[str, Any] = Field(default_factory=dict)


@router.post("/chat", response_model=ChatResponse)
async def chat(request: Request, runtime: Runtime = Depends(get_runtime)) -> ChatResponse:
    """Reply from the requested agent, or its canonical fallback. Never a raw error."""
    body = await parse_body(request, ChatRequest)
    message = (body.message or "").strip()
    if not message:
        raise ValidationFailed("Message is required")

    archetypes = runtime.registry.archetypes
    agent_type = body.agentType if body.agentType in archetypes else DEFAULT_ARCHETYPE
    user_id = body.userId or "anonymous"
    session_id = resolve_session_id(request, runtime, body.sessionId)

    reply: Optional[Dict[str, Any]] = None
    try:
        submitted = runtime.dispatcher.submit(agent_type, "chat", {"message": message}, session_id)
        task = runtime.dispatcher.get(submitted.task_id)
        timeout = max(0.0, task.deadline - task.created_at) + _WAIT_GRACE_SECONDS
        task = await runtime.dispatcher.wait(submitted.task_id, timeout=timeout)
        if task.state is TaskState.COMPLETED and task.result:
            reply = task.result
        else:
            log.warning("chat.task.unfinished", task_id=task.task_id, state=task.state.name.lower(), error=task.error)
    except OrchestrationError as exc:
        log.warning("chat.dispatch.failed", agent_type=agent_type, kind=exc.kind.value, error=exc.message)

    if reply is None:
        reply = _fallback_reply(runtime, agent_type)

    return ChatResponse(
        response=reply["text"],
        agentType=agent_type,
        timestamp=iso_timestamp(),
        userId=user_id,
        sessionId=session_id,
        conversationId=reply["conversationId"],
        suggestions=list(reply["suggestions"]),
        metadata=reply["metadata"],
    )


def _fallback_reply(runtime: Runtime, agent_type: str) -> Dict[str, Any]:
    generation = runtime.model_client.fallback(agent_type)
    archetype = runtime.registry.archetype(agent_type)
    return {
        "text": generation.text,
        "suggestions": list(archetype.default_suggestions),
        "conversationId": runtime.conversations.next_conversation_id(),
        "metadata": {
            "model": generation.model,
            "agent": agent_type,
            "degraded": True,
            "note": "Using fallback response - agent unavailable",
        },
    }
