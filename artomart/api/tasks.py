"""Asynchronous task submission, lookup and cancellation."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict, Field

from artomart.api.deps import get_runtime, parse_body, requested_session_id, resolve_session_id
from artomart.core.errors import ValidationFailed
from artomart.core.models import Task
from artomart.runtime import Runtime

router = APIRouter(prefix="/api", tags=["tasks"])


class TaskSubmitRequest(BaseModel):
    """``action`` plus the action's payload fields at the top level."""

    model_config = ConfigDict(extra="allow")

    action: str = Field(min_length=1)
    requestId: Optional[str] = None
    sessionId: Optional[str] = None


class TaskAccepted(BaseModel):
    taskId: str
    sessionId: str
    duplicate: bool = False


class TaskResponse(BaseModel):
    taskId: str
    archetype: str
    action: str
    sessionId: str
    requestId: str
    state: str
    progress: float
    createdAt: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(**task.to_dict())


@router.post("/agents/{archetype}/task", response_model=TaskAccepted, status_code=status.HTTP_202_ACCEPTED)
async def submit_task(archetype: str, request: Request, runtime: Runtime = Depends(get_runtime)) -> TaskAccepted:
    runtime.registry.archetype(archetype)
    body = await parse_body(request, TaskSubmitRequest)
    session_id = resolve_session_id(request, runtime, body.sessionId)
    payload = dict(body.model_extra or {})
    result = runtime.dispatcher.submit(archetype, body.action, payload, session_id, body.requestId)
    return TaskAccepted(taskId=result.task_id, sessionId=session_id, duplicate=result.duplicate)


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, request: Request, runtime: Runtime = Depends(get_runtime)) -> TaskResponse:
    task = runtime.dispatcher.get(task_id, requested_session_id(request))
    return TaskResponse.from_task(task)


@router.post("/tasks/{task_id}/cancel", response_model=TaskResponse)
async def cancel_task(task_id: str, request: Request, runtime: Runtime = Depends(get_runtime)) -> TaskResponse:
    session_id = requested_session_id(request)
    if session_id is None:
        raise ValidationFailed("sessionId is required to cancel a task")
    task = runtime.dispatcher.cancel(task_id, session_id)
    return TaskResponse.from_task(task)
