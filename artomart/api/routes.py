"""HTTP API exposing agent lifecycle controls."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from artomart.api.deps import get_registry
from artomart.core.models import AgentStatus, Archetype
from artomart.orchestration.registry import AgentRegistry

router = APIRouter(prefix="/api/agents", tags=["agents"])


class AgentResponse(BaseModel):
    archetype: str
    label: str
    state: str
    running: bool
    quarantined: bool
    startedAt: Optional[str]
    tasksCompleted: int
    errors: int
    consecutiveErrors: int
    currentTaskIds: List[str]
    restarts: int
    lastError: Optional[str]
    supportedActions: List[str]

    @classmethod
    def from_status(cls, status: AgentStatus, archetype: Archetype) -> "AgentResponse":
        return cls(
            label=archetype.human_label,
            supportedActions=list(archetype.supported_actions),
            **status.to_dict(),
        )


class LifecycleResponse(BaseModel):
    result: str
    agent: AgentResponse


def _describe(registry: AgentRegistry, name: str) -> AgentResponse:
    return AgentResponse.from_status(registry.status(name), registry.archetype(name))


@router.get("", response_model=List[AgentResponse])
async def list_agents(registry: AgentRegistry = Depends(get_registry)) -> List[AgentResponse]:
    return [_describe(registry, name) for name in registry.archetypes]


@router.get("/{archetype}", response_model=AgentResponse)
async def get_agent(archetype: str, registry: AgentRegistry = Depends(get_registry)) -> AgentResponse:
    return _describe(registry, archetype)


@router.post("/{archetype}/start", response_model=LifecycleResponse)
async def start_agent(archetype: str, registry: AgentRegistry = Depends(get_registry)) -> LifecycleResponse:
    result = await registry.start(archetype)
    return LifecycleResponse(result=result.value, agent=_describe(registry, archetype))


@router.post("/{archetype}/stop", response_model=LifecycleResponse)
async def stop_agent(archetype: str, registry: AgentRegistry = Depends(get_registry)) -> LifecycleResponse:
    result = await registry.stop(archetype)
    return LifecycleResponse(result=result.value, agent=_describe(registry, archetype))


@router.post("/{archetype}/restart", response_model=LifecycleResponse)
async def restart_agent(archetype: str, registry: AgentRegistry = Depends(get_registry)) -> LifecycleResponse:
    result = await registry.restart(archetype)
    return LifecycleResponse(result=result.value, agent=_describe(registry, archetype))
