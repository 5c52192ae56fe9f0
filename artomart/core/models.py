"""Core data models shared across orchestration components."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

if TYPE_CHECKING:
    from artomart.services.prompts import PromptTemplate


def iso_timestamp(epoch: Optional[float] = None) -> str:
    moment = datetime.now(timezone.utc) if epoch is None else datetime.fromtimestamp(epoch, timezone.utc)
    return moment.isoformat().replace("+00:00", "Z")


class AgentState(Enum):
    """Lifecycle states for an agent instance."""

    IDLE = auto()
    READY = auto()
    BUSY = auto()
    FAILING = auto()
    STOPPED = auto()


class TaskState(Enum):
    """Lifecycle states for a task owned by the dispatcher."""

    QUEUED = auto()
    RUNNING = auto()
    COMPLETED = auto()
    FAILED = auto()
    CANCELLED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED)


class AgentEvent(str, Enum):
    """Events an agent instance emits to its observers."""

    TASK_PROGRESS = "taskProgress"
    TASK_COMPLETED = "taskCompleted"
    TASK_FAILED = "taskFailed"
    ERROR = "error"
    STOPPED = "stopped"
    MESSAGE = "message"


class RegistryEvent(str, Enum):
    """Supervisory events published by the agent registry."""

    AGENT_STARTED = "agentStarted"
    AGENT_STOPPED = "agentStopped"
    AGENT_FAILING = "agentFailing"
    RESTART_SCHEDULED = "restartScheduled"
    AGENT_QUARANTINED = "agentQuarantined"
    SYSTEM_HEALTH = "systemHealth"


@dataclass(frozen=True)
class Archetype:
    """Immutable descriptor for a kind of agent, defined at startup."""

    name: str
    human_label: str
    prompt: "PromptTemplate"
    supported_actions: Tuple[str, ...]
    default_suggestions: Tuple[str, ...]
    fallback_reply: str
    max_consecutive_errors: int
    max_concurrent_tasks: int = 4
    restart_delay_ladder: Tuple[float, ...] = (1.0, 5.0, 15.0)
    action_deadlines: Dict[str, float] = field(default_factory=dict)
    temperature: float = 0.7
    max_tokens: int = 1024

    def supports(self, action: str) -> bool:
        return action in self.supported_actions

    def deadline_for(self, action: str, default: float) -> float:
        return self.action_deadlines.get(action, default)


@dataclass(slots=True)
class AgentCounters:
    """Counters that outlive a single agent instance across restarts."""

    tasks_completed: int = 0
    error_count: int = 0
    consecutive_errors: int = 0
    restarts: int = 0
    last_error: Optional[str] = None


@dataclass(frozen=True)
class AgentStatus:
    """Point-in-time copy of an agent's state and counters."""

    archetype: str
    state: AgentState
    started_at: Optional[float]
    tasks_completed: int
    error_count: int
    consecutive_errors: int
    current_task_ids: Tuple[str, ...]
    restarts: int = 0
    last_error: Optional[str] = None
    quarantined: bool = False

    @property
    def running(self) -> bool:
        return self.state is not AgentState.STOPPED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "archetype": self.archetype,
            "state": self.state.name.lower(),
            "running": self.running,
            "startedAt": iso_timestamp(self.started_at) if self.started_at else None,
            "tasksCompleted": self.tasks_completed,
            "errors": self.error_count,
            "consecutiveErrors": self.consecutive_errors,
            "currentTaskIds": list(self.current_task_ids),
            "restarts": self.restarts,
            "lastError": self.last_error,
            "quarantined": self.quarantined,
        }


@dataclass(frozen=True)
class EnqueueResult:
    accepted: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class TaskAssignment:
    """What an agent receives for one task; the Task record stays with the dispatcher."""

    task_id: str
    action: str
    payload: Dict[str, Any]
    session_id: str
    request_id: str


@dataclass(slots=True)
class Task:
    """One unit of client work and its lifecycle."""

    task_id: str
    archetype: str
    action: str
    payload: Dict[str, Any]
    session_id: str
    request_id: str
    created_at: float
    deadline: float
    state: TaskState = TaskState.QUEUED
    progress: float = 0.0
    last_event_at: float = 0.0
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    finished_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "taskId": self.task_id,
            "archetype": self.archetype,
            "action": self.action,
            "sessionId": self.session_id,
            "requestId": self.request_id,
            "state": self.state.name.lower(),
            "progress": self.progress,
            "createdAt": iso_timestamp(self.created_at),
        }
        if self.result is not None:
            body["result"] = self.result
        if self.error is not None:
            body["error"] = self.error
        return body


@dataclass(frozen=True)
class ConversationTurn:
    session_id: str
    turn_index: int
    role: str
    text: str
    suggestions: Tuple[str, ...] = ()
    created_at: float = 0.0


@dataclass(slots=True)
class A2AMessage:
    """Named message exchanged between agents over the in-process bus."""

    sender_id: str
    recipient_id: Optional[str]
    payload: Dict[str, Any]
    name: str = "message"
    correlation_id: Optional[str] = None
