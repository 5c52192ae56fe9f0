"""Base agent definition supervised by the registry."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Type

import pydantic
import structlog

from artomart.core.conversations import ConversationStore
from artomart.core.errors import ErrorKind, OrchestrationError, UpstreamFailure, ValidationFailed
from artomart.core.events import EventSource, Handler, Subscription
from artomart.core.message_bus import A2AMessageBus
from artomart.core.models import (
    A2AMessage,
    AgentCounters,
    AgentEvent,
    AgentState,
    AgentStatus,
    Archetype,
    EnqueueResult,
    TaskAssignment,
)
from artomart.services.model_client import ModelClient

log = structlog.get_logger(__name__)

MessageRouter = Callable[[str, str, str, Dict[str, Any]], bool]
ActionHandler = Callable[[TaskAssignment, "TaskContext"], Awaitable[Dict[str, Any]]]

_CANCEL_MESSAGES = {
    ErrorKind.CANCELLED: "Task was cancelled",
    ErrorKind.TIMEOUT: "Task exceeded its deadline",
    ErrorKind.AGENT_UNAVAILABLE: "Agent stopped before the task finished",
}


class TaskContext:
    """Progress reporting handle given to action handlers."""

    def __init__(self, agent: "Agent", assignment: TaskAssignment) -> None:
        self._agent = agent
        self.assignment = assignment

    def progress(self, value: float, label: str) -> None:
        self._agent._report_progress(self.assignment.task_id, value, label)


class Agent:
    """One running archetype: inbox loop, task execution and error accounting."""

    def __init__(
        self,
        archetype: Archetype,
        *,
        bus: A2AMessageBus,
        model_client: ModelClient,
        conversations: ConversationStore,
        counters: Optional[AgentCounters] = None,
        router: Optional[MessageRouter] = None,
    ) -> None:
        self.archetype = archetype
        self._bus = bus
        self._model = model_client
        self._conversations = conversations
        self._counters = counters if counters is not None else AgentCounters()
        self._router = router
        self._events: EventSource[AgentEvent] = EventSource(archetype.name)
        self._state = AgentState.IDLE
        self._started_at: Optional[float] = None
        self._runner: Optional[asyncio.Task[None]] = None
        self._inbox: Optional[asyncio.Queue[Any]] = None
        self._stop_event = asyncio.Event()
        self._started_event = asyncio.Event()
        self._current: Dict[str, Optional[asyncio.Task[None]]] = {}
        self._progress: Dict[str, float] = {}
        self._cancel_reasons: Dict[str, ErrorKind] = {}
        self._handlers = self.action_handlers()
        missing = [action for action in archetype.supported_actions if action not in self._handlers]
        if missing:
            raise ValueError(f"{type(self).__name__} has no handler for {missing}")

    @property
    def name(self) -> str:
        return self.archetype.name

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def counters(self) -> AgentCounters:
        return self._counters

    def on(self, event: AgentEvent, handler: Handler) -> Subscription:
        """Register an observer. Call the returned handle to unsubscribe."""
        return self._events.on(event, handler)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the agent's inbox loop."""
        if self._runner is not None:
            return
        self._stop_event.clear()
        self._started_event.clear()
        self._runner = asyncio.create_task(self._run_safe(), name=f"agent:{self.name}")
        await self._started_event.wait()

    async def stop(self) -> None:
        """Signal the agent to stop and wait for the loop to finish."""
        if self._runner is None:
            return
        self._stop_event.set()
        if self._inbox is not None:
            self._inbox.put_nowait(None)
        runner = self._runner
        if runner is not asyncio.current_task():
            await runner
        self._runner = None

    async def _run_safe(self) -> None:
        """Wrap the main loop so a crash surfaces as a ``stopped`` event."""
        crash: Optional[BaseException] = None
        try:
            async with self._bus.deliver(self.name) as inbox:
                self._inbox = inbox
                self._state = AgentState.READY
                self._started_at = time.time()
                self._started_event.set()
                await self.on_start()
                while not self._stop_event.is_set():
                    try:
                        item = await asyncio.wait_for(inbox.get(), timeout=0.5)
                    except asyncio.TimeoutError:
                        await self.on_idle()
                        continue
                    await self._accept(item)
        except Exception as exc:  # noqa: BLE001
            crash = exc
            self._counters.last_error = str(exc)
            log.exception("agent.loop.crashed", archetype=self.name)
        finally:
            self._inbox = None
            await self._cancel_all(ErrorKind.AGENT_UNAVAILABLE)
            self._state = AgentState.STOPPED
            self._started_event.set()
            await self.on_stop()
            self._events.emit(
                AgentEvent.STOPPED,
                {
                    "archetype": self.name,
                    "crashed": crash is not None,
                    "error": str(crash) if crash else None,
                },
            )

    async def _accept(self, item: Any) -> None:
        if item is None:
            return
        if isinstance(item, TaskAssignment):
            if item.task_id not in self._current:
                # cancelled while still queued
                return
            self._current[item.task_id] = asyncio.create_task(
                self._execute(item), name=f"task:{item.task_id}"
            )
        elif isinstance(item, A2AMessage):
            self._events.emit(
                AgentEvent.MESSAGE,
                {"from": item.sender_id, "name": item.name, "payload": item.payload},
            )
            await self.handle_message(item)

    async def _cancel_all(self, reason: ErrorKind) -> None:
        for task_id in list(self._current):
            self.cancel(task_id, reason)
        running = [task for task in self._current.values() if task is not None]
        if running:
            await asyncio.gather(*running, return_exceptions=True)

    # ------------------------------------------------------------------
    # task admission
    # ------------------------------------------------------------------

    def enqueue(self, assignment: TaskAssignment) -> EnqueueResult:
        """Admit a task into the inbox, or say why not."""
        if self._state is AgentState.STOPPED or self._runner is None:
            return EnqueueResult(False, "stopped")
        if self._state is AgentState.FAILING:
            return EnqueueResult(False, "failing")
        if assignment.action not in self._handlers:
            return EnqueueResult(False, "unsupportedAction")
        if len(self._current) >= self.archetype.max_concurrent_tasks:
            return EnqueueResult(False, "saturated")
        self._current[assignment.task_id] = None
        if not self._bus.post(self.name, assignment):
            del self._current[assignment.task_id]
            return EnqueueResult(False, "stopped")
        self._state = AgentState.BUSY
        return EnqueueResult(True)

    def cancel(self, task_id: str, reason: ErrorKind = ErrorKind.CANCELLED) -> bool:
        """Best-effort cancellation. Unknown or finished tasks are a no-op."""
        if task_id not in self._current:
            return False
        running = self._current[task_id]
        if running is None:
            self._finish(task_id)
            self._emit_cancelled(task_id, reason)
            return True
        self._cancel_reasons[task_id] = reason
        running.cancel()
        return True

    def status(self) -> AgentStatus:
        return AgentStatus(
            archetype=self.name,
            state=self._state,
            started_at=self._started_at,
            tasks_completed=self._counters.tasks_completed,
            error_count=self._counters.error_count,
            consecutive_errors=self._counters.consecutive_errors,
            current_task_ids=tuple(self._current),
            restarts=self._counters.restarts,
            last_error=self._counters.last_error,
        )

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    async def _execute(self, assignment: TaskAssignment) -> None:
        task_id = assignment.task_id
        handler = self._handlers[assignment.action]
        try:
            result = await handler(assignment, TaskContext(self, assignment))
        except asyncio.CancelledError:
            reason = self._cancel_reasons.pop(task_id, ErrorKind.CANCELLED)
            self._finish(task_id)
            self._emit_cancelled(task_id, reason)
            return
        except ValidationFailed as exc:
            self._finish(task_id)
            self._emit_failed(task_id, exc.kind, exc.message)
            return
        except Exception as exc:  # noqa: BLE001
            self._finish(task_id)
            self._record_failure(task_id, exc)
            return

        self._finish(task_id)
        self._counters.tasks_completed += 1
        self._counters.consecutive_errors = 0
        log.info("agent.task.completed", archetype=self.name, task_id=task_id, action=assignment.action)
        self._events.emit(
            AgentEvent.TASK_COMPLETED,
            {"archetype": self.name, "taskId": task_id, "result": result},
        )

    def _finish(self, task_id: str) -> None:
        self._current.pop(task_id, None)
        self._progress.pop(task_id, None)
        self._cancel_reasons.pop(task_id, None)
        if self._state is AgentState.BUSY and not self._current:
            self._state = AgentState.READY

    def _record_failure(self, task_id: str, exc: Exception) -> None:
        counters = self._counters
        counters.error_count += 1
        counters.consecutive_errors += 1
        counters.last_error = str(exc)
        if isinstance(exc, OrchestrationError):
            kind, message = exc.kind, exc.message
            log.warning("agent.task.failed", archetype=self.name, task_id=task_id, kind=kind.value, error=message)
        else:
            kind, message = ErrorKind.INTERNAL, "Agent failed to complete the task"
            log.error("agent.task.crashed", archetype=self.name, task_id=task_id, exc_info=exc)
        self._emit_failed(task_id, kind, message)

        fatal = counters.consecutive_errors >= self.archetype.max_consecutive_errors
        if fatal and self._state is not AgentState.STOPPED:
            self._state = AgentState.FAILING
        self._events.emit(
            AgentEvent.ERROR,
            {
                "archetype": self.name,
                "taskId": task_id,
                "error": counters.last_error,
                "consecutiveErrors": counters.consecutive_errors,
                "fatal": fatal,
            },
        )

    def _emit_failed(self, task_id: str, kind: ErrorKind, message: str) -> None:
        self._events.emit(
            AgentEvent.TASK_FAILED,
            {"archetype": self.name, "taskId": task_id, "error": {"kind": kind.value, "message": message}},
        )

    def _emit_cancelled(self, task_id: str, reason: ErrorKind) -> None:
        self._emit_failed(task_id, reason, _CANCEL_MESSAGES.get(reason, "Task was cancelled"))

    def _report_progress(self, task_id: str, value: float, label: str) -> None:
        if task_id not in self._current:
            return
        value = max(self._progress.get(task_id, 0.0), min(1.0, max(0.0, value)))
        self._progress[task_id] = value
        self._events.emit(
            AgentEvent.TASK_PROGRESS,
            {"archetype": self.name, "taskId": task_id, "value": value, "label": label},
        )

    # ------------------------------------------------------------------
    # inter-agent messages
    # ------------------------------------------------------------------

    def send_message(self, target: str, name: str, payload: Dict[str, Any]) -> bool:
        """Fire-and-forget message to another archetype. False if nobody receives it."""
        if self._router is None:
            return False
        return self._router(self.name, target, name, payload)

    async def handle_message(self, message: A2AMessage) -> None:
        """Process a message from another agent."""
        log.debug("agent.message.received", archetype=self.name, sender=message.sender_id, name=message.name)

    # ------------------------------------------------------------------
    # actions
    # ------------------------------------------------------------------

    def action_handlers(self) -> Dict[str, ActionHandler]:
        """Map of action name to coroutine; subclasses extend it."""
        return {"chat": self._chat}

    async def _chat(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        message = str(assignment.payload.get("message") or "").strip()
        if not message:
            raise ValidationFailed("Message is required")
        session_id = assignment.session_id
        hints: Dict[str, Any] = {
            "history": [{"role": turn.role, "text": turn.text} for turn in self._conversations.recent(session_id)]
        }
        if not hints["history"]:
            del hints["history"]
        ctx.progress(0.1, "Thinking")
        generation = await self._model.generate(self.name, message, hints)

        suggestions = list(self.archetype.default_suggestions)
        conversation_id = self._conversations.next_conversation_id()
        self._conversations.append(session_id, "user", message)
        self._conversations.append(session_id, "agent", generation.text, suggestions)

        metadata: Dict[str, Any] = {
            "model": generation.model,
            "agent": self.name,
            "latencyMs": generation.latency_ms,
        }
        if generation.degraded:
            metadata["degraded"] = True
            metadata["note"] = "Using fallback response - check model provider configuration"
        return {
            "text": generation.text,
            "suggestions": suggestions,
            "conversationId": conversation_id,
            "metadata": metadata,
        }

    async def run_structured(
        self,
        ctx: TaskContext,
        payload: Dict[str, Any],
        output_schema: Type[pydantic.BaseModel],
        instruction: str,
    ) -> Dict[str, Any]:
        """Ask the model for a JSON result and validate it against ``output_schema``."""
        action = ctx.assignment.action
        ctx.progress(0.1, "Preparing request")
        raw = await self._model.generate_structured(
            self.name,
            action,
            payload,
            instruction=instruction,
            required_fields=required_fields(output_schema),
        )
        ctx.progress(0.8, "Validating result")
        try:
            validated = output_schema.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise UpstreamFailure(f"Model result for {action} did not match the expected shape") from exc
        return validated.model_dump()

    # ------------------------------------------------------------------
    # hooks
    # ------------------------------------------------------------------

    async def on_start(self) -> None:
        """Hook executed once the agent loop begins."""
        return None

    async def on_stop(self) -> None:
        """Hook executed when the agent loop exits."""
        return None

    async def on_idle(self) -> None:
        """Hook invoked when no inbox item arrived during the idle window."""
        return None


def parse_payload(schema: Type[pydantic.BaseModel], payload: Dict[str, Any]) -> Any:
    """Validate an action payload, turning pydantic errors into ``ValidationFailed``."""
    try:
        return schema.model_validate(payload)
    except pydantic.ValidationError as exc:
        problems: List[str] = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        ]
        raise ValidationFailed("Invalid payload", details={"problems": problems}) from exc


def required_fields(schema: Type[pydantic.BaseModel]) -> Sequence[str]:
    return [name for name, info in schema.model_fields.items() if info.is_required()]
