"""Task dispatcher: owns tasks, routes them to agents and fans events out."""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set, Tuple

import structlog

from artomart.core.errors import (
    DuplicateRequest,
    ErrorKind,
    Forbidden,
    TaskNotFound,
    TaskTimeout,
    UnsupportedAction,
)
from artomart.core.models import AgentEvent, RegistryEvent, Task, TaskAssignment, TaskState
from artomart.orchestration.journal import ResultJournal
from artomart.orchestration.registry import AgentRegistry
from artomart.realtime.channel import ChannelEvent, RealtimeChannel

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    task_id: str
    duplicate: bool = False


@dataclass(frozen=True)
class DispatchPolicy:
    """How hard to try before declaring an agent unavailable."""

    attempts: int = 3
    interval_seconds: float = 0.25


class TaskDispatcher:
    """Accepts client work, hands it to the registry and publishes lifecycle events.

    ``submit`` and ``cancel`` never await, so two submissions with the same
    ``(session_id, request_id)`` cannot both create a task.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        channel: RealtimeChannel,
        *,
        default_deadline: float = 30.0,
        retention_seconds: float = 300.0,
        policy: DispatchPolicy = DispatchPolicy(),
        journal: Optional[ResultJournal] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._channel = channel
        self._default_deadline = default_deadline
        self._retention = retention_seconds
        self._policy = policy
        self._journal = journal
        self._clock = clock
        self._tasks: Dict[str, Task] = {}
        self._requests: Dict[Tuple[str, str], str] = {}
        self._waiters: Dict[str, asyncio.Event] = {}
        self._deadlines: Dict[str, asyncio.TimerHandle] = {}
        self._background: Set[asyncio.Task[None]] = set()
        self._reaper: Optional[asyncio.Task[None]] = None
        self._subscriptions = [
            registry.on(AgentEvent.TASK_PROGRESS, self._on_progress),
            registry.on(AgentEvent.TASK_COMPLETED, self._on_completed),
            registry.on(AgentEvent.TASK_FAILED, self._on_failed),
            registry.on(RegistryEvent.AGENT_STOPPED, self._on_agent_stopped),
            registry.on(RegistryEvent.SYSTEM_HEALTH, self._on_system_health),
        ]

    # ------------------------------------------------------------------
    # client operations
    # ------------------------------------------------------------------

    def submit(
        self,
        archetype: str,
        action: str,
        payload: Dict[str, Any],
        session_id: str,
        request_id: Optional[str] = None,
    ) -> SubmitResult:
        """Create a task and start dispatching it.

        Raises:
            UnknownArchetype: no such archetype; no task is created.
            UnsupportedAction: the archetype does not offer ``action``.
            DuplicateRequest: the request id was used for another task.
        """
        descriptor = self._registry.archetype(archetype)
        if not descriptor.supports(action):
            raise UnsupportedAction(archetype, action)

        request_id = request_id or uuid.uuid4().hex
        key = (session_id, request_id)
        existing = self._tasks.get(self._requests.get(key, ""))
        if existing is not None:
            if (existing.archetype, existing.action) != (archetype, action):
                raise DuplicateRequest(existing.task_id)
            log.info("dispatcher.task.duplicate", task_id=existing.task_id, request_id=request_id)
            return SubmitResult(existing.task_id, duplicate=True)

        now = self._clock()
        task = Task(
            task_id=f"task_{uuid.uuid4().hex}",
            archetype=archetype,
            action=action,
            payload=payload,
            session_id=session_id,
            request_id=request_id,
            created_at=now,
            deadline=now + descriptor.deadline_for(action, self._default_deadline),
            last_event_at=now,
        )
        self._tasks[task.task_id] = task
        self._requests[key] = task.task_id
        self._waiters[task.task_id] = asyncio.Event()
        self._arm_deadline(task)
        self._channel.publish(
            session_id,
            task.task_id,
            ChannelEvent.TASK_ACCEPTED,
            {"archetype": archetype, "action": action, "requestId": request_id},
        )
        log.info("dispatcher.task.accepted", task_id=task.task_id, archetype=archetype, action=action)
        self._spawn(self._dispatch(task))
        return SubmitResult(task.task_id)

    def cancel(self, task_id: str, session_id: str) -> Task:
        """Cancel a task on behalf of its session. Terminal tasks are left as they are."""
        task = self.get(task_id, session_id)
        if task.state.is_terminal:
            return task
        self._finish(
            task,
            TaskState.CANCELLED,
            error={"kind": ErrorKind.CANCELLED.value, "message": "Task was cancelled by the client"},
        )
        self._registry.cancel(task.archetype, task_id, ErrorKind.CANCELLED)
        return task

    def get(self, task_id: str, session_id: Optional[str] = None) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if session_id is not None and task.session_id != session_id:
            raise Forbidden("Task belongs to another session")
        return task

    async def wait(self, task_id: str, timeout: Optional[float] = None) -> Task:
        """Block until the task is terminal."""
        task = self.get(task_id)
        waiter = self._waiters.get(task_id)
        if waiter is None or task.state.is_terminal:
            return task
        try:
            await asyncio.wait_for(waiter.wait(), timeout)
        except asyncio.TimeoutError:
            raise TaskTimeout(f"Task {task_id} did not finish in time") from None
        return task

    def tasks_for_session(self, session_id: str) -> List[Task]:
        return [task for task in self._tasks.values() if task.session_id == session_id]

    def stats(self) -> Dict[str, int]:
        counts: Dict[str, int] = {state.name.lower(): 0 for state in TaskState}
        for task in self._tasks.values():
            counts[task.state.name.lower()] += 1
        return counts

    # ------------------------------------------------------------------
    # dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, task: Task) -> None:
        assignment = TaskAssignment(
            task_id=task.task_id,
            action=task.action,
            payload=task.payload,
            session_id=task.session_id,
            request_id=task.request_id,
        )
        reason: Optional[str] = None
        for attempt in range(1, self._policy.attempts + 1):
            if task.state.is_terminal:
                return
            outcome = self._registry.enqueue(task.archetype, assignment)
            if outcome.accepted:
                task.state = TaskState.RUNNING
                task.last_event_at = self._clock()
                return
            reason = outcome.reason
            log.debug("dispatcher.enqueue.rejected", task_id=task.task_id, reason=reason, attempt=attempt)
            if attempt < self._policy.attempts:
                await asyncio.sleep(self._policy.interval_seconds)

        if task.state.is_terminal:
            return
        label = self._registry.archetype(task.archetype).human_label
        log.warning("dispatcher.task.unavailable", task_id=task.task_id, archetype=task.archetype, reason=reason)
        self._finish(
            task,
            TaskState.FAILED,
            error={
                "kind": ErrorKind.AGENT_UNAVAILABLE.value,
                "message": f"The {label} agent is not available right now ({reason}). Please retry shortly.",
                "retryable": True,
            },
        )

    def _arm_deadline(self, task: Task) -> None:
        loop = asyncio.get_running_loop()
        delay = max(0.0, task.deadline - self._clock())
        self._deadlines[task.task_id] = loop.call_later(delay, self._on_deadline, task.task_id)

    def _on_deadline(self, task_id: str) -> None:
        self._deadlines.pop(task_id, None)
        task = self._tasks.get(task_id)
        if task is None or task.state.is_terminal:
            return
        log.warning("dispatcher.task.timeout", task_id=task_id, archetype=task.archetype)
        self._finish(
            task,
            TaskState.FAILED,
            error={"kind": ErrorKind.TIMEOUT.value, "message": "Task exceeded its deadline"},
        )
        self._registry.cancel(task.archetype, task_id, ErrorKind.TIMEOUT)

    # ------------------------------------------------------------------
    # agent events
    # ------------------------------------------------------------------

    def _live(self, data: Dict[str, Any]) -> Optional[Task]:
        task = self._tasks.get(data.get("taskId", ""))
        if task is None or task.state.is_terminal:
            return None
        return task

    def _on_progress(self, data: Dict[str, Any]) -> None:
        task = self._live(data)
        if task is None:
            return
        task.state = TaskState.RUNNING
        task.progress = max(task.progress, float(data.get("value", 0.0)))
        task.last_event_at = self._clock()
        self._channel.publish(
            task.session_id,
            task.task_id,
            ChannelEvent.TASK_PROGRESS,
            {"value": task.progress, "label": data.get("label", "")},
        )

    def _on_completed(self, data: Dict[str, Any]) -> None:
        task = self._live(data)
        if task is not None:
            self._finish(task, TaskState.COMPLETED, result=data.get("result") or {})

    def _on_failed(self, data: Dict[str, Any]) -> None:
        task = self._live(data)
        if task is None:
            return
        error = dict(data.get("error") or {"kind": ErrorKind.INTERNAL.value, "message": "Task failed"})
        state = TaskState.CANCELLED if error.get("kind") == ErrorKind.CANCELLED.value else TaskState.FAILED
        self._finish(task, state, error=error)

    def _on_agent_stopped(self, data: Dict[str, Any]) -> None:
        archetype = data.get("archetype")
        for task in list(self._tasks.values()):
            if task.archetype == archetype and task.state is TaskState.RUNNING:
                self._finish(
                    task,
                    TaskState.FAILED,
                    error={
                        "kind": ErrorKind.AGENT_UNAVAILABLE.value,
                        "message": "Agent stopped before the task finished",
                        "retryable": True,
                    },
                )

    def _on_system_health(self, data: Dict[str, Any]) -> None:
        archetype = data.get("archetype")
        for task in self._tasks.values():
            if task.archetype == archetype and not task.state.is_terminal:
                self._channel.publish(task.session_id, task.task_id, ChannelEvent.AGENT_MESSAGE, dict(data))

    def _finish(
        self,
        task: Task,
        state: TaskState,
        *,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> None:
        now = self._clock()
        task.state = state
        task.finished_at = now
        task.last_event_at = now
        handle = self._deadlines.pop(task.task_id, None)
        if handle is not None:
            handle.cancel()

        if state is TaskState.COMPLETED:
            task.progress = 1.0
            task.result = result
            self._channel.publish(task.session_id, task.task_id, ChannelEvent.TASK_COMPLETED, {"result": result})
        else:
            if state is TaskState.FAILED:
                task.error = error
            self._channel.publish(task.session_id, task.task_id, ChannelEvent.TASK_FAILED, {"error": error})

        waiter = self._waiters.get(task.task_id)
        if waiter is not None:
            waiter.set()
        log.info(
            "dispatcher.task.finished",
            task_id=task.task_id,
            archetype=task.archetype,
            state=state.name.lower(),
            error_kind=(error or {}).get("kind"),
            duration_ms=int((now - task.created_at) * 1000),
        )
        if self._journal is not None and state is not TaskState.CANCELLED:
            self._spawn(self._journal.record(task))

    # ------------------------------------------------------------------
    # housekeeping
    # ------------------------------------------------------------------

    def reap(self, now: Optional[float] = None) -> int:
        """Forget terminal tasks older than the retention window."""
        now = self._clock() if now is None else now
        expired = [
            task
            for task in self._tasks.values()
            if task.state.is_terminal and task.finished_at is not None and now - task.finished_at > self._retention
        ]
        for task in expired:
            del self._tasks[task.task_id]
            self._waiters.pop(task.task_id, None)
            self._requests.pop((task.session_id, task.request_id), None)
            self._channel.forget_task(task.task_id)
        if expired:
            log.debug("dispatcher.tasks.reaped", count=len(expired))
        return len(expired)

    def start(self) -> None:
        if self._reaper is None:
            interval = max(1.0, min(self._retention / 4, 30.0))
            self._reaper = asyncio.create_task(self._reap_forever(interval), name="dispatcher:reaper")

    async def _reap_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.reap()

    async def shutdown(self) -> None:
        if self._reaper is not None:
            self._reaper.cancel()
            await asyncio.gather(self._reaper, return_exceptions=True)
            self._reaper = None
        for handle in self._deadlines.values():
            handle.cancel()
        self._deadlines.clear()
        # let journal writes land
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        for unsubscribe in self._subscriptions:
            unsubscribe()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
