"""Registry responsible for owning and supervising one agent per archetype."""
from __future__ import annotations

import asyncio
import dataclasses
from enum import Enum
from typing import Any, Coroutine, Dict, List, Mapping, Optional, Set, Type, Union

import structlog

from artomart.agents.base import Agent
from artomart.core.conversations import ConversationStore
from artomart.core.errors import ErrorKind, UnknownArchetype
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
    RegistryEvent,
    TaskAssignment,
)
from artomart.services.model_client import ModelClient

log = structlog.get_logger(__name__)

RelayedEvent = Union[AgentEvent, RegistryEvent]

_RELAYED_TASK_EVENTS = (AgentEvent.TASK_PROGRESS, AgentEvent.TASK_COMPLETED, AgentEvent.TASK_FAILED)


class LifecycleResult(str, Enum):
    STARTED = "started"
    ALREADY_RUNNING = "alreadyRunning"
    STOPPED = "stopped"
    NOT_RUNNING = "notRunning"
    RESTARTED = "restarted"


class AgentRegistry:
    """Start, stop and supervise agents; relay their task events.

    Agent handles never leave the registry. Callers address agents by
    archetype name and observe them through :meth:`on`, which carries the
    relayed task events plus the registry's own supervisory events.
    """

    def __init__(
        self,
        archetypes: Mapping[str, Archetype],
        agent_catalog: Mapping[str, Type[Agent]],
        *,
        bus: A2AMessageBus,
        model_client: ModelClient,
        conversations: ConversationStore,
    ) -> None:
        missing = set(archetypes) - set(agent_catalog)
        if missing:
            raise ValueError(f"No agent class registered for {sorted(missing)}")
        self._archetypes = dict(archetypes)
        self._catalog = dict(agent_catalog)
        self._bus = bus
        self._model_client = model_client
        self._conversations = conversations
        self._agents: Dict[str, Agent] = {}
        self._locks = {name: asyncio.Lock() for name in archetypes}
        self._history = {name: AgentCounters() for name in archetypes}
        self._restart_streak = {name: 0 for name in archetypes}
        self._quarantined: Set[str] = set()
        self._pending_restarts: Dict[str, asyncio.Task[None]] = {}
        self._subscriptions: Dict[Agent, List[Subscription]] = {}
        self._background: Set[asyncio.Task[None]] = set()
        self._events: EventSource[RelayedEvent] = EventSource("registry")
        self._closed = False

    @property
    def archetypes(self) -> Mapping[str, Archetype]:
        return self._archetypes

    def archetype(self, name: str) -> Archetype:
        try:
            return self._archetypes[name]
        except KeyError:
            raise UnknownArchetype(name) from None

    def on(self, event: RelayedEvent, handler: Handler) -> Subscription:
        return self._events.on(event, handler)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def start(self, name: str) -> LifecycleResult:
        """Start an archetype. An explicit start also lifts quarantine."""
        archetype = self.archetype(name)
        async with self._locks[name]:
            running = self._agents.get(name)
            if running is not None and running.state is not AgentState.STOPPED:
                return LifecycleResult.ALREADY_RUNNING
            self._cancel_pending_restart(name)
            self._quarantined.discard(name)
            self._restart_streak[name] = 0
            await self._launch(archetype)
            return LifecycleResult.STARTED

    async def stop(self, name: str) -> LifecycleResult:
        self.archetype(name)
        async with self._locks[name]:
            self._cancel_pending_restart(name)
            agent = self._agents.pop(name, None)
            if agent is None:
                return LifecycleResult.NOT_RUNNING
            was_running = agent.state is not AgentState.STOPPED
            await self._teardown(agent)
            log.info("registry.agent.stopped", archetype=name)
            return LifecycleResult.STOPPED if was_running else LifecycleResult.NOT_RUNNING

    async def restart(self, name: str) -> LifecycleResult:
        archetype = self.archetype(name)
        async with self._locks[name]:
            self._cancel_pending_restart(name)
            agent = self._agents.pop(name, None)
            if agent is not None:
                await self._teardown(agent)
                self._history[name].restarts += 1
            self._quarantined.discard(name)
            self._restart_streak[name] = 0
            await self._launch(archetype)
            return LifecycleResult.RESTARTED

    async def start_all(self) -> None:
        for name in self._archetypes:
            await self.start(name)

    async def shutdown(self) -> None:
        """Stop every agent and drop pending restarts."""
        self._closed = True
        for name in list(self._pending_restarts):
            self._cancel_pending_restart(name)
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        agents = list(self._agents.values())
        self._agents.clear()
        await asyncio.gather(*(self._teardown(agent) for agent in agents), return_exceptions=True)
        log.info("registry.shutdown.completed", stopped=len(agents))

    async def _launch(self, archetype: Archetype) -> None:
        name = archetype.name
        counters = self._history[name]
        counters.consecutive_errors = 0
        agent = self._catalog[name](
            archetype,
            bus=self._bus,
            model_client=self._model_client,
            conversations=self._conversations,
            counters=counters,
            router=self.route_message,
        )
        self._wire(agent)
        self._agents[name] = agent
        await agent.start()
        log.info("registry.agent.started", archetype=name, restarts=counters.restarts)
        self._events.emit(RegistryEvent.AGENT_STARTED, {"archetype": name})

    async def _teardown(self, agent: Agent) -> None:
        await agent.stop()
        for unsubscribe in self._subscriptions.pop(agent, []):
            unsubscribe()

    def _wire(self, agent: Agent) -> None:
        name = agent.name
        subscriptions = [agent.on(event, self._relay(event)) for event in _RELAYED_TASK_EVENTS]
        subscriptions.append(agent.on(AgentEvent.TASK_COMPLETED, lambda _data: self._reset_streak(name)))
        subscriptions.append(agent.on(AgentEvent.ERROR, lambda data: self._on_agent_error(agent, data)))
        subscriptions.append(agent.on(AgentEvent.STOPPED, lambda data: self._on_agent_stopped(agent, data)))
        self._subscriptions[agent] = subscriptions

    def _relay(self, event: AgentEvent) -> Handler:
        def forward(data: Dict[str, Any]) -> None:
            self._events.emit(event, data)

        return forward

    def _reset_streak(self, name: str) -> None:
        self._restart_streak[name] = 0

    # ------------------------------------------------------------------
    # supervision
    # ------------------------------------------------------------------

    def _on_agent_error(self, agent: Agent, data: Dict[str, Any]) -> None:
        if data.get("fatal"):
            self._spawn(self._supervise(agent, "maxConsecutiveErrors"))

    def _on_agent_stopped(self, agent: Agent, data: Dict[str, Any]) -> None:
        self._events.emit(RegistryEvent.AGENT_STOPPED, data)
        if self._agents.get(agent.name) is agent:
            # the loop exited without anyone asking it to
            self._spawn(self._supervise(agent, "loopExited"))

    async def _supervise(self, agent: Agent, reason: str) -> None:
        name = agent.name
        archetype = self._archetypes[name]
        async with self._locks[name]:
            if self._agents.get(name) is not agent:
                return
            del self._agents[name]
            counters = self._history[name]
            log.warning(
                "registry.agent.failing",
                archetype=name,
                reason=reason,
                consecutive_errors=counters.consecutive_errors,
                last_error=counters.last_error,
            )
            self._events.emit(
                RegistryEvent.AGENT_FAILING,
                {"archetype": name, "reason": reason, "lastError": counters.last_error},
            )
            await self._teardown(agent)
            if self._closed:
                return

            ladder = archetype.restart_delay_ladder
            attempt = self._restart_streak[name]
            if attempt >= len(ladder):
                self._quarantine(archetype, reason)
                return
            delay = ladder[attempt]
            self._restart_streak[name] = attempt + 1
            log.info("registry.restart.scheduled", archetype=name, delay_seconds=delay, attempt=attempt + 1)
            self._events.emit(
                RegistryEvent.RESTART_SCHEDULED,
                {"archetype": name, "delaySeconds": delay, "attempt": attempt + 1},
            )
            self._emit_health(archetype, "restarting", reason)
            self._pending_restarts[name] = asyncio.create_task(
                self._delayed_restart(archetype, delay), name=f"restart:{name}"
            )

    async def _delayed_restart(self, archetype: Archetype, delay: float) -> None:
        name = archetype.name
        await asyncio.sleep(delay)
        async with self._locks[name]:
            if self._pending_restarts.get(name) is asyncio.current_task():
                del self._pending_restarts[name]
            if self._closed or name in self._quarantined or name in self._agents:
                return
            self._history[name].restarts += 1
            try:
                await self._launch(archetype)
            except Exception:  # noqa: BLE001
                log.exception("registry.restart.failed", archetype=name)
                self._quarantine(archetype, "restartFailed")

    def _quarantine(self, archetype: Archetype, reason: str) -> None:
        name = archetype.name
        self._quarantined.add(name)
        log.error("registry.agent.quarantined", archetype=name, reason=reason)
        self._events.emit(RegistryEvent.AGENT_QUARANTINED, {"archetype": name, "reason": reason})
        self._emit_health(archetype, "quarantined", reason)

    def _emit_health(self, archetype: Archetype, status: str, reason: str) -> None:
        self._events.emit(
            RegistryEvent.SYSTEM_HEALTH,
            {
                "archetype": archetype.name,
                "status": status,
                "reason": reason,
                "message": f"The {archetype.human_label} agent is {status}",
            },
        )

    def _cancel_pending_restart(self, name: str) -> None:
        pending = self._pending_restarts.pop(name, None)
        if pending is not None:
            pending.cancel()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # queries and proxies
    # ------------------------------------------------------------------

    def is_running(self, name: str) -> bool:
        agent = self._agents.get(name)
        return agent is not None and agent.state is not AgentState.STOPPED

    def is_quarantined(self, name: str) -> bool:
        return name in self._quarantined

    def status(self, name: str) -> AgentStatus:
        self.archetype(name)
        quarantined = name in self._quarantined
        agent = self._agents.get(name)
        if agent is not None:
            return dataclasses.replace(agent.status(), quarantined=quarantined)
        counters = self._history[name]
        return AgentStatus(
            archetype=name,
            state=AgentState.STOPPED,
            started_at=None,
            tasks_completed=counters.tasks_completed,
            error_count=counters.error_count,
            consecutive_errors=counters.consecutive_errors,
            current_task_ids=(),
            restarts=counters.restarts,
            last_error=counters.last_error,
            quarantined=quarantined,
        )

    def snapshot_all(self) -> Dict[str, AgentStatus]:
        return {name: self.status(name) for name in self._archetypes}

    def enqueue(self, name: str, assignment: TaskAssignment) -> EnqueueResult:
        agent = self._agents.get(name)
        if agent is None:
            return EnqueueResult(False, "quarantined" if name in self._quarantined else "notRunning")
        return agent.enqueue(assignment)

    def cancel(self, name: str, task_id: str, reason: ErrorKind = ErrorKind.CANCELLED) -> bool:
        agent = self._agents.get(name)
        if agent is None:
            return False
        return agent.cancel(task_id, reason)

    def route_message(
        self,
        sender: str,
        target: str,
        name: str,
        payload: Dict[str, Any],
        correlation_id: Optional[str] = None,
    ) -> bool:
        """Deliver an inter-agent message. False when the target is not running."""
        if not self.is_running(target):
            return False
        message = A2AMessage(
            sender_id=sender,
            recipient_id=target,
            payload=payload,
            name=name,
            correlation_id=correlation_id,
        )
        return self._bus.send(message)
