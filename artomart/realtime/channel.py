"""Per-session delivery of task events over push connections or polling."""
from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Set, Tuple

import structlog

from artomart.core.models import iso_timestamp

log = structlog.get_logger(__name__)


class ChannelEvent(str, Enum):
    TASK_ACCEPTED = "taskAccepted"
    TASK_PROGRESS = "taskProgress"
    TASK_COMPLETED = "taskCompleted"
    TASK_FAILED = "taskFailed"
    AGENT_MESSAGE = "agentMessage"

    @property
    def is_terminal(self) -> bool:
        return self in (ChannelEvent.TASK_COMPLETED, ChannelEvent.TASK_FAILED)


@dataclass(frozen=True)
class Envelope:
    """One event as the client sees it, on either transport."""

    seq: int
    task_id: str
    session_id: str
    type: ChannelEvent
    payload: Dict[str, Any]
    ts: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "taskId": self.task_id,
            "sessionId": self.session_id,
            "type": self.type.value,
            "payload": self.payload,
            "ts": iso_timestamp(self.ts),
        }


class OutboundBuffer:
    """Bounded queue feeding one push connection.

    When full, progress events are coalesced: a new progress event replaces
    queued progress for the same task, otherwise the oldest queued progress
    event is dropped. Every other event type is always queued.
    """

    def __init__(self, capacity: int = 64) -> None:
        self._capacity = capacity
        self._items: Deque[Envelope] = deque()
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, envelope: Envelope) -> None:
        if self._closed:
            return
        if envelope.type is ChannelEvent.TASK_PROGRESS and len(self._items) >= self._capacity:
            if not self._make_room(envelope.task_id):
                self.dropped += 1
                return
        self._items.append(envelope)
        self._ready.set()

    def _make_room(self, task_id: str) -> bool:
        progress = [item for item in self._items if item.type is ChannelEvent.TASK_PROGRESS]
        same_task = [item for item in progress if item.task_id == task_id]
        victims = same_task or progress[:1]
        for item in victims:
            self._items.remove(item)
        self.dropped += len(victims)
        return bool(victims)

    async def get(self) -> Optional[Envelope]:
        """Next envelope, or None once closed and drained."""
        while not self._items:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._items.popleft()

    def close(self) -> None:
        self._closed = True
        self._ready.set()


@dataclass
class ClientSession:
    """Connections and the polling log of one client session.

    The log holds at most ``log_size`` entries once trimmed. Progress goes
    first (same task, then oldest), then other non-terminal events.
    Terminal envelopes stay until their task is forgotten, so a poller
    resuming from an old cursor still sees how every task ended.
    """

    session_id: str
    last_seen_at: float
    log_size: int = 500
    subscribed_task_ids: Set[str] = field(default_factory=set)
    connections: List[OutboundBuffer] = field(default_factory=list)
    log: List[Tuple[int, Envelope]] = field(default_factory=list)
    cursor: int = 0
    evicted: int = 0

    def record(self, envelope: Envelope) -> int:
        self.cursor += 1
        self.log.append((self.cursor, envelope))
        if len(self.log) > self.log_size:
            self._evict(envelope.task_id)
        return self.cursor

    def _evict(self, task_id: str) -> None:
        progress = [i for i, (_, item) in enumerate(self.log) if item.type is ChannelEvent.TASK_PROGRESS]
        newest = len(self.log) - 1
        same_task = [i for i in progress if i != newest and self.log[i][1].task_id == task_id]
        candidates = same_task or progress
        if not candidates:
            candidates = [i for i, (_, item) in enumerate(self.log) if not item.type.is_terminal]
        if candidates:
            del self.log[candidates[0]]
            self.evicted += 1

    def forget(self, task_id: str) -> None:
        self.log = [entry for entry in self.log if entry[1].task_id != task_id]


class RealtimeChannel:
    """Owns client sessions and assigns per-task sequence numbers.

    ``publish`` is synchronous, so events for one task leave in the order
    they were produced. Closing a connection never touches the task.
    """

    def __init__(
        self,
        *,
        buffer_capacity: int = 64,
        log_size: int = 500,
        idle_seconds: float = 1800.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._buffer_capacity = buffer_capacity
        self._log_size = log_size
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._sessions: Dict[str, ClientSession] = {}
        self._seq: Dict[str, int] = {}
        self._last: Dict[str, Envelope] = {}
        self._reaper: Optional[asyncio.Task[None]] = None
        self._session_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # sessions
    # ------------------------------------------------------------------

    def new_session_id(self) -> str:
        return f"session_{int(self._clock() * 1000)}_{next(self._session_ids)}"

    def session(self, session_id: str) -> ClientSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = ClientSession(
                session_id=session_id,
                last_seen_at=self._clock(),
                log_size=self._log_size,
            )
            self._sessions[session_id] = session
        return session

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def connect(self, session_id: str) -> OutboundBuffer:
        session = self.session(session_id)
        session.last_seen_at = self._clock()
        buffer = OutboundBuffer(self._buffer_capacity)
        session.connections.append(buffer)
        log.info("channel.connected", session_id=session_id, connections=len(session.connections))
        return buffer

    def disconnect(self, session_id: str, buffer: OutboundBuffer) -> None:
        buffer.close()
        session = self._sessions.get(session_id)
        if session is None:
            return
        if buffer in session.connections:
            session.connections.remove(buffer)
        session.last_seen_at = self._clock()
        log.info("channel.disconnected", session_id=session_id, dropped=buffer.dropped)

    def subscribe(self, session_id: str, task_id: str) -> Optional[Envelope]:
        """Follow a task and re-deliver its latest event, if any."""
        self.session(session_id).subscribed_task_ids.add(task_id)
        return self.replay(session_id, task_id)

    # ------------------------------------------------------------------
    # delivery
    # ------------------------------------------------------------------

    def publish(
        self,
        session_id: str,
        task_id: str,
        event: ChannelEvent,
        payload: Dict[str, Any],
    ) -> Envelope:
        seq = self._seq.get(task_id, 0) + 1
        self._seq[task_id] = seq
        envelope = Envelope(
            seq=seq,
            task_id=task_id,
            session_id=session_id,
            type=event,
            payload=payload,
            ts=self._clock(),
        )
        self._last[task_id] = envelope
        session = self.session(session_id)
        session.subscribed_task_ids.add(task_id)
        session.record(envelope)
        for buffer in session.connections:
            buffer.push(envelope)
        return envelope

    def replay(self, session_id: str, task_id: str) -> Optional[Envelope]:
        """Push the last envelope of a task again, keeping its ``seq``."""
        envelope = self._last.get(task_id)
        if envelope is None or envelope.session_id != session_id:
            return None
        session = self._sessions.get(session_id)
        if session is not None:
            for buffer in session.connections:
                buffer.push(envelope)
        return envelope

    def poll(self, session_id: str, since_cursor: int = 0, limit: int = 100) -> Tuple[List[Envelope], int]:
        """Events recorded after ``since_cursor`` and the cursor to resume from."""
        session = self.session(session_id)
        session.last_seen_at = self._clock()
        events: List[Envelope] = []
        cursor = since_cursor
        for position, envelope in session.log:
            if position <= since_cursor:
                continue
            if len(events) >= limit:
                break
            events.append(envelope)
            cursor = position
        return events, cursor

    def latest_cursor(self, session_id: str) -> int:
        session = self._sessions.get(session_id)
        return session.cursor if session else 0

    def forget_task(self, task_id: str) -> None:
        self._seq.pop(task_id, None)
        self._last.pop(task_id, None)
        for session in self._sessions.values():
            session.subscribed_task_ids.discard(task_id)
            session.forget(task_id)

    # ------------------------------------------------------------------
    # housekeeping
    # ------------------------------------------------------------------

    def reap_idle(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        idle = [
            session_id
            for session_id, session in self._sessions.items()
            if not session.connections and now - session.last_seen_at > self._idle_seconds
        ]
        for session_id in idle:
            del self._sessions[session_id]
        if idle:
            log.debug("channel.sessions.reaped", count=len(idle))
        return len(idle)

    def start(self, interval: float = 60.0, housekeeping: Sequence[Callable[[], object]] = ()) -> None:
        """Reap idle sessions every ``interval`` seconds, running ``housekeeping`` alongside."""
        if self._reaper is None:
            self._reaper = asyncio.create_task(
                self._reap_forever(interval, tuple(housekeeping)), name="channel:reaper"
            )

    async def _reap_forever(self, interval: float, housekeeping: Tuple[Callable[[], object], ...]) -> None:
        while True:
            await asyncio.sleep(interval)
            self.reap_idle()
            for chore in housekeeping:
                chore()

    async def shutdown(self) -> None:
        """Stop reaping and close every connection; writers drain what is queued."""
        if self._reaper is not None:
            self._reaper.cancel()
            await asyncio.gather(self._reaper, return_exceptions=True)
            self._reaper = None
        for session in self._sessions.values():
            for buffer in session.connections:
                buffer.close()

    def stats(self) -> Dict[str, int]:
        return {
            "sessions": len(self._sessions),
            "connections": sum(len(s.connections) for s in self._sessions.values()),
        }
