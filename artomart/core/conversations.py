"""Best-effort, bounded retention of chat turns per session."""
from __future__ import annotations

import itertools
import time
from collections import deque
from typing import Deque, Dict, List, Sequence

from .models import ConversationTurn


class ConversationStore:
    """Append-only turn log. Not the system of record for conversations."""

    def __init__(self, max_turns_per_session: int = 20, max_sessions: int = 1000) -> None:
        self._max_turns = max_turns_per_session
        self._max_sessions = max_sessions
        self._turns: Dict[str, Deque[ConversationTurn]] = {}
        self._turn_counters: Dict[str, int] = {}
        self._conversation_ids = itertools.count(1)

    def next_conversation_id(self) -> str:
        return f"conv_{next(self._conversation_ids)}"

    def append(self, session_id: str, role: str, text: str, suggestions: Sequence[str] = ()) -> ConversationTurn:
        if session_id not in self._turns:
            self._evict_if_full()
            self._turns[session_id] = deque(maxlen=self._max_turns)
        index = self._turn_counters.get(session_id, 0)
        self._turn_counters[session_id] = index + 1
        turn = ConversationTurn(
            session_id=session_id,
            turn_index=index,
            role=role,
            text=text,
            suggestions=tuple(suggestions),
            created_at=time.time(),
        )
        self._turns[session_id].append(turn)
        return turn

    def recent(self, session_id: str, limit: int = 6) -> List[ConversationTurn]:
        turns = self._turns.get(session_id)
        if not turns:
            return []
        return list(turns)[-limit:]

    def forget(self, session_id: str) -> None:
        self._turns.pop(session_id, None)
        self._turn_counters.pop(session_id, None)

    def _evict_if_full(self) -> None:
        if len(self._turns) < self._max_sessions:
            return
        oldest = min(self._turns, key=lambda sid: self._turns[sid][-1].created_at if self._turns[sid] else 0.0)
        self.forget(oldest)
