"""Lightweight in-memory bus carrying agent inbox traffic."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Union

from .models import A2AMessage, TaskAssignment

InboxItem = Union[A2AMessage, TaskAssignment]


class A2AMessageBus:
    """Mailbox hub keyed by archetype name.

    A mailbox exists only while its agent's loop is running, so posting to
    a stopped or unknown agent fails immediately instead of queueing.
    """

    def __init__(self) -> None:
        self._mailboxes: Dict[str, asyncio.Queue[InboxItem]] = {}
        self._lock = asyncio.Lock()

    async def register(self, name: str) -> asyncio.Queue[InboxItem]:
        """Create a fresh mailbox for the agent."""
        async with self._lock:
            queue: asyncio.Queue[InboxItem] = asyncio.Queue()
            self._mailboxes[name] = queue
            return queue

    async def unregister(self, name: str, queue: asyncio.Queue[InboxItem]) -> None:
        """Remove the mailbox to stop further deliveries."""
        async with self._lock:
            if self._mailboxes.get(name) is queue:
                del self._mailboxes[name]

    def has_mailbox(self, name: str) -> bool:
        return name in self._mailboxes

    def post(self, recipient: str, item: InboxItem) -> bool:
        """Deliver without waiting. Returns False when nobody is listening."""
        queue = self._mailboxes.get(recipient)
        if queue is None:
            return False
        queue.put_nowait(item)
        return True

    def send(self, message: A2AMessage) -> bool:
        """Send a message to its recipient, or broadcast when no recipient is set."""
        if message.recipient_id:
            return self.post(message.recipient_id, message)

        delivered = False
        for name, queue in list(self._mailboxes.items()):
            if name == message.sender_id:
                continue
            queue.put_nowait(message)
            delivered = True
        return delivered

    @asynccontextmanager
    async def deliver(self, name: str) -> AsyncIterator[asyncio.Queue[InboxItem]]:
        """Context manager yielding the agent's mailbox queue."""
        queue = await self.register(name)
        try:
            yield queue
        finally:
            await self.unregister(name, queue)
