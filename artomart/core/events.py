"""Typed observer registry used by agents and the registry."""
from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, Generic, List, TypeVar

import structlog

log = structlog.get_logger(__name__)

E = TypeVar("E")
Handler = Callable[[Dict[str, Any]], None]


class Subscription:
    """Handle returned by :meth:`EventSource.on`; call it to unsubscribe."""

    __slots__ = ("_source", "_event", "_handler", "active")

    def __init__(self, source: "EventSource[Any]", event: Any, handler: Handler) -> None:
        self._source = source
        self._event = event
        self._handler = handler
        self.active = True

    def __call__(self) -> None:
        if self.active:
            self._source._remove(self._event, self._handler)
            self.active = False


class EventSource(Generic[E]):
    """Synchronous fan-out of named events to registered handlers.

    Handlers run in registration order on the emitter's stack. A failing
    handler is logged and does not prevent the remaining handlers from
    seeing the event, so one observer cannot break another.
    """

    def __init__(self, owner: str) -> None:
        self._owner = owner
        self._handlers: Dict[E, List[Handler]] = defaultdict(list)

    def on(self, event: E, handler: Handler) -> Subscription:
        self._handlers[event].append(handler)
        return Subscription(self, event, handler)

    def emit(self, event: E, data: Dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(data)
            except Exception:  # noqa: BLE001
                log.exception("events.handler.failed", owner=self._owner, event=str(event))

    def clear(self) -> None:
        self._handlers.clear()

    def listener_count(self, event: E) -> int:
        return len(self._handlers.get(event, ()))

    def _remove(self, event: E, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
