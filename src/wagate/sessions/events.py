from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict

from .client import ClientEvent, ClientEventKind, EventHandler


class EventEmitter:
    """
    Minimal async-friendly event emitter for client implementations.

    - `subscribe(kind, fn)` registers a listener (sync or async).
    - `emit(event)` calls listeners in registration order, awaiting async ones.
    - `unsubscribe_all()` detaches every listener.
    """

    def __init__(self) -> None:
        self._listeners: dict[ClientEventKind, list[EventHandler]] = defaultdict(list)

    def subscribe(self, kind: ClientEventKind, handler: EventHandler) -> None:
        self._listeners[kind].append(handler)

    def unsubscribe(self, kind: ClientEventKind, handler: EventHandler) -> None:
        listeners = self._listeners.get(kind)
        if not listeners:
            return
        with contextlib.suppress(ValueError):
            listeners.remove(handler)

    def unsubscribe_all(self) -> None:
        self._listeners.clear()

    def listener_count(self, kind: ClientEventKind | None = None) -> int:
        if kind is None:
            return sum(len(v) for v in self._listeners.values())
        return len(self._listeners.get(kind, []))

    async def emit(self, event: ClientEvent) -> bool:
        any_triggered = False
        for listener in list(self._listeners.get(event.kind, [])):
            any_triggered = True
            res = listener(event)
            if asyncio.iscoroutine(res):
                await res
        return any_triggered
