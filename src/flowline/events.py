# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""In-memory event bus for flow progress.

Listeners subscribe per EventKind with sync or async handlers. Outside a
run, `publish()` delivers inline. During a run the runner holds an
EventEmitter from `EventBus.open()`: each listener gets its own buffered
stream and consumer task, so `emit()` never waits on a listener and each
listener sees events in emission order. Sync handlers run in a worker
thread there, so a blocking listener does not stall the run. The `open()`
block drains every listener before it exits.

Example:
    bus = EventBus()
    bus.subscribe(EventKind.STEP_COMPLETE, lambda e: print(e.step_id))

    async with bus.open() as emitter:
        emitter.emit(FlowEvent(EventKind.STEP_COMPLETE, step_id="search"))
"""

from __future__ import annotations

import inspect
import logging
import math
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import anyio
import anyio.to_thread

from flowline.types import EventKind

if TYPE_CHECKING:
    from anyio.abc import ObjectReceiveStream, ObjectSendStream, TaskGroup

logger = logging.getLogger(__name__)

__all__ = (
    "EventBus",
    "EventEmitter",
    "EventHandler",
    "FlowEvent",
    "Subscription",
    "ThinkingTrace",
)

EventHandler = Callable[["FlowEvent"], Any]
"""Handler signature: (event) -> None, or an async function."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ThinkingTrace:
    """Progress note a handler publishes while a step is in flight."""

    step_id: str
    worker_name: str
    kind: str
    content: str
    confidence: float | None = None
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "timestamp": self.timestamp.isoformat(),
            "step_id": self.step_id,
            "worker_name": self.worker_name,
            "kind": self.kind,
            "content": self.content,
        }
        if self.confidence is not None:
            data["confidence"] = self.confidence
        return data


@dataclass(frozen=True, slots=True)
class FlowEvent:
    """One notification. `data` is kind-specific (a "trace" for thinking)."""

    kind: EventKind
    flow_id: str | None = None
    session_id: str | None = None
    step_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)

    @property
    def trace(self) -> ThinkingTrace | None:
        trace = self.data.get("trace")
        return trace if isinstance(trace, ThinkingTrace) else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "flow_id": self.flow_id,
            "session_id": self.session_id,
            "step_id": self.step_id,
            "data": {k: _to_plain(v) for k, v in self.data.items()},
            "timestamp": self.timestamp.isoformat(),
        }


def _to_plain(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return value


@dataclass(frozen=True, slots=True)
class Subscription:
    """Handle returned by subscribe(); `cancel()` unsubscribes."""

    kind: EventKind
    handler: EventHandler
    _bus: EventBus = field(repr=False, compare=False)

    def cancel(self) -> bool:
        return self._bus.unsubscribe(self.kind, self.handler)


class EventBus:
    """Multi-listener publish/subscribe keyed by EventKind.

    Args:
        buffer_size: Per-listener buffer during a run. Events that do not
            fit are dropped with a warning (default: unbounded).
    """

    def __init__(self, buffer_size: float = math.inf):
        self.buffer_size = buffer_size
        self._listeners: dict[EventKind, list[EventHandler]] = {}

    def subscribe(self, kind: EventKind | str, handler: EventHandler) -> Subscription:
        kind = EventKind(kind)
        handlers = self._listeners.setdefault(kind, [])
        if handler not in handlers:
            handlers.append(handler)
        return Subscription(kind, handler, self)

    def unsubscribe(self, kind: EventKind | str, handler: EventHandler) -> bool:
        """Remove handler for kind. Returns True if it was subscribed."""
        handlers = self._listeners.get(EventKind(kind), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def listeners(self, kind: EventKind | str) -> list[EventHandler]:
        return list(self._listeners.get(EventKind(kind), ()))

    def clear(self) -> None:
        self._listeners.clear()

    async def publish(self, event: FlowEvent) -> None:
        """Deliver to every listener of event.kind, in subscription order."""
        for handler in self.listeners(event.kind):
            await _deliver(handler, event)

    @asynccontextmanager
    async def open(self) -> AsyncIterator[EventEmitter]:
        """Per-run emission scope.

        An exception raised in the block is re-raised only after all
        listeners have drained, so a final flow-error still reaches them.
        """
        error: Exception | None = None
        async with anyio.create_task_group() as tg:
            emitter = EventEmitter(self, tg)
            try:
                yield emitter
            except Exception as e:
                error = e
            finally:
                emitter.close()
        if error is not None:
            raise error

    def __len__(self) -> int:
        return sum(len(handlers) for handlers in self._listeners.values())

    def __repr__(self) -> str:
        counts = {k.value: len(v) for k, v in self._listeners.items() if v}
        return f"EventBus(listeners={counts})"


class EventEmitter:
    """Non-blocking emitter bound to one EventBus.open() scope."""

    def __init__(self, bus: EventBus, task_group: TaskGroup):
        self._bus = bus
        self._task_group = task_group
        # keyed by id(): handlers need not be hashable (e.g. list.append)
        self._streams: dict[int, ObjectSendStream[FlowEvent]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: FlowEvent) -> None:
        """Queue event for every current listener of its kind."""
        if self._closed:
            logger.warning(f"Dropping {event.kind.value} event: emitter closed")
            return
        for handler in self._bus.listeners(event.kind):
            stream = self._streams.get(id(handler))
            if stream is None:
                stream = self._open_stream(handler)
            try:
                stream.send_nowait(event)
            except anyio.WouldBlock:
                logger.warning(
                    f"Listener buffer full, dropping {event.kind.value} event for {handler!r}"
                )

    def _open_stream(self, handler: EventHandler) -> ObjectSendStream[FlowEvent]:
        send, receive = anyio.create_memory_object_stream[FlowEvent](
            max_buffer_size=self._bus.buffer_size
        )
        self._streams[id(handler)] = send
        self._task_group.start_soon(_consume, handler, receive)
        return send

    def close(self) -> None:
        """Stop accepting events; consumers exit once their buffer is empty."""
        self._closed = True
        for stream in self._streams.values():
            stream.close()

    def __repr__(self) -> str:
        return f"EventEmitter(listeners={len(self._streams)}, closed={self._closed})"


async def _consume(handler: EventHandler, receive: ObjectReceiveStream[FlowEvent]) -> None:
    # sync handlers run in a worker thread
    threaded = not (
        inspect.iscoroutinefunction(handler)
        or inspect.iscoroutinefunction(getattr(handler, "__call__", None))
    )
    async with receive:
        async for event in receive:
            await _deliver(handler, event, threaded=threaded)


async def _deliver(handler: EventHandler, event: FlowEvent, *, threaded: bool = False) -> None:
    try:
        if threaded:
            result = await anyio.to_thread.run_sync(handler, event)
        else:
            result = handler(event)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception(f"Event listener {handler!r} failed on {event.kind.value}")
