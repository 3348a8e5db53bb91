# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Workers - capability providers invoked by action handlers.

A worker registers under a name and answers `invoke(action, request, config)`
for the action kinds it supports. The engine never knows how a worker is
implemented (local function, remote model call, HTTP search API).

Example:
    class WebResearcher(Worker):
        name = "researcher"

        @handles(ActionKind.SEARCH)
        async def search(self, request: SearchRequest, config):
            hits = await search_api(request.query, limit=request.max_results)
            return {"results": hits, "sources": [h["url"] for h in hits]}

        @handles(ActionKind.ANALYZE, ActionKind.SYNTHESIZE)
        async def reason(self, request, config):
            return {"analysis": await llm.complete(request.prompt)}

    workers = WorkerRegistry()
    workers.register(WebResearcher())
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

import anyio.to_thread

from flowline.errors import ExistsError, UnsupportedActionError, WorkerNotFoundError
from flowline.types import ActionKind

if TYPE_CHECKING:
    from .requests import ActionRequest

__all__ = (
    "FunctionWorker",
    "Worker",
    "WorkerRegistry",
    "handles",
)

WorkerFunction = Callable[[ActionKind, "ActionRequest", Mapping[str, Any]], Any]


class Worker:
    """Base class for capability providers.

    Subclass and decorate methods with @handles to declare which action
    kinds the worker answers. Decorated methods take (request, config).

    Attributes:
        name: Registry key (default: "worker")
        _handlers: action -> bound method, collected at init
    """

    name: str = "worker"

    def __init__(self, name: str | None = None) -> None:
        if name is not None:
            self.name = name
        self._handlers: dict[ActionKind, Callable[..., Awaitable[Any]]] = {}
        self._collect_handlers()

    def _collect_handlers(self) -> None:
        """Scan class for @handles decorated methods."""
        for attr_name in dir(self):
            if attr_name.startswith("_"):
                continue
            attr = getattr(self, attr_name, None)
            actions = getattr(attr, "_handles_actions", None)
            if not actions:
                continue
            for action in actions:
                self._handlers[action] = attr

    @property
    def actions(self) -> frozenset[ActionKind]:
        return frozenset(self._handlers)

    def supports(self, action: ActionKind | str) -> bool:
        return ActionKind(action) in self._handlers

    async def invoke(
        self,
        action: ActionKind | str,
        request: ActionRequest,
        config: Mapping[str, Any] | None = None,
    ) -> Any:
        """Run the handler for action.

        Raises:
            UnsupportedActionError: No @handles method for this action.
        """
        action = ActionKind(action)
        handler = self._handlers.get(action)
        if handler is None:
            raise UnsupportedActionError(
                f"Worker '{self.name}' does not handle action '{action.value}'",
                details={"worker": self.name, "action": action.value},
            )
        return await handler(request, dict(config or {}))

    def __repr__(self) -> str:
        actions = sorted(a.value for a in self._handlers)
        return f"{self.__class__.__name__}(name={self.name!r}, actions={actions})"


def handles(
    *actions: ActionKind | str,
) -> Callable[[Callable[..., Awaitable]], Callable[..., Awaitable]]:
    """Decorator marking a Worker method as the handler for action kinds.

    Args:
        *actions: One or more action kinds (enum members or their values).

    Raises:
        ValueError: If no action is given or a value is not an action kind.
    """
    if not actions:
        raise ValueError("handles() requires at least one action")
    kinds = tuple(ActionKind(a) for a in actions)

    def decorator(func: Callable[..., Awaitable]) -> Callable[..., Awaitable]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await func(*args, **kwargs)

        wrapper._handles_actions = kinds  # type: ignore[attr-defined]
        return wrapper

    return decorator


class FunctionWorker(Worker):
    """Worker backed by a single callable (sync or async).

    The callable receives (action, request, config). Sync callables run in a
    worker thread so step timeouts and cancellation still apply; a cancelled
    call is abandoned, not interrupted. When `actions` is given, other action
    kinds raise UnsupportedActionError.

    Example:
        async def echo(action, request, config):
            return {"echo": request}

        workers.register(FunctionWorker("echo", echo))
    """

    def __init__(
        self,
        name: str,
        func: WorkerFunction,
        actions: Iterable[ActionKind | str] | None = None,
    ) -> None:
        self._func = func
        self._actions = (
            frozenset(ActionKind(a) for a in actions)
            if actions is not None
            else frozenset(ActionKind)
        )
        super().__init__(name)

    @property
    def actions(self) -> frozenset[ActionKind]:
        return self._actions

    def supports(self, action: ActionKind | str) -> bool:
        return ActionKind(action) in self._actions

    async def invoke(
        self,
        action: ActionKind | str,
        request: ActionRequest,
        config: Mapping[str, Any] | None = None,
    ) -> Any:
        action = ActionKind(action)
        if action not in self._actions:
            raise UnsupportedActionError(
                f"Worker '{self.name}' does not handle action '{action.value}'",
                details={"worker": self.name, "action": action.value},
            )
        cfg = dict(config or {})
        if _is_async(self._func):
            return await self._func(action, request, cfg)
        result = await anyio.to_thread.run_sync(
            functools.partial(self._func, action, request, cfg),
            abandon_on_cancel=True,
        )
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        actions = sorted(a.value for a in self._actions)
        return f"FunctionWorker(name={self.name!r}, actions={actions})"


class WorkerRegistry:
    """Name index of workers.

    Read-only while runs execute; register everything before the first run.

    Example:
        registry = WorkerRegistry()
        registry.register(FunctionWorker("default", my_func))
        worker = registry.get("default")
    """

    def __init__(self, workers: Iterable[Worker] | None = None):
        self._workers: dict[str, Worker] = {}
        for worker in workers or ():
            self.register(worker)

    def register(self, worker: Worker, *, update: bool = False) -> None:
        """Register worker by its name.

        Raises:
            ExistsError: If the name exists and update=False.
        """
        if worker.name in self._workers and not update:
            raise ExistsError(
                f"Worker '{worker.name}' already registered. Use update=True to replace.",
                details={"worker": worker.name},
            )
        self._workers[worker.name] = worker

    def get(self, name: str) -> Worker:
        """Get worker by name.

        Raises:
            WorkerNotFoundError: With available names in details.
        """
        worker = self._workers.get(name)
        if worker is None:
            raise WorkerNotFoundError(
                f"Worker '{name}' not registered",
                details={"worker": name, "available": self.list_names()},
            )
        return worker

    def has(self, name: str) -> bool:
        return name in self._workers

    def unregister(self, name: str) -> bool:
        """Remove registration. Returns True if existed."""
        return self._workers.pop(name, None) is not None

    def list_names(self) -> list[str]:
        return list(self._workers)

    def __contains__(self, name: str) -> bool:
        return name in self._workers

    def __len__(self) -> int:
        return len(self._workers)

    def __repr__(self) -> str:
        return f"WorkerRegistry(workers={self.list_names()})"


def _is_async(func: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
        getattr(func, "__call__", None)
    )
