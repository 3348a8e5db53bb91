# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Action kind -> async handler registry.

Handler signature: async handler(step_input, ctx: ActionContext) -> output
StepExecutor builds the ActionContext (selected worker, interpolated
prompt, event emitter) and looks the handler up by step.action.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from flowline.errors import UnsupportedActionError
from flowline.events import FlowEvent, ThinkingTrace
from flowline.types import ActionKind, EventKind
from flowline.work.resolver import interpolate_prompt

if TYPE_CHECKING:
    from flowline.events import EventEmitter
    from flowline.flow.models import FlowStep

    from .requests import ActionRequest
    from .worker import Worker

__all__ = (
    "ActionContext",
    "ActionHandler",
    "ActionRegistry",
    "default_action_registry",
)

ActionHandler = Callable[..., Awaitable[Any]]
"""Handler signature: async (step_input, ctx: ActionContext) -> output"""


@dataclass(slots=True)
class ActionContext:
    """Everything a handler may use besides the step input.

    Attributes:
        step: Step being executed.
        worker: Worker chosen by the selector.
        prompt: step.prompt with {tokens} already substituted ("" if unset).
        values: Template values from the resolved input.
        emit_thinking: Whether think() publishes anything.
        emitter: Run-scoped emitter; None outside a run.
    """

    step: FlowStep
    worker: Worker
    flow_id: str
    session_id: str
    prompt: str = ""
    values: Mapping[str, Any] = field(default_factory=dict)
    emit_thinking: bool = True
    emitter: EventEmitter | None = None

    @property
    def config(self) -> dict[str, Any]:
        return self.step.config

    def render(self, template: str) -> str:
        """Interpolate a template against this step's input."""
        return interpolate_prompt(template, self.values)

    def think(self, kind: str, content: str, confidence: float | None = None) -> None:
        """Publish a thinking trace for this step."""
        if not self.emit_thinking or self.emitter is None:
            return
        trace = ThinkingTrace(
            step_id=self.step.id,
            worker_name=self.worker.name,
            kind=kind,
            content=content,
            confidence=confidence,
        )
        self.emitter.emit(
            FlowEvent(
                EventKind.THINKING,
                flow_id=self.flow_id,
                session_id=self.session_id,
                step_id=self.step.id,
                data={"trace": trace},
            )
        )

    async def invoke(self, request: ActionRequest) -> Any:
        """Send a request to the selected worker with the raw step config."""
        return await self.worker.invoke(request.action, request, self.config)


class ActionRegistry:
    """Map action kinds to async handler functions.

    Read-only while runs execute.

    Example:
        registry = ActionRegistry()
        registry.register(ActionKind.SEARCH, search)

        handler = registry.get(ActionKind.SEARCH)
        output = await handler(step_input, ctx)
    """

    def __init__(self):
        self._handlers: dict[ActionKind, ActionHandler] = {}

    def register(
        self,
        action: ActionKind | str,
        handler: ActionHandler,
        *,
        override: bool = False,
    ) -> None:
        """Register handler for an action kind.

        Raises:
            ValueError: If the action has a handler and override=False.
        """
        action = ActionKind(action)
        if action in self._handlers and not override:
            raise ValueError(
                f"Action '{action.value}' already registered. "
                "Use override=True to replace."
            )
        self._handlers[action] = handler

    def get(self, action: ActionKind | str) -> ActionHandler:
        """Get handler. Raises UnsupportedActionError with available names."""
        handler = self._handlers.get(ActionKind(action))
        if handler is None:
            raise UnsupportedActionError(
                f"Action '{ActionKind(action).value}' not registered. "
                f"Available: {self.list_names()}",
                details={"action": ActionKind(action).value},
            )
        return handler

    def has(self, action: ActionKind | str) -> bool:
        return ActionKind(action) in self._handlers

    def unregister(self, action: ActionKind | str) -> bool:
        """Remove registration. Returns True if existed."""
        return self._handlers.pop(ActionKind(action), None) is not None

    def list_names(self) -> list[str]:
        return [a.value for a in self._handlers]

    def __contains__(self, action: ActionKind | str) -> bool:
        try:
            return ActionKind(action) in self._handlers
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._handlers)

    def __repr__(self) -> str:
        return f"ActionRegistry(actions={self.list_names()})"


def default_action_registry() -> ActionRegistry:
    """Registry with the built-in handler for every action kind."""
    from . import handlers

    registry = ActionRegistry()
    registry.register(ActionKind.SEARCH, handlers.search)
    registry.register(ActionKind.ANALYZE, handlers.analyze)
    registry.register(ActionKind.SYNTHESIZE, handlers.synthesize)
    registry.register(ActionKind.COMPARE, handlers.compare)
    registry.register(ActionKind.RECOMMEND, handlers.recommend)
    registry.register(ActionKind.CUSTOM, handlers.custom)
    return registry
