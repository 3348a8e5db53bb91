# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""flowline - declarative multi-step flow execution for agent actions.

Top-level re-exports for convenient imports:
- FlowEngine, EngineConfig -> engine facade and its settings
- Flow, FlowStep, loaders -> flowline.flow
- Worker, FunctionWorker, handles -> flowline.actions
- EventBus, FlowEvent -> flowline.events
- CancelToken, FlowExecutionContext, StepResult -> flowline.work
"""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "EngineConfig": ("flowline.config", "EngineConfig"),
    "FlowEngine": ("flowline.work.engine", "FlowEngine"),
    # flow
    "DirectoryFlowLoader": ("flowline.flow.loader", "DirectoryFlowLoader"),
    "Flow": ("flowline.flow.models", "Flow"),
    "FlowStep": ("flowline.flow.models", "FlowStep"),
    "MappingFlowLoader": ("flowline.flow.loader", "MappingFlowLoader"),
    # actions
    "ActionRegistry": ("flowline.actions.registry", "ActionRegistry"),
    "FunctionWorker": ("flowline.actions.worker", "FunctionWorker"),
    "Worker": ("flowline.actions.worker", "Worker"),
    "WorkerRegistry": ("flowline.actions.worker", "WorkerRegistry"),
    "handles": ("flowline.actions.worker", "handles"),
    # events
    "EventBus": ("flowline.events", "EventBus"),
    "FlowEvent": ("flowline.events", "FlowEvent"),
    # work
    "CancelToken": ("flowline.work.context", "CancelToken"),
    "FlowExecutionContext": ("flowline.work.context", "FlowExecutionContext"),
    "StepResult": ("flowline.work.context", "StepResult"),
    "StreamEvent": ("flowline.work.stream", "StreamEvent"),
    # types
    "END": ("flowline.types", "END"),
    "ActionKind": ("flowline.types", "ActionKind"),
    "EventKind": ("flowline.types", "EventKind"),
    "RunState": ("flowline.types", "RunState"),
    "StepStatus": ("flowline.types", "StepStatus"),
}

_LOADED: dict[str, object] = {}


def __getattr__(name: str) -> object:
    """Lazy import attributes on first access."""
    if name in _LOADED:
        return _LOADED[name]

    if name in _LAZY_IMPORTS:
        from importlib import import_module

        module_name, attr_name = _LAZY_IMPORTS[name]
        value = getattr(import_module(module_name), attr_name)
        _LOADED[name] = value
        return value

    raise AttributeError(f"module 'flowline' has no attribute {name!r}")


def __dir__() -> list[str]:
    return list(__all__)


if TYPE_CHECKING:
    from flowline.actions.registry import ActionRegistry
    from flowline.actions.worker import FunctionWorker, Worker, WorkerRegistry, handles
    from flowline.config import EngineConfig
    from flowline.events import EventBus, FlowEvent
    from flowline.flow.loader import DirectoryFlowLoader, MappingFlowLoader
    from flowline.flow.models import Flow, FlowStep
    from flowline.types import END, ActionKind, EventKind, RunState, StepStatus
    from flowline.work.context import CancelToken, FlowExecutionContext, StepResult
    from flowline.work.engine import FlowEngine
    from flowline.work.stream import StreamEvent

__all__ = (
    "END",
    "ActionKind",
    "ActionRegistry",
    "CancelToken",
    "DirectoryFlowLoader",
    "EngineConfig",
    "EventBus",
    "EventKind",
    "Flow",
    "FlowEngine",
    "FlowEvent",
    "FlowExecutionContext",
    "FlowStep",
    "FunctionWorker",
    "MappingFlowLoader",
    "RunState",
    "StepResult",
    "StepStatus",
    "StreamEvent",
    "Worker",
    "WorkerRegistry",
    "handles",
)
