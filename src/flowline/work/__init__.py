# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Flow execution.

Layers, leaf first:
- context: FlowExecutionContext, StepResult, CancelToken, result envelope
- resolver: step input resolution and {token} prompt templating
- selector: step -> worker name
- executor: one step, failures captured on the StepResult
- runner: per-run state machine and next_step transition
- formatter / stream: output rendering and the streaming adapter
- engine: FlowEngine facade
"""

from __future__ import annotations

from typing import TYPE_CHECKING

# Lazy import mapping
_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    # context
    "CancelToken": ("flowline.work.context", "CancelToken"),
    "FlowExecutionContext": ("flowline.work.context", "FlowExecutionContext"),
    "ResultEnvelope": ("flowline.work.context", "ResultEnvelope"),
    "StepResult": ("flowline.work.context", "StepResult"),
    "has_empty_results": ("flowline.work.context", "has_empty_results"),
    "lift_envelope": ("flowline.work.context", "lift_envelope"),
    # resolver
    "StepInput": ("flowline.work.resolver", "StepInput"),
    "interpolate_prompt": ("flowline.work.resolver", "interpolate_prompt"),
    "resolve_input": ("flowline.work.resolver", "resolve_input"),
    # selector
    "CapabilitySelector": ("flowline.work.selector", "CapabilitySelector"),
    # executor
    "StepExecutor": ("flowline.work.executor", "StepExecutor"),
    # runner
    "FlowRunner": ("flowline.work.runner", "FlowRunner"),
    "next_step": ("flowline.work.runner", "next_step"),
    # formatter / stream
    "format_output": ("flowline.work.formatter", "format_output"),
    "StreamEvent": ("flowline.work.stream", "StreamEvent"),
    "stream_flow": ("flowline.work.stream", "stream_flow"),
    # engine
    "FlowEngine": ("flowline.work.engine", "FlowEngine"),
}

_LOADED: dict[str, object] = {}


def __getattr__(name: str) -> object:
    """Lazy import attributes on first access."""
    if name in _LOADED:
        return _LOADED[name]

    if name in _LAZY_IMPORTS:
        from importlib import import_module

        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        value = getattr(module, attr_name)
        _LOADED[name] = value
        return value

    raise AttributeError(f"module 'flowline.work' has no attribute {name!r}")


def __dir__() -> list[str]:
    """Return all available attributes for autocomplete."""
    return list(__all__)


if TYPE_CHECKING:
    from flowline.work.context import (
        CancelToken,
        FlowExecutionContext,
        ResultEnvelope,
        StepResult,
        has_empty_results,
        lift_envelope,
    )
    from flowline.work.engine import FlowEngine
    from flowline.work.executor import StepExecutor
    from flowline.work.formatter import format_output
    from flowline.work.resolver import StepInput, interpolate_prompt, resolve_input
    from flowline.work.runner import FlowRunner, next_step
    from flowline.work.selector import CapabilitySelector
    from flowline.work.stream import StreamEvent, stream_flow

__all__ = (
    "CancelToken",
    "CapabilitySelector",
    "FlowEngine",
    "FlowExecutionContext",
    "FlowRunner",
    "ResultEnvelope",
    "StepExecutor",
    "StepInput",
    "StepResult",
    "StreamEvent",
    "format_output",
    "has_empty_results",
    "interpolate_prompt",
    "lift_envelope",
    "next_step",
    "resolve_input",
    "stream_flow",
)
