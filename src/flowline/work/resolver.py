# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Step input resolution and prompt templating."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from flowline.flow.models import FlowStep

    from .context import FlowExecutionContext

__all__ = ("StepInput", "interpolate_prompt", "resolve_input")

_TOKEN = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True, slots=True)
class StepInput:
    """Data available to a step.

    Attributes:
        query: The run's original query.
        caller_context: Caller-supplied mapping passed to run().
        previous_step_data: Output of inputs.from_step, if it has run.
        context_data: step id -> output for inputs.from_context ids that
            have run. None when the step declares no from_context.
    """

    query: str
    caller_context: Mapping[str, Any] = field(default_factory=dict)
    previous_step_data: Any = None
    context_data: dict[str, Any] | None = None

    def as_mapping(self) -> dict[str, Any]:
        """Template values. Caller context keys are shadowed by the fixed keys."""
        values: dict[str, Any] = dict(self.caller_context)
        values["query"] = self.query
        values["caller_context"] = self.caller_context
        if self.previous_step_data is not None:
            values["previous_step_data"] = self.previous_step_data
        if self.context_data is not None:
            values["context_data"] = self.context_data
        return values


def resolve_input(step: FlowStep, context: FlowExecutionContext) -> StepInput:
    """Build a step's input from the context without mutating it.

    Missing from_step / from_context results are skipped silently.
    """
    previous = None
    context_data = None

    if step.inputs is not None:
        if step.inputs.from_step:
            result = context.get_result(step.inputs.from_step)
            if result is not None:
                previous = result.output
        if step.inputs.from_context is not None:
            context_data = {}
            for step_id in step.inputs.from_context:
                result = context.get_result(step_id)
                if result is not None:
                    context_data[step_id] = result.output

    return StepInput(
        query=context.original_query,
        caller_context=context.caller_context,
        previous_step_data=previous,
        context_data=context_data,
    )


def interpolate_prompt(template: str, values: Mapping[str, Any] | StepInput) -> str:
    """Replace {name} tokens with same-named values.

    Tokens whose key is absent or None stay verbatim.

    Example:
        >>> interpolate_prompt("Find {query} in {region}", {"query": "widgets"})
        'Find widgets in {region}'
    """
    if not template:
        return template
    if isinstance(values, StepInput):
        values = values.as_mapping()

    def _sub(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _TOKEN.sub(_sub, template)
