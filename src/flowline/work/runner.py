# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""FlowRunner - the per-run state machine.

    NOT_STARTED -> RUNNING -> COMPLETED | FAILED | CANCELLED

Steps run strictly one at a time. Step failures never abort a run; only
a missing step, the step limit, or cancellation do, and those are raised
to the caller after a flow-error event.

Transition rule (next_step):
    - no conditions: next declared step, or end after the last one
    - conditions: on_success / on_failure / on_no_results, first match
      wins; "end" or no match ends the run. Conditions are exhaustive:
      there is no sequential fallback once a step declares any.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from flowline.config import EngineConfig
from flowline.errors import (
    FlowlineError,
    RunCancelledError,
    StepLimitExceededError,
    StepNotFoundError,
)
from flowline.events import EventBus, FlowEvent
from flowline.types import END, EventKind, RunState, StepStatus

from .context import CancelToken, FlowExecutionContext, StepResult, has_empty_results

if TYPE_CHECKING:
    from flowline.events import EventEmitter
    from flowline.flow.models import Flow, FlowStep

    from .executor import StepExecutor

logger = logging.getLogger(__name__)

__all__ = ("FlowRunner", "next_step")


def next_step(step: FlowStep, result: StepResult, flow: Flow) -> str | None:
    """Id of the step to run after step, or None to end the run."""
    conditions = step.conditions
    if conditions is None:
        following = flow.step_after(step.id)
        return following.id if following is not None else None

    target: str | None = None
    if result.status is StepStatus.SUCCESS and conditions.on_success:
        target = conditions.on_success
    elif result.status is StepStatus.FAILED and conditions.on_failure:
        target = conditions.on_failure
    elif conditions.on_no_results and has_empty_results(result.output):
        target = conditions.on_no_results

    if target is None or target == END:
        return None
    return target


class FlowRunner:
    """Drive one flow from its start step to a terminal state.

    Attributes:
        executor: Executes individual steps
        bus: Receives run and step events
        max_steps: Step executions allowed per run
    """

    def __init__(
        self,
        executor: StepExecutor,
        bus: EventBus | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.executor = executor
        self.bus = bus if bus is not None else EventBus()
        self.config = config or executor.config

    @property
    def max_steps(self) -> int:
        return self.config.max_steps

    async def run(
        self,
        flow: Flow,
        query: str,
        caller_context: dict[str, Any] | None = None,
        *,
        cancel_token: CancelToken | None = None,
        context: FlowExecutionContext | None = None,
    ) -> FlowExecutionContext:
        """Run flow to completion and return its context.

        Args:
            flow: Definition to run.
            query: The user query; available to prompts as {query}.
            caller_context: Extra caller data; keys are also template values.
            cancel_token: Cooperative cancel handle for this run.
            context: Pre-built context (e.g. to learn the session id early).

        Raises:
            StepNotFoundError: A transition names a step that does not exist.
            StepLimitExceededError: max_steps executions and not finished.
            RunCancelledError: cancel_token was cancelled.
        """
        if context is None:
            context = FlowExecutionContext(
                flow_id=flow.id,
                original_query=query,
                caller_context=dict(caller_context or {}),
            )
        token = cancel_token or CancelToken()

        async with self.bus.open() as emitter:
            await self._drive(flow, context, emitter, token)
        return context

    async def _drive(
        self,
        flow: Flow,
        context: FlowExecutionContext,
        emitter: EventEmitter,
        token: CancelToken,
    ) -> None:
        current: str | None = flow.start_step_id
        context.start(current)
        self._emit(emitter, EventKind.FLOW_START, context, {"query": context.original_query})
        logger.debug(f"Run {context.session_id} started flow '{flow.id}' at '{current}'")

        step_count = 0
        try:
            while current is not None:
                token.raise_if_cancelled()

                step = flow.get_step(current)
                if step is None:
                    raise StepNotFoundError(
                        f"Step '{current}' not found in flow '{flow.id}'",
                        details={"flow_id": flow.id, "step_id": current},
                    )

                result = await self.executor.execute(step, flow, context, emitter, token)
                context.record_result(result)
                self._emit(
                    emitter,
                    EventKind.STEP_COMPLETE,
                    context,
                    {"result": result},
                    step_id=step.id,
                )
                token.raise_if_cancelled()

                current = next_step(step, result, flow)
                context.current_step_id = current
                context.current_step_index += 1
                step_count += 1

                if current is not None and step_count >= self.max_steps:
                    raise StepLimitExceededError(
                        f"Flow '{flow.id}' reached the limit of {self.max_steps} steps",
                        details={
                            "flow_id": flow.id,
                            "max_steps": self.max_steps,
                            "next_step": current,
                        },
                    )
        except Exception as e:
            self._fail(context, emitter, e)
            raise

        context.finish(RunState.COMPLETED)
        self._emit(emitter, EventKind.FLOW_COMPLETE, context, {"context": context})
        logger.debug(
            f"Run {context.session_id} completed after {len(context.history)} step(s)"
        )

    def _fail(
        self, context: FlowExecutionContext, emitter: EventEmitter, error: Exception
    ) -> None:
        if isinstance(error, FlowlineError):
            info = error.to_dict()
        else:
            logger.exception(f"Run {context.session_id} crashed")
            info = {"kind": type(error).__name__, "message": str(error), "details": {}}

        state = RunState.CANCELLED if isinstance(error, RunCancelledError) else RunState.FAILED
        if not context.is_finished:
            context.finish(state, info)
        logger.warning(f"Run {context.session_id} {state.value}: {info['message']}")
        self._emit(emitter, EventKind.FLOW_ERROR, context, {"error": info})

    def _emit(
        self,
        emitter: EventEmitter,
        kind: EventKind,
        context: FlowExecutionContext,
        data: dict[str, Any],
        step_id: str | None = None,
    ) -> None:
        emitter.emit(
            FlowEvent(
                kind,
                flow_id=context.flow_id,
                session_id=context.session_id,
                step_id=step_id,
                data=data,
            )
        )

    def __repr__(self) -> str:
        return f"FlowRunner(max_steps={self.max_steps}, bus={self.bus!r})"
