# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""StepExecutor - runs one step and captures its outcome.

Every step-level failure is recorded on the returned StepResult instead
of being raised: unknown worker, unsupported action, timeout, token
cancellation, or any exception from the handler. Cancellation of the
enclosing task still propagates.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import anyio

from flowline.actions.registry import ActionContext, ActionRegistry
from flowline.config import EngineConfig
from flowline.errors import StepTimeoutError, UnsupportedActionError, WorkerNotFoundError
from flowline.events import FlowEvent
from flowline.types import ErrorKind, EventKind

from .context import CancelToken, FlowExecutionContext, StepResult
from .resolver import interpolate_prompt, resolve_input
from .selector import CapabilitySelector

if TYPE_CHECKING:
    from flowline.actions.worker import WorkerRegistry
    from flowline.events import EventEmitter
    from flowline.flow.models import Flow, FlowStep

logger = logging.getLogger(__name__)

__all__ = ("StepExecutor",)


class StepExecutor:
    """Select a worker, resolve input, dispatch the action, record the result.

    Attributes:
        actions: Action kind -> handler
        workers: Worker name index
        selector: Step -> worker name
        config: Timeout and thinking settings
    """

    def __init__(
        self,
        actions: ActionRegistry,
        workers: WorkerRegistry,
        selector: CapabilitySelector | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.actions = actions
        self.workers = workers
        self.selector = selector or CapabilitySelector.from_config(self.config)

    def timeout_for(self, step: FlowStep) -> float | None:
        return step.timeout if step.timeout is not None else self.config.step_timeout

    async def execute(
        self,
        step: FlowStep,
        flow: Flow,
        context: FlowExecutionContext,
        emitter: EventEmitter | None = None,
        cancel_token: CancelToken | None = None,
    ) -> StepResult:
        """Execute step; never raises for step-level failures.

        Emits step-start, and step-error when the result is failed.
        """
        self._emit(
            emitter,
            EventKind.STEP_START,
            context,
            step,
            {"action": step.action.value, "index": context.current_step_index},
        )

        result = StepResult(step_id=step.id, action=step.action)
        await self._run(step, flow, context, result, emitter, cancel_token or CancelToken())

        if result.failed:
            self._emit(
                emitter,
                EventKind.STEP_ERROR,
                context,
                step,
                {"error": result.error, "error_kind": result.error_kind.value},
            )
        return result

    async def _run(
        self,
        step: FlowStep,
        flow: Flow,
        context: FlowExecutionContext,
        result: StepResult,
        emitter: EventEmitter | None,
        token: CancelToken,
    ) -> None:
        worker_name = self.selector.select(step, flow)
        result.worker = worker_name
        try:
            worker = self.workers.get(worker_name)
        except WorkerNotFoundError as e:
            logger.warning(f"Step '{step.id}': {e.message}")
            result.fail(e, ErrorKind.WORKER_NOT_FOUND)
            return

        try:
            handler = self.actions.get(step.action)
        except UnsupportedActionError as e:
            logger.warning(f"Step '{step.id}': {e.message}")
            result.fail(e, ErrorKind.CAPABILITY)
            return

        step_input = resolve_input(step, context)
        values = step_input.as_mapping()
        ctx = ActionContext(
            step=step,
            worker=worker,
            flow_id=flow.id,
            session_id=context.session_id,
            prompt=interpolate_prompt(step.prompt, values),
            values=values,
            emit_thinking=self.config.emit_thinking,
            emitter=emitter,
        )

        timeout = self.timeout_for(step)
        timeout_scope = None
        try:
            with token.scope() as cancel_scope:
                with anyio.fail_after(timeout) as timeout_scope:
                    output = await handler(step_input, ctx)
        except TimeoutError as e:
            if timeout_scope is None or not timeout_scope.cancel_called:
                logger.exception(f"Step '{step.id}' failed on worker '{worker_name}'")
                result.fail(e, ErrorKind.CAPABILITY)
                return
            err = StepTimeoutError(
                f"Step '{step.id}' timed out after {timeout}s",
                details={"step_id": step.id, "timeout": timeout},
            )
            logger.warning(err.message)
            result.fail(err, ErrorKind.STEP_TIMEOUT)
            return
        except Exception as e:
            logger.exception(f"Step '{step.id}' failed on worker '{worker_name}'")
            result.fail(e, ErrorKind.CAPABILITY)
            return

        if cancel_scope.cancel_called:
            logger.info(f"Step '{step.id}' cancelled")
            result.fail("Step cancelled", ErrorKind.CANCELLED)
            return

        result.succeed(output)

    def _emit(
        self,
        emitter: EventEmitter | None,
        kind: EventKind,
        context: FlowExecutionContext,
        step: FlowStep,
        data: dict,
    ) -> None:
        if emitter is None:
            return
        emitter.emit(
            FlowEvent(
                kind,
                flow_id=context.flow_id,
                session_id=context.session_id,
                step_id=step.id,
                data=data,
            )
        )

    def __repr__(self) -> str:
        return (
            f"StepExecutor(actions={self.actions.list_names()}, "
            f"workers={self.workers.list_names()})"
        )
