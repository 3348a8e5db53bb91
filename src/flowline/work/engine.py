# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""FlowEngine - caller-facing facade.

Wires the flow catalog, worker and action registries, selector, executor,
runner and event bus together.

Example:
    engine = FlowEngine(
        workers=[FunctionWorker("default", call_model)],
        loader=DirectoryFlowLoader("flows/"),
        config=EngineConfig(max_steps=30),
    )
    await engine.load_flows()

    ctx = await engine.run("electric bikes", "market_research")
    for step_id in ctx.history:
        print(step_id, ctx.step_results[step_id].status)

    async for event in engine.stream("electric bikes", "market_research"):
        yield event.to_sse()
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

from flowline.actions.registry import ActionRegistry, default_action_registry
from flowline.actions.worker import Worker, WorkerRegistry
from flowline.config import EngineConfig
from flowline.errors import ExistsError, FlowNotFoundError
from flowline.events import EventBus, EventHandler, FlowEvent, Subscription
from flowline.flow.loader import FlowLoader
from flowline.flow.models import Flow
from flowline.types import EventKind

from .context import CancelToken, FlowExecutionContext
from .executor import StepExecutor
from .runner import FlowRunner
from .selector import CapabilitySelector
from .stream import StreamEvent, error_event, stream_flow

logger = logging.getLogger(__name__)

__all__ = ("FlowEngine",)


class FlowEngine:
    """Run and stream flows against registered workers.

    Registries and the selector are shared by concurrent runs and must
    not change while runs are in flight; each run owns its own context.

    Attributes:
        config: Engine settings
        workers: Worker name index
        actions: Action kind -> handler
        bus: Event bus for progress listeners
    """

    def __init__(
        self,
        workers: WorkerRegistry | Iterable[Worker] | None = None,
        *,
        loader: FlowLoader | None = None,
        config: EngineConfig | None = None,
        actions: ActionRegistry | None = None,
        bus: EventBus | None = None,
        selector: CapabilitySelector | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.workers = workers if isinstance(workers, WorkerRegistry) else WorkerRegistry(workers)
        self.actions = actions if actions is not None else default_action_registry()
        self.bus = bus if bus is not None else EventBus()
        self.loader = loader

        self.selector = selector or CapabilitySelector.from_config(self.config)
        self.executor = StepExecutor(self.actions, self.workers, self.selector, self.config)
        self.runner = FlowRunner(self.executor, self.bus, self.config)

        self._flows: dict[str, Flow] = {}

    # -- catalog ------------------------------------------------------------

    async def load_flows(self, loader: FlowLoader | None = None) -> dict[str, Flow]:
        """Replace the catalog with the loader's flows; publishes flows-loaded.

        Raises:
            ValueError: No loader given here or at construction.
            FlowValidationError: A definition is invalid.
        """
        loader = loader or self.loader
        if loader is None:
            raise ValueError("No flow loader configured")

        flows = dict(loader.load_flows())
        self._flows = flows
        logger.info(f"Loaded {len(flows)} flow(s): {sorted(flows)}")
        await self.bus.publish(
            FlowEvent(EventKind.FLOWS_LOADED, data={"flow_ids": list(flows)})
        )
        return dict(flows)

    def register_flow(self, flow: Flow, *, update: bool = False) -> None:
        """Add a single flow to the catalog.

        Raises:
            ExistsError: If the id exists and update=False.
        """
        if flow.id in self._flows and not update:
            raise ExistsError(
                f"Flow '{flow.id}' already registered. Use update=True to replace.",
                details={"flow_id": flow.id},
            )
        self._flows[flow.id] = flow

    def get_flow(self, flow_id: str) -> Flow | None:
        return self._flows.get(flow_id)

    def list_flows(self) -> list[Flow]:
        return list(self._flows.values())

    def register_worker(self, worker: Worker, *, update: bool = False) -> None:
        self.workers.register(worker, update=update)

    # -- events -------------------------------------------------------------

    def subscribe(self, kind: EventKind | str, handler: EventHandler) -> Subscription:
        return self.bus.subscribe(kind, handler)

    def unsubscribe(self, kind: EventKind | str, handler: EventHandler) -> bool:
        return self.bus.unsubscribe(kind, handler)

    # -- execution ----------------------------------------------------------

    async def _require_flow(self, flow_id: str) -> Flow:
        flow = self._flows.get(flow_id)
        if flow is None:
            error = FlowNotFoundError(
                f"Flow '{flow_id}' not found",
                details={"flow_id": flow_id, "available": sorted(self._flows)},
            )
            await self.bus.publish(
                FlowEvent(EventKind.FLOW_ERROR, flow_id=flow_id, data={"error": error.to_dict()})
            )
            raise error
        return flow

    async def run(
        self,
        query: str,
        flow_id: str,
        caller_context: dict[str, Any] | None = None,
        *,
        cancel_token: CancelToken | None = None,
    ) -> FlowExecutionContext:
        """Run a flow to completion.

        A run whose last step failed still returns normally; inspect
        StepResult.status for partial failure.

        Raises:
            FlowNotFoundError: Unknown flow_id.
            StepNotFoundError: Transition to a missing step.
            StepLimitExceededError: Run exceeded config.max_steps.
            RunCancelledError: cancel_token was cancelled.
        """
        flow = await self._require_flow(flow_id)
        return await self.runner.run(flow, query, caller_context, cancel_token=cancel_token)

    async def stream(
        self,
        query: str,
        flow_id: str,
        caller_context: dict[str, Any] | None = None,
        *,
        cancel_token: CancelToken | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Run a flow, yielding flow-start, result and flow-complete.

        Fatal errors (including an unknown flow_id) yield one `error`
        event and end the stream.
        """
        try:
            flow = await self._require_flow(flow_id)
        except FlowNotFoundError as e:
            yield error_event(e)
            return

        async for event in stream_flow(
            self.runner, flow, query, caller_context, cancel_token=cancel_token
        ):
            yield event

    def __repr__(self) -> str:
        return (
            f"FlowEngine(flows={sorted(self._flows)}, "
            f"workers={self.workers.list_names()}, max_steps={self.config.max_steps})"
        )
