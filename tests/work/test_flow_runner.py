# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Tests for flowline.work.runner - state machine and transitions."""

from __future__ import annotations

import time

import anyio
import pytest

from flowline.actions.registry import default_action_registry
from flowline.actions.worker import FunctionWorker, WorkerRegistry
from flowline.config import EngineConfig
from flowline.errors import RunCancelledError, StepLimitExceededError, StepNotFoundError
from flowline.events import EventBus
from flowline.flow.models import Flow, FlowStep, StepConditions
from flowline.types import ActionKind, ErrorKind, EventKind, RunState, StepStatus
from flowline.work.context import CancelToken, StepResult
from flowline.work.executor import StepExecutor
from flowline.work.runner import FlowRunner, next_step

SEARCH_OUTPUT = {
    "results": [{"title": "a"}, {"title": "b"}, {"title": "c"}],
    "sources": ["s1", "s2"],
}

SCENARIO_STEPS = [
    {"id": "S", "action": "search", "conditions": {"onSuccess": "A"}},
    {"id": "A", "action": "analyze", "inputs": {"fromStep": "S"}},
]


def build_runner(*workers, config=None, bus=None):
    config = config or EngineConfig()
    executor = StepExecutor(default_action_registry(), WorkerRegistry(workers), config=config)
    return FlowRunner(executor, bus if bus is not None else EventBus(), config)


def result(status: StepStatus, output=None) -> StepResult:
    r = StepResult(step_id="x", action=ActionKind.SEARCH)
    return r.succeed(output) if status is StepStatus.SUCCESS else r.fail("boom")


# =============================================================================
# Tests: next_step
# =============================================================================


class TestNextStep:
    @pytest.fixture
    def flow(self, make_flow):
        return make_flow(
            [
                {"id": "a", "action": "search"},
                {"id": "b", "action": "analyze"},
                {"id": "c", "action": "synthesize"},
            ]
        )

    def test_sequential_without_conditions(self, flow):
        assert next_step(flow.get_step("a"), result(StepStatus.SUCCESS), flow) == "b"
        assert next_step(flow.get_step("b"), result(StepStatus.FAILED), flow) == "c"
        assert next_step(flow.get_step("c"), result(StepStatus.SUCCESS), flow) is None

    def _with(self, flow, **conditions) -> FlowStep:
        return flow.get_step("a").model_copy(update={"conditions": StepConditions(**conditions)})

    def test_on_success(self, flow):
        step = self._with(flow, on_success="c")
        assert next_step(step, result(StepStatus.SUCCESS), flow) == "c"

    def test_on_failure(self, flow):
        step = self._with(flow, on_success="b", on_failure="c")
        assert next_step(step, result(StepStatus.FAILED), flow) == "c"

    def test_on_success_beats_no_results(self, flow):
        step = self._with(flow, on_success="b", on_no_results="c")
        assert next_step(step, result(StepStatus.SUCCESS, {"results": []}), flow) == "b"

    def test_on_no_results(self, flow):
        step = self._with(flow, on_failure="b", on_no_results="c")
        assert next_step(step, result(StepStatus.SUCCESS, {"results": []}), flow) == "c"
        assert next_step(step, result(StepStatus.SUCCESS, {"results": [1]}), flow) is None

    def test_end_sentinel(self, flow):
        step = self._with(flow, on_success="end")
        assert next_step(step, result(StepStatus.SUCCESS), flow) is None

    def test_no_match_falls_off_edge(self, flow):
        """Conditions present but unmatched end the run; no sequential fallback."""
        step = self._with(flow, on_failure="c")
        assert next_step(step, result(StepStatus.SUCCESS), flow) is None


# =============================================================================
# Tests: run lifecycle
# =============================================================================


class TestRunScenarios:
    @pytest.mark.anyio
    async def test_search_then_analyze(self, make_flow, recording_worker):
        """S succeeds -> A receives S's output -> run completes with 2 results."""
        worker = recording_worker(
            replies={ActionKind.SEARCH: SEARCH_OUTPUT, ActionKind.ANALYZE: {"analysis": "ok"}}
        )
        flow = make_flow(SCENARIO_STEPS, flow_id="F")

        ctx = await build_runner(worker).run(flow, "widgets")

        assert ctx.state is RunState.COMPLETED
        assert ctx.end_time is not None
        assert len(ctx.step_results) == 2
        assert ctx.step_results["S"].status is StepStatus.SUCCESS
        assert ctx.step_results["S"].sources == ["s1", "s2"]
        assert ctx.step_results["A"].status is StepStatus.SUCCESS
        analyze_request = worker.calls[1][1]
        assert analyze_request.data == ctx.step_results["S"].output
        assert ctx.current_step_id is None
        assert ctx.current_step_index == 2

    @pytest.mark.anyio
    async def test_search_fails_run_still_completes(self, make_flow, recording_worker):
        """S throws and has no on_failure -> run completes with one failed result."""
        worker = recording_worker(errors={ActionKind.SEARCH: RuntimeError("rate limited")})
        flow = make_flow(SCENARIO_STEPS, flow_id="F")

        ctx = await build_runner(worker).run(flow, "widgets")

        assert ctx.state is RunState.COMPLETED
        assert list(ctx.step_results) == ["S"]
        assert ctx.step_results["S"].status is StepStatus.FAILED
        assert ctx.step_results["S"].error == "rate limited"
        assert ctx.error is None

    @pytest.mark.anyio
    async def test_sequential_visits_each_step_once(self, make_flow, recording_worker):
        worker = recording_worker()
        flow = make_flow(
            [
                {"id": "a", "action": "search"},
                {"id": "b", "action": "analyze"},
                {"id": "c", "action": "synthesize"},
                {"id": "d", "action": "compare"},
                {"id": "e", "action": "recommend"},
            ]
        )

        ctx = await build_runner(worker).run(flow, "q")

        assert ctx.history == ["a", "b", "c", "d", "e"]
        assert worker.actions_called == [
            ActionKind.SEARCH,
            ActionKind.ANALYZE,
            ActionKind.SYNTHESIZE,
            ActionKind.COMPARE,
            ActionKind.RECOMMEND,
        ]

    @pytest.mark.anyio
    async def test_failure_routes_to_handler_step(self, make_flow, recording_worker):
        worker = recording_worker(errors={ActionKind.SEARCH: RuntimeError("down")})
        flow = make_flow(
            [
                {"id": "s", "action": "search", "conditions": {"onFailure": "fallback"}},
                {"id": "a", "action": "analyze"},
                {"id": "fallback", "action": "recommend"},
            ]
        )

        ctx = await build_runner(worker).run(flow, "q")

        assert ctx.history == ["s", "fallback"]
        assert ctx.state is RunState.COMPLETED

    @pytest.mark.anyio
    async def test_timeout_routes_through_on_failure(self, make_flow):
        async def hang(action, request, config):
            if action is ActionKind.SEARCH:
                await anyio.sleep(10)
            return {"ok": True}

        flow = make_flow(
            [
                {
                    "id": "s",
                    "action": "search",
                    "timeout": 0.05,
                    "conditions": {"onFailure": "r"},
                },
                {"id": "r", "action": "recommend"},
            ]
        )

        ctx = await build_runner(FunctionWorker("default", hang)).run(flow, "q")

        assert ctx.step_results["s"].error_kind is ErrorKind.STEP_TIMEOUT
        assert ctx.history == ["s", "r"]

    @pytest.mark.anyio
    async def test_no_results_branch(self, make_flow, recording_worker):
        worker = recording_worker(replies={ActionKind.SEARCH: {"results": []}})
        flow = make_flow(
            [
                {
                    "id": "s",
                    "action": "search",
                    "conditions": {"onFailure": "end", "onNoResults": "broaden"},
                },
                {"id": "a", "action": "analyze"},
                {"id": "broaden", "action": "custom", "prompt": "Broaden {query}"},
            ]
        )

        ctx = await build_runner(worker).run(flow, "q")

        assert ctx.history == ["s", "broaden"]
        assert worker.calls[-1][1].prompt == "Broaden q"

    @pytest.mark.anyio
    async def test_caller_context_and_chaining(self, make_flow, recording_worker):
        worker = recording_worker()
        flow = make_flow(
            [
                {"id": "s", "action": "search", "prompt": "{query} in {region}"},
                {"id": "y", "action": "synthesize", "inputs": {"fromContext": ["s", "x"]}},
                {"id": "x", "action": "custom", "prompt": "p"},
            ]
        )

        ctx = await build_runner(worker).run(flow, "bikes", {"region": "EU"})

        assert worker.calls[0][1].query == "bikes in EU"
        assert worker.calls[1][1].sources == ({"ok": True},)
        assert ctx.caller_context == {"region": "EU"}


# =============================================================================
# Tests: fatal conditions
# =============================================================================


class TestRunFatal:
    @pytest.mark.anyio
    async def test_loop_guard_default(self, make_flow, recording_worker):
        """A cycle with no reachable end fails after exactly max_steps executions."""
        worker = recording_worker()
        flow = make_flow(
            [
                {"id": "a", "action": "search", "conditions": {"onSuccess": "b"}},
                {"id": "b", "action": "analyze", "conditions": {"onSuccess": "a"}},
            ]
        )
        runner = build_runner(worker)

        with pytest.raises(StepLimitExceededError):
            await runner.run(flow, "q")

        assert len(worker.calls) == 20

    @pytest.mark.anyio
    async def test_loop_guard_context_state(self, make_flow, recording_worker):
        flow = make_flow([{"id": "a", "action": "search", "conditions": {"onSuccess": "a"}}])
        runner = build_runner(recording_worker(), config=EngineConfig(max_steps=3))
        ctx_holder = []
        runner.bus.subscribe(EventKind.FLOW_ERROR, ctx_holder.append)

        with pytest.raises(StepLimitExceededError) as exc_info:
            await runner.run(flow, "q")

        assert exc_info.value.details["max_steps"] == 3
        assert len(ctx_holder) == 1
        assert ctx_holder[0].data["error"]["kind"] == "StepLimitExceeded"

    @pytest.mark.anyio
    async def test_exactly_max_steps_linear_completes(self, make_flow, recording_worker):
        """A linear flow with max_steps steps should still complete."""
        steps = [{"id": f"s{i}", "action": "custom", "prompt": "p"} for i in range(5)]
        flow = make_flow(steps)

        ctx = await build_runner(recording_worker(), config=EngineConfig(max_steps=5)).run(
            flow, "q"
        )

        assert ctx.state is RunState.COMPLETED
        assert len(ctx.history) == 5

    @pytest.mark.anyio
    async def test_missing_step_is_fatal(self, recording_worker):
        """A transition to an unknown step fails the run with StepNotFound."""
        flow = Flow.model_construct(
            id="broken",
            steps=(
                FlowStep.model_construct(
                    id="a",
                    action=ActionKind.SEARCH,
                    prompt="",
                    config={},
                    conditions=StepConditions(on_success="ghost"),
                ),
            ),
        )
        runner = build_runner(recording_worker())
        errors = []
        runner.bus.subscribe(EventKind.FLOW_ERROR, errors.append)

        with pytest.raises(StepNotFoundError, match="ghost"):
            await runner.run(flow, "q")

        assert len(errors) == 1

    @pytest.mark.anyio
    async def test_cancel_before_start(self, make_flow, recording_worker):
        worker = recording_worker()
        flow = make_flow([{"id": "a", "action": "search"}])
        token = CancelToken()
        token.cancel("stop")

        with pytest.raises(RunCancelledError):
            await build_runner(worker).run(flow, "q", cancel_token=token)

        assert worker.calls == []

    @pytest.mark.anyio
    async def test_cancel_stops_before_next_step(self, make_flow, recording_worker):
        """Cancelling during a step prevents the next step from executing."""
        token = CancelToken()
        contexts = []

        def cancel_after_first(request):
            token.cancel("user")
            return {"ok": True}

        worker = recording_worker(replies={ActionKind.SEARCH: cancel_after_first})
        flow = make_flow([{"id": "a", "action": "search"}, {"id": "b", "action": "analyze"}])
        runner = build_runner(worker)
        runner.bus.subscribe(
            EventKind.FLOW_ERROR, lambda e: contexts.append(e.data["error"]["kind"])
        )

        with pytest.raises(RunCancelledError):
            await runner.run(flow, "q", cancel_token=token)

        assert worker.actions_called == [ActionKind.SEARCH]
        assert contexts == ["Cancelled"]


# =============================================================================
# Tests: events
# =============================================================================


class TestRunEvents:
    @pytest.mark.anyio
    async def test_event_sequence(self, make_flow, recording_worker):
        """A listener should see the run's events in emission order."""
        bus = EventBus()
        seen = []

        def record(event):
            seen.append((event.kind.value, event.step_id))

        for kind in EventKind:
            bus.subscribe(kind, record)
        worker = recording_worker(errors={ActionKind.ANALYZE: RuntimeError("x")})
        flow = make_flow([{"id": "s", "action": "search"}, {"id": "a", "action": "analyze"}])

        ctx = await build_runner(worker, bus=bus).run(flow, "q")

        assert seen == [
            ("flow-start", None),
            ("step-start", "s"),
            ("thinking", "s"),
            ("step-complete", "s"),
            ("step-start", "a"),
            ("thinking", "a"),
            ("step-error", "a"),
            ("step-complete", "a"),
            ("flow-complete", None),
        ]
        assert ctx.state is RunState.COMPLETED

    @pytest.mark.anyio
    async def test_blocking_listener_does_not_stall_steps(self, make_flow):
        """A sync listener that blocks should not slow the step it observes."""
        bus = EventBus()
        blocked = []

        def blocking(event):
            time.sleep(0.4)
            blocked.append(event.step_id)

        async def quick(action, request, config):
            await anyio.sleep(0.01)
            return {"ok": True}

        bus.subscribe(EventKind.STEP_START, blocking)
        flow = make_flow([{"id": "s", "action": "custom", "prompt": "go"}])

        ctx = await build_runner(FunctionWorker("default", quick), bus=bus).run(flow, "q")

        assert ctx.step_results["s"].duration_ms < 300
        assert blocked == ["s"]

    @pytest.mark.anyio
    async def test_concurrent_runs_isolated(self, make_flow, recording_worker):
        worker = recording_worker()
        flow = make_flow([{"id": "a", "action": "search"}, {"id": "b", "action": "analyze"}])
        runner = build_runner(worker)
        contexts = []

        async def one(query):
            contexts.append(await runner.run(flow, query))

        async with anyio.create_task_group() as tg:
            for q in ("x", "y", "z"):
                tg.start_soon(one, q)

        assert len({c.session_id for c in contexts}) == 3
        assert all(c.history == ["a", "b"] for c in contexts)
