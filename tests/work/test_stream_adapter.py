# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Tests for flowline.work.stream - StreamEvent and stream_flow."""

from __future__ import annotations

import json

import pytest

from flowline.actions.registry import default_action_registry
from flowline.actions.worker import WorkerRegistry
from flowline.config import EngineConfig
from flowline.errors import StepLimitExceededError
from flowline.events import EventBus
from flowline.types import ActionKind, EventKind
from flowline.work.executor import StepExecutor
from flowline.work.runner import FlowRunner
from flowline.work.stream import StreamEvent, error_event, stream_flow


def build_runner(*workers, config=None, bus=None):
    config = config or EngineConfig()
    executor = StepExecutor(default_action_registry(), WorkerRegistry(workers), config=config)
    return FlowRunner(executor, bus if bus is not None else EventBus(), config)


async def collect(agen):
    return [event async for event in agen]


class TestStreamEvent:
    def test_to_sse(self):
        event = StreamEvent("result", {"output": "text"})
        frame = event.to_sse()

        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: ") :]) == {
            "type": "result",
            "data": {"output": "text"},
        }

    def test_error_event(self):
        event = error_event(StepLimitExceededError("limit", details={"max_steps": 2}))
        assert event.type == "error"
        assert event.data["kind"] == "StepLimitExceeded"
        assert event.data["details"] == {"max_steps": 2}


class TestStreamFlow:
    @pytest.mark.anyio
    async def test_sequence(self, make_flow, recording_worker):
        """flow-start, result, flow-complete in that order."""
        worker = recording_worker(replies={ActionKind.ANALYZE: {"analysis": "Findings"}})
        flow = make_flow(
            [{"id": "s", "action": "search"}, {"id": "a", "action": "analyze"}],
            output={"format": "report"},
        )

        events = await collect(stream_flow(build_runner(worker), flow, "widgets"))

        assert [e.type for e in events] == ["flow-start", "result", "flow-complete"]
        assert events[0].data["flow_id"] == flow.id
        assert events[0].data["session_id"] == events[2].data["context"]["session_id"]
        assert events[1].data["step_id"] == "a"
        assert events[1].data["output"].startswith("# Analysis Report\n\nGenerated: ")
        assert events[1].data["output"].endswith("Findings")
        assert events[2].data["context"]["state"] == "completed"

    @pytest.mark.anyio
    async def test_result_uses_last_executed_step(self, make_flow, recording_worker):
        """The result comes from the last step run, not the last declared step."""
        worker = recording_worker(replies={ActionKind.SEARCH: {"results": ["hit"]}})
        flow = make_flow(
            [
                {"id": "s", "action": "search", "conditions": {"onSuccess": "end"}},
                {"id": "a", "action": "analyze"},
            ]
        )

        events = await collect(stream_flow(build_runner(worker), flow, "q"))

        assert events[1].data == {"step_id": "s", "output": {"results": ["hit"]}}

    @pytest.mark.anyio
    async def test_result_omitted_for_failed_last_step(self, make_flow, recording_worker):
        worker = recording_worker(errors={ActionKind.SEARCH: RuntimeError("down")})
        flow = make_flow([{"id": "s", "action": "search"}])

        events = await collect(stream_flow(build_runner(worker), flow, "q"))

        assert [e.type for e in events] == ["flow-start", "flow-complete"]

    @pytest.mark.anyio
    async def test_fatal_yields_error_and_stops(self, make_flow, recording_worker):
        flow = make_flow([{"id": "a", "action": "search", "conditions": {"onSuccess": "a"}}])
        runner = build_runner(recording_worker(), config=EngineConfig(max_steps=2))

        events = await collect(stream_flow(runner, flow, "q"))

        assert [e.type for e in events] == ["flow-start", "error"]
        assert events[1].data["kind"] == "StepLimitExceeded"
        assert events[1].data["session_id"] == events[0].data["session_id"]

    @pytest.mark.anyio
    async def test_bus_listeners_still_notified(self, make_flow, recording_worker):
        bus = EventBus()
        steps = []
        bus.subscribe(EventKind.STEP_COMPLETE, lambda e: steps.append(e.step_id))
        flow = make_flow([{"id": "s", "action": "search"}, {"id": "a", "action": "analyze"}])

        await collect(stream_flow(build_runner(recording_worker(), bus=bus), flow, "q"))

        assert steps == ["s", "a"]
