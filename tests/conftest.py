# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures: asyncio backend, recording worker, flow factory."""

from __future__ import annotations

from typing import Any

import pytest

from flowline.actions.worker import Worker, handles
from flowline.flow.models import Flow
from flowline.types import ActionKind


@pytest.fixture
def anyio_backend():
    return "asyncio"


class RecordingWorker(Worker):
    """Answers every action kind and records each call.

    replies: action -> value, or callable(request) -> value
    errors: action -> exception to raise
    """

    def __init__(
        self,
        name: str = "default",
        replies: dict[ActionKind, Any] | None = None,
        errors: dict[ActionKind, Exception] | None = None,
    ) -> None:
        self.calls: list[tuple[ActionKind, Any, dict]] = []
        self.replies = dict(replies or {})
        self.errors = dict(errors or {})
        super().__init__(name)

    @handles(*ActionKind)
    async def answer(self, request, config):
        self.calls.append((request.action, request, config))
        if request.action in self.errors:
            raise self.errors[request.action]
        reply = self.replies.get(request.action, {"ok": True})
        return reply(request) if callable(reply) else reply

    @property
    def actions_called(self) -> list[ActionKind]:
        return [action for action, _, _ in self.calls]


@pytest.fixture
def recording_worker():
    """Factory for RecordingWorker instances."""
    return RecordingWorker


@pytest.fixture
def make_flow():
    """Build a validated Flow from step dicts."""

    def _make(steps: list[dict[str, Any]], flow_id: str = "f", **extra: Any) -> Flow:
        return Flow.model_validate({"id": flow_id, "name": flow_id, "steps": steps, **extra})

    return _make
