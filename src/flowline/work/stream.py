# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Streaming adapter: one run as an ordered sequence of events.

Sequence for a successful run:
    flow-start, result (if the last executed step produced output),
    flow-complete

A fatal condition yields a single `error` event and ends the stream.
Step-level events still go to EventBus listeners as usual.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from flowline.errors import FlowlineError

from .context import CancelToken, FlowExecutionContext
from .formatter import format_output

if TYPE_CHECKING:
    from flowline.flow.models import Flow

    from .runner import FlowRunner

logger = logging.getLogger(__name__)

__all__ = ("StreamEvent", "error_event", "stream_flow")

FLOW_START = "flow-start"
RESULT = "result"
FLOW_COMPLETE = "flow-complete"
ERROR = "error"


@dataclass(frozen=True, slots=True)
class StreamEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}

    def to_sse(self) -> str:
        """Frame as one server-sent event message."""
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"


def error_event(error: Exception, **extra: Any) -> StreamEvent:
    if isinstance(error, FlowlineError):
        info = error.to_dict()
    else:
        info = {"kind": type(error).__name__, "message": str(error), "details": {}}
    return StreamEvent(ERROR, {**info, **extra})


async def stream_flow(
    runner: FlowRunner,
    flow: Flow,
    query: str,
    caller_context: dict[str, Any] | None = None,
    *,
    cancel_token: CancelToken | None = None,
) -> AsyncIterator[StreamEvent]:
    """Run flow once, yielding stream events. Each call is a fresh run."""
    context = FlowExecutionContext(
        flow_id=flow.id,
        original_query=query,
        caller_context=dict(caller_context or {}),
    )
    yield StreamEvent(
        FLOW_START,
        {"flow_id": flow.id, "session_id": context.session_id, "query": query},
    )

    try:
        await runner.run(flow, query, cancel_token=cancel_token, context=context)
    except Exception as e:
        if not isinstance(e, FlowlineError):
            logger.exception(f"Stream for flow '{flow.id}' crashed")
        yield error_event(e, session_id=context.session_id)
        return

    last = context.last_result
    if last is not None and last.output is not None:
        yield StreamEvent(
            RESULT,
            {
                "step_id": last.step_id,
                "output": format_output(last.output, flow.output, generated_at=context.end_time),
            },
        )
    yield StreamEvent(FLOW_COMPLETE, {"context": context.to_dict()})
