# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Per-run records: execution context, step results, cancellation.

FlowExecutionContext is created at run start, mutated only by the runner,
and frozen once `end_time` is set. StepResult moves running -> success or
running -> failed exactly once.
"""

from __future__ import annotations

import time
from collections.abc import Iterator, Mapping, Sized
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

import anyio

from flowline.errors import RunCancelledError
from flowline.types import ActionKind, ErrorKind, RunState, StepStatus

__all__ = (
    "CancelToken",
    "FlowExecutionContext",
    "ResultEnvelope",
    "StepResult",
    "generate_session_id",
    "has_empty_results",
    "lift_envelope",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    """session_<epoch ms>_<9 random hex chars>"""
    return f"session_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


# ---------------------------------------------------------------------------
# Result envelope
# ---------------------------------------------------------------------------


@runtime_checkable
class ResultEnvelope(Protocol):
    """Optional accessors a capability output may implement."""

    def sources(self) -> Any: ...

    def confidence(self) -> float | None: ...


def lift_envelope(output: Any) -> tuple[Any, float | None]:
    """Extract (sources, confidence) from an output; None means absent.

    Lookup order: ResultEnvelope methods, mapping keys, plain attributes.
    """
    if output is None:
        return None, None
    if (
        isinstance(output, ResultEnvelope)
        and callable(output.sources)
        and callable(output.confidence)
    ):
        return output.sources(), output.confidence()
    if isinstance(output, Mapping):
        return output.get("sources"), output.get("confidence")
    return getattr(output, "sources", None), getattr(output, "confidence", None)


def has_empty_results(output: Any) -> bool:
    """True if output exposes a `results` collection with no items."""
    if output is None:
        return False
    if isinstance(output, Mapping):
        if "results" not in output:
            return False
        results = output["results"]
    else:
        results = getattr(output, "results", None)
    if results is None or isinstance(results, (str, bytes)):
        return False
    return isinstance(results, Sized) and len(results) == 0


# ---------------------------------------------------------------------------
# Step result
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class StepResult:
    """Outcome of one step execution.

    Attributes:
        step_id: Step that produced this result.
        action: The step's action kind.
        status: running, then success or failed.
        output: Capability result (success only).
        error: Error message (failed only).
        error_kind: Failure category (failed only).
        worker: Name of the worker selected for the step.
        sources: Lifted from the output, if present.
        confidence: Lifted from the output, if present.
    """

    step_id: str
    action: ActionKind
    status: StepStatus = StepStatus.RUNNING
    start_time: datetime = field(default_factory=_now)
    end_time: datetime | None = None
    duration_ms: float | None = None
    output: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    worker: str | None = None
    sources: Any = None
    confidence: float | None = None
    _started: float = field(default_factory=time.monotonic, repr=False, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status is StepStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status is StepStatus.FAILED

    def succeed(self, output: Any) -> StepResult:
        self._finish(StepStatus.SUCCESS)
        self.output = output
        self.sources, self.confidence = lift_envelope(output)
        return self

    def fail(
        self, error: BaseException | str, kind: ErrorKind = ErrorKind.CAPABILITY
    ) -> StepResult:
        self._finish(StepStatus.FAILED)
        self.error = str(error) or type(error).__name__
        self.error_kind = kind
        return self

    def _finish(self, status: StepStatus) -> None:
        if self.status is not StepStatus.RUNNING:
            raise RuntimeError(
                f"Step result '{self.step_id}' already finished as {self.status.value}"
            )
        elapsed = time.monotonic() - self._started
        self.status = status
        self.end_time = self.start_time + timedelta(seconds=elapsed)
        self.duration_ms = elapsed * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "action": self.action.value,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "output": self.output,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "worker": self.worker,
            "sources": self.sources,
            "confidence": self.confidence,
        }


# ---------------------------------------------------------------------------
# Execution context
# ---------------------------------------------------------------------------


@dataclass
class FlowExecutionContext:
    """Mutable record of one run's progress."""

    flow_id: str
    original_query: str
    caller_context: dict[str, Any] = field(default_factory=dict)
    session_id: str = field(default_factory=generate_session_id)
    current_step_id: str | None = None
    current_step_index: int = 0
    step_results: dict[str, StepResult] = field(default_factory=dict)
    history: list[str] = field(default_factory=list)
    state: RunState = RunState.NOT_STARTED
    error: dict[str, Any] | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.end_time is not None

    @property
    def last_result(self) -> StepResult | None:
        """Result of the most recently executed step."""
        if not self.history:
            return None
        return self.step_results.get(self.history[-1])

    def get_result(self, step_id: str) -> StepResult | None:
        return self.step_results.get(step_id)

    def start(self, step_id: str) -> None:
        if self.state is not RunState.NOT_STARTED:
            raise RuntimeError(f"Run {self.session_id} already started")
        self.state = RunState.RUNNING
        self.start_time = _now()
        self.current_step_id = step_id

    def record_result(self, result: StepResult) -> None:
        """Store result (a revisit overwrites) and append to history."""
        if self.is_finished:
            raise RuntimeError(f"Run {self.session_id} is finished")
        self.step_results[result.step_id] = result
        self.history.append(result.step_id)

    def finish(self, state: RunState, error: dict[str, Any] | None = None) -> None:
        if self.is_finished:
            raise RuntimeError(f"Run {self.session_id} is finished")
        if not state.is_terminal:
            raise ValueError(f"Cannot finish run in non-terminal state {state.value}")
        self.state = state
        self.error = error
        self.end_time = _now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "session_id": self.session_id,
            "original_query": self.original_query,
            "caller_context": self.caller_context,
            "current_step_id": self.current_step_id,
            "current_step_index": self.current_step_index,
            "step_results": {k: v.to_dict() for k, v in self.step_results.items()},
            "history": list(self.history),
            "state": self.state.value,
            "error": self.error,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancelToken:
    """Cooperative cancellation handle for one run.

    The runner checks the token before each step; the executor wraps each
    capability call in `scope()` so `cancel()` also interrupts the
    in-flight call. Call `cancel()` from the run's event loop.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._scopes: set[anyio.CancelScope] = set()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str | None = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        for scope in list(self._scopes):
            scope.cancel()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RunCancelledError(
                f"Run cancelled: {self.reason}" if self.reason else "Run cancelled",
                details={"reason": self.reason},
            )

    @contextmanager
    def scope(self) -> Iterator[anyio.CancelScope]:
        """Cancel scope that fires if the token is (or becomes) cancelled."""
        with anyio.CancelScope() as scope:
            if self._cancelled:
                scope.cancel()
            self._scopes.add(scope)
            try:
                yield scope
            finally:
                self._scopes.discard(scope)

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self._cancelled}, in_flight={len(self._scopes)})"
