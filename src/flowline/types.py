# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Shared enums and sentinels."""

from __future__ import annotations

from enum import Enum
from typing import Final

__all__ = (
    "END",
    "ActionKind",
    "ErrorKind",
    "EventKind",
    "OutputFormat",
    "RunState",
    "StepStatus",
)

END: Final[str] = "end"
"""Transition target meaning 'terminate the run'."""


class ActionKind(str, Enum):
    SEARCH = "search"
    ANALYZE = "analyze"
    SYNTHESIZE = "synthesize"
    COMPARE = "compare"
    RECOMMEND = "recommend"
    CUSTOM = "custom"

    @property
    def role(self) -> str | None:
        """Worker-preference role for this action, if any."""
        if self is ActionKind.SEARCH:
            return "search"
        if self in (ActionKind.ANALYZE, ActionKind.SYNTHESIZE):
            return "analysis"
        return None


class StepStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RunState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED, RunState.CANCELLED)


class ErrorKind(str, Enum):
    """Step-level failure categories recorded on StepResult."""

    CAPABILITY = "CapabilityError"
    WORKER_NOT_FOUND = "WorkerNotFound"
    STEP_TIMEOUT = "StepTimeout"
    CANCELLED = "Cancelled"


class EventKind(str, Enum):
    FLOWS_LOADED = "flows-loaded"
    FLOW_START = "flow-start"
    STEP_START = "step-start"
    STEP_COMPLETE = "step-complete"
    STEP_ERROR = "step-error"
    FLOW_COMPLETE = "flow-complete"
    FLOW_ERROR = "flow-error"
    THINKING = "thinking"


class OutputFormat(str, Enum):
    STRUCTURED = "structured"
    PROSE = "prose"
    REPORT = "report"
    MARKUP = "markup"

    @classmethod
    def parse(cls, value: str | OutputFormat | None) -> OutputFormat | None:
        """Resolve a format name, accepting json/markdown/html aliases. None if unknown."""
        if isinstance(value, OutputFormat):
            return value
        if not value:
            return None
        name = str(value).strip().lower()
        name = _FORMAT_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return None


_FORMAT_ALIASES: dict[str, str] = {
    "json": "structured",
    "markdown": "prose",
    "md": "prose",
    "html": "markup",
}
