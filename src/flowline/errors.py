# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Error taxonomy for flow execution.

Fatal to a run (raised by FlowEngine.run, surfaced as flow-error):
    FlowNotFoundError, StepNotFoundError, StepLimitExceededError,
    RunCancelledError

Recoverable at step granularity (captured into StepResult.error_kind):
    WorkerNotFoundError, StepTimeoutError, UnsupportedActionError,
    any exception raised by a capability

Load / registration time:
    FlowValidationError, ConfigurationError, ExistsError
"""

from __future__ import annotations

from typing import Any, ClassVar

__all__ = (
    "ConfigurationError",
    "ExistsError",
    "FlowNotFoundError",
    "FlowValidationError",
    "FlowlineError",
    "NotFoundError",
    "RunCancelledError",
    "StepLimitExceededError",
    "StepNotFoundError",
    "StepTimeoutError",
    "UnsupportedActionError",
    "ValidationError",
    "WorkerNotFoundError",
)


class FlowlineError(Exception):
    """Base error carrying a message and structured details."""

    kind: ClassVar[str] = "FlowlineError"
    fatal: ClassVar[bool] = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class NotFoundError(FlowlineError):
    kind = "NotFound"


class ExistsError(FlowlineError):
    kind = "Exists"


class ValidationError(FlowlineError):
    kind = "Validation"


class ConfigurationError(FlowlineError):
    kind = "Configuration"


class FlowValidationError(ValidationError):
    """Flow definition is malformed (dangling step reference, duplicate id, ...)."""

    kind = "FlowValidation"


class FlowNotFoundError(NotFoundError):
    kind = "FlowNotFound"
    fatal = True


class StepNotFoundError(NotFoundError):
    kind = "StepNotFound"
    fatal = True


class StepLimitExceededError(FlowlineError):
    """Run executed max_steps steps and still had somewhere to go."""

    kind = "StepLimitExceeded"
    fatal = True


class RunCancelledError(FlowlineError):
    kind = "Cancelled"
    fatal = True


class WorkerNotFoundError(NotFoundError):
    kind = "WorkerNotFound"


class StepTimeoutError(FlowlineError):
    kind = "StepTimeout"


class UnsupportedActionError(FlowlineError):
    """Worker or registry has no handler for the requested action."""

    kind = "UnsupportedAction"
