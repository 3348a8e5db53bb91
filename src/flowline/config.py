# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Engine configuration."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flowline.errors import ConfigurationError
from flowline.types import ActionKind

__all__ = ("DEFAULT_MAX_STEPS", "EngineConfig")

DEFAULT_MAX_STEPS = 20


class EngineConfig(BaseModel):
    """Runtime settings shared by every run of a FlowEngine.

    Read-only during execution; build a new engine to change them.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_steps: int = Field(
        default=DEFAULT_MAX_STEPS,
        ge=1,
        description="Step executions per run before StepLimitExceeded.",
    )
    step_timeout: float | None = Field(
        default=120.0,
        gt=0,
        description="Default per-step timeout in seconds. None disables.",
    )
    default_worker: str = Field(
        default="default",
        min_length=1,
        description="Worker used when neither step nor flow names one.",
    )
    emit_thinking: bool = Field(
        default=True,
        description="Let action handlers publish thinking traces.",
    )
    action_workers: dict[str, dict[ActionKind, str]] = Field(
        default_factory=dict,
        description="flow_id -> {action -> worker} overrides applied after role preferences.",
    )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> EngineConfig:
        """Build from a plain mapping (e.g. a parsed YAML settings block).

        Raises:
            ConfigurationError: If the mapping does not validate.
        """
        try:
            return cls.model_validate(dict(data or {}))
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid engine configuration: {e.error_count()} error(s)",
                details={"errors": e.errors(include_url=False)},
            ) from e
