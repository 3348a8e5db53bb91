# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Flow definitions: Flow, FlowStep and their nested specs.

Definitions are frozen pydantic models. Field names accept snake_case and
the camelCase used by JSON flow files (defaultStartStep, fromStep, ...).
Cross-references between steps are checked when a Flow is built, so a
malformed flow fails at load time instead of halfway through a run.
"""

from __future__ import annotations

from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from flowline.errors import FlowValidationError
from flowline.types import END, ActionKind, OutputFormat

__all__ = (
    "Flow",
    "FlowStep",
    "OutputSpec",
    "StepConditions",
    "StepInputs",
)

# Original flow files named preference roles after models.
_LEGACY_ROLE_KEYS: dict[str, str] = {
    "searchModel": "search",
    "analysisModel": "analysis",
    "primaryModel": "primary",
}


class _Definition(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class StepInputs(_Definition):
    """Which prior step results feed a step.

    Attributes:
        from_step: Its output becomes previous_step_data.
        from_context: Outputs collected into context_data, keyed by step id.
    """

    from_step: str | None = None
    from_context: tuple[str, ...] | None = None

    def referenced_ids(self) -> list[str]:
        ids = [self.from_step] if self.from_step else []
        ids.extend(self.from_context or ())
        return ids


class StepConditions(_Definition):
    """Transition overrides. Values are step ids or END ("end")."""

    on_success: str | None = None
    on_failure: str | None = None
    on_no_results: str | None = None

    def targets(self) -> list[str]:
        return [
            t
            for t in (self.on_success, self.on_failure, self.on_no_results)
            if t is not None and t != END
        ]


class OutputSpec(_Definition):
    """Presentation settings, read only by the output formatter.

    `format` stays a plain string so unknown formats load and fall back to
    the raw output at render time.
    """

    format: str = OutputFormat.STRUCTURED.value
    include_sources: bool = False
    title: str | None = None


class FlowStep(_Definition):
    """One unit of work in a flow.

    Attributes:
        id: Unique within the flow.
        action: Action kind dispatched through the action registry.
        prompt: Template with {placeholder} tokens.
        config: Action-specific parameters (search depth, temperature, ...).
        worker_override: Forces a worker, bypassing role-based selection.
        timeout: Seconds before the step fails with StepTimeout.
        inputs: Prior results this step consumes.
        conditions: Transition overrides; None means sequential advance.
    """

    id: str = Field(..., min_length=1)
    action: ActionKind
    prompt: str = ""
    config: dict[str, Any] = Field(default_factory=dict)
    worker_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("worker_override", "workerOverride"),
    )
    timeout: float | None = Field(default=None, gt=0)
    inputs: StepInputs | None = None
    conditions: StepConditions | None = None

    @field_validator("prompt", mode="before")
    @classmethod
    def _none_prompt(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("config", mode="before")
    @classmethod
    def _none_config(cls, value: Any) -> Any:
        return {} if value is None else value


class Flow(_Definition):
    """Immutable flow definition.

    Attributes:
        id: Flow identifier (catalog key).
        name: Display name.
        steps: Ordered steps; declaration order drives sequential advance.
        default_start_step: First step id (first declared step if None).
        worker_preferences: role -> worker ("search", "analysis", "primary").
        action_workers: action -> worker, consulted after role preferences.
        output: Formatter settings.
    """

    id: str = Field(..., min_length=1)
    name: str = ""
    description: str | None = None
    steps: tuple[FlowStep, ...]
    default_start_step: str | None = None
    worker_preferences: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices(
            "worker_preferences", "workerPreferences", "modelPreferences"
        ),
    )
    action_workers: dict[ActionKind, str] = Field(default_factory=dict)
    output: OutputSpec = Field(default_factory=OutputSpec)

    _index: dict[str, int] | None = PrivateAttr(default=None)

    @field_validator("worker_preferences", mode="before")
    @classmethod
    def _normalize_roles(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {_LEGACY_ROLE_KEYS.get(k, k): v for k, v in value.items() if v}

    @field_validator("output", mode="before")
    @classmethod
    def _none_output(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def _check_references(self) -> Flow:
        """Fail fast on duplicate ids and dangling step references."""
        if not self.steps:
            raise FlowValidationError(
                f"Flow '{self.id}' has no steps", details={"flow_id": self.id}
            )

        seen: set[str] = set()
        duplicates: list[str] = []
        for step in self.steps:
            if step.id in seen:
                duplicates.append(step.id)
            seen.add(step.id)
        if duplicates:
            raise FlowValidationError(
                f"Flow '{self.id}' has duplicate step ids: {duplicates}",
                details={"flow_id": self.id, "duplicates": duplicates},
            )

        dangling: list[dict[str, str]] = []
        if self.default_start_step is not None and self.default_start_step not in seen:
            dangling.append({"field": "default_start_step", "target": self.default_start_step})
        for step in self.steps:
            if step.conditions is not None:
                for target in step.conditions.targets():
                    if target not in seen:
                        dangling.append({"step": step.id, "field": "conditions", "target": target})
            if step.inputs is not None:
                for target in step.inputs.referenced_ids():
                    if target not in seen:
                        dangling.append({"step": step.id, "field": "inputs", "target": target})
        if dangling:
            raise FlowValidationError(
                f"Flow '{self.id}' references unknown steps: "
                f"{sorted({d['target'] for d in dangling})}",
                details={"flow_id": self.id, "dangling": dangling},
            )

        self._index = {step.id: i for i, step in enumerate(self.steps)}
        return self

    @property
    def start_step_id(self) -> str:
        if self.default_start_step is not None:
            return self.default_start_step
        return self.steps[0].id

    @property
    def step_ids(self) -> list[str]:
        return [step.id for step in self.steps]

    def _step_index(self) -> dict[str, int]:
        # model_construct() skips validators, so build lazily
        if self._index is None:
            self._index = {step.id: i for i, step in enumerate(self.steps)}
        return self._index

    def index_of(self, step_id: str) -> int | None:
        return self._step_index().get(step_id)

    def get_step(self, step_id: str) -> FlowStep | None:
        idx = self.index_of(step_id)
        return None if idx is None else self.steps[idx]

    def step_after(self, step_id: str) -> FlowStep | None:
        """Step declared immediately after step_id, or None if last/unknown."""
        idx = self.index_of(step_id)
        if idx is None or idx + 1 >= len(self.steps):
            return None
        return self.steps[idx + 1]

    def __repr__(self) -> str:
        return f"Flow(id={self.id!r}, steps={self.step_ids})"
