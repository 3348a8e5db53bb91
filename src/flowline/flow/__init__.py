# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Flow definitions and loaders.

- Flow / FlowStep: frozen, validated definitions
- StepInputs / StepConditions / OutputSpec: nested step and flow specs
- FlowLoader: protocol consumed by FlowEngine.load_flows()
"""

from __future__ import annotations

from .loader import DirectoryFlowLoader, FlowLoader, MappingFlowLoader, parse_flow
from .models import Flow, FlowStep, OutputSpec, StepConditions, StepInputs

__all__ = (
    "DirectoryFlowLoader",
    "Flow",
    "FlowLoader",
    "FlowStep",
    "MappingFlowLoader",
    "OutputSpec",
    "StepConditions",
    "StepInputs",
    "parse_flow",
)
