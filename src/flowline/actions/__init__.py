# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Actions: registry, built-in handlers, request variants, workers."""

from __future__ import annotations

from .registry import ActionContext, ActionHandler, ActionRegistry, default_action_registry
from .requests import (
    ActionRequest,
    AnalyzeRequest,
    CompareRequest,
    CustomRequest,
    RecommendRequest,
    SearchRequest,
    SynthesizeRequest,
)
from .worker import FunctionWorker, Worker, WorkerRegistry, handles

__all__ = (
    "ActionContext",
    "ActionHandler",
    "ActionRegistry",
    "ActionRequest",
    "AnalyzeRequest",
    "CompareRequest",
    "CustomRequest",
    "FunctionWorker",
    "RecommendRequest",
    "SearchRequest",
    "SynthesizeRequest",
    "Worker",
    "WorkerRegistry",
    "default_action_registry",
    "handles",
)
