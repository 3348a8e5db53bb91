# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Typed request variants, one per action kind.

Handlers translate a resolved step input plus step.config into one of
these before calling a worker. Workers receive the variant together with
the raw step config, so fields the engine never inspects still reach them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from flowline.types import ActionKind

__all__ = (
    "ActionRequest",
    "AnalyzeRequest",
    "CompareRequest",
    "CustomRequest",
    "RecommendRequest",
    "SearchRequest",
    "SynthesizeRequest",
)


@dataclass(frozen=True, slots=True)
class SearchRequest:
    action: ClassVar[ActionKind] = ActionKind.SEARCH

    query: str
    search_type: str = "web"
    search_depth: str = "standard"
    max_results: int = 10
    time_range: str = "all"
    include_images: bool = False


@dataclass(frozen=True, slots=True)
class AnalyzeRequest:
    """Analysis over prior step data.

    Attributes:
        data: previous_step_data, else context_data, else the whole input.
    """

    action: ClassVar[ActionKind] = ActionKind.ANALYZE

    data: Any
    prompt: str = ""
    analysis_type: str = "general"
    include_confidence: bool = True


@dataclass(frozen=True, slots=True)
class SynthesizeRequest:
    action: ClassVar[ActionKind] = ActionKind.SYNTHESIZE

    sources: tuple[Any, ...] = ()
    prompt: str = ""
    output_format: str = "summary"
    include_sources: bool = True
    include_confidence: bool = True


@dataclass(frozen=True, slots=True)
class CompareRequest:
    action: ClassVar[ActionKind] = ActionKind.COMPARE

    items: tuple[Any, ...] = ()
    criteria: Any = None
    comparison_type: str = "detailed"


@dataclass(frozen=True, slots=True)
class RecommendRequest:
    action: ClassVar[ActionKind] = ActionKind.RECOMMEND

    prompt: str
    temperature: float = 0.5


@dataclass(frozen=True, slots=True)
class CustomRequest:
    action: ClassVar[ActionKind] = ActionKind.CUSTOM

    prompt: str
    temperature: float = 0.7
    variables: dict[str, Any] = field(default_factory=dict)


ActionRequest = Union[
    SearchRequest,
    AnalyzeRequest,
    SynthesizeRequest,
    CompareRequest,
    RecommendRequest,
    CustomRequest,
]
