# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Built-in action handlers.

Each handler reads step.config (snake_case or camelCase keys), fills
defaults, builds a typed request and forwards it to the selected worker.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic.alias_generators import to_camel

from .requests import (
    AnalyzeRequest,
    CompareRequest,
    CustomRequest,
    RecommendRequest,
    SearchRequest,
    SynthesizeRequest,
)

if TYPE_CHECKING:
    from flowline.work.resolver import StepInput

    from .registry import ActionContext

__all__ = (
    "analyze",
    "compare",
    "custom",
    "gather_sources",
    "recommend",
    "search",
    "synthesize",
)

DEFAULT_SEARCH_PROMPT = "Search for: {query}"
DEFAULT_RECOMMEND_PROMPT = "Provide recommendations based on the analysis"
DEFAULT_RECOMMEND_CONFIDENCE = 0.8


def _opt(config: Mapping[str, Any], name: str, default: Any) -> Any:
    """config[name] or config[camelName]; default when missing or None."""
    value = config.get(name)
    if value is None:
        value = config.get(to_camel(name))
    return default if value is None else value


def gather_sources(step_input: StepInput) -> list[Any]:
    """Previous step data, then each context value; list values are flattened."""
    sources: list[Any] = []
    if step_input.previous_step_data is not None:
        sources.append(step_input.previous_step_data)
    for data in (step_input.context_data or {}).values():
        if isinstance(data, (list, tuple)):
            sources.extend(data)
        else:
            sources.append(data)
    return sources


async def search(step_input: StepInput, ctx: ActionContext) -> Any:
    config = ctx.config
    query = ctx.prompt or ctx.render(DEFAULT_SEARCH_PROMPT)
    ctx.think("search_planning", f"Planning search for: {query}")

    request = SearchRequest(
        query=query,
        search_type=_opt(config, "search_type", "web"),
        search_depth=_opt(config, "search_depth", "standard"),
        max_results=int(_opt(config, "max_results", 10)),
        time_range=_opt(config, "time_range", "all"),
        include_images=bool(_opt(config, "include_images", False)),
    )
    return await ctx.invoke(request)


async def analyze(step_input: StepInput, ctx: ActionContext) -> Any:
    config = ctx.config
    analysis_type = _opt(config, "analysis_type", "general")
    ctx.think("analysis", f"Starting {analysis_type} analysis...")

    if step_input.previous_step_data is not None:
        data = step_input.previous_step_data
    elif step_input.context_data is not None:
        data = step_input.context_data
    else:
        data = step_input.as_mapping()

    request = AnalyzeRequest(
        data=data,
        prompt=ctx.prompt,
        analysis_type=analysis_type,
        include_confidence=bool(_opt(config, "include_confidence", True)),
    )
    return await ctx.invoke(request)


async def synthesize(step_input: StepInput, ctx: ActionContext) -> Any:
    config = ctx.config
    sources = gather_sources(step_input)
    ctx.think("synthesis", f"Synthesizing {len(sources)} sources...")

    request = SynthesizeRequest(
        sources=tuple(sources),
        prompt=ctx.prompt,
        output_format=_opt(config, "output_format", "summary"),
        include_sources=bool(_opt(config, "include_sources", True)),
        include_confidence=bool(_opt(config, "include_confidence", True)),
    )
    return await ctx.invoke(request)


async def compare(step_input: StepInput, ctx: ActionContext) -> Any:
    config = ctx.config
    previous = step_input.previous_step_data
    if isinstance(previous, Mapping):
        items = previous.get("results") or []
    else:
        items = getattr(previous, "results", None) or []

    request = CompareRequest(
        items=tuple(items),
        criteria=_opt(config, "criteria", None),
        comparison_type=_opt(config, "comparison_type", "detailed"),
    )
    return await ctx.invoke(request)


async def recommend(step_input: StepInput, ctx: ActionContext) -> Any:
    request = RecommendRequest(
        prompt=ctx.prompt or ctx.render(DEFAULT_RECOMMEND_PROMPT),
        temperature=float(_opt(ctx.config, "temperature", 0.5)),
    )
    reply = await ctx.invoke(request)
    if isinstance(reply, str):
        return {"recommendations": reply, "confidence": DEFAULT_RECOMMEND_CONFIDENCE}
    return reply


async def custom(step_input: StepInput, ctx: ActionContext) -> Any:
    if not ctx.step.prompt:
        raise ValueError("Custom steps require a prompt")

    request = CustomRequest(
        prompt=ctx.prompt,
        temperature=float(_opt(ctx.config, "temperature", 0.7)),
        variables=step_input.as_mapping(),
    )
    reply = await ctx.invoke(request)
    if isinstance(reply, str):
        return {"result": reply}
    return reply
