# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Minimal rendering of a step output per OutputSpec.format.

    structured (json)      -> output unchanged
    prose (markdown, md)   -> markdown text
    report                 -> markdown report with heading
    markup (html)          -> <div class="flow-output"> around JSON
    anything else          -> output unchanged
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flowline.types import OutputFormat

if TYPE_CHECKING:
    from flowline.flow.models import OutputSpec

__all__ = ("format_output",)

DEFAULT_REPORT_TITLE = "Analysis Report"
_PROSE_KEYS = ("synthesis", "analysis", "recommendations")


def format_output(
    output: Any,
    spec: OutputSpec | None,
    *,
    generated_at: datetime | None = None,
) -> Any:
    """Render output. Pure: same arguments, same result."""
    if spec is None:
        return output
    fmt = OutputFormat.parse(spec.format)
    if fmt is None or fmt is OutputFormat.STRUCTURED:
        return output
    if fmt is OutputFormat.PROSE:
        return _as_prose(output, include_sources=spec.include_sources)
    if fmt is OutputFormat.REPORT:
        return _as_report(output, title=spec.title, generated_at=generated_at)
    return f'<div class="flow-output">{_dump(output)}</div>'


def _dump(output: Any) -> str:
    return json.dumps(output, indent=2, default=str)


def _get(output: Any, key: str) -> Any:
    if isinstance(output, Mapping):
        return output.get(key)
    return getattr(output, key, None)


def _as_prose(output: Any, *, include_sources: bool) -> str:
    if isinstance(output, str):
        return output

    text = next((_get(output, k) for k in _PROSE_KEYS if _get(output, k)), None)
    if text is not None:
        markdown = str(text)
    elif _get(output, "results"):
        markdown = "# Search Results\n\n"
        for i, item in enumerate(_get(output, "results"), 1):
            markdown += f"## {i}. {_get(item, 'title') or 'Untitled'}\n"
            snippet = _get(item, "snippet")
            if snippet:
                markdown += f"{snippet}\n"
            url = _get(item, "url")
            if url:
                markdown += f"[Source]({url})\n"
            markdown += "\n"
    else:
        markdown = _dump(output)

    sources = _get(output, "sources")
    if include_sources and sources:
        markdown += "\n\n## Sources\n\n"
        for i, source in enumerate(sources, 1):
            if isinstance(source, str):
                markdown += f"{i}. {source}\n"
            else:
                markdown += f"{i}. [{_get(source, 'title')}]({_get(source, 'url')})\n"
    return markdown


def _as_report(output: Any, *, title: str | None, generated_at: datetime | None) -> str:
    report = f"# {title or DEFAULT_REPORT_TITLE}\n\n"
    if generated_at is not None:
        report += f"Generated: {generated_at.isoformat(sep=' ', timespec='seconds')}\n\n"

    if isinstance(output, str):
        return report + output
    body = _get(output, "synthesis") or _get(output, "analysis")
    if body:
        report += str(body)
    return report
