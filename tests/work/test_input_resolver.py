# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Tests for flowline.work.resolver - input resolution and prompt templating."""

from __future__ import annotations

import pytest

from flowline.flow.models import FlowStep
from flowline.types import ActionKind
from flowline.work.context import FlowExecutionContext, StepResult
from flowline.work.resolver import StepInput, interpolate_prompt, resolve_input


@pytest.fixture
def context():
    ctx = FlowExecutionContext(
        flow_id="f", original_query="widgets", caller_context={"region": "EU"}
    )
    ctx.start("a")
    ctx.record_result(StepResult(step_id="a", action=ActionKind.SEARCH).succeed({"results": [1]}))
    ctx.record_result(StepResult(step_id="b", action=ActionKind.ANALYZE).succeed("b-out"))
    return ctx


# =============================================================================
# Tests: resolve_input
# =============================================================================


class TestResolveInput:
    def test_base_fields(self, context):
        """Every input should carry the query and caller context."""
        step_input = resolve_input(FlowStep(id="x", action="custom"), context)

        assert step_input.query == "widgets"
        assert step_input.caller_context == {"region": "EU"}
        assert step_input.previous_step_data is None
        assert step_input.context_data is None

    def test_from_step_chains_output(self, context):
        """from_step should expose that step's output as previous_step_data."""
        step = FlowStep.model_validate({"id": "x", "action": "analyze", "inputs": {"fromStep": "a"}})

        step_input = resolve_input(step, context)

        assert step_input.previous_step_data == context.step_results["a"].output

    def test_from_context_collects_outputs(self, context):
        step = FlowStep.model_validate(
            {"id": "x", "action": "synthesize", "inputs": {"fromContext": ["a", "b"]}}
        )

        step_input = resolve_input(step, context)

        assert step_input.context_data == {"a": {"results": [1]}, "b": "b-out"}

    def test_missing_context_is_silent(self, context):
        """Unexecuted from_context ids should simply be omitted."""
        step = FlowStep.model_validate(
            {
                "id": "x",
                "action": "synthesize",
                "inputs": {"fromStep": "never", "fromContext": ["a", "never"]},
            }
        )

        step_input = resolve_input(step, context)

        assert step_input.previous_step_data is None
        assert step_input.context_data == {"a": {"results": [1]}}

    def test_does_not_mutate_context(self, context):
        before = context.to_dict()
        step = FlowStep.model_validate(
            {"id": "x", "action": "analyze", "inputs": {"fromStep": "a", "fromContext": ["b"]}}
        )

        resolve_input(step, context)

        assert context.to_dict() == before


# =============================================================================
# Tests: interpolate_prompt
# =============================================================================


class TestInterpolatePrompt:
    def test_no_tokens_unchanged(self):
        assert interpolate_prompt("Plain prompt.", {"query": "q"}) == "Plain prompt."

    def test_every_occurrence_replaced(self):
        assert (
            interpolate_prompt("{query} vs {query} in {region}", {"query": "a", "region": "EU"})
            == "a vs a in EU"
        )

    def test_unresolved_tokens_verbatim(self):
        """Absent or None values should leave the token in place."""
        assert (
            interpolate_prompt("{query} {missing} {empty}", {"query": "q", "empty": None})
            == "q {missing} {empty}"
        )

    def test_non_word_braces_ignored(self):
        assert interpolate_prompt("{not a token} {query}", {"query": "q"}) == "{not a token} q"

    def test_non_string_values(self):
        assert interpolate_prompt("top {n}", {"n": 5}) == "top 5"

    def test_empty_template(self):
        assert interpolate_prompt("", {"query": "q"}) == ""

    def test_step_input_values(self):
        """Caller context keys are templatable; fixed keys take precedence."""
        step_input = StepInput(query="q", caller_context={"region": "EU", "query": "shadowed"})
        assert interpolate_prompt("{query}/{region}", step_input) == "q/EU"
