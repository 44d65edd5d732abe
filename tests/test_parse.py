"""Tests for collaborator reply parsing."""

from __future__ import annotations

import json

import pytest
from hypothesis import given
from hypothesis import strategies as st

from canopy.models.result import (
    FALLBACK_PROGRESS_DELTA,
    MAX_PROGRESS_DELTA,
    ParsedResult,
    UnparsedResult,
)
from canopy.operations.parse import extract_last_json_object, parse_agent_response


class TestExtract:
    def test_returns_last_object(self):
        text = 'first {"a": 1} then {"b": {"c": 2}} trailing'
        assert extract_last_json_object(text) == '{"b": {"c": 2}}'

    def test_none_without_braces(self):
        assert extract_last_json_object("no json here") is None

    def test_unbalanced(self):
        assert extract_last_json_object("oops }") is None

    def test_brace_inside_string_value(self):
        text = 'Here is my answer: {"output": "use a } here", "complete": true}'
        assert json.loads(extract_last_json_object(text)) == {
            "output": "use a } here",
            "complete": True,
        }

    def test_trailing_non_json_braces_are_skipped(self):
        text = '{"output":"done","complete":true}\nNote: set {x}'
        assert extract_last_json_object(text) == '{"output":"done","complete":true}'

    def test_escaped_quote_and_open_brace_in_string(self):
        text = 'noted {"output": "say \\"{\\" twice"} ok'
        assert json.loads(extract_last_json_object(text)) == {"output": 'say "{" twice'}


class TestParse:
    def test_fenced_json_after_noise(self):
        result = parse_agent_response('noise ```json\n{"complete":true,"output":"done"}\n```')
        assert isinstance(result, ParsedResult)
        assert result.complete is True
        assert result.output == "done"

    def test_leading_fence(self):
        result = parse_agent_response('```json\n{"output": "fenced"}\n```')
        assert isinstance(result, ParsedResult)
        assert result.output == "fenced"

    def test_unparsable_falls_back(self):
        result = parse_agent_response("I am thinking...")
        assert isinstance(result, UnparsedResult)
        assert result.complete is False
        assert result.output == "I am thinking..."
        assert result.progress_delta == FALLBACK_PROGRESS_DELTA

    def test_none_and_empty(self):
        assert isinstance(parse_agent_response(None), UnparsedResult)
        assert parse_agent_response("").output == ""

    def test_tool_step_text_before_payload(self):
        text = 'Let me search first.\n\nFound it.\n{"output": "final", "progress_delta": 15}'
        result = parse_agent_response(text)
        assert result.output == "final"
        assert result.progress_delta == 15

    def test_brace_in_string_after_preamble(self):
        result = parse_agent_response(
            'Here is my answer: {"output": "use a } here", "complete": true}'
        )
        assert isinstance(result, ParsedResult)
        assert result.complete is True
        assert result.output == "use a } here"

    def test_payload_followed_by_brace_note(self):
        result = parse_agent_response('{"output":"done","complete":true}\nNote: set {x}')
        assert isinstance(result, ParsedResult)
        assert result.output == "done"

    def test_top_level_array_is_not_a_result(self):
        assert isinstance(parse_agent_response("[1, 2, 3]"), UnparsedResult)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [(50, MAX_PROGRESS_DELTA), (-3, 0), ("7", 7), ("lots", FALLBACK_PROGRESS_DELTA)],
    )
    def test_progress_delta_is_clamped(self, raw, expected):
        result = parse_agent_response(json.dumps({"progress_delta": raw}))
        assert result.progress_delta == expected

    def test_loose_fields_are_coerced(self):
        payload = {
            "output": {"table": [1, 2]},
            "complete": "yes",
            "spawn_agents": [{"role": "researcher", "name": "R"}, "junk"],
            "needs_input": "Which region?",
            "artifacts": "not a list",
            "searches": [{"query": "q", "resultCount": 4}],
            "kind": "unparsed",
        }
        result = parse_agent_response(json.dumps(payload))
        assert isinstance(result, ParsedResult)
        assert json.loads(result.output) == {"table": [1, 2]}
        assert result.complete is True
        assert len(result.spawn_agents) == 1
        assert result.needs_input is not None
        assert result.needs_input.message == "Which region?"
        assert result.artifacts == []
        assert result.searches[0].result_count == 4

    def test_input_request_ignored_when_complete(self):
        result = parse_agent_response(
            json.dumps({"complete": True, "needs_input": {"title": "Pick one"}})
        )
        assert result.wants_input is False

    @given(st.text(max_size=300))
    def test_never_raises(self, text):
        result = parse_agent_response(text)
        assert isinstance(result, (ParsedResult, UnparsedResult))
