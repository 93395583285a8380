"""
Tests for best-effort JSON extraction from model responses.
"""

import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from app.errors import ParseError
from app.services.json_extract import (
    extract_json,
    parse_brace_span,
    parse_fenced_block,
    parse_json,
    try_parse_json,
)


class TestStrategies:
    def test_raw_json(self):
        assert parse_json('{"a": 1}') == {"a": 1}

    def test_raw_json_array(self):
        assert parse_json("[1, 2, 3]") == [1, 2, 3]

    def test_fenced_block_with_language(self):
        text = 'Here you go:\n```json\n{"title": "Hello"}\n```\nAnything else?'
        assert parse_fenced_block(text) == {"title": "Hello"}

    def test_fenced_block_without_language(self):
        assert parse_fenced_block('```\n{"x": true}\n```') == {"x": True}

    def test_empty_fenced_block_fails(self):
        with pytest.raises(ParseError):
            parse_fenced_block("``` ```")

    def test_brace_span(self):
        text = 'Sure! The answer is {"score": 0.9, "label": "positive"} as requested.'
        assert parse_brace_span(text) == {"score": 0.9, "label": "positive"}

    def test_brace_span_without_braces_fails(self):
        with pytest.raises(ParseError):
            parse_brace_span("no json here")


class TestExtractJson:
    def test_prefers_raw_parse(self):
        assert extract_json('{"a": {"b": 2}}') == {"a": {"b": 2}}

    def test_falls_back_to_fenced_block(self):
        assert extract_json('```json\n{"k": "v"}\n```') == {"k": "v"}

    def test_falls_back_to_brace_span(self):
        assert extract_json('prefix {"k": [1, 2]} suffix') == {"k": [1, 2]}

    def test_unparsable_text_is_wrapped(self):
        assert extract_json("I cannot answer that.") == {"raw": "I cannot answer that."}

    def test_broken_braces_are_wrapped(self):
        text = "{not: valid json}"
        assert extract_json(text) == {"raw": text}

    def test_try_parse_returns_none_on_failure(self):
        assert try_parse_json("plain text") is None

    def test_try_parse_keeps_falsy_values(self):
        assert try_parse_json("0") == 0
        assert try_parse_json("null") is None
        assert try_parse_json("[]") == []

    def test_parse_json_raises_when_all_strategies_fail(self):
        with pytest.raises(ParseError):
            parse_json("nothing to see")
