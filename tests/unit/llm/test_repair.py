"""Tests for truncated JSON repair."""

import json

import pytest

from blueprintforge.llm.exceptions import ErrorKind, ParseError
from blueprintforge.llm.repair import (
    clean_json_text,
    closers_for,
    repair_json,
    scan,
    strip_fences,
)

TRUNCATED_QUESTIONS = (
    '{"metadata":{"title":"Onboarding"},"sections":['
    '{"id":"s1","title":"Goals","questions":[{"id":"q1","label":"Why?"}]},'
    '{"id":"s2"'
)


class TestCleaning:
    """Fence and prose stripping."""

    def test_clean_json_is_unchanged(self):
        text = '{"a": [1, 2, {"b": "c"}]}'
        assert clean_json_text(text) == text

    def test_cleaning_is_idempotent(self):
        text = 'Here you go:\n```json\n{"a": 1}\n```\nEnjoy!'
        once = clean_json_text(text)
        assert once == '{"a": 1}'
        assert clean_json_text(once) == once

    def test_fence_without_language(self):
        assert strip_fences('```\n[1, 2]\n```').strip() == "[1, 2]"

    def test_unterminated_fence(self):
        assert strip_fences('```json\n{"a": 1').strip() == '{"a": 1'

    def test_fence_inside_string_value_is_kept(self):
        text = json.dumps({"content": "Run:\n```bash\nmake\n```\ndone"})
        assert strip_fences(text) == text
        assert clean_json_text(text) == text

    def test_prose_before_fenced_block(self):
        text = 'Here it is:\n```json\n{"a": 1}\n```'
        assert clean_json_text(text) == '{"a": 1}'

    def test_prose_around_object(self):
        text = 'Sure! {"a": {"b": 2}} Hope that helps.'
        assert clean_json_text(text) == '{"a": {"b": 2}}'

    def test_no_json_at_all(self):
        assert clean_json_text("  nothing here  ") == "nothing here"


class TestScan:
    """String-aware structure scanning."""

    def test_braces_inside_strings_are_ignored(self):
        result = scan('{"text": "a } b ] c", "list": [')

        assert [frame.char for frame in result.stack] == ["{", "["]
        assert result.stack[1].key == "list"
        assert result.closers == "]}"
        assert result.in_string is False

    def test_escaped_quote_keeps_string_open(self):
        result = scan('{"text": "say \\"hi')

        assert result.in_string is True
        assert result.string_is_key is False

    def test_open_key_is_detected(self):
        result = scan('{"a": 1, "b')

        assert result.in_string is True
        assert result.string_is_key is True

    def test_records_are_counted_per_array(self):
        result = scan('{"items": [{"x": 1}, {"x": 2}, {"x"')

        items = result.stack[1]
        assert items.record_count == 2
        assert items.last_record_end is not None

    def test_closers_for_nested_stack(self):
        result = scan('[{"a": [{"b": [')
        assert closers_for(result.stack) == "]}]}]"


class TestRepairJson:
    """Repair strategies and their precedence."""

    def test_valid_json_is_not_repaired(self):
        result = repair_json('{"a": 1, "b": [1, 2]}')

        assert result.repaired is False
        assert result.strategy == "direct"
        assert result.value == {"a": 1, "b": [1, 2]}
        assert result.units_preserved == 2
        assert result.units_dropped == 0

    def test_fenced_valid_json(self):
        result = repair_json('```json\n{"a": 1}\n```')

        assert result.repaired is False
        assert result.value == {"a": 1}

    def test_code_block_in_section_content(self):
        document = {
            "sections": [{"id": "s1", "content": "Run:\n```bash\nmake\n```\ndone"}]
        }

        result = repair_json(json.dumps(document))

        assert result.repaired is False
        assert result.value == document

    def test_fenced_document_with_code_block_in_content(self):
        document = {"content": "```python\nprint(1)\n```"}

        result = repair_json("```json\n" + json.dumps(document) + "\n```")

        assert result.repaired is False
        assert result.value == document

    def test_truncated_record_is_dropped_at_boundary(self):
        result = repair_json(TRUNCATED_QUESTIONS, record_collections=["sections"])

        assert result.repaired is True
        assert result.strategy == "record_boundary"
        assert [s["id"] for s in result.value["sections"]] == ["s1"]
        assert result.value["metadata"] == {"title": "Onboarding"}
        assert result.units_preserved == 1
        assert result.units_dropped == 1

    def test_outermost_record_collection_wins(self):
        # s2 is incomplete even though its questions array has a complete record
        text = (
            '{"sections":[{"id":"s1","questions":[]},'
            '{"id":"s2","questions":[{"id":"q1"},{"id":"q2'
        )

        result = repair_json(text)

        assert result.strategy == "record_boundary"
        assert [s["id"] for s in result.value["sections"]] == ["s1"]

    def test_record_collections_filter(self):
        text = '{"sections":[{"id":"s1","questions":[{"id":"q1"},{"id":"q'

        result = repair_json(text, record_collections=["questions"])

        assert result.strategy == "record_boundary"
        assert result.value == {"sections": [{"id": "s1", "questions": [{"id": "q1"}]}]}

    def test_dangling_string_is_closed(self):
        result = repair_json('{"title": "Hello wor')

        assert result.strategy == "close_dangling_string"
        assert result.value == {"title": "Hello wor"}
        assert result.units_dropped == 0

    def test_dangling_string_after_earlier_fields(self):
        result = repair_json('{"a": "x", "b": "unterminated')

        assert result.value == {"a": "x", "b": "unterminated"}

    def test_trailing_backslash_is_dropped(self):
        result = repair_json('{"a": "line\\')

        assert result.value == {"a": "line"}

    def test_truncated_key_falls_back_to_last_element(self):
        result = repair_json('{"a": 1, "b')

        assert result.strategy == "last_complete_element"
        assert result.value == {"a": 1}
        assert result.units_dropped == 1

    def test_partial_number_is_not_kept(self):
        result = repair_json('{"items": [1, 2, 3')

        assert result.value == {"items": [1, 2]}

    def test_trailing_colon_is_stripped(self):
        result = repair_json('{"a": 1, "b":')

        assert result.value == {"a": 1}

    def test_braces_in_strings_survive_repair(self):
        text = '{"text": "a } b", "list": [{"x": 1}, {"x": 2'

        result = repair_json(text)

        assert result.value == {"text": "a } b", "list": [{"x": 1}]}

    def test_repair_never_invents_values(self):
        result = repair_json(TRUNCATED_QUESTIONS)

        original = json.dumps(result.value, separators=(",", ":"))
        # Every character kept comes from the source text, plus closers
        assert original.rstrip("]}") in TRUNCATED_QUESTIONS

    def test_unrepairable_text_raises_parse_error(self):
        with pytest.raises(ParseError) as exc_info:
            repair_json("not json at all", provider="primary")

        error = exc_info.value
        assert error.kind == ErrorKind.PARSE_ERROR
        assert error.provider == "primary"
        assert error.preview == "not json at all"
        assert error.position is not None
        assert error.strategies[0] == "direct"
        assert "strip_incomplete_tail" in error.strategies

    def test_parse_error_preview_is_bounded(self):
        with pytest.raises(ParseError) as exc_info:
            repair_json("x" * 2000)

        assert len(exc_info.value.preview) == 500
