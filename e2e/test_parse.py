"""Gateway response parsing tests."""

import pytest

from utils.parse import LLMParseError, parse_llm_json, parse_workflow_result


class TestParseLLMJson:
    def test_plain_json(self):
        assert parse_llm_json('{"numeric_result": 8}') == {"numeric_result": 8}

    def test_json_fence(self):
        assert parse_llm_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_bare_fence(self):
        assert parse_llm_json('```\n{"a": 1}\n```') == {"a": 1}

    def test_non_object_values(self):
        assert parse_llm_json("[1, 2]") == [1, 2]
        assert parse_llm_json("8") == 8

    def test_invalid_json_raises_with_raw(self):
        with pytest.raises(LLMParseError) as exc_info:
            parse_llm_json("eight")
        assert exc_info.value.raw == "eight"


class TestParseWorkflowResult:
    def test_parsed_value(self):
        assert parse_workflow_result('```json\n{"text_result": "eight"}\n```') == {"text_result": "eight"}

    def test_falls_back_to_raw_response(self):
        text = 'Sure! Here you go: {"numeric_result": 8}'
        assert parse_workflow_result(text) == {"raw_response": text}

    def test_empty_response(self):
        assert parse_workflow_result("") == {"raw_response": ""}
