"""Tests for JSON extraction from model output."""
import pytest

from derm_service.errors import AIResponseError
from derm_service.json_utils import extract_json, extract_json_text, strip_code_fences


class TestStripCodeFences:
    """Test strip_code_fences."""

    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```').strip() == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```').strip() == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'


class TestExtractJson:
    """Test extract_json."""

    def test_plain_object(self):
        assert extract_json('{"urgency_level": "routine"}') == {"urgency_level": "routine"}

    def test_surrounding_prose_is_trimmed(self):
        text = 'Here is the report:\n{"red_flags": []}\nLet me know if you need more.'
        assert extract_json(text) == {"red_flags": []}

    def test_fenced_with_preamble(self):
        text = 'Sure.\n```json\n{"lesions": [{"location": "arm"}]}\n```'
        assert extract_json(text)["lesions"][0]["location"] == "arm"

    def test_nested_braces_keep_outermost_object(self):
        text = '{"outer": {"inner": 1}}'
        assert extract_json_text("noise " + text + " noise") == text

    def test_no_object_raises(self):
        with pytest.raises(AIResponseError, match="no JSON object"):
            extract_json("I cannot analyze these images.")

    def test_empty_raises(self):
        with pytest.raises(AIResponseError):
            extract_json("")

    def test_truncated_json_is_not_repaired(self):
        with pytest.raises(AIResponseError, match="not valid JSON"):
            extract_json('{"lesions": [1, 2}')

    def test_trailing_comma_is_not_repaired(self):
        with pytest.raises(AIResponseError):
            extract_json('{"a": 1,}')
