"""Unit tests for JSON extraction from model output."""

import pytest

from reqloom.core.utils import extract_json, strip_code_fences


class TestStripCodeFences:

    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestExtractJson:

    def test_plain_object(self):
        assert extract_json('{"reply": "hi", "updatedAnalysis": null}') == {
            "reply": "hi", "updatedAnalysis": None,
        }

    def test_object_inside_prose(self):
        raw = 'Sure! Here it is: {"projectTitle": "Shop {beta}"} Let me know.'
        assert extract_json(raw) == {"projectTitle": "Shop {beta}"}

    def test_braces_in_strings(self):
        assert extract_json('noise {"a": "}{", "b": {"c": 2}} tail') == {"a": "}{", "b": {"c": 2}}

    @pytest.mark.parametrize("raw", ["no json here", "[1, 2, 3]", "{broken: json}", ""])
    def test_unrecoverable(self, raw):
        with pytest.raises(ValueError):
            extract_json(raw)
