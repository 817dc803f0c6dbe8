"""Unit tests for JobMessage parsing."""

import json

import pytest

from reqloom.core.exceptions import InputError
from reqloom.core.queue import JobMessage


class TestJobMessage:

    def test_json_shape(self):
        message = JobMessage("a1", "u1", "Build a login page", settings={"depth": 2}, root_id="a1")

        assert json.loads(message.to_json()) == {
            "analysis_id": "a1",
            "owner_id": "u1",
            "text": "Build a login page",
            "settings": {"depth": 2},
            "parent_id": None,
            "root_id": "a1",
        }

    def test_camel_case_keys(self):
        message = JobMessage.from_dict({
            "analysisId": "a1", "userId": "u1", "text": "t", "parentId": "p1",
        })

        assert (message.analysis_id, message.owner_id, message.parent_id) == ("a1", "u1", "p1")
        assert message.settings == {}

    @pytest.mark.parametrize("data", [
        {"owner_id": "u1", "text": "t"},
        {"analysis_id": "a1", "text": "t"},
        {"analysis_id": "a1", "owner_id": "u1", "text": ""},
    ])
    def test_missing_fields(self, data):
        with pytest.raises(InputError, match="missing"):
            JobMessage.from_dict(data)

    def test_settings_must_be_object(self):
        with pytest.raises(InputError):
            JobMessage.from_dict({"analysis_id": "a", "owner_id": "u", "text": "t", "settings": [1]})

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", None])
    def test_bad_body(self, body):
        with pytest.raises(InputError):
            JobMessage.from_json(body)
