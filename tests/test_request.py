"""Tests for genstream.request — request payload construction."""

from __future__ import annotations

import pytest

from genstream.errors import MalformedContext
from genstream.request import build_request, parse_context
from genstream.schemas.request import GenerateRequest


class TestBuildRequest:
    def test_required_fields_only(self):
        request = build_request("llama3", "Why is the sky blue?")
        assert request.to_payload() == {
            "model": "llama3",
            "prompt": "Why is the sky blue?",
            "stream": True,
        }

    def test_all_options(self):
        request = build_request(
            "llama3",
            "hi",
            system="Be brief.",
            template="{{ .Prompt }}",
            context="[1, 2, 3]",
            raw=True,
            keep_alive="5m",
        )
        assert request.to_payload() == {
            "model": "llama3",
            "prompt": "hi",
            "system": "Be brief.",
            "template": "{{ .Prompt }}",
            "context": [1, 2, 3],
            "raw": True,
            "keep_alive": "5m",
            "stream": True,
        }

    def test_explicitly_empty_values_are_sent(self):
        payload = build_request("m", "", system="", template="").to_payload()
        assert payload["prompt"] == ""
        assert payload["system"] == ""
        assert payload["template"] == ""

    def test_raw_false_is_sent(self):
        payload = build_request("m", "p", raw=False).to_payload()
        assert payload["raw"] is False

    def test_null_context_is_sent(self):
        payload = build_request("m", "p", context="null").to_payload()
        assert "context" in payload
        assert payload["context"] is None

    def test_stream_always_sent(self):
        payload = GenerateRequest(model="m", prompt="p").to_payload()
        assert payload == {"model": "m", "prompt": "p", "stream": True}

    def test_decoded_context_passed_through(self):
        context = {"opaque": [4, 5]}
        request = build_request("m", "p", context=context)
        assert request.context == context

    def test_malformed_context_string(self):
        with pytest.raises(MalformedContext):
            build_request("m", "p", context="[1, 2,")

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("300", 300), ("-1", -1), (" 0 ", 0), ("5m", "5m"), ("1h30m", "1h30m"), (60, 60)],
    )
    def test_keep_alive_normalised(self, value, expected):
        payload = build_request("m", "p", keep_alive=value).to_payload()
        assert payload["keep_alive"] == expected

    def test_returns_generate_request(self):
        assert isinstance(build_request("m", "p"), GenerateRequest)


class TestParseContext:
    def test_valid(self):
        assert parse_context("[1, 2, 3]") == [1, 2, 3]

    def test_invalid(self):
        with pytest.raises(MalformedContext, match="not valid JSON"):
            parse_context("not json")
