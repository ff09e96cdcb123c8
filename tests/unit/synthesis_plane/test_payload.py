"""
gitward — backend response parsing tests

File: tests/unit/synthesis_plane/test_payload.py
Last updated: 2026-10-19

Purpose
- Validate envelope unwrapping, fence stripping, JSON extraction and typed accessors.

Functional requirements
- Offline only.
"""

from __future__ import annotations

import json

import pytest

from gitward.errors import (
    BackendExecutionError,
    EmptyResponseError,
    MissingFieldsError,
    ResponseParseError,
)
from gitward.synthesis_plane.payload import (
    ParsedPayload,
    extract_json_object,
    parse_payload,
    strip_fences,
    unwrap_envelope,
)


def _envelope(result: object, **extra: object) -> str:
    return json.dumps({"type": "result", "subtype": "success", "result": result, **extra})


def test_envelope_with_fenced_json_result() -> None:
    raw = _envelope('Here you go:\n```json\n{"message": "fix: typo", "confidence": 0.9}\n```')

    payload = parse_payload(raw, required_fields=("message",))

    assert payload.get_string("message") == "fix: typo"
    assert payload.get_number("confidence") == 0.9


def test_envelope_with_object_result() -> None:
    payload = parse_payload(_envelope({"branch": "feature/x"}))

    assert payload["branch"] == "feature/x"


def test_execution_error_envelope_raises() -> None:
    raw = json.dumps({"type": "result", "subtype": "error_during_execution", "error": "boom"})

    with pytest.raises(BackendExecutionError, match="boom"):
        parse_payload(raw)
    with pytest.raises(BackendExecutionError):
        unwrap_envelope(_envelope("partial", is_error=True))


def test_non_envelope_text_is_left_alone() -> None:
    assert unwrap_envelope("plain text") == "plain text"
    assert unwrap_envelope('{"message": "x"}') == '{"message": "x"}'
    assert strip_fences("  body  ") == "body"
    assert strip_fences("```\ninner\n```") == "inner"


def test_json_is_extracted_from_surrounding_prose() -> None:
    text = 'Sure! {"a": "brace } in string", "b": {"c": "\\"q\\""}} trailing {"x": 1}'

    assert json.loads(extract_json_object(text)) == {"a": "brace } in string", "b": {"c": '"q"'}}


@pytest.mark.parametrize(
    ("raw", "error"),
    [
        ("", EmptyResponseError),
        ("   \n", EmptyResponseError),
        (_envelope(""), EmptyResponseError),
        ("no json here", ResponseParseError),
        ('{"a": 1', ResponseParseError),
        ('{"a": tru}', ResponseParseError),
    ],
)
def test_malformed_responses(raw: str, error: type[Exception]) -> None:
    with pytest.raises(error):
        parse_payload(raw)


def test_missing_fields_are_all_named() -> None:
    with pytest.raises(MissingFieldsError) as excinfo:
        parse_payload('{"summary": {"title": "x"}}', ("message", "summary.title", "summary.body"))

    assert excinfo.value.missing == ("message", "summary.body")
    assert excinfo.value.retryable is False


def test_typed_accessors_fall_back_on_wrong_types() -> None:
    payload = ParsedPayload(
        {
            "name": 7,
            "score": "0.75",
            "bad_score": "high",
            "flag": "true",
            "infinite": float("inf"),
            "truthy": True,
            "files": ["a.py", 3, "b.py"],
            "nested": {"inner": {"value": "deep"}},
        }
    )

    assert payload.get_string("name", "fallback") == "fallback"
    assert payload.get_number("score") == 0.75
    assert payload.get_number("bad_score", -1.0) == -1.0
    assert payload.get_number("infinite", 1.0) == 1.0
    assert payload.get_number("truthy", 2.0) == 2.0
    assert payload.get_boolean("flag") is False
    assert payload.get_boolean("truthy") is True
    assert payload.get_string_list("files") == ("a.py", "b.py")
    assert payload.get_string_list("missing", ("x",)) == ("x",)
    assert payload.get_list("name") == ()
    assert payload.get_object("nested.inner").get_string("value") == "deep"
    assert payload.get_object("files") == ParsedPayload({})
    assert payload.get_object("files", None) is None
    assert payload.lookup("nested.inner.value") == "deep"
    with pytest.raises(KeyError):
        payload.lookup("nested.absent")


def test_payload_is_read_only() -> None:
    source = {"a": 1}
    payload = ParsedPayload(source)
    source["a"] = 2

    assert payload["a"] == 1
    assert payload.to_dict() == {"a": 1}
    with pytest.raises(TypeError):
        payload._data["a"] = 3  # type: ignore[index]
