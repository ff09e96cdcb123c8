"""
gitward — backend response parsing

File: src/gitward/synthesis_plane/payload.py
Last updated: 2026-10-19

Purpose
- Turn raw backend stdout into a validated, untyped ``ParsedPayload``.

What should be included in this file
- Result-envelope unwrapping, markdown fence stripping, balanced-brace JSON extraction.
- Dotted required-field validation and typed accessors with explicit defaults.

Functional requirements
- An execution-error envelope raises ``BackendExecutionError``.
- A non-object result raises ``ResponseParseError``; absent required fields
  raise ``MissingFieldsError`` naming every missing field.

Non-functional requirements
- Parsing never trusts field types; every accessor validates and falls back.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterator, Mapping, Sequence
from types import MappingProxyType
from typing import Final, TypeVar, overload

from gitward.errors import (
    BackendExecutionError,
    EmptyResponseError,
    MissingFieldsError,
    ResponseParseError,
)

ENVELOPE_TYPE: Final[str] = "result"
ENVELOPE_ERROR_SUBTYPE: Final[str] = "error_during_execution"

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)\n?[ \t]*```", re.DOTALL)
_MISSING = object()

_DefaultT = TypeVar("_DefaultT")


class ParsedPayload(Mapping[str, object]):
    """Read-only JSON object with typed, dotted-path accessors."""

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, object]) -> None:
        self._data = MappingProxyType(dict(data))

    def __getitem__(self, key: str) -> object:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"ParsedPayload({dict(self._data)!r})"

    def to_dict(self) -> dict[str, object]:
        return dict(self._data)

    def lookup(self, path: str) -> object:
        """Value at dotted ``path``; ``KeyError`` when any segment is absent."""

        value = _walk(self._data, path)
        if value is _MISSING:
            raise KeyError(path)
        return value

    def has(self, path: str) -> bool:
        return _walk(self._data, path) is not _MISSING

    def missing_fields(self, required: Sequence[str]) -> tuple[str, ...]:
        return tuple(field for field in required if not self.has(field))

    def get_string(self, path: str, default: str = "") -> str:
        value = _walk(self._data, path)
        return value if isinstance(value, str) else default

    def get_number(self, path: str, default: float = 0.0) -> float:
        value = _walk(self._data, path)
        if isinstance(value, bool):
            return default
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                return default
        else:
            return default
        return number if math.isfinite(number) else default

    def get_boolean(self, path: str, default: bool = False) -> bool:
        value = _walk(self._data, path)
        return value if isinstance(value, bool) else default

    def get_string_list(self, path: str, default: Sequence[str] = ()) -> tuple[str, ...]:
        value = _walk(self._data, path)
        if isinstance(value, list):
            return tuple(item for item in value if isinstance(item, str))
        return tuple(default)

    def get_list(self, path: str) -> tuple[object, ...]:
        value = _walk(self._data, path)
        return tuple(value) if isinstance(value, list) else ()

    @overload
    def get_object(self, path: str) -> ParsedPayload: ...

    @overload
    def get_object(self, path: str, default: _DefaultT) -> ParsedPayload | _DefaultT: ...

    def get_object(self, path: str, default: object = _MISSING) -> object:
        value = _walk(self._data, path)
        if isinstance(value, Mapping):
            return ParsedPayload(value)
        if default is _MISSING:
            return ParsedPayload({})
        return default


def unwrap_envelope(raw: str) -> str:
    """Return the inner result text of a CLI result envelope, or ``raw`` unchanged."""

    try:
        wrapper = json.loads(raw)
    except ValueError:
        return raw
    if not isinstance(wrapper, dict) or wrapper.get("type") != ENVELOPE_TYPE:
        return raw

    subtype = wrapper.get("subtype")
    if subtype == ENVELOPE_ERROR_SUBTYPE or wrapper.get("is_error") is True:
        message = wrapper.get("error") or wrapper.get("result") or "unknown execution error"
        raise BackendExecutionError(f"backend execution error: {message}")

    result = wrapper.get("result")
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        return json.dumps(result)
    return raw


def strip_fences(text: str) -> str:
    """Return the body of the first markdown code fence, or ``text`` stripped."""

    match = _FENCE_RE.search(text)
    if match is not None:
        return match.group(1).strip()
    return text.strip()


def extract_json_object(text: str) -> str:
    """Return the first balanced ``{...}`` span, honoring strings and escapes."""

    start = text.find("{")
    if start == -1:
        raise ResponseParseError("no JSON object found in backend response")

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    raise ResponseParseError("unterminated JSON object in backend response")


def parse_payload(raw: str, required_fields: Sequence[str] = ()) -> ParsedPayload:
    """Unwrap, clean, extract, parse and validate one backend response."""

    if not raw or not raw.strip():
        raise EmptyResponseError()

    content = strip_fences(unwrap_envelope(raw.strip()))
    if not content:
        raise EmptyResponseError()
    candidate = extract_json_object(content)
    try:
        parsed = json.loads(candidate)
    except ValueError as exc:
        raise ResponseParseError(f"failed to parse JSON response: {exc.args[0]}") from exc
    if not isinstance(parsed, dict):
        raise ResponseParseError("parsed JSON is not an object")

    payload = ParsedPayload(parsed)
    missing = payload.missing_fields(required_fields)
    if missing:
        raise MissingFieldsError(missing)
    return payload


def _walk(data: Mapping[str, object], path: str) -> object:
    current: object = data
    for key in path.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return _MISSING
        current = current[key]
    return current


__all__ = [
    "ENVELOPE_ERROR_SUBTYPE",
    "ENVELOPE_TYPE",
    "ParsedPayload",
    "extract_json_object",
    "parse_payload",
    "strip_fences",
    "unwrap_envelope",
]
