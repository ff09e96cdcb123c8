"""
gitward — unit tests for config schema validation

File: tests/unit/config/test_schema.py
Last updated: 2026-10-19

Purpose
- Validate strict schema checks with structured, path-addressed issues.
"""

from __future__ import annotations

import pytest

from gitward.config.schema import (
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)
from gitward.constants import DEFAULT_MAX_PROMPT_LENGTH


def _with(section: str, **values: object) -> dict[str, object]:
    return merge_config(default_config(), {section: values})


def _issue_paths(config: object) -> list[str]:
    return [issue.path for issue in validate_config(config).issues]


def test_defaults_are_valid_and_match_documented_values() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["limits"]["max_prompt_length"] == DEFAULT_MAX_PROMPT_LENGTH
    assert result.config["backend"]["model"] == "sonnet"
    assert result.config["paths"]["security_level"] == "strict"


def test_default_config_returns_independent_copies() -> None:
    first = default_config()
    first["backend"]["model"] = "opus"

    assert default_config()["backend"]["model"] == "sonnet"


@pytest.mark.parametrize(
    ("section", "values", "expected_path"),
    [
        ("backend", {"timeout_ms": 10}, "backend.timeout_ms"),
        ("backend", {"model": "gpt"}, "backend.model"),
        ("backend", {"command": "claude; rm -rf /"}, "backend.command"),
        ("backend", {"max_retries": True}, "backend.max_retries"),
        ("limits", {"max_file_count": 0}, "limits.max_file_count"),
        ("git", {"batch_size": 5000}, "git.batch_size"),
        ("paths", {"security_level": "lax"}, "paths.security_level"),
        ("paths", {"allowed_roots": "not-a-list"}, "paths.allowed_roots"),
        ("observability", {"log_level": "chatty"}, "observability.log_level"),
    ],
)
def test_invalid_values_report_their_path(
    section: str, values: dict[str, object], expected_path: str
) -> None:
    assert _issue_paths(_with(section, **values)) == [expected_path]


def test_retry_ceiling_must_not_be_below_base_delay() -> None:
    config = _with("backend", base_retry_delay_ms=5000, max_retry_delay_ms=1000)

    assert _issue_paths(config) == ["backend.max_retry_delay_ms"]


def test_unknown_and_secret_fields_are_rejected() -> None:
    config = _with("backend", api_key="sk-live", colour="blue")

    issues = validate_config(config).issues

    assert {issue.path: issue.message for issue in issues} == {
        "backend.api_key": "embedded secret values are forbidden",
        "backend.colour": "unknown field",
    }


def test_missing_required_field_is_reported() -> None:
    config = default_config()
    del config["git"]["binary"]  # type: ignore[misc]

    assert _issue_paths(config) == ["git.binary"]


def test_assert_valid_config_raises_with_rendered_issues() -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(_with("limits", max_diff_length=1))

    assert "limits.max_diff_length: must be >= 100" in str(excinfo.value)
    assert excinfo.value.category == "configuration"


def test_non_mapping_root_is_rejected() -> None:
    assert _issue_paths(["not", "a", "mapping"]) == ["<root>"]


def test_merge_config_does_not_mutate_inputs() -> None:
    base = default_config()
    overlay = {"backend": {"model": "opus"}}

    merged = merge_config(base, overlay)

    assert merged["backend"]["model"] == "opus"
    assert base["backend"]["model"] == "sonnet"


def test_redact_config_masks_sensitive_keys() -> None:
    redacted = redact_config({"backend": {"token": "abc", "model": "sonnet"}})

    assert redacted == {"backend": {"model": "sonnet", "token": "***REDACTED***"}}
