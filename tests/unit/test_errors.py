"""
gitward — error taxonomy tests

File: tests/unit/test_errors.py
Last updated: 2026-10-19

Purpose
- Validate categories, codes, retryability and detail normalization of the error hierarchy.
"""

from __future__ import annotations

import pytest

from gitward.errors import (
    CATEGORY_BACKEND_EXECUTION,
    CATEGORY_CONFIGURATION,
    CATEGORY_INPUT_VALIDATION,
    CATEGORY_PROCESS_EXECUTION,
    CATEGORY_RESPONSE_VALIDATION,
    ArgumentRejectedError,
    BackendExecutionError,
    BatchRejectedError,
    ConfigurationError,
    EmptyResponseError,
    GitwardError,
    MissingFieldsError,
    PathRejectedError,
    ProcessExitError,
    ProcessSpawnError,
    ProcessTimeoutError,
    PromptLimitError,
    PromptRejectedError,
    ResourceLimitError,
    is_retryable_error,
    is_retryable_message,
)


@pytest.mark.parametrize(
    ("error", "category", "code", "retryable"),
    [
        (
            PathRejectedError("../x", ["traversal"]),
            CATEGORY_INPUT_VALIDATION,
            "path_rejected",
            False,
        ),
        (ResourceLimitError("too many"), CATEGORY_INPUT_VALIDATION, "resource_limit", False),
        (ConfigurationError("bad"), CATEGORY_CONFIGURATION, "configuration", False),
        (ProcessSpawnError("git", "not found"), CATEGORY_PROCESS_EXECUTION, "spawn_failed", False),
        (ProcessTimeoutError("git", 500), CATEGORY_PROCESS_EXECUTION, "timeout", True),
        (EmptyResponseError(), CATEGORY_RESPONSE_VALIDATION, "empty_response", False),
        (MissingFieldsError(["a"]), CATEGORY_RESPONSE_VALIDATION, "missing_fields", False),
        (BackendExecutionError("boom"), CATEGORY_BACKEND_EXECUTION, "execution_error", False),
    ],
)
def test_error_classification(
    error: GitwardError, category: str, code: str, retryable: bool
) -> None:
    assert error.category == category
    assert error.code == code
    assert error.retryable is retryable
    assert is_retryable_error(error) is retryable
    assert error.to_dict() == {
        "category": category,
        "code": code,
        "detail": str(error),
        "retryable": retryable,
    }


def test_configuration_error_is_a_value_error() -> None:
    assert isinstance(ConfigurationError("x"), ValueError)


def test_detail_is_collapsed_redacted_and_truncated() -> None:
    error = ProcessSpawnError("git", "line one\n\n  line two  api_key=abcdef123456")

    assert error.detail == "line one line two api_key=***REDACTED***"

    long_error = ConfigurationError("x" * 800)
    assert len(long_error.detail) == 500
    assert long_error.detail.endswith("...")


def test_process_exit_error_summarizes_stderr() -> None:
    error = ProcessExitError("git", exit_code=128, stdout="out", stderr="fatal:\n  not a repo")

    assert str(error) == "git exited with code 128: fatal: not a repo"
    assert error.stdout == "out"
    assert error.binary == "git"
    assert ProcessExitError("git", exit_code=1).detail == "git exited with code 1"


def test_input_errors_carry_structured_context() -> None:
    argument = ArgumentRejectedError("shell metacharacters", index=2, kind="path")
    batch = BatchRejectedError(3, PathRejectedError("/etc", ["outside root", "blocked"]))
    limit = PromptLimitError("diff", limit=10, actual=11)

    assert str(argument) == "argument 2 rejected: shell metacharacters"
    assert argument.kind == "path"
    assert batch.batch_index == 3
    assert batch.violations == ("outside root", "blocked")
    assert str(limit) == "prompt diff exceeds limit (11 > 10)"
    assert ArgumentRejectedError("empty").detail == "argument rejected: empty"


def test_batch_without_violations_falls_back_to_the_cause_detail() -> None:
    batch = BatchRejectedError(0, ResourceLimitError("argument count 9 exceeds 8"))

    assert batch.violations == ("argument count 9 exceeds 8",)


def test_prompt_rejection_deduplicates_rules_and_reasons() -> None:
    error = PromptRejectedError(
        ["role_override", "role_override", "delimiter_spoof"],
        ["role change", "role change", "delimiter"],
    )

    assert error.rule_ids == ("role_override", "role_override", "delimiter_spoof")
    assert "(role_override, delimiter_spoof)" in str(error)
    assert error.violations == ("role change", "delimiter")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Request timed out", True),
        ("connection reset by peer", True),
        ("read ECONNRESET", True),
        ("HTTP 503 Service Unavailable", True),
        ("rate_limit exceeded", True),
        ("API overloaded", True),
        ("invalid api key", False),
        ("permission denied", False),
        ("", False),
    ],
)
def test_retryable_message_classification(text: str, expected: bool) -> None:
    assert is_retryable_message(text) is expected


def test_plain_exceptions_are_not_retryable() -> None:
    assert is_retryable_error(TimeoutError("t")) is False
