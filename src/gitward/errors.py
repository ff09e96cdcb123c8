"""
gitward — error taxonomy

File: src/gitward/errors.py
Last updated: 2026-10-19

Purpose
- One normalized error hierarchy shared by the path, process, and AI request planes.

What should be included in this file
- Category, code, retryability and a classified detail on every error.
- Input-validation, configuration, process-execution, response-validation and
  backend-execution families.

Functional requirements
- ``str(error)`` must never be raw OS or backend text; raw detail is kept on
  attributes and the ``__cause__`` chain only.

Non-functional requirements
- Deterministic, machine-readable fields for CLI exit-code routing and logs.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Final

from gitward.security.redaction import redact_text

_MAX_DETAIL_LENGTH: Final[int] = 500

CATEGORY_INPUT_VALIDATION: Final[str] = "input_validation"
CATEGORY_CONFIGURATION: Final[str] = "configuration"
CATEGORY_PROCESS_EXECUTION: Final[str] = "process_execution"
CATEGORY_RESPONSE_VALIDATION: Final[str] = "response_validation"
CATEGORY_BACKEND_EXECUTION: Final[str] = "backend_execution"

# Transient-failure signatures in process or backend output.
RETRYABLE_MESSAGE_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"time(?:d)?[ -]?out", re.IGNORECASE),
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"connection", re.IGNORECASE),
    re.compile(r"ECONNRESET"),
    re.compile(r"rate[ _-]?limit", re.IGNORECASE),
    re.compile(r"throttl", re.IGNORECASE),
    re.compile(r"\b5\d\d\b"),
    re.compile(r"temporarily unavailable", re.IGNORECASE),
    re.compile(r"service unavailable", re.IGNORECASE),
    re.compile(r"internal server error", re.IGNORECASE),
    re.compile(r"bad gateway", re.IGNORECASE),
    re.compile(r"gateway timeout", re.IGNORECASE),
    re.compile(r"overloaded", re.IGNORECASE),
)


class GitwardError(RuntimeError):
    """Base normalized error with deterministic machine-readable fields."""

    category: str = "internal"

    def __init__(self, detail: str, *, code: str, retryable: bool = False) -> None:
        self.code = code
        self.detail = _normalize_detail(detail)
        self.retryable = bool(retryable)
        super().__init__(self.detail)

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category,
            "code": self.code,
            "detail": self.detail,
            "retryable": self.retryable,
        }


# --- input validation -------------------------------------------------------


class InputValidationError(GitwardError):
    """Deterministic rejection; the caller must change its input."""

    category = CATEGORY_INPUT_VALIDATION

    def __init__(
        self,
        detail: str,
        *,
        code: str = "invalid_input",
        violations: Sequence[str] = (),
    ) -> None:
        self.violations = tuple(violations)
        super().__init__(detail, code=code, retryable=False)


class PathRejectedError(InputValidationError):
    """Raised when a path-shaped value fails the path validator."""

    def __init__(self, path: str, violations: Sequence[str]) -> None:
        self.path = path
        first = violations[0] if violations else "path rejected"
        super().__init__(
            f"path rejected: {first}",
            code="path_rejected",
            violations=violations,
        )


class ArgumentRejectedError(InputValidationError):
    """Raised when one process argument fails sanitization."""

    def __init__(self, reason: str, *, index: int | None = None, kind: str | None = None) -> None:
        self.index = index
        self.kind = kind
        location = f"argument {index}" if index is not None else "argument"
        super().__init__(f"{location} rejected: {reason}", code="argument_rejected")


class CommandNotAllowedError(InputValidationError):
    """Raised when a binary, subcommand or flag is not on the allow-list."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, code="command_not_allowed")


class ResourceLimitError(InputValidationError):
    """Raised when a logical operation exceeds a hard resource cap."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, code="resource_limit")


class BatchRejectedError(InputValidationError):
    """Raised when any element of a batch fails; nothing in the operation runs."""

    def __init__(self, batch_index: int, cause: InputValidationError) -> None:
        self.batch_index = batch_index
        super().__init__(
            f"batch {batch_index} rejected: {cause.detail}",
            code="batch_rejected",
            violations=cause.violations or (cause.detail,),
        )


class PromptLimitError(InputValidationError):
    """Raised when one prompt dimension exceeds its ceiling."""

    def __init__(self, dimension: str, *, limit: int, actual: int) -> None:
        self.dimension = dimension
        self.limit = limit
        self.actual = actual
        super().__init__(
            f"prompt {dimension} exceeds limit ({actual} > {limit})",
            code="prompt_limit",
        )


class PromptRejectedError(InputValidationError):
    """Raised when prompt text matches an injection detector."""

    def __init__(self, rule_ids: Sequence[str], reasons: Sequence[str]) -> None:
        self.rule_ids = tuple(rule_ids)
        super().__init__(
            "prompt rejected: potential injection detected "
            f"({', '.join(dict.fromkeys(self.rule_ids))})",
            code="prompt_injection",
            violations=tuple(dict.fromkeys(reasons)),
        )


# --- configuration ----------------------------------------------------------


class ConfigurationError(GitwardError, ValueError):
    """Fatal configuration or policy failure; never retried."""

    category = CATEGORY_CONFIGURATION

    def __init__(self, detail: str, *, code: str = "configuration") -> None:
        super().__init__(detail, code=code, retryable=False)


# --- process execution ------------------------------------------------------


class ProcessExecutionError(GitwardError):
    """Spawn, exit-status or timeout failure of a child process."""

    category = CATEGORY_PROCESS_EXECUTION

    def __init__(
        self,
        detail: str,
        *,
        code: str,
        binary: str,
        retryable: bool = False,
    ) -> None:
        self.binary = binary
        super().__init__(detail, code=code, retryable=retryable)


class ProcessSpawnError(ProcessExecutionError):
    """The binary could not be started."""

    def __init__(self, binary: str, reason: str) -> None:
        super().__init__(reason, code="spawn_failed", binary=binary, retryable=False)


class ProcessTimeoutError(ProcessExecutionError):
    """The child outlived its wall-clock budget and was signaled."""

    def __init__(self, binary: str, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(
            f"{binary} timed out after {timeout_ms}ms",
            code="timeout",
            binary=binary,
            retryable=True,
        )


class ProcessExitError(ProcessExecutionError):
    """The child exited non-zero."""

    def __init__(
        self,
        binary: str,
        *,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
        retryable: bool = False,
    ) -> None:
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = _normalize_detail(stderr)
        summary = f"{binary} exited with code {exit_code}"
        if self.stderr:
            summary = f"{summary}: {self.stderr}"
        super().__init__(summary, code="nonzero_exit", binary=binary, retryable=retryable)


# --- response validation ----------------------------------------------------


class ResponseValidationError(GitwardError):
    """Backend output was malformed or incomplete; retrying will not help."""

    category = CATEGORY_RESPONSE_VALIDATION

    def __init__(self, detail: str, *, code: str = "response_invalid") -> None:
        super().__init__(detail, code=code, retryable=False)


class EmptyResponseError(ResponseValidationError):
    def __init__(self) -> None:
        super().__init__("no output received from backend", code="empty_response")


class ResponseParseError(ResponseValidationError):
    def __init__(self, detail: str) -> None:
        super().__init__(detail, code="parse_failed")


class MissingFieldsError(ResponseValidationError):
    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(
            f"missing required fields: {', '.join(self.missing)}",
            code="missing_fields",
        )


class BackendExecutionError(GitwardError):
    """The backend reported an execution error inside its result envelope."""

    category = CATEGORY_BACKEND_EXECUTION

    def __init__(self, detail: str) -> None:
        super().__init__(detail, code="execution_error", retryable=False)


def is_retryable_error(error: BaseException) -> bool:
    """Return retryability classification for normalized errors."""

    return isinstance(error, GitwardError) and error.retryable


def is_retryable_message(text: str) -> bool:
    """Return ``True`` when ``text`` carries a transient-failure signature."""

    return any(pattern.search(text) for pattern in RETRYABLE_MESSAGE_PATTERNS)


def _normalize_detail(value: object) -> str:
    text = " ".join(str(value).split())
    text = redact_text(text)
    if len(text) > _MAX_DETAIL_LENGTH:
        text = text[: _MAX_DETAIL_LENGTH - 3] + "..."
    return text


__all__ = [
    "ArgumentRejectedError",
    "BackendExecutionError",
    "BatchRejectedError",
    "CATEGORY_BACKEND_EXECUTION",
    "CATEGORY_CONFIGURATION",
    "CATEGORY_INPUT_VALIDATION",
    "CATEGORY_PROCESS_EXECUTION",
    "CATEGORY_RESPONSE_VALIDATION",
    "CommandNotAllowedError",
    "ConfigurationError",
    "EmptyResponseError",
    "GitwardError",
    "InputValidationError",
    "MissingFieldsError",
    "PathRejectedError",
    "ProcessExecutionError",
    "ProcessExitError",
    "ProcessSpawnError",
    "ProcessTimeoutError",
    "PromptLimitError",
    "PromptRejectedError",
    "RETRYABLE_MESSAGE_PATTERNS",
    "ResourceLimitError",
    "ResponseParseError",
    "ResponseValidationError",
    "is_retryable_error",
    "is_retryable_message",
]
