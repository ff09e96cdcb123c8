"""
gitward — configuration schema and validation.

File: src/gitward/config/schema.py
Last updated: 2026-10-19

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Defaults for the backend, limits, git, paths and observability sections.
- Validation rules for required fields, types, enums and numeric ranges.
- Deterministic deep-merge and redaction helpers.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Out-of-range values fail loudly; there are no silent fallbacks to defaults.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from gitward.constants import (
    DEFAULT_BACKEND_COMMAND,
    DEFAULT_BACKEND_MODEL,
    DEFAULT_BACKEND_TIMEOUT_MS,
    DEFAULT_BASE_RETRY_DELAY_MS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_GIT_BINARY,
    DEFAULT_GIT_TIMEOUT_MS,
    DEFAULT_LOG_DIR,
    DEFAULT_MAX_COMMIT_MESSAGE_LENGTH,
    DEFAULT_MAX_DIFF_LENGTH,
    DEFAULT_MAX_FILE_COUNT,
    DEFAULT_MAX_FILENAME_LENGTH,
    DEFAULT_MAX_FILES_PER_OPERATION,
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_MAX_PROMPT_LENGTH,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY_MS,
    DEFAULT_MAX_SECTION_LENGTH,
    LOG_LEVELS,
    SUPPORTED_BACKEND_MODELS,
)
from gitward.errors import ConfigurationError
from gitward.security.path_validator import (
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_PATH_LENGTH,
    SecurityLevel,
)
from gitward.security.redaction import is_sensitive_key, redact_value
from gitward.security.security_log import DEFAULT_LOG_CAPACITY

_COMMAND_PATTERN = re.compile(r"^[A-Za-z0-9._/-]+$")
SECURITY_LEVELS: Final[tuple[str, ...]] = tuple(level.value for level in SecurityLevel)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "policy_file"),
    ("paths", "allowed_roots"),
    ("paths", "blocked_paths"),
    ("observability", "log_dir"),
)


class BackendConfig(TypedDict):
    command: str
    model: str
    timeout_ms: int
    max_retries: int
    base_retry_delay_ms: int
    max_retry_delay_ms: int


class LimitsConfig(TypedDict):
    max_prompt_length: int
    max_diff_length: int
    max_filename_length: int
    max_commit_message_length: int
    max_section_length: int
    max_file_count: int


class GitConfig(TypedDict):
    binary: str
    timeout_ms: int
    batch_size: int
    max_files_per_operation: int
    max_output_bytes: int


class PathsConfig(TypedDict):
    security_level: str
    allow_symlinks: bool
    max_depth: int
    max_path_length: int
    allowed_roots: list[str]
    blocked_paths: list[str]
    policy_file: str


class ObservabilityConfig(TypedDict):
    log_level: str
    log_dir: str
    log_to_stdout: bool
    security_log_capacity: int
    redact_secrets: bool


class GitwardConfig(TypedDict):
    backend: BackendConfig
    limits: LimitsConfig
    git: GitConfig
    paths: PathsConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[GitwardConfig] = {
    "backend": {
        "command": DEFAULT_BACKEND_COMMAND,
        "model": DEFAULT_BACKEND_MODEL,
        "timeout_ms": DEFAULT_BACKEND_TIMEOUT_MS,
        "max_retries": DEFAULT_MAX_RETRIES,
        "base_retry_delay_ms": DEFAULT_BASE_RETRY_DELAY_MS,
        "max_retry_delay_ms": DEFAULT_MAX_RETRY_DELAY_MS,
    },
    "limits": {
        "max_prompt_length": DEFAULT_MAX_PROMPT_LENGTH,
        "max_diff_length": DEFAULT_MAX_DIFF_LENGTH,
        "max_filename_length": DEFAULT_MAX_FILENAME_LENGTH,
        "max_commit_message_length": DEFAULT_MAX_COMMIT_MESSAGE_LENGTH,
        "max_section_length": DEFAULT_MAX_SECTION_LENGTH,
        "max_file_count": DEFAULT_MAX_FILE_COUNT,
    },
    "git": {
        "binary": DEFAULT_GIT_BINARY,
        "timeout_ms": DEFAULT_GIT_TIMEOUT_MS,
        "batch_size": DEFAULT_BATCH_SIZE,
        "max_files_per_operation": DEFAULT_MAX_FILES_PER_OPERATION,
        "max_output_bytes": DEFAULT_MAX_OUTPUT_BYTES,
    },
    "paths": {
        "security_level": SecurityLevel.STRICT.value,
        "allow_symlinks": False,
        "max_depth": DEFAULT_MAX_DEPTH,
        "max_path_length": DEFAULT_MAX_PATH_LENGTH,
        "allowed_roots": [],
        "blocked_paths": [],
        "policy_file": "",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": DEFAULT_LOG_DIR,
        "log_to_stdout": False,
        "security_log_capacity": DEFAULT_LOG_CAPACITY,
        "redact_secrets": True,
    },
}

# (minimum, maximum) per integer field.
_INT_RANGES: Final[dict[str, dict[str, tuple[int, int]]]] = {
    "backend": {
        "timeout_ms": (1_000, 600_000),
        "max_retries": (0, 10),
        "base_retry_delay_ms": (100, 10_000),
        "max_retry_delay_ms": (100, 600_000),
    },
    "limits": {
        "max_prompt_length": (1_000, 1_000_000),
        "max_diff_length": (100, 1_000_000),
        "max_filename_length": (1, 4_096),
        "max_commit_message_length": (1, 2_048),
        "max_section_length": (1, 1_000_000),
        "max_file_count": (1, 10_000),
    },
    "git": {
        "timeout_ms": (1_000, 600_000),
        "batch_size": (1, 1_000),
        "max_files_per_operation": (1, 1_000_000),
        "max_output_bytes": (1_024, 1024 * 1024 * 1024),
    },
    "paths": {
        "max_depth": (1, 1_000),
        "max_path_length": (1, 32_768),
    },
    "observability": {
        "security_log_capacity": (1, 1_000_000),
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ConfigurationError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "; ".join(f"{item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config: {rendered}", code="config_invalid")


class _IssueCollector:
    __slots__ = ("items",)

    def __init__(self) -> None:
        self.items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self.items.append(ConfigValidationIssue(path=path, message=message))

    def reject(self, path: str, message: str) -> None:
        """Record an issue; returns ``None`` so coercers can ``return issues.reject(...)``."""

        self.add(path, message)


def default_config() -> GitwardConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base``; neither input is mutated."""

    merged: dict[str, Any] = _copied(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = _copied(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    normalized = _validate_root(root, issues) if root is not None else None
    if normalized is None or issues.items:
        return ConfigValidationResult(config=None, issues=tuple(issues.items))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Credential-named keys replaced, for logs and CLI dumps."""

    if not isinstance(config, Mapping):
        return {}
    redacted = redact_value(config)
    return redacted if isinstance(redacted, dict) else {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    validators: dict[str, Callable[[Mapping[str, object], str, _IssueCollector], dict[str, Any]]]
    validators = {
        "backend": _validate_backend,
        "limits": _validate_limits,
        "git": _validate_git,
        "paths": _validate_paths,
        "observability": _validate_observability,
    }
    _check_keys(payload, set(validators), "", issues)

    out: dict[str, Any] = {}
    for key in sorted(validators):
        if key not in payload:
            continue
        section = _as_object(payload[key], key, issues)
        if section is None:
            continue
        out[key] = validators[key](section, key, issues)
    return out


def _validate_backend(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["backend"])
    _check_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "command" in payload:
        command = _as_str(payload["command"], _join(path, "command"), issues)
        if command is not None:
            if _COMMAND_PATTERN.fullmatch(command):
                out["command"] = command
            else:
                issues.add(_join(path, "command"), "contains unsupported characters")
    if "model" in payload:
        model = _as_enum(
            payload["model"],
            _join(path, "model"),
            issues,
            allowed_values=SUPPORTED_BACKEND_MODELS,
        )
        if model is not None:
            out["model"] = model
    _validate_ranged_ints(payload, path, issues, out)

    base = out.get("base_retry_delay_ms")
    ceiling = out.get("max_retry_delay_ms")
    if base is not None and ceiling is not None and ceiling < base:
        issues.add(_join(path, "max_retry_delay_ms"), "must be >= base_retry_delay_ms")
    return out


def _validate_limits(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["limits"])
    _check_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    _validate_ranged_ints(payload, path, issues, out)

    prompt = out.get("max_prompt_length")
    for key in ("max_diff_length", "max_section_length"):
        value = out.get(key)
        if prompt is not None and value is not None and value > prompt:
            issues.add(_join(path, key), "must be <= max_prompt_length")
    return out


def _validate_git(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["git"])
    _check_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "binary" in payload:
        binary = _as_str(payload["binary"], _join(path, "binary"), issues)
        if binary is not None:
            if _COMMAND_PATTERN.fullmatch(binary):
                out["binary"] = binary
            else:
                issues.add(_join(path, "binary"), "contains unsupported characters")
    _validate_ranged_ints(payload, path, issues, out)

    batch = out.get("batch_size")
    cap = out.get("max_files_per_operation")
    if batch is not None and cap is not None and batch > cap:
        issues.add(_join(path, "batch_size"), "must be <= max_files_per_operation")
    return out


def _validate_paths(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["paths"])
    _check_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "security_level" in payload:
        raw_level = payload["security_level"]
        level = _as_enum(
            raw_level.lower() if isinstance(raw_level, str) else raw_level,
            _join(path, "security_level"),
            issues,
            allowed_values=SECURITY_LEVELS,
        )
        if level is not None:
            out["security_level"] = level
    if "allow_symlinks" in payload:
        flag = _as_bool(payload["allow_symlinks"], _join(path, "allow_symlinks"), issues)
        if flag is not None:
            out["allow_symlinks"] = flag
    for key in ("allowed_roots", "blocked_paths"):
        if key in payload:
            items = _as_path_list(payload[key], _join(path, key), issues)
            if items is not None:
                out[key] = items
    if "policy_file" in payload:
        policy_file = _as_optional_path_text(
            payload["policy_file"], _join(path, "policy_file"), issues
        )
        if policy_file is not None:
            out["policy_file"] = policy_file
    _validate_ranged_ints(payload, path, issues, out)
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["observability"])
    _check_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        raw_level = payload["log_level"]
        level = _as_enum(
            raw_level.upper() if isinstance(raw_level, str) else raw_level,
            _join(path, "log_level"),
            issues,
            allowed_values=LOG_LEVELS,
        )
        if level is not None:
            out["log_level"] = level
    if "log_dir" in payload:
        log_dir = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)
        if log_dir is not None:
            out["log_dir"] = log_dir
    for key in ("log_to_stdout", "redact_secrets"):
        if key in payload:
            flag = _as_bool(payload[key], _join(path, key), issues)
            if flag is not None:
                out[key] = flag
    _validate_ranged_ints(payload, path, issues, out)
    return out


def _validate_ranged_ints(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    out: dict[str, Any],
) -> None:
    for key, (low, high) in sorted(_INT_RANGES.get(path, {}).items()):
        if key in payload:
            parsed = _as_int(payload[key], _join(path, key), issues, minimum=low, maximum=high)
            if parsed is not None:
                out[key] = parsed


# --- coercers: return the parsed value, or record an issue and return None ---


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        return issues.reject(path, f"expected object, got {type(value).__name__}")
    bad_keys = [key for key in value if not isinstance(key, str)]
    for key in bad_keys:
        issues.add(path, f"object key must be string, got {type(key).__name__}")
    return {key: item for key, item in value.items() if isinstance(key, str)}


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        return issues.reject(path, f"expected string, got {type(value).__name__}")
    return value.strip() or issues.reject(path, "must not be empty")


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is not None and "\x00" in parsed:
        return issues.reject(path, "must not contain NUL bytes")
    return parsed


def _as_optional_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    if isinstance(value, str) and not value.strip():
        return ""
    return _as_path_text(value, path, issues)


def _as_path_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        return issues.reject(path, f"expected list of strings, got {type(value).__name__}")
    parsed = [_as_path_text(item, f"{path}[{index}]", issues) for index, item in enumerate(value)]
    if any(item is None for item in parsed):
        return None
    return [item for item in parsed if item is not None]


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    return issues.reject(path, f"expected boolean, got {type(value).__name__}")


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return issues.reject(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        return issues.reject(path, f"must be >= {minimum}")
    if maximum is not None and value > maximum:
        return issues.reject(path, f"must be <= {maximum}")
    return value


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None or parsed in allowed_values:
        return parsed
    expected = ", ".join(sorted(allowed_values))
    return issues.reject(path, f"invalid value {parsed!r}; expected one of: {expected}")


def _check_keys(
    payload: Mapping[str, object],
    expected: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(set(payload) | expected):
        key_path = _join(path, key)
        if key not in expected:
            forbidden = is_sensitive_key(key)
            issues.add(
                key_path, "embedded secret values are forbidden" if forbidden else "unknown field"
            )
        elif key not in payload:
            issues.add(key_path, "missing required field")


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _copied(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _copied(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_copied(item) for item in value]
    return value


__all__ = [
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "GitwardConfig",
    "PATH_FIELDS",
    "SECURITY_LEVELS",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "redact_config",
    "validate_config",
]
