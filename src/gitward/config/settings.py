"""
gitward — typed settings views

File: src/gitward/config/settings.py
Last updated: 2026-10-19

Purpose
- Immutable, typed views over a validated config mapping, handed to the
  invoker, the request pipeline and the path validator.

Functional requirements
- Dataclass defaults equal the schema defaults, so components can be built
  without loading any config.
- ``__post_init__`` re-checks the invariants components rely on.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from gitward.config.schema import assert_valid_config
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
)
from gitward.security.path_validator import (
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_PATH_LENGTH,
    SecurityLevel,
    SecurityPolicy,
)
from gitward.security.security_log import DEFAULT_LOG_CAPACITY
from gitward.utils.fs import PathLike


def _require_positive(owner: str, **values: int) -> None:
    for name, value in values.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"{owner}.{name} must be an integer")
        if value <= 0:
            raise ValueError(f"{owner}.{name} must be > 0")


@dataclass(frozen=True, slots=True)
class BackendSettings:
    command: str = DEFAULT_BACKEND_COMMAND
    model: str = DEFAULT_BACKEND_MODEL
    timeout_ms: int = DEFAULT_BACKEND_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    base_retry_delay_ms: int = DEFAULT_BASE_RETRY_DELAY_MS
    max_retry_delay_ms: int = DEFAULT_MAX_RETRY_DELAY_MS

    def __post_init__(self) -> None:
        _require_positive(
            "BackendSettings",
            timeout_ms=self.timeout_ms,
            base_retry_delay_ms=self.base_retry_delay_ms,
            max_retry_delay_ms=self.max_retry_delay_ms,
        )
        if self.max_retries < 0:
            raise ValueError("BackendSettings.max_retries must be >= 0")
        if self.max_retry_delay_ms < self.base_retry_delay_ms:
            raise ValueError("BackendSettings.max_retry_delay_ms must be >= base_retry_delay_ms")


@dataclass(frozen=True, slots=True)
class PromptLimits:
    max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH
    max_diff_length: int = DEFAULT_MAX_DIFF_LENGTH
    max_filename_length: int = DEFAULT_MAX_FILENAME_LENGTH
    max_commit_message_length: int = DEFAULT_MAX_COMMIT_MESSAGE_LENGTH
    max_section_length: int = DEFAULT_MAX_SECTION_LENGTH
    max_file_count: int = DEFAULT_MAX_FILE_COUNT

    def __post_init__(self) -> None:
        _require_positive(
            "PromptLimits",
            max_prompt_length=self.max_prompt_length,
            max_diff_length=self.max_diff_length,
            max_filename_length=self.max_filename_length,
            max_commit_message_length=self.max_commit_message_length,
            max_section_length=self.max_section_length,
            max_file_count=self.max_file_count,
        )


@dataclass(frozen=True, slots=True)
class GitSettings:
    binary: str = DEFAULT_GIT_BINARY
    timeout_ms: int = DEFAULT_GIT_TIMEOUT_MS
    batch_size: int = DEFAULT_BATCH_SIZE
    max_files_per_operation: int = DEFAULT_MAX_FILES_PER_OPERATION
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES

    def __post_init__(self) -> None:
        _require_positive(
            "GitSettings",
            timeout_ms=self.timeout_ms,
            batch_size=self.batch_size,
            max_files_per_operation=self.max_files_per_operation,
            max_output_bytes=self.max_output_bytes,
        )


@dataclass(frozen=True, slots=True)
class PathSettings:
    security_level: SecurityLevel = SecurityLevel.STRICT
    allow_symlinks: bool = False
    max_depth: int = DEFAULT_MAX_DEPTH
    max_path_length: int = DEFAULT_MAX_PATH_LENGTH
    allowed_roots: tuple[str, ...] = ()
    blocked_paths: tuple[str, ...] = ()
    policy_file: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "security_level", SecurityLevel(self.security_level))
        object.__setattr__(self, "allowed_roots", tuple(self.allowed_roots))
        object.__setattr__(self, "blocked_paths", tuple(self.blocked_paths))
        object.__setattr__(self, "policy_file", self.policy_file or None)

    def to_policy(self, extra_roots: Iterable[PathLike] = ()) -> SecurityPolicy:
        """Build the :class:`SecurityPolicy` these settings describe."""

        return SecurityPolicy(
            level=self.security_level,
            allowed_roots=frozenset((*self.allowed_roots, *extra_roots)),
            blocked_paths=frozenset(self.blocked_paths),
            allow_symlinks=self.allow_symlinks,
            max_depth=self.max_depth,
            max_path_length=self.max_path_length,
        )


@dataclass(frozen=True, slots=True)
class ObservabilitySettings:
    log_level: str = "INFO"
    log_dir: str = DEFAULT_LOG_DIR
    log_to_stdout: bool = False
    security_log_capacity: int = DEFAULT_LOG_CAPACITY
    redact_secrets: bool = True


@dataclass(frozen=True, slots=True)
class GitwardSettings:
    """All typed views for one effective configuration."""

    backend: BackendSettings = field(default_factory=BackendSettings)
    limits: PromptLimits = field(default_factory=PromptLimits)
    git: GitSettings = field(default_factory=GitSettings)
    paths: PathSettings = field(default_factory=PathSettings)
    observability: ObservabilitySettings = field(default_factory=ObservabilitySettings)

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> GitwardSettings:
        """Validate ``config`` and project it into typed settings."""

        validated = assert_valid_config(config)
        paths = dict(validated["paths"])
        return cls(
            backend=BackendSettings(**validated["backend"]),
            limits=PromptLimits(**validated["limits"]),
            git=GitSettings(**validated["git"]),
            paths=PathSettings(
                security_level=SecurityLevel(paths["security_level"]),
                allow_symlinks=paths["allow_symlinks"],
                max_depth=paths["max_depth"],
                max_path_length=paths["max_path_length"],
                allowed_roots=tuple(paths["allowed_roots"]),
                blocked_paths=tuple(paths["blocked_paths"]),
                policy_file=paths["policy_file"] or None,
            ),
            observability=ObservabilitySettings(**validated["observability"]),
        )


__all__ = [
    "BackendSettings",
    "GitSettings",
    "GitwardSettings",
    "ObservabilitySettings",
    "PathSettings",
    "PromptLimits",
]
