"""
gitward config package public API.

File: src/gitward/config/__init__.py
Last updated: 2026-10-19

Purpose
- Export config loading/validation entrypoints, typed settings and public error types.

Functional requirements
- Support loading from ``gitward.toml`` + ``GITWARD_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from gitward.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_ALIASES,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    load_settings,
    normalize_paths,
)
from gitward.config.policy_file import (
    load_policy_file,
    policy_from_mapping,
    resolve_security_policy,
)
from gitward.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    GitwardConfig,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)
from gitward.config.settings import (
    BackendSettings,
    GitSettings,
    GitwardSettings,
    ObservabilitySettings,
    PathSettings,
    PromptLimits,
)

__all__ = [
    "BackendSettings",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_ALIASES",
    "ENV_PREFIX",
    "GitSettings",
    "GitwardConfig",
    "GitwardSettings",
    "ObservabilitySettings",
    "PathSettings",
    "PromptLimits",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "load_policy_file",
    "load_settings",
    "merge_config",
    "normalize_paths",
    "policy_from_mapping",
    "redact_config",
    "resolve_security_policy",
    "validate_config",
]
