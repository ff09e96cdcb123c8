"""Stable constants shared across gitward planes."""

from __future__ import annotations

from typing import Final

CONFIG_SCHEMA_VERSION: Final[int] = 1

# AI backend CLI.
DEFAULT_BACKEND_COMMAND: Final[str] = "claude"
DEFAULT_BACKEND_MODEL: Final[str] = "sonnet"
SUPPORTED_BACKEND_MODELS: Final[tuple[str, ...]] = ("haiku", "opus", "sonnet")
DEFAULT_BACKEND_TIMEOUT_MS: Final[int] = 120_000
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_BASE_RETRY_DELAY_MS: Final[int] = 1_000
DEFAULT_MAX_RETRY_DELAY_MS: Final[int] = 30_000

# Prompt ceilings.
DEFAULT_MAX_PROMPT_LENGTH: Final[int] = 50_000
DEFAULT_MAX_DIFF_LENGTH: Final[int] = 3_000
DEFAULT_MAX_FILENAME_LENGTH: Final[int] = 255
DEFAULT_MAX_COMMIT_MESSAGE_LENGTH: Final[int] = 500
DEFAULT_MAX_SECTION_LENGTH: Final[int] = 2_000
DEFAULT_MAX_FILE_COUNT: Final[int] = 50

# git process limits.
DEFAULT_GIT_BINARY: Final[str] = "git"
DEFAULT_GIT_TIMEOUT_MS: Final[int] = 30_000
DEFAULT_BATCH_SIZE: Final[int] = 50
DEFAULT_MAX_FILES_PER_OPERATION: Final[int] = 1_000
DEFAULT_MAX_OUTPUT_BYTES: Final[int] = 10 * 1024 * 1024

# Observability.
DEFAULT_LOG_DIR: Final[str] = "logs"
LOG_LEVELS: Final[tuple[str, ...]] = ("CRITICAL", "DEBUG", "ERROR", "INFO", "WARNING")

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BACKEND_COMMAND",
    "DEFAULT_BACKEND_MODEL",
    "DEFAULT_BACKEND_TIMEOUT_MS",
    "DEFAULT_BASE_RETRY_DELAY_MS",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_GIT_BINARY",
    "DEFAULT_GIT_TIMEOUT_MS",
    "DEFAULT_LOG_DIR",
    "DEFAULT_MAX_COMMIT_MESSAGE_LENGTH",
    "DEFAULT_MAX_DIFF_LENGTH",
    "DEFAULT_MAX_FILENAME_LENGTH",
    "DEFAULT_MAX_FILES_PER_OPERATION",
    "DEFAULT_MAX_FILE_COUNT",
    "DEFAULT_MAX_OUTPUT_BYTES",
    "DEFAULT_MAX_PROMPT_LENGTH",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_MAX_RETRY_DELAY_MS",
    "DEFAULT_MAX_SECTION_LENGTH",
    "LOG_LEVELS",
    "SUPPORTED_BACKEND_MODELS",
]
