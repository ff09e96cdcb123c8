"""
gitward — integration plane

File: src/gitward/integration_plane/__init__.py
Last updated: 2026-10-19

Purpose
- Integration plane: allow-listed process invocation for git and the AI backend CLI.

What should be included in this file
- Public interfaces for validating invocations, spawning with argument vectors
  and typed git helpers.

Functional requirements
- Must never build a shell string; every argument is one argv element.

Non-functional requirements
- Must bound output capture and wall-clock time per spawn.
"""

from gitward.integration_plane.arguments import (
    ARGUMENT_LENGTH_LIMITS,
    END_OF_OPTIONS,
    GIT_POLICY,
    GIT_SUBCOMMANDS,
    NEVER_ALLOWED_FLAGS,
    Argument,
    ArgumentKind,
    BinaryPolicy,
    ClassifiedArgument,
    SubcommandPolicy,
    ValidatedInvocation,
    backend_policy,
    ref_format_violation,
    sanitize_argument,
    validate_invocation,
)
from gitward.integration_plane.git_client import GitClient, StatusEntry, parse_porcelain_z
from gitward.integration_plane.invoker import CommandSpec, ProcessResult, SafeProcessInvoker

__all__ = [
    "ARGUMENT_LENGTH_LIMITS",
    "Argument",
    "ArgumentKind",
    "BinaryPolicy",
    "ClassifiedArgument",
    "CommandSpec",
    "END_OF_OPTIONS",
    "GIT_POLICY",
    "GIT_SUBCOMMANDS",
    "GitClient",
    "NEVER_ALLOWED_FLAGS",
    "ProcessResult",
    "SafeProcessInvoker",
    "StatusEntry",
    "SubcommandPolicy",
    "ValidatedInvocation",
    "backend_policy",
    "parse_porcelain_z",
    "ref_format_violation",
    "sanitize_argument",
    "validate_invocation",
]
