"""
gitward — public security utilities

File: src/gitward/security/__init__.py
Last updated: 2026-10-19

Purpose
- Security utilities: path validation, prompt injection defenses, secret redaction,
  and the bounded security event log.

Functional requirements
- Must provide consistent redaction and scanning utilities.

Non-functional requirements
- Must fail closed for critical safety checks.
"""

from gitward.security.redaction import (
    DEFAULT_SENSITIVE_KEY_DENYLIST,
    REDACTED_VALUE,
    SecretFinding,
    is_sensitive_key,
    redact_text,
    redact_value,
    scan_for_secrets,
)

__all__ = [
    "DEFAULT_SENSITIVE_KEY_DENYLIST",
    "REDACTED_VALUE",
    "SecretFinding",
    "is_sensitive_key",
    "redact_text",
    "redact_value",
    "scan_for_secrets",
]
