"""
gitward — security redaction utilities

File: src/gitward/security/redaction.py
Last updated: 2026-10-19

Purpose
- Redaction rules for diff excerpts sent to the AI backend, log records, and
  error detail surfaced to callers.

What should be included in this file
- Secret-shaped text patterns evaluated in a fixed order.
- Key-based redaction for structured values (log ``extra`` fields, config dumps).

Functional requirements
- No secret literal found in a diff may reach a prompt or a log line.

Non-functional requirements
- Deterministic output; minimize false positives while prioritizing safety.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

REDACTED_VALUE: Final[str] = "***REDACTED***"

DEFAULT_SENSITIVE_KEY_DENYLIST: Final[frozenset[str]] = frozenset(
    {
        "access_token",
        "api_key",
        "apikey",
        "auth_token",
        "authorization",
        "client_secret",
        "credential",
        "credentials",
        "password",
        "passwd",
        "private_key",
        "refresh_token",
        "secret",
        "secret_key",
        "session_token",
        "token",
    }
)

_SENSITIVE_KEY_SUFFIXES: Final[tuple[str, ...]] = (
    "_api_key",
    "_access_token",
    "_auth_token",
    "_client_secret",
    "_private_key",
    "_password",
    "_secret",
    "_token",
)

_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class SecretFinding:
    """One secret-like match discovered during scanning."""

    rule: str
    start: int
    end: int


@dataclass(frozen=True, slots=True)
class _TextRule:
    name: str
    pattern: re.Pattern[str]
    sensitive_group: int | None = None


_TEXT_RULES: Final[tuple[_TextRule, ...]] = (
    _TextRule(
        name="private_key_block",
        pattern=re.compile(
            r"-----BEGIN(?: [A-Z0-9]+)* PRIVATE KEY-----"
            r"[\s\S]+?"
            r"-----END(?: [A-Z0-9]+)* PRIVATE KEY-----"
        ),
    ),
    _TextRule(
        name="authorization_bearer",
        pattern=re.compile(r"(?i)(\bbearer\s+)([A-Za-z0-9\-._~+/=]{8,})"),
        sensitive_group=2,
    ),
    _TextRule(
        name="explicit_secret_assignment",
        pattern=re.compile(
            r"(?i)(\b(?:password|passwd|pwd|secret|token|api[_-]?key|client[_-]?secret|"
            r"access[_-]?token|refresh[_-]?token|auth[_-]?token|private[_-]?key)\b"
            r"[\"']?\s*[:=]\s*[\"']?)"
            r"([^\s\"',;]{4,})"
        ),
        sensitive_group=2,
    ),
    _TextRule(name="anthropic_api_key", pattern=re.compile(r"\bsk-ant-[A-Za-z0-9_-]{20,255}\b")),
    _TextRule(name="openai_api_key", pattern=re.compile(r"\bsk-[A-Za-z0-9]{20,255}\b")),
    _TextRule(name="aws_access_key", pattern=re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b")),
    _TextRule(name="github_token", pattern=re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,255}\b")),
    _TextRule(name="slack_token", pattern=re.compile(r"\bxox[baprs]-[A-Za-z0-9-]{16,255}\b")),
    _TextRule(
        name="jwt",
        pattern=re.compile(r"\beyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\b"),
    ),
)


def scan_for_secrets(text: str) -> tuple[SecretFinding, ...]:
    """Scan text for secret-like patterns in deterministic rule order."""

    if not isinstance(text, str):
        raise TypeError("text must be a string")

    findings: list[SecretFinding] = []
    for rule in _TEXT_RULES:
        for match in rule.pattern.finditer(text):
            group = rule.sensitive_group or 0
            start, end = match.span(group)
            if end > start:
                findings.append(SecretFinding(rule=rule.name, start=start, end=end))
    findings.sort(key=lambda item: (item.start, item.end, item.rule))
    return tuple(findings)


def redact_text(text: str, *, replacement: str = REDACTED_VALUE) -> str:
    """Replace secret-like substrings with ``replacement``."""

    if not isinstance(text, str):
        raise TypeError("text must be a string")
    if not text:
        return text

    redacted = text
    for rule in _TEXT_RULES:
        redacted = _apply_text_rule(redacted, rule=rule, replacement=replacement)
    return redacted


def is_sensitive_key(key: str) -> bool:
    """Return ``True`` when a mapping key names a credential-like value."""

    normalized = _normalize_key(key)
    if not normalized or normalized.endswith("_env"):
        return False
    if normalized in DEFAULT_SENSITIVE_KEY_DENYLIST:
        return True
    return normalized.endswith(_SENSITIVE_KEY_SUFFIXES)


def redact_value(value: object, *, replacement: str = REDACTED_VALUE) -> object:
    """Deep-redact a JSON-like value: sensitive keys are masked, strings scanned."""

    if isinstance(value, str):
        return redact_text(value, replacement=replacement)
    if isinstance(value, Mapping):
        output: dict[str, object] = {}
        for key, item in value.items():
            key_text = str(key)
            if is_sensitive_key(key_text) and item is not None:
                output[key_text] = replacement
            else:
                output[key_text] = redact_value(item, replacement=replacement)
        return output
    if isinstance(value, (list, tuple)):
        return [redact_value(item, replacement=replacement) for item in value]
    return value


def _apply_text_rule(text: str, *, rule: _TextRule, replacement: str) -> str:
    if rule.sensitive_group is None:
        return rule.pattern.sub(replacement, text)

    group = rule.sensitive_group

    def _replace(match: re.Match[str]) -> str:
        whole = match.group(0)
        start, end = match.span(group)
        offset = match.start(0)
        return whole[: start - offset] + replacement + whole[end - offset :]

    return rule.pattern.sub(_replace, text)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


__all__ = [
    "DEFAULT_SENSITIVE_KEY_DENYLIST",
    "REDACTED_VALUE",
    "SecretFinding",
    "is_sensitive_key",
    "redact_text",
    "redact_value",
    "scan_for_secrets",
]
