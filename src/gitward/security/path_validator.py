"""
gitward — path validator

File: src/gitward/security/path_validator.py
Last updated: 2026-10-19

Purpose
- Decide whether a caller-supplied path may be touched, and return its canonical
  form or a structured list of violations.

What should be included in this file
- Immutable ``SecurityPolicy`` with STRICT / MODERATE / PERMISSIVE presets.
- Ordered, short-circuiting validation: type, length, raw pattern scan,
  canonicalization (with per-hop symlink rescans and cycle detection), symlink
  policy, root boundary and depth, deny-list.
- One security log entry per violation on failure.

Functional requirements
- ``PathValidator.validate`` never raises; every failure is a ``ValidationResult``.
- The raw pattern scan runs before any normalization and no level disables it.
- Results are never cached; the same path is re-checked on every call.

Non-functional requirements
- Pure function of ``(path, root, policy)`` and the current filesystem state.
- Filesystem work can be moved off the event loop with ``validate_async``.
"""

from __future__ import annotations

import asyncio
import os
import re
import stat
import unicodedata
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Final
from urllib.parse import unquote

from gitward.errors import PathRejectedError
from gitward.security.security_log import SecurityEventLevel, SecurityLog
from gitward.utils.fs import PathLike, is_within, path_depth, split_anchor

DEFAULT_MAX_DEPTH: Final[int] = 50
DEFAULT_MAX_PATH_LENGTH: Final[int] = 4096
MAX_SYMLINK_HOPS: Final[int] = 40
# Percent-decoding layers tried by the raw scan; two layers cover ``%252e``.
MAX_PERCENT_DECODE_LAYERS: Final[int] = 2

FIXED_SENSITIVE_DIRECTORIES: Final[tuple[str, ...]] = (
    "/etc",
    "/proc",
    "/sys",
    "/dev",
    "/boot",
    "/bin",
    "/sbin",
    "/usr/bin",
    "/usr/sbin",
    "/private/etc",
)
FIXED_SENSITIVE_DIRECTORIES_WINDOWS: Final[tuple[str, ...]] = (
    "C:\\Windows",
    "C:\\Program Files",
    "C:\\Program Files (x86)",
    "C:\\System Volume Information",
)
SENSITIVE_DIRECTORY_NAMES: Final[frozenset[str]] = frozenset(
    {".ssh", ".gnupg", ".aws", ".kube", ".docker"}
)
RESERVED_DEVICE_NAMES: Final[frozenset[str]] = frozenset(
    {"CON", "PRN", "AUX", "NUL"}
    | {f"COM{index}" for index in range(1, 10)}
    | {f"LPT{index}" for index in range(1, 10)}
)

_SEPARATORS = re.compile(r"[\\/]+")
_CONTROL_CHARACTERS = re.compile(r"[\x01-\x1f\x7f]")
_ESCAPE_SEQUENCE = re.compile(r"\\u([0-9a-fA-F]{4})|\\x([0-9a-fA-F]{2})|%u([0-9a-fA-F]{4})")
_OVERLONG_DOT_OR_SLASH = re.compile(r"%c0%ae|%c0%af|%c1%9c|%c0%2e|%e0%80%ae", re.IGNORECASE)


class SecurityLevel(str, Enum):
    """How strictly symlink traversal is treated; pattern checks never relax."""

    STRICT = "strict"
    MODERATE = "moderate"
    PERMISSIVE = "permissive"


@dataclass(frozen=True, slots=True)
class SecurityPolicy:
    """Immutable validation policy, shared read-only across concurrent callers."""

    level: SecurityLevel = SecurityLevel.STRICT
    allowed_roots: frozenset[str] = frozenset()
    blocked_paths: frozenset[str] = frozenset()
    allow_symlinks: bool = False
    max_depth: int = DEFAULT_MAX_DEPTH
    max_path_length: int = DEFAULT_MAX_PATH_LENGTH

    def __post_init__(self) -> None:
        level = self.level.lower() if isinstance(self.level, str) else self.level
        object.__setattr__(self, "level", SecurityLevel(level))
        if isinstance(self.max_depth, bool) or not isinstance(self.max_depth, int):
            raise TypeError("max_depth must be an integer")
        if self.max_depth <= 0:
            raise ValueError("max_depth must be > 0")
        if isinstance(self.max_path_length, bool) or not isinstance(self.max_path_length, int):
            raise TypeError("max_path_length must be an integer")
        if self.max_path_length <= 0:
            raise ValueError("max_path_length must be > 0")
        object.__setattr__(
            self,
            "allowed_roots",
            frozenset(canonicalize_root(item) for item in _as_iterable(self.allowed_roots)),
        )
        blocked: set[str] = set()
        for item in _as_iterable(self.blocked_paths):
            lexical = os.path.normpath(os.path.abspath(os.path.expanduser(os.fspath(item))))
            blocked.add(lexical)
            blocked.add(os.path.realpath(lexical))
        object.__setattr__(self, "blocked_paths", frozenset(blocked))

    @classmethod
    def strict(cls, allowed_roots: Iterable[PathLike] = (), **overrides: object) -> SecurityPolicy:
        """Non-interactive automation: no symlinks, no relaxations."""
        return cls._preset(SecurityLevel.STRICT, allowed_roots, overrides)

    @classmethod
    def moderate(
        cls, allowed_roots: Iterable[PathLike] = (), **overrides: object
    ) -> SecurityPolicy:
        """Symlinks inside the allowed roots are accepted with a warning."""
        overrides.setdefault("allow_symlinks", True)
        return cls._preset(SecurityLevel.MODERATE, allowed_roots, overrides)

    @classmethod
    def permissive(
        cls, allowed_roots: Iterable[PathLike] = (), **overrides: object
    ) -> SecurityPolicy:
        """Explicit opt-in only; deny-list and pattern scan still apply."""
        return cls._preset(SecurityLevel.PERMISSIVE, allowed_roots, overrides)

    @classmethod
    def _preset(
        cls,
        level: SecurityLevel,
        allowed_roots: Iterable[PathLike],
        overrides: dict[str, object],
    ) -> SecurityPolicy:
        roots = frozenset(os.fspath(item) for item in allowed_roots)
        return cls(level=level, allowed_roots=roots, **overrides)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of one validation; ``is_valid`` implies no violations."""

    is_valid: bool
    canonical_path: str
    is_symlink: bool = False
    violations: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    symlink_target: str | None = None

    def __post_init__(self) -> None:
        if self.is_valid and self.violations:
            raise ValueError("a valid result must not carry violations")
        if not self.is_valid and not self.violations:
            raise ValueError("an invalid result must carry at least one violation")

    def to_dict(self) -> dict[str, object]:
        return {
            "is_valid": self.is_valid,
            "canonical_path": self.canonical_path,
            "is_symlink": self.is_symlink,
            "symlink_target": self.symlink_target,
            "violations": list(self.violations),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True, slots=True)
class _Violation:
    message: str
    severity: SecurityEventLevel


@dataclass(frozen=True, slots=True)
class _PathDetector:
    name: str
    message: str
    predicate: Callable[[str], bool]


@dataclass(slots=True)
class _Resolution:
    canonical: str
    links: list[str] = field(default_factory=list)
    violations: list[_Violation] = field(default_factory=list)


def _has_parent_segment(text: str) -> bool:
    return any(segment.strip() == ".." for segment in _SEPARATORS.split(text))


def _percent_layers(text: str) -> list[str]:
    layers: list[str] = []
    current = text
    for _ in range(MAX_PERCENT_DECODE_LAYERS):
        decoded = unquote(current, errors="replace")
        if decoded == current:
            break
        layers.append(decoded)
        current = decoded
    return layers


def _percent_encoded_traversal(text: str) -> bool:
    if "%" not in text:
        return False
    layers = _percent_layers(text)
    return bool(layers) and (_has_parent_segment(layers[0]) or "\x00" in layers[0])


def _double_encoded_traversal(text: str) -> bool:
    if "%25" not in text.lower():
        return False
    layers = _percent_layers(text)
    return len(layers) > 1 and (_has_parent_segment(layers[1]) or "\x00" in layers[1])


def _unescape(text: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        code = match.group(1) or match.group(2) or match.group(3)
        return chr(int(code, 16))

    return _ESCAPE_SEQUENCE.sub(_replace, text)


def _unicode_escaped_traversal(text: str) -> bool:
    unescaped = _unescape(text)
    if unescaped != text and (_has_parent_segment(unescaped) or "\x00" in unescaped):
        return True
    normalized = unicodedata.normalize("NFKC", text)
    return normalized != text and _has_parent_segment(normalized)


def _reserved_device_name(text: str) -> bool:
    for segment in _SEPARATORS.split(text):
        stem = segment.split(".", 1)[0].rstrip(" ").upper()
        if stem in RESERVED_DEVICE_NAMES:
            return True
    return False


_PATH_DETECTORS: Final[tuple[_PathDetector, ...]] = (
    _PathDetector("null_byte", "null byte", lambda text: "\x00" in text),
    _PathDetector(
        "control_characters",
        "control characters",
        lambda text: _CONTROL_CHARACTERS.search(text) is not None,
    ),
    _PathDetector("traversal_sequence", "parent-directory traversal '..'", _has_parent_segment),
    _PathDetector(
        "percent_encoded_traversal",
        "percent-encoded traversal sequence",
        _percent_encoded_traversal,
    ),
    _PathDetector(
        "double_encoded_traversal",
        "double-encoded traversal sequence",
        _double_encoded_traversal,
    ),
    _PathDetector(
        "overlong_utf8_traversal",
        "overlong UTF-8 encoded traversal sequence",
        lambda text: _OVERLONG_DOT_OR_SLASH.search(text) is not None,
    ),
    _PathDetector(
        "unicode_escaped_traversal",
        "unicode-escaped traversal sequence",
        _unicode_escaped_traversal,
    ),
    _PathDetector(
        "reserved_device_name",
        "reserved device name",
        _reserved_device_name,
    ),
)


def canonicalize_root(root: PathLike) -> str:
    """Return the canonical (symlink-free, absolute) form of a trusted root."""

    return os.path.realpath(os.path.expanduser(os.fspath(root)))


def scan_path_patterns(text: str) -> tuple[str, ...]:
    """Run every raw-pattern detector over ``text`` and return the matching names."""

    return tuple(detector.name for detector in _PATH_DETECTORS if detector.predicate(text))


class PathValidator:
    """Stateless path validator owning an injectable bounded security log."""

    __slots__ = ("_log",)

    def __init__(self, log: SecurityLog | None = None) -> None:
        self._log = log if log is not None else SecurityLog()

    @property
    def log(self) -> SecurityLog:
        return self._log

    def validate(
        self,
        path: object,
        root: PathLike | None = None,
        policy: SecurityPolicy | None = None,
    ) -> ValidationResult:
        """Validate ``path`` against ``root`` and ``policy``; never raises."""

        effective = policy if policy is not None else SecurityPolicy()
        audit_path = _audit_form(path)
        try:
            violations, warnings, resolution = self._evaluate(path, root, effective)
        except (OSError, ValueError, TypeError) as exc:
            violations = [
                _Violation(
                    f"Path validation failed: {type(exc).__name__}",
                    SecurityEventLevel.ERROR,
                )
            ]
            warnings = []
            resolution = None

        canonical = resolution.canonical if resolution is not None else audit_path
        links = resolution.links if resolution is not None else []
        if violations:
            for violation in violations:
                self._log.record(violation.severity, violation.message, audit_path)
            for warning in warnings:
                self._log.record(SecurityEventLevel.WARNING, warning, audit_path)

        return ValidationResult(
            is_valid=not violations,
            canonical_path=canonical,
            is_symlink=bool(links),
            violations=tuple(item.message for item in violations),
            warnings=tuple(warnings),
            symlink_target=canonical if links else None,
        )

    async def validate_async(
        self,
        path: object,
        root: PathLike | None = None,
        policy: SecurityPolicy | None = None,
    ) -> ValidationResult:
        """Run :meth:`validate` in a worker thread so filesystem calls do not block."""

        return await asyncio.to_thread(self.validate, path, root, policy)

    def require(
        self,
        path: object,
        root: PathLike | None = None,
        policy: SecurityPolicy | None = None,
    ) -> str:
        """Return the canonical path or raise :class:`PathRejectedError`."""

        result = self.validate(path, root, policy)
        if not result.is_valid:
            raise PathRejectedError(_audit_form(path), result.violations)
        return result.canonical_path

    def _evaluate(
        self,
        path: object,
        root: PathLike | None,
        policy: SecurityPolicy,
    ) -> tuple[list[_Violation], list[str], _Resolution | None]:
        warnings: list[str] = []

        # 1. type / emptiness
        if isinstance(path, os.PathLike):
            path = os.fspath(path)
        if not isinstance(path, str):
            message = f"Path must be a string, got {type(path).__name__}"
            return [_Violation(message, SecurityEventLevel.ERROR)], warnings, None
        if not path.strip():
            message = "Path must be a non-empty string"
            return [_Violation(message, SecurityEventLevel.ERROR)], warnings, None

        # 2-3. length, then raw pattern scan before any normalization
        early = _scan_raw(path, policy, context="Path")
        if early:
            return early, warnings, None

        # 4. canonicalization
        root_canonical = canonicalize_root(root) if root is not None else None
        absolute = _absolute_candidate(path, root, root_canonical)
        resolution = self._resolve(absolute, policy)
        if resolution.violations:
            return resolution.violations, warnings, resolution

        violations: list[_Violation] = []

        # 5. symlink policy
        if resolution.links:
            traversed = ", ".join(resolution.links)
            if not policy.allow_symlinks and policy.level is not SecurityLevel.PERMISSIVE:
                violations.append(
                    _Violation(
                        f"Symlinks are not allowed at {policy.level.value} level: {traversed}",
                        SecurityEventLevel.ERROR,
                    )
                )
            else:
                warnings.append(f"Path traverses symlink(s): {traversed}")

        # 6. boundary and depth
        roots = set(policy.allowed_roots)
        if root_canonical is not None:
            roots.add(root_canonical)
        if not roots:
            violations.append(
                _Violation(
                    "No allowed root configured; path cannot be confined",
                    SecurityEventLevel.ERROR,
                )
            )
        else:
            matched = _deepest_containing_root(resolution.canonical, roots)
            if matched is None:
                violations.append(
                    _Violation(
                        f"Path escapes allowed roots: {resolution.canonical}",
                        SecurityEventLevel.ERROR,
                    )
                )
            else:
                depth = path_depth(resolution.canonical, matched)
                if depth > policy.max_depth:
                    violations.append(
                        _Violation(
                            f"Path depth {depth} exceeds maximum {policy.max_depth}",
                            SecurityEventLevel.ERROR,
                        )
                    )
            if resolution.links and _deepest_containing_root(absolute, roots) is None:
                violations.append(
                    _Violation(
                        f"Symlink location escapes allowed roots: {absolute}",
                        SecurityEventLevel.ERROR,
                    )
                )

        # 7. deny-list
        blocked = _blocked_location(resolution.canonical, policy)
        if blocked is not None:
            violations.append(
                _Violation(
                    f"Path is inside a blocked location: {blocked}",
                    SecurityEventLevel.CRITICAL,
                )
            )

        _, parts = split_anchor(resolution.canonical)
        if ".git" in parts:
            warnings.append("Path targets git repository internals (.git)")
        if "node_modules" in parts:
            warnings.append("Path is inside node_modules")

        return violations, warnings, resolution

    def _resolve(self, absolute: str, policy: SecurityPolicy) -> _Resolution:
        anchor, parts = split_anchor(absolute)
        pending: deque[str] = deque(parts)
        resolution = _Resolution(canonical=anchor)
        visited: set[str] = set()
        resolved = anchor

        while pending:
            part = pending.popleft()
            if part in ("", os.curdir):
                continue
            if part == os.pardir:
                resolved = os.path.dirname(resolved) or anchor
                continue

            candidate = os.path.join(resolved, part)
            try:
                info = os.lstat(candidate)
            except (FileNotFoundError, NotADirectoryError):
                # Not created yet: keep the remaining components lexically.
                resolved = os.path.normpath(os.path.join(candidate, *pending))
                pending.clear()
                break

            if not stat.S_ISLNK(info.st_mode):
                resolved = candidate
                continue

            if candidate in visited or len(resolution.links) >= MAX_SYMLINK_HOPS:
                resolution.violations.append(
                    _Violation(f"Symlink cycle detected at {candidate}", SecurityEventLevel.ERROR)
                )
                break
            visited.add(candidate)
            resolution.links.append(candidate)

            target = os.readlink(candidate)
            hop_violations = _scan_raw(target, policy, context=f"Symlink target of {candidate}")
            if hop_violations:
                resolution.violations.extend(hop_violations)
                break

            target_abs = os.path.normpath(
                target if os.path.isabs(target) else os.path.join(resolved, target)
            )
            if is_within(candidate, target_abs):
                resolution.violations.append(
                    _Violation(
                        f"Symlink cycle detected: {candidate} resolves into its own ancestry",
                        SecurityEventLevel.ERROR,
                    )
                )
                break

            resolved, target_parts = split_anchor(target_abs)
            pending.extendleft(reversed(target_parts))

        resolution.canonical = os.path.normpath(resolved)
        return resolution


def validate_path(
    path: object,
    root: PathLike | None = None,
    policy: SecurityPolicy | None = None,
    *,
    log: SecurityLog | None = None,
) -> ValidationResult:
    """Validate with a throwaway :class:`PathValidator` (or one sharing ``log``)."""

    return PathValidator(log).validate(path, root, policy)


def validate_git_path(
    path: object,
    repo_root: PathLike,
    *,
    log: SecurityLog | None = None,
) -> ValidationResult:
    """STRICT validation for paths handed to git: repository-confined, no symlinks."""

    policy = SecurityPolicy.strict((repo_root,), allow_symlinks=False)
    return PathValidator(log).validate(path, repo_root, policy)


def validate_path_moderate(
    path: object,
    root: PathLike,
    *,
    log: SecurityLog | None = None,
) -> ValidationResult:
    """MODERATE validation: symlinks inside ``root`` are allowed with warnings."""

    return PathValidator(log).validate(path, root, SecurityPolicy.moderate((root,)))


def _scan_raw(text: str, policy: SecurityPolicy, *, context: str) -> list[_Violation]:
    if len(text) > policy.max_path_length:
        return [
            _Violation(
                f"{context} length {len(text)} exceeds maximum {policy.max_path_length}",
                SecurityEventLevel.ERROR,
            )
        ]
    return [
        _Violation(
            f"{context} contains dangerous pattern ({detector.name}): {detector.message}",
            SecurityEventLevel.CRITICAL,
        )
        for detector in _PATH_DETECTORS
        if detector.predicate(text)
    ]


def _absolute_candidate(path: str, root: PathLike | None, root_canonical: str | None) -> str:
    if os.path.isabs(path):
        candidate = os.path.normpath(path)
    else:
        base = root_canonical if root_canonical is not None else os.getcwd()
        candidate = os.path.normpath(os.path.join(base, path))

    if root is not None and root_canonical is not None:
        lexical_root = os.path.normpath(os.path.abspath(os.path.expanduser(os.fspath(root))))
        if lexical_root != root_canonical and is_within(candidate, lexical_root):
            relative = os.path.relpath(candidate, lexical_root)
            candidate = os.path.normpath(os.path.join(root_canonical, relative))
    return candidate


def _deepest_containing_root(path: str, roots: Iterable[str]) -> str | None:
    containing = [item for item in roots if is_within(path, item)]
    if not containing:
        return None
    return max(containing, key=len)


def _blocked_location(canonical: str, policy: SecurityPolicy) -> str | None:
    fixed = (
        FIXED_SENSITIVE_DIRECTORIES_WINDOWS if os.name == "nt" else FIXED_SENSITIVE_DIRECTORIES
    )
    for blocked in (*sorted(policy.blocked_paths), *fixed):
        if is_within(canonical, blocked):
            return blocked
    _, parts = split_anchor(canonical)
    for part in parts:
        if part in SENSITIVE_DIRECTORY_NAMES:
            return part
    return None


def _audit_form(path: object) -> str:
    if isinstance(path, str):
        return path
    if isinstance(path, os.PathLike):
        return os.fspath(path)  # type: ignore[return-value]
    return repr(path)


def _as_iterable(value: object) -> Iterable[PathLike]:
    if isinstance(value, (str, os.PathLike)):
        return (value,)
    if isinstance(value, Iterable):
        return value
    raise TypeError(f"expected an iterable of paths, got {type(value).__name__}")


__all__ = [
    "DEFAULT_MAX_DEPTH",
    "DEFAULT_MAX_PATH_LENGTH",
    "FIXED_SENSITIVE_DIRECTORIES",
    "MAX_PERCENT_DECODE_LAYERS",
    "MAX_SYMLINK_HOPS",
    "PathValidator",
    "RESERVED_DEVICE_NAMES",
    "SENSITIVE_DIRECTORY_NAMES",
    "SecurityLevel",
    "SecurityPolicy",
    "ValidationResult",
    "canonicalize_root",
    "scan_path_patterns",
    "validate_git_path",
    "validate_path",
    "validate_path_moderate",
]
