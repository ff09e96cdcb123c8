"""
gitward — YAML security policy files

File: src/gitward/config/policy_file.py
Last updated: 2026-10-19

Purpose
- Load a declarative path security policy from YAML and turn it into a
  :class:`~gitward.security.path_validator.SecurityPolicy`.

Functional requirements
- Only ``level``, ``allowed_roots``, ``blocked_paths``, ``allow_symlinks``,
  ``max_depth`` and ``max_path_length`` are accepted; anything else fails.
- Relative roots resolve against the policy file's directory.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Final, cast

import yaml

from gitward.config.loader import ConfigLoadError
from gitward.config.settings import PathSettings
from gitward.security.path_validator import SecurityLevel, SecurityPolicy
from gitward.utils.fs import PathLike

_ALLOWED_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "level",
        "allowed_roots",
        "blocked_paths",
        "allow_symlinks",
        "max_depth",
        "max_path_length",
    }
)


def load_policy_file(path: PathLike, *, extra_roots: Iterable[PathLike] = ()) -> SecurityPolicy:
    """Parse ``path`` and return the policy it declares."""

    source = Path(path).expanduser()
    try:
        with source.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"{source}: invalid YAML ({exc})") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read policy file {source}: {exc}") from exc

    if loaded is None:
        loaded = {}
    if not isinstance(loaded, Mapping):
        raise ConfigLoadError(
            f"{source}: expected top-level YAML mapping, got {type(loaded).__name__}"
        )
    return policy_from_mapping(
        loaded, base_dir=source.parent, extra_roots=extra_roots, location=source.name
    )


def policy_from_mapping(
    payload: Mapping[object, object],
    *,
    base_dir: PathLike | None = None,
    extra_roots: Iterable[PathLike] = (),
    location: str = "<policy>",
) -> SecurityPolicy:
    """Build a policy from an already-parsed mapping."""

    unknown = sorted(str(key) for key in payload if key not in _ALLOWED_FIELDS)
    if unknown:
        raise ConfigLoadError(
            f"{location}: unexpected fields: {unknown}; allowed fields: {sorted(_ALLOWED_FIELDS)}"
        )

    level = _coerce_level(payload.get("level", SecurityLevel.STRICT.value), f"{location}.level")
    roots = _coerce_paths(payload.get("allowed_roots", []), f"{location}.allowed_roots", base_dir)
    blocked = _coerce_paths(payload.get("blocked_paths", []), f"{location}.blocked_paths", base_dir)
    allow_symlinks = _coerce_bool(
        payload.get("allow_symlinks", level is not SecurityLevel.STRICT),
        f"{location}.allow_symlinks",
    )
    defaults = PathSettings()
    max_depth = _coerce_positive_int(
        payload.get("max_depth", defaults.max_depth), f"{location}.max_depth"
    )
    max_path_length = _coerce_positive_int(
        payload.get("max_path_length", defaults.max_path_length), f"{location}.max_path_length"
    )

    return SecurityPolicy(
        level=level,
        allowed_roots=frozenset((*roots, *(os.fspath(item) for item in extra_roots))),
        blocked_paths=frozenset(blocked),
        allow_symlinks=allow_symlinks,
        max_depth=max_depth,
        max_path_length=max_path_length,
    )


def resolve_security_policy(
    settings: PathSettings,
    *,
    extra_roots: Iterable[PathLike] = (),
) -> SecurityPolicy:
    """Policy from ``settings.policy_file`` when configured, else from the settings."""

    if settings.policy_file:
        return load_policy_file(settings.policy_file, extra_roots=extra_roots)
    return settings.to_policy(extra_roots)


def _coerce_level(value: object, location: str) -> SecurityLevel:
    if not isinstance(value, str):
        raise ConfigLoadError(f"{location}: expected string, got {type(value).__name__}")
    try:
        return SecurityLevel(value.strip().lower())
    except ValueError as exc:
        expected = ", ".join(level.value for level in SecurityLevel)
        message = f"{location}: invalid value {value!r}; expected one of: {expected}"
        raise ConfigLoadError(message) from exc


def _coerce_paths(value: object, location: str, base_dir: PathLike | None) -> list[str]:
    if not isinstance(value, list):
        raise ConfigLoadError(f"{location}: expected list of strings, got {type(value).__name__}")
    out: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item.strip() or "\x00" in item:
            raise ConfigLoadError(f"{location}[{index}]: expected non-empty path string")
        candidate = Path(item.strip()).expanduser()
        if not candidate.is_absolute() and base_dir is not None:
            candidate = Path(base_dir) / candidate
        out.append(os.fspath(candidate))
    return out


def _coerce_bool(value: object, location: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigLoadError(f"{location}: expected boolean, got {type(value).__name__}")


def _coerce_positive_int(value: object, location: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigLoadError(f"{location}: expected integer, got {type(value).__name__}")
    if value <= 0:
        raise ConfigLoadError(f"{location}: must be > 0")
    return value


__all__ = ["load_policy_file", "policy_from_mapping", "resolve_security_policy"]
