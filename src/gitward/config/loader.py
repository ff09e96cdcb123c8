"""
gitward — runtime config loader.

File: src/gitward/config/loader.py
Last updated: 2026-10-19

Purpose
- Load effective runtime config from defaults, TOML file, env vars, and CLI overrides.

What should be included in this file
- Precedence logic: CLI > env (GITWARD_) > file > defaults.
- TOML loading via ``tomllib``.
- Deterministic environment variable mapping, short aliases and coercion.
- Path normalization relative to config file location.
- Redacted deterministic dump of effective config.

Functional requirements
- Loading is eager; any invalid value raises before a component is built.
- A full ``GITWARD_<SECTION>_<KEY>`` name wins over its short alias.

Non-functional requirements
- Keep loading deterministic and reproducible.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from gitward.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from gitward.config.settings import GitwardSettings
from gitward.errors import ConfigurationError

DEFAULT_CONFIG_FILE: Final[str] = "gitward.toml"
ENV_PREFIX: Final[str] = "GITWARD_"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

ConfigPath = tuple[str, ...]

_MISSING: Final = object()

# Short names accepted alongside the derived GITWARD_<SECTION>_<KEY> names.
ENV_ALIASES: Final[Mapping[str, tuple[str, ...]]] = {
    f"{ENV_PREFIX}MODEL": ("backend", "model"),
    f"{ENV_PREFIX}TIMEOUT": ("backend", "timeout_ms"),
    f"{ENV_PREFIX}MAX_RETRIES": ("backend", "max_retries"),
    f"{ENV_PREFIX}BASE_RETRY_DELAY": ("backend", "base_retry_delay_ms"),
    f"{ENV_PREFIX}CLAUDE_COMMAND": ("backend", "command"),
    f"{ENV_PREFIX}MAX_PROMPT_LENGTH": ("limits", "max_prompt_length"),
    f"{ENV_PREFIX}MAX_DIFF_LENGTH": ("limits", "max_diff_length"),
    f"{ENV_PREFIX}MAX_FILENAME_LENGTH": ("limits", "max_filename_length"),
}


class ConfigLoadError(ConfigurationError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, code="config_load")


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults."""

    resolved_path = _resolve_config_path(config_path)
    explicit_path = config_path is not None
    env_map = dict(os.environ if environ is None else environ)

    file_payload = _load_toml_file(resolved_path, required=explicit_path)
    merged = merge_config(default_config(), file_payload)
    merged = assert_valid_config(merged)

    merged = merge_config(merged, _collect_env_overrides(merged, env_map))
    merged = merge_config(merged, _materialize_cli_overrides(dict(cli_overrides or {})))
    merged = assert_valid_config(merged)

    normalized = normalize_paths(merged, base_dir=resolved_path.parent)
    return assert_valid_config(normalized)


def load_settings(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> GitwardSettings:
    """Load effective config and project it into typed settings."""

    config = load_config(config_path, cli_overrides=cli_overrides, environ=environ)
    return GitwardSettings.from_config(config)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Normalize configured path fields relative to ``base_dir``."""

    materialized = merge_config({}, config)
    for field_path in PATH_FIELDS:
        _normalize_path_field(materialized, field_path, base_dir)
    return materialized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ConfigLoadError(f"config root must be an object: {path}")
    return parsed


def _collect_env_overrides(
    config: Mapping[str, object], environ: Mapping[str, str]
) -> dict[str, Any]:
    kinds = dict(_scalar_leaves(config))
    # Full names are visited before aliases, so an alias never replaces them.
    candidates = [(env_name_for_path(path), path) for path in sorted(kinds)]
    candidates.extend((alias, ENV_ALIASES[alias]) for alias in sorted(ENV_ALIASES))

    overrides: dict[str, Any] = {}
    for env_name, path in candidates:
        raw = environ.get(env_name)
        if raw is None or _lookup(overrides, path) is not _MISSING:
            continue
        _assign(overrides, path, _coerce_env(raw, kinds[path], f"{env_name} -> {'.'.join(path)}"))
    return overrides


def _scalar_leaves(
    payload: Mapping[str, object], prefix: ConfigPath = ()
) -> Iterator[tuple[ConfigPath, type]]:
    for key, value in payload.items():
        path = (*prefix, key)
        if isinstance(value, Mapping):
            yield from _scalar_leaves(value, path)
        elif isinstance(value, (bool, int, str, list)):
            yield path, type(value)


def _coerce_env(raw: str, kind: type, target: str) -> object:
    value = raw.strip()
    if kind is list:
        return [item.strip() for item in value.split(os.pathsep) if item.strip()]
    if kind is bool:
        lowered = value.lower()
        if lowered in _BOOLEAN_TRUE:
            return True
        if lowered in _BOOLEAN_FALSE:
            return False
        raise ConfigLoadError(f"{target} must be a boolean (true/false/1/0/yes/no/on/off)")
    if kind is int:
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{target} must be an integer") from exc
    return value


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        path = tuple(part for part in key.split(".") if part)
        if len(path) < 2:
            raise ConfigLoadError(f"invalid CLI override key {key!r}; expected section.key")
        _assign(payload, path, cli_overrides[key])
    return payload


def _assign(target: dict[str, Any], path: ConfigPath, value: object) -> None:
    *parents, leaf = path
    cursor = target
    for part in parents:
        child = cursor.get(part)
        if not isinstance(child, dict):
            child = cursor[part] = {}
        cursor = child
    cursor[leaf] = value


def _lookup(payload: Mapping[str, object], path: ConfigPath) -> object:
    cursor: object = payload
    for part in path:
        if not isinstance(cursor, Mapping) or part not in cursor:
            return _MISSING
        cursor = cursor[part]
    return cursor


def _normalize_path_field(config: dict[str, Any], path: ConfigPath, base_dir: Path) -> None:
    value = _lookup(config, path)
    if isinstance(value, str) and value:
        _assign(config, path, _absolute_path(value, base_dir))
    elif isinstance(value, list):
        paths = [_absolute_path(item, base_dir) for item in value if isinstance(item, str)]
        _assign(config, path, paths)


def _absolute_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    return os.path.normpath(candidate if candidate.is_absolute() else base_dir / candidate)


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_ALIASES",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "load_settings",
    "normalize_paths",
]
