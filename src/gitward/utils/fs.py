"""
gitward — filesystem path helpers

File: src/gitward/utils/fs.py
Last updated: 2026-10-19

Purpose
- Small, side-effect-free helpers for lexical path containment and splitting.

Functional requirements
- Containment compares whole components (``/repo`` never contains ``/repository``).
- Comparisons honor the platform's case rules via ``os.path.normcase``.

Non-functional requirements
- Standard library only and cross-platform behavior where feasible.
"""

from __future__ import annotations

import os
from pathlib import PurePath

PathLike = str | os.PathLike[str]

__all__ = [
    "PathLike",
    "is_within",
    "path_depth",
    "split_anchor",
]


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if normalized ``child`` is ``parent`` or descends from it.

    Both arguments are compared lexically; callers resolve symlinks first.
    """

    child_norm = os.path.normcase(os.path.normpath(os.fspath(child)))
    parent_norm = os.path.normcase(os.path.normpath(os.fspath(parent)))
    if child_norm == parent_norm:
        return True
    prefix = parent_norm if parent_norm.endswith(os.sep) else parent_norm + os.sep
    return child_norm.startswith(prefix)


def path_depth(child: PathLike, parent: PathLike) -> int:
    """Number of components ``child`` sits below ``parent`` (0 when equal)."""

    relative = os.path.relpath(os.fspath(child), os.fspath(parent))
    if relative == os.curdir:
        return 0
    return len([part for part in relative.split(os.sep) if part])


def split_anchor(path: PathLike) -> tuple[str, tuple[str, ...]]:
    """Split an absolute path into its anchor (``/`` or ``C:\\``) and components."""

    pure = PurePath(os.fspath(path))
    if pure.anchor:
        return pure.anchor, pure.parts[1:]
    return os.sep, pure.parts
