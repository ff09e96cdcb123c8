"""Utility exports for path containment and async deadline helpers."""

from gitward.utils.concurrency import CancellationToken, run_with_timeout
from gitward.utils.fs import PathLike, is_within, path_depth, split_anchor

__all__ = [
    "CancellationToken",
    "PathLike",
    "is_within",
    "path_depth",
    "run_with_timeout",
    "split_anchor",
]
