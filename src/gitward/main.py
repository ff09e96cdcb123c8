"""Executable CLI entrypoint for ``gitward``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from gitward.errors import (
    CATEGORY_CONFIGURATION,
    CATEGORY_INPUT_VALIDATION,
    CATEGORY_PROCESS_EXECUTION,
    GitwardError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    REJECTED = 1
    CONFIG_ERROR = 2
    PROCESS_ERROR = 3
    INTERNAL_ERROR = 4


_CATEGORY_EXIT_CODES = {
    CATEGORY_INPUT_VALIDATION: ExitCode.REJECTED,
    CATEGORY_CONFIGURATION: ExitCode.CONFIG_ERROR,
    CATEGORY_PROCESS_EXECUTION: ExitCode.PROCESS_ERROR,
}


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m gitward`` and the console script."""

    from gitward.ui.cli import run_cli

    try:
        return _exit_code_from(run_cli(argv))
    except SystemExit as exc:
        return _exit_code_from(exc.code)
    except Exception as exc:  # noqa: BLE001 - CLI boundary normalization.
        return _report(exc)


def _exit_code_from(raw_code: object) -> int:
    if raw_code is None:
        return ExitCode.SUCCESS
    if isinstance(raw_code, int) and raw_code in iter(ExitCode):
        return int(raw_code)
    if isinstance(raw_code, str) and raw_code.strip():
        print(raw_code.strip(), file=sys.stderr)
    return ExitCode.INTERNAL_ERROR


def _report(exc: Exception) -> int:
    for item in _exception_chain(exc):
        if isinstance(item, GitwardError):
            code = _CATEGORY_EXIT_CODES.get(item.category, ExitCode.INTERNAL_ERROR)
            print(f"error [{item.code}]: {item.detail}", file=sys.stderr)
            return code
        if isinstance(item, (FileNotFoundError, NotADirectoryError, PermissionError)):
            print(f"error: {item}", file=sys.stderr)
            return ExitCode.CONFIG_ERROR
    traceback.print_exception(exc, file=sys.stderr)
    return ExitCode.INTERNAL_ERROR


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


__all__ = ["ExitCode", "cli_entrypoint"]
