"""Command-line interface router for gitward."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Final, TextIO

from gitward.config import (
    GitwardSettings,
    dump_effective_config,
    load_config,
    resolve_security_policy,
)
from gitward.errors import InputValidationError
from gitward.integration_plane.arguments import GIT_POLICY, backend_policy
from gitward.integration_plane.invoker import CommandSpec, SafeProcessInvoker
from gitward.observability.logging import (
    configure_structlog,
    correlation_scope,
    setup_logging,
    shutdown_logging,
)
from gitward.security.path_validator import PathValidator, SecurityLevel
from gitward.security.prompt_hygiene import scan_for_injection
from gitward.security.security_log import SecurityLog
from gitward.synthesis_plane.pipeline import RequestPipeline
from gitward.utils.concurrency import run_with_timeout

EXIT_SUCCESS: Final[int] = 0
EXIT_REJECTED: Final[int] = 1
EXIT_CONFIG_ERROR: Final[int] = 2
EXIT_PROCESS_ERROR: Final[int] = 3

STDIN_MARKER: Final[str] = "-"
DEFAULT_PROBE_DEADLINE_SECONDS: Final[float] = 30.0


class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    def __init__(self, message: str, exit_code: int = EXIT_REJECTED) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="gitward",
        description=(
            "gitward: trust boundary for AI-driven git automation.\n\n"
            "Common workflows:\n"
            "  gitward check-path src/app.py          Validate a path against the policy\n"
            "  gitward check-args git add -- a.txt    Dry-run argument validation\n"
            "  gitward scan-prompt notes.txt          Scan text for prompt injection\n"
            "  gitward ai-available                   Probe the AI backend\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to gitward TOML config (default: ./gitward.toml if present).",
    )
    common.add_argument(
        "--log",
        action="store_true",
        default=False,
        help="Write JSON-lines logs under the configured log directory.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # check-path ----------------------------------------------------------
    path_parser = subparsers.add_parser(
        "check-path",
        parents=[common],
        help="Validate a path against the security policy",
        description=(
            "Validate PATH relative to a root and print the result as JSON.\n\n"
            "Examples:\n"
            "  gitward check-path src/app.py\n"
            "  gitward check-path ../etc/passwd --root /srv/repo\n"
            "  gitward check-path link.txt --level moderate --allow-symlinks\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    path_parser.add_argument("path", help="Path to validate")
    path_parser.add_argument("--root", default=".", help="Root directory (default: cwd)")
    path_parser.add_argument(
        "--level",
        choices=[level.value for level in SecurityLevel],
        default=None,
        help="Override the configured security level",
    )
    path_parser.add_argument(
        "--allow-symlinks",
        action="store_true",
        default=False,
        help="Accept symlinks that resolve inside the allowed roots",
    )
    path_parser.add_argument("--policy-file", default=None, help="YAML security policy file")
    path_parser.set_defaults(handler=_cmd_check_path)

    # check-args ----------------------------------------------------------
    args_parser = subparsers.add_parser(
        "check-args",
        parents=[common],
        help="Dry-run invoker validation for a command line",
        description=(
            "Allow-list and sanitize a command without spawning it.\n\n"
            "Examples:\n"
            "  gitward check-args git status -- --porcelain\n"
            "  gitward check-args git commit -- -m 'fix: typo'\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    args_parser.add_argument("binary", help="Binary name (git or the AI backend command)")
    args_parser.add_argument("subcommand", nargs="?", default=None, help="Subcommand")
    args_parser.add_argument(
        "arguments",
        nargs=argparse.REMAINDER,
        help="Arguments after '--'",
    )
    args_parser.set_defaults(handler=_cmd_check_args)

    # scan-prompt ---------------------------------------------------------
    scan_parser = subparsers.add_parser(
        "scan-prompt",
        parents=[common],
        help="Report prompt-injection findings for a file or stdin",
    )
    scan_parser.add_argument(
        "source",
        nargs="?",
        default=STDIN_MARKER,
        help="File to scan, or '-' for stdin (default)",
    )
    scan_parser.set_defaults(handler=_cmd_scan_prompt)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration with secrets redacted",
    )
    config_parser.set_defaults(handler=_cmd_config)

    # ai-available --------------------------------------------------------
    probe_parser = subparsers.add_parser(
        "ai-available",
        parents=[common],
        help="Check whether the AI backend CLI responds",
    )
    probe_parser.add_argument(
        "--deadline",
        type=float,
        default=DEFAULT_PROBE_DEADLINE_SECONDS,
        help="Overall seconds to wait for the probe (default: %(default)s)",
    )
    probe_parser.set_defaults(handler=_cmd_ai_available)

    return parser


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_structlog()
    logging_enabled = False
    try:
        if getattr(namespace, "log", False):
            settings = _load_settings(namespace)
            setup_logging(settings.observability, run_id=_new_run_id())
            logging_enabled = True
        with correlation_scope(operation=namespace.command):
            result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        if logging_enabled:
            shutdown_logging()
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_check_path(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {}
    if args.level is not None:
        overrides["paths.security_level"] = args.level
    if args.allow_symlinks:
        overrides["paths.allow_symlinks"] = True
    if args.policy_file is not None:
        overrides["paths.policy_file"] = args.policy_file

    settings = _load_settings(args, overrides)
    root = Path(args.root).expanduser()
    policy = resolve_security_policy(settings.paths, extra_roots=(root,))
    validator = PathValidator(SecurityLog(settings.observability.security_log_capacity))
    result = validator.validate(args.path, root, policy)

    payload: dict[str, object] = dict(result.to_dict())
    payload["security_events"] = [entry.to_dict() for entry in validator.log.snapshot()]
    _emit_json(payload)
    return EXIT_SUCCESS if result.is_valid else EXIT_REJECTED


def _cmd_check_args(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    arguments = list(args.arguments)
    if arguments and arguments[0] == "--":
        arguments = arguments[1:]

    invoker = SafeProcessInvoker(
        (GIT_POLICY, backend_policy(settings.backend.command)),
        settings=settings.git,
        prompt_length_limit=settings.limits.max_prompt_length,
    )
    spec = CommandSpec(binary=args.binary, subcommand=args.subcommand, arguments=tuple(arguments))
    try:
        invocation = invoker.validate(spec)
    except InputValidationError as exc:
        _emit_json({"accepted": False, **exc.to_dict()})
        return EXIT_REJECTED

    _emit_json(
        {
            "accepted": True,
            "binary": invocation.binary,
            "subcommand": invocation.subcommand,
            "arguments": [
                {"value": item.value, "kind": item.kind.value} for item in invocation.arguments
            ],
        }
    )
    return EXIT_SUCCESS


def _cmd_scan_prompt(args: argparse.Namespace) -> int:
    text = _read_source(args.source, sys.stdin)
    result = scan_for_injection(text)
    _emit_json(
        {
            "clean": result.is_clean,
            "rule_ids": list(result.rule_ids),
            "findings": [
                {
                    "rule_id": finding.rule_id,
                    "category": finding.category.value,
                    "reason": finding.reason,
                    "encoding": finding.encoding,
                }
                for finding in result.findings
            ],
        }
    )
    return EXIT_SUCCESS if result.is_clean else EXIT_REJECTED


def _cmd_config(args: argparse.Namespace) -> int:
    config = load_config(args.config_path)
    print(dump_effective_config(config))
    return EXIT_SUCCESS


def _cmd_ai_available(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    pipeline = RequestPipeline(settings)
    try:
        available = asyncio.run(run_with_timeout(pipeline.is_available(), args.deadline))
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc
    except TimeoutError:
        available = False
    _emit_json(
        {
            "available": available,
            "command": settings.backend.command,
            "model": settings.backend.model,
        }
    )
    return EXIT_SUCCESS if available else EXIT_PROCESS_ERROR


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(
    args: argparse.Namespace,
    overrides: Mapping[str, object] | None = None,
) -> GitwardSettings:
    config = load_config(getattr(args, "config_path", None), cli_overrides=overrides)
    return GitwardSettings.from_config(config)


def _read_source(source: str, stdin: TextIO) -> str:
    if source == STDIN_MARKER:
        return stdin.read()
    path = Path(source)
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise CLIError(f"file not found: {source}", exit_code=EXIT_CONFIG_ERROR) from exc
    except UnicodeDecodeError as exc:
        raise CLIError(f"file is not UTF-8 text: {source}", exit_code=EXIT_REJECTED) from exc


def _new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, indent=2, ensure_ascii=False))


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
