"""
gitward — user interface

File: src/gitward/ui/__init__.py
Last updated: 2026-10-19

Purpose
- argparse command router over the path validator, invoker and pipeline.

Functional requirements
- Every command exits with a code from the ``ExitCode`` contract.
"""

from gitward.ui.cli import CLIError, build_parser, run_cli

__all__ = ["CLIError", "build_parser", "run_cli"]
