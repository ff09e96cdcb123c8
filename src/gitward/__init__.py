"""
gitward — package root

File: src/gitward/__init__.py
Last updated: 2026-10-19

Purpose
- Trust boundary for an AI git-automation agent: path validation, allow-listed
  process invocation for git and the AI CLI, and a bounded request pipeline.

What should be included in this file
- Version export and a minimal public surface.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
