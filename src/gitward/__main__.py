"""Module entrypoint for ``python -m gitward``."""

from __future__ import annotations

from gitward.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
