"""Module entrypoint for ``python -m movesmith``."""

from __future__ import annotations

from movesmith.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
