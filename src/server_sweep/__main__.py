"""Module entrypoint for ``python -m server_sweep``."""

from __future__ import annotations

from server_sweep.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
