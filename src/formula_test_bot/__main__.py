"""Module entrypoint for ``python -m formula_test_bot``."""

from __future__ import annotations

from formula_test_bot.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
